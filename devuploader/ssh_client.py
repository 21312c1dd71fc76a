from __future__ import annotations

import logging
import os
import posixpath
from dataclasses import dataclass
from typing import AsyncIterator, Optional, Protocol, Sequence, Set

import asyncssh

from .utils import async_retry, remote_relpath


@dataclass
class SSHClientConfig:
    host: str
    port: int = 22
    username: Optional[str] = None
    known_hosts: Optional[str] = None
    strict_host_key: bool = False
    # Security: strong ciphers
    ciphers: tuple[str, ...] = (
        "chacha20-poly1305@openssh.com",
        "aes256-gcm@openssh.com",
    )


@dataclass(frozen=True)
class UploadProgress:
    file: str
    index: int


class UploadError(RuntimeError):
    def __init__(self, file: str, cause: BaseException):
        super().__init__(f"upload of {file} failed: {cause}")
        self.file = file
        self.cause = cause


class Connection(Protocol):
    name: str

    async def change_directory(self, path: str) -> None:
        ...

    def upload_files(self, paths: Sequence[str]) -> AsyncIterator[UploadProgress]:
        ...

    async def close(self) -> None:
        ...


class SFTPConnection:
    """One persistent SFTP session that mirrors files below local_root into its remote cwd."""

    def __init__(
        self,
        cfg: SSHClientConfig,
        local_root: str,
        name: str,
        retries: int = 3,
        backoff: float = 0.5,
        logger: Optional[logging.Logger] = None,
    ):
        self.cfg = cfg
        self.local_root = os.path.abspath(local_root)
        self.name = name
        self.retries = retries
        self.backoff = backoff
        self.logger = logger or logging.getLogger(__name__)
        self._conn: Optional[asyncssh.SSHClientConnection] = None
        self._sftp: Optional[asyncssh.SFTPClient] = None
        self._known_dirs: Set[str] = set()

    async def connect(self) -> None:
        known_hosts = None if not self.cfg.strict_host_key else (self.cfg.known_hosts or "~/.ssh/known_hosts")
        self._conn = await asyncssh.connect(
            self.cfg.host,
            port=self.cfg.port,
            username=self.cfg.username,
            known_hosts=known_hosts,
            encryption_algs=self.cfg.ciphers,
            compression_algs=(),
        )
        self._sftp = await self._conn.start_sftp_client()
        self.logger.debug("%s: connected to %s:%d", self.name, self.cfg.host, self.cfg.port)

    async def close(self) -> None:
        if self._sftp:
            self._sftp.exit()
            self._sftp = None
        if self._conn:
            self._conn.close()
            await self._conn.wait_closed()
            self._conn = None

    @property
    def sftp(self) -> asyncssh.SFTPClient:
        if not self._sftp:
            raise RuntimeError(f"{self.name}: SFTP client not connected")
        return self._sftp

    async def change_directory(self, path: str) -> None:
        await self.sftp.chdir(path)
        self._known_dirs.clear()
        self.logger.debug("%s: remote cwd is now %s", self.name, path)

    async def _ensure_dir(self, path: str) -> None:
        if not path or path in self._known_dirs:
            return
        await self.sftp.makedirs(path, exist_ok=True)
        self._known_dirs.add(path)

    async def _upload_one(self, local: str, remote: str) -> None:
        await self._ensure_dir(posixpath.dirname(remote))
        await self.sftp.put(local, remote, preserve=True)

    async def upload_files(self, paths: Sequence[str]) -> AsyncIterator[UploadProgress]:
        for index, local in enumerate(paths):
            remote = remote_relpath(local, self.local_root)
            try:
                await async_retry(
                    lambda: self._upload_one(local, remote),
                    retries=self.retries,
                    base_delay=self.backoff,
                    exc_types=(OSError, asyncssh.Error),
                )
            except (OSError, asyncssh.Error) as exc:
                raise UploadError(local, exc) from exc
            yield UploadProgress(file=local, index=index)
