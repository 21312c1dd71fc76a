from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Set

from rich.progress import Progress, TaskID

from .ssh_client import Connection
from .utils import round_to_precision, split_to_n_chunks


@dataclass
class BucketReport:
    uploader: str
    slot: int
    files: List[str]
    uploaded: int = 0
    duration_s: float = 0.0
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def summary(self) -> str:
        secs = round_to_precision(self.duration_s, 2)
        if self.ok:
            return f"{self.uploader}: Uploaded {len(self.files)} files in {secs} seconds!"
        return (
            f"{self.uploader}: Upload failed after {self.uploaded} of {len(self.files)} files"
            f" in {secs} seconds: {self.error}"
        )


@dataclass
class BatchReport:
    files: List[str]
    buckets: List[BucketReport] = field(default_factory=list)

    @property
    def uploaded(self) -> int:
        return sum(b.uploaded for b in self.buckets)

    @property
    def failed(self) -> List[BucketReport]:
        return [b for b in self.buckets if not b.ok]

    @property
    def ok(self) -> bool:
        return not self.failed


class UploadCoordinator:
    """Spreads each batch over a fixed set of connections, one bucket per connection."""

    def __init__(
        self,
        name: str,
        connections: Sequence[Connection],
        logger: Optional[logging.Logger] = None,
        progress: Optional[Progress] = None,
    ):
        if not connections:
            raise ValueError("at least one connection is required")
        self.name = name
        self.connections = tuple(connections)
        self.logger = logger or logging.getLogger(__name__)
        self.progress = progress
        # slot i is only ever used by the bucket i upload tasks, one at a time
        self._slot_locks = [asyncio.Lock() for _ in self.connections]
        self._inflight: Set[asyncio.Task] = set()

    @property
    def size(self) -> int:
        return len(self.connections)

    def uploader_name(self, slot: int) -> str:
        return f"SFTP{slot + 1}"

    async def prepare(self, destination: str) -> None:
        for slot, conn in enumerate(self.connections):
            try:
                await conn.change_directory(destination)
            except Exception as e:
                # the connection stays in its slot; later uploads report their own errors
                self.logger.error(
                    "%s: Could not cd to %s on %s: %s", self.name, destination, self.uploader_name(slot), e
                )

    def dispatch(self, batch: Sequence[str]) -> "asyncio.Task[BatchReport]":
        files = list(batch)
        buckets = split_to_n_chunks(files, self.size)
        started = time.perf_counter()
        bucket_tasks = [
            asyncio.create_task(self._upload_bucket(slot, bucket, started))
            for slot, bucket in enumerate(buckets)
            if bucket
        ]
        task = asyncio.create_task(self._collect(files, bucket_tasks))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task

    async def upload_batch(self, batch: Sequence[str]) -> BatchReport:
        return await self.dispatch(batch)

    async def drain(self) -> None:
        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    async def _collect(self, files: List[str], bucket_tasks: List["asyncio.Task[BucketReport]"]) -> BatchReport:
        report = BatchReport(files=files, buckets=list(await asyncio.gather(*bucket_tasks)))
        if report.ok:
            self.logger.debug("%s: batch of %d files delivered", self.name, len(files))
        else:
            self.logger.warning(
                "%s: %d of %d uploads failed for a batch of %d files",
                self.name,
                len(report.failed),
                len(report.buckets),
                len(files),
            )
        return report

    async def _upload_bucket(self, slot: int, bucket: List[str], started: float) -> BucketReport:
        uploader = self.uploader_name(slot)
        report = BucketReport(uploader=uploader, slot=slot, files=bucket)
        async with self._slot_locks[slot]:
            t: Optional[TaskID] = None
            if self.progress:
                t = self.progress.add_task(f"{self.name} {uploader}", total=len(bucket))
            try:
                async for event in self.connections[slot].upload_files(bucket):
                    report.uploaded = event.index + 1
                    self.logger.debug("%s: Uploading file %d: %s", uploader, event.index + 1, event.file)
                    if t is not None:
                        self.progress.advance(t)
            except Exception as e:
                report.error = e
            finally:
                report.duration_s = time.perf_counter() - started
                if t is not None:
                    self.progress.remove_task(t)
        if report.ok:
            self.logger.info("%s: %s", self.name, report.summary())
        else:
            self.logger.error("%s: %s", self.name, report.summary())
        return report
