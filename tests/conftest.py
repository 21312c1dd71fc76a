import asyncio
from typing import List, Optional

import pytest

from devuploader.ssh_client import UploadProgress


class FakeConnection:
    def __init__(self, name: str, fail_upload: bool = False, fail_cd: bool = False, delay: float = 0.0):
        self.name = name
        self.fail_upload = fail_upload
        self.fail_cd = fail_cd
        self.delay = delay
        self.cwd: Optional[str] = None
        self.cd_calls: List[str] = []
        self.uploads: List[List[str]] = []
        self.active = 0
        self.max_active = 0
        self.closed = False

    async def change_directory(self, path: str) -> None:
        self.cd_calls.append(path)
        if self.fail_cd:
            raise OSError(f"No such file: {path}")
        self.cwd = path

    async def upload_files(self, paths):
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        self.uploads.append(list(paths))
        try:
            for index, path in enumerate(paths):
                await asyncio.sleep(self.delay)
                if self.fail_upload and index == 1:
                    raise OSError(f"upload of {path} failed")
                yield UploadProgress(file=path, index=index)
        finally:
            self.active -= 1

    async def close(self) -> None:
        self.closed = True


class FakeEventSource:
    """Replays (delay, RawEvent) pairs, then idles or ends."""

    def __init__(self, script=(), files=(), end: bool = False, error: Optional[Exception] = None):
        self.script = list(script)
        self.files = list(files)
        self.end = end
        self.error = error
        self.subscribed = False

    def list_all_files(self):
        return list(self.files)

    async def subscribe(self):
        self.subscribed = True
        for delay, raw in self.script:
            await asyncio.sleep(delay)
            yield raw
        if self.error is not None:
            raise self.error
        if not self.end:
            await asyncio.Event().wait()


@pytest.fixture
def fake_connection():
    return FakeConnection


@pytest.fixture
def fake_source():
    return FakeEventSource
