from __future__ import annotations

import asyncio
import logging
import os
from typing import AsyncIterator, List, Optional, Protocol

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .events import ChangeKind, RawEvent


class EventSource(Protocol):
    def subscribe(self) -> AsyncIterator[RawEvent]:
        ...

    def list_all_files(self) -> List[str]:
        ...


_KINDS = {
    "created": ChangeKind.CREATED.value,
    "modified": ChangeKind.MODIFIED.value,
    "deleted": ChangeKind.DELETED.value,
}


class _LoopForwarder(FileSystemEventHandler):
    """Runs on the observer thread and hands events to the asyncio loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop, queue: "asyncio.Queue[RawEvent]"):
        self._loop = loop
        self._queue = queue

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        raw = self.to_raw(event)
        if self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self._queue.put_nowait, raw)

    @staticmethod
    def to_raw(event: FileSystemEvent) -> RawEvent:
        if event.event_type == "moved":
            # editors and bundlers write a temp file and rename it into place
            return RawEvent(ChangeKind.CREATED.value, [os.fsdecode(event.dest_path)])
        kind = _KINDS.get(event.event_type, ChangeKind.OTHER.value)
        return RawEvent(kind, [os.fsdecode(event.src_path)])


class WatchdogEventSource:
    """Recursive change notifications for one directory via watchdog."""

    def __init__(self, root: str, logger: Optional[logging.Logger] = None):
        self.root = os.path.abspath(root)
        self.logger = logger or logging.getLogger(__name__)

    def list_all_files(self) -> List[str]:
        files: List[str] = []
        for dirpath, dirnames, fnames in os.walk(self.root):
            dirnames.sort()
            for fn in sorted(fnames):
                files.append(os.path.join(dirpath, fn))
        return files

    async def subscribe(self) -> AsyncIterator[RawEvent]:
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue[RawEvent] = asyncio.Queue()
        observer = Observer()
        observer.schedule(_LoopForwarder(loop, queue), self.root, recursive=True)
        observer.start()
        self.logger.info("Watching dir '%s' for changes...", self.root)
        try:
            while True:
                yield await queue.get()
        finally:
            observer.stop()
            observer.join(timeout=5)
            self.logger.debug("Stopped watching '%s'", self.root)
