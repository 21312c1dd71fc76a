"""Turns a stream of raw change notifications into debounced batches of paths."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Dict, List, Optional

from .event_source import EventSource
from .events import ChangeEvent, ChangeKind, IgnoreRules, should_keep, to_change_events
from .utils import DEFAULT_DEBOUNCE_MS


@dataclass(frozen=True)
class _EndOfStream:
    error: Optional[BaseException] = None


class ChangeAggregator:
    """Debounce-with-reset batching over one event source.

    Every admitted event restarts a timer of ``debounce_ms``. When the timer
    runs out the collected paths are emitted as one batch, each path once, in
    the order they were first seen. Nothing is emitted while the open set is
    empty. When the source ends, paths still waiting are dropped; a source
    error is raised from :meth:`batches`.
    """

    def __init__(
        self,
        source: EventSource,
        rules: Optional[IgnoreRules] = None,
        debounce_ms: int = DEFAULT_DEBOUNCE_MS,
        emit_initial_files: bool = True,
        logger: Optional[logging.Logger] = None,
    ):
        if debounce_ms < 0:
            raise ValueError(f"debounce_ms must not be negative, got {debounce_ms}")
        self.source = source
        self.rules = rules or IgnoreRules()
        self.debounce_s = debounce_ms / 1000.0
        self.emit_initial_files = emit_initial_files
        self.logger = logger or logging.getLogger(__name__)

    def _admit(self, event: ChangeEvent, queue: asyncio.Queue) -> None:
        if should_keep(event, self.rules):
            queue.put_nowait(event)
        else:
            self.logger.debug("Ignoring %s event for %s", event.kind.value, event.path)

    async def _pump(self, queue: asyncio.Queue) -> None:
        try:
            if self.emit_initial_files:
                initial = self.source.list_all_files()
                self.logger.debug("Queueing %d existing files", len(initial))
                for path in initial:
                    self._admit(ChangeEvent(ChangeKind.CREATED, path), queue)
            async for raw in self.source.subscribe():
                for event in to_change_events(raw):
                    self._admit(event, queue)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            queue.put_nowait(_EndOfStream(exc))
        else:
            queue.put_nowait(_EndOfStream())

    async def batches(self) -> AsyncIterator[List[str]]:
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue()
        pump = asyncio.create_task(self._pump(queue))
        pending: Dict[str, None] = {}
        deadline: Optional[float] = None
        try:
            while True:
                if deadline is None:
                    item = await queue.get()
                else:
                    try:
                        item = await asyncio.wait_for(queue.get(), max(0.0, deadline - loop.time()))
                    except asyncio.TimeoutError:
                        batch = list(pending)
                        pending = {}
                        deadline = None
                        if batch:
                            yield batch
                        continue

                if isinstance(item, _EndOfStream):
                    if pending:
                        self.logger.debug("Event source ended, dropping %d pending paths", len(pending))
                    if item.error is not None:
                        raise item.error
                    return

                pending[item.path] = None
                deadline = loop.time() + self.debounce_s
        finally:
            if not pump.done():
                pump.cancel()
                try:
                    await pump
                except asyncio.CancelledError:
                    pass
