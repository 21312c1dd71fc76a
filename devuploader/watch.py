from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import AsyncIterator, Awaitable, Callable, List, Literal, Optional, Tuple, Union

from rich.progress import Progress

from .aggregator import ChangeAggregator
from .config import UploadPair, WatchSettings
from .event_source import EventSource, WatchdogEventSource
from .events import IgnoreRules
from .ssh_client import Connection
from .transfer import UploadCoordinator


@dataclass(frozen=True)
class PreparedWatcher:
    watcher_name: str
    upload_pair: UploadPair
    ignore_rules: IgnoreRules = field(default_factory=IgnoreRules)
    state: Literal["prepared"] = "prepared"

    def starting(self, connections: Tuple[Connection, ...]) -> "StartingWatcher":
        return StartingWatcher(self.watcher_name, self.upload_pair, self.ignore_rules, connections)


@dataclass(frozen=True)
class StartingWatcher:
    watcher_name: str
    upload_pair: UploadPair
    ignore_rules: IgnoreRules
    connections: Tuple[Connection, ...]
    state: Literal["starting"] = "starting"

    def running(self, coordinator: UploadCoordinator, batches: AsyncIterator[List[str]]) -> "RunningWatcher":
        return RunningWatcher(
            self.watcher_name, self.upload_pair, self.ignore_rules, self.connections, coordinator, batches
        )


@dataclass(frozen=True)
class RunningWatcher:
    watcher_name: str
    upload_pair: UploadPair
    ignore_rules: IgnoreRules
    connections: Tuple[Connection, ...]
    coordinator: UploadCoordinator
    batches: AsyncIterator[List[str]]
    state: Literal["running"] = "running"


WatcherDefinition = Union[PreparedWatcher, StartingWatcher, RunningWatcher]

ConnectionFactory = Callable[[int], Awaitable[Connection]]


class Watcher:
    """Watches one upload pair and pushes every batch of changes through its own connections."""

    def __init__(
        self,
        definition: PreparedWatcher,
        settings: WatchSettings,
        connection_factory: ConnectionFactory,
        event_source: Optional[EventSource] = None,
        logger: Optional[logging.Logger] = None,
        progress: Optional[Progress] = None,
    ):
        self.definition: WatcherDefinition = definition
        self.settings = settings
        self.connection_factory = connection_factory
        self.logger = logger or logging.getLogger(__name__)
        self.event_source = event_source or WatchdogEventSource(definition.upload_pair.source, logger=self.logger)
        self.progress = progress

    @property
    def name(self) -> str:
        return self.definition.watcher_name

    @property
    def state(self) -> str:
        return self.definition.state

    async def start(self) -> RunningWatcher:
        prepared = self.definition
        if not isinstance(prepared, PreparedWatcher):
            raise RuntimeError(f'Cannot start watcher "{self.name}": state is "{prepared.state}", not "prepared"')

        pair = prepared.upload_pair
        self.logger.info(
            "%s: Creating %d SFTP connections to %s", self.name, self.settings.connections, self.settings.host
        )
        connections: List[Connection] = []
        try:
            for slot in range(self.settings.connections):
                connections.append(await self.connection_factory(slot))
        except Exception:
            await self._close_all(connections)
            raise
        starting = prepared.starting(tuple(connections))
        self.definition = starting

        coordinator = UploadCoordinator(self.name, starting.connections, logger=self.logger, progress=self.progress)
        self.logger.info("%s: Remote cd to '%s'", self.name, pair.destination)
        await coordinator.prepare(pair.destination)

        aggregator = ChangeAggregator(
            self.event_source,
            starting.ignore_rules,
            debounce_ms=self.settings.debounce_ms,
            emit_initial_files=self.settings.emit_initial_files,
            logger=self.logger,
        )
        self.logger.info("%s: Starting watcher for %s", self.name, pair.source)
        running = starting.running(coordinator, aggregator.batches())
        self.definition = running
        return running

    async def run(self) -> None:
        running = self.definition if isinstance(self.definition, RunningWatcher) else await self.start()
        # on cancellation (Ctrl-C) in-flight uploads are left behind, a stalled one would never drain
        try:
            async for batch in running.batches:
                stamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]
                self.logger.info("%s: %s Changes detected: uploading %d files", self.name, stamp, len(batch))
                running.coordinator.dispatch(batch)
        except Exception:
            await running.coordinator.drain()
            raise
        await running.coordinator.drain()

    async def close(self) -> None:
        definition = self.definition
        if isinstance(definition, PreparedWatcher):
            return
        if isinstance(definition, RunningWatcher):
            await definition.batches.aclose()  # type: ignore[attr-defined]
        await self._close_all(definition.connections)

    async def _close_all(self, connections) -> None:
        results = await asyncio.gather(*(conn.close() for conn in connections), return_exceptions=True)
        for conn, result in zip(connections, results):
            if isinstance(result, Exception):
                self.logger.warning("%s: closing %s failed: %s", self.name, conn.name, result)
