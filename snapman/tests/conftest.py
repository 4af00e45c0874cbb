"""Shared fixtures: an in-memory daemon with scripted change streams."""

import asyncio
from typing import Dict, List, Optional, Tuple

import pytest

from snapman.core.errors import DaemonError
from snapman.core.installed import InstalledPackagesView
from snapman.core.models import (CatalogInfo, ChangeRecord, ChannelInfo,
                                 Confinement, LocalInfo, Lookup, TaskProgress)
from snapman.core.operations import OperationController
from snapman.daemon.client import DaemonClient

_END = object()


def make_change(change_id: str, ready: bool = False, error: str = None,
                tasks: Tuple[Tuple[float, float], ...] = ()) -> ChangeRecord:
    return ChangeRecord(
        id=change_id,
        ready=ready,
        error=error,
        tasks=tuple(TaskProgress(done, total) for done, total in tasks),
    )


def make_catalog(name: str, **channels: Confinement) -> CatalogInfo:
    """Catalog entry; keyword names use '_' in place of '/'."""
    return CatalogInfo(
        name=name,
        channels={
            key.replace('_', '/'): ChannelInfo(key.replace('_', '/'), confinement)
            for key, confinement in channels.items()
        },
    )


async def wait_until(predicate, timeout: float = 1.0):
    """Yield to the event loop until ``predicate()`` holds."""
    async def _poll():
        while not predicate():
            await asyncio.sleep(0)
    await asyncio.wait_for(_poll(), timeout)


class MockDaemon(DaemonClient):
    """In-memory daemon.

    Change streams replay every event emitted so far for the change, then
    follow live emissions, like a poller that sees the change's history.
    """

    def __init__(self):
        self.local: Dict[str, LocalInfo] = {}
        self.catalog: Dict[str, CatalogInfo] = {}
        self.local_errors: Dict[str, DaemonError] = {}
        self.catalog_errors: Dict[str, DaemonError] = {}
        self.changes: Dict[str, List[ChangeRecord]] = {}
        self.refreshable: List[str] = []
        self.next_change_ids: Dict[str, str] = {}
        self.abort_ids: Dict[str, str] = {}
        self.calls: List[tuple] = []
        self.closed_streams: List[str] = []
        # When set, list_changes answers only once the event fires
        self.list_changes_gate: Optional[asyncio.Event] = None
        self._history: Dict[str, list] = {}
        self._feeds: Dict[str, List[asyncio.Queue]] = {}

    # -- test helpers --------------------------------------------------------

    def emit(self, change_id: str, change: ChangeRecord):
        self._history.setdefault(change_id, []).append(change)
        for queue in self._feeds.get(change_id, []):
            queue.put_nowait(change)
        for changes in self.changes.values():
            for i, existing in enumerate(changes):
                if existing.id == change_id:
                    changes[i] = change

    def script(self, change_id: str, *changes: ChangeRecord):
        for change in changes:
            self.emit(change_id, change)

    def end_stream(self, change_id: str):
        self._history.setdefault(change_id, []).append(_END)
        for queue in self._feeds.get(change_id, []):
            queue.put_nowait(_END)

    def subscribers(self, change_id: str) -> int:
        return len(self._feeds.get(change_id, []))

    def count(self, method: str) -> int:
        return sum(1 for call in self.calls if call[0] == method)

    @property
    def commands(self) -> List[tuple]:
        return [c for c in self.calls
                if c[0] in ('install', 'refresh', 'remove', 'abort_change')]

    # -- DaemonClient --------------------------------------------------------

    async def get_local_info(self, name):
        self.calls.append(('get_local_info', name))
        if name in self.local_errors:
            return Lookup.failed(self.local_errors[name])
        if name in self.local:
            return Lookup.found(self.local[name])
        return Lookup.not_found()

    async def get_catalog_info(self, name):
        self.calls.append(('get_catalog_info', name))
        if name in self.catalog_errors:
            return Lookup.failed(self.catalog_errors[name])
        if name in self.catalog:
            return Lookup.found(self.catalog[name])
        return Lookup.not_found()

    async def list_changes(self, name):
        self.calls.append(('list_changes', name))
        changes = list(self.changes.get(name, []))
        if self.list_changes_gate is not None:
            await self.list_changes_gate.wait()
        return changes

    async def list_installed(self):
        self.calls.append(('list_installed',))
        return list(self.local.values())

    async def list_refreshable(self):
        self.calls.append(('list_refreshable',))
        return list(self.refreshable)

    async def install(self, name, channel, classic):
        self.calls.append(('install', name, channel, classic))
        return self.next_change_ids.get('install', '1')

    async def refresh(self, name, channel, classic):
        self.calls.append(('refresh', name, channel, classic))
        return self.next_change_ids.get('refresh', '2')

    async def remove(self, name):
        self.calls.append(('remove', name))
        return self.next_change_ids.get('remove', '3')

    async def abort_change(self, change_id):
        self.calls.append(('abort_change', change_id))
        return make_change(self.abort_ids.get(change_id, change_id))

    async def watch_change(self, change_id):
        queue: asyncio.Queue = asyncio.Queue()
        for event in self._history.get(change_id, []):
            queue.put_nowait(event)
        self._feeds.setdefault(change_id, []).append(queue)
        try:
            while True:
                event = await queue.get()
                if event is _END:
                    return
                yield event
        finally:
            self._feeds[change_id].remove(queue)
            self.closed_streams.append(change_id)


@pytest.fixture
def daemon():
    """Daemon knowing 'foo' in the catalog (not installed)."""
    mock = MockDaemon()
    mock.catalog['foo'] = make_catalog(
        'foo', latest_stable=Confinement.STRICT, latest_edge=Confinement.CLASSIC
    )
    return mock


@pytest.fixture
def installed_view(daemon):
    return InstalledPackagesView(daemon)


@pytest.fixture
def controller(daemon, installed_view):
    return OperationController(daemon, installed_view=installed_view)
