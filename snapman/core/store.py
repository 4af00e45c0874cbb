"""
Per-package state container.

Each package name maps to exactly one PackageState for as long as at
least one collaborator holds it (acquire/release). A PackageState owns
the reconciled PackageRecord, the watchers attached to the package's
changes, and the flags that keep a single mutating operation in flight.
"""

import asyncio
import contextlib
import logging
from typing import (TYPE_CHECKING, AsyncIterator, Callable, Dict, Iterator,
                    List, Optional, Set)

from . import config
from .errors import (ChangeFailedError, DaemonError, OperationInProgressError,
                     PackageNotFoundError)
from .models import (AsyncValue, CatalogInfo, LocalInfo, PackageRecord, Phase)
from .watcher import ChangeWatcher

if TYPE_CHECKING:
    from ..daemon.client import DaemonClient

logger = logging.getLogger(__name__)


def _normalize_channel(channel: str) -> str:
    """Expand a bare risk ("stable") to its full "track/risk" form."""
    return channel if '/' in channel else f"latest/{channel}"


def default_selected_channel(local_info: Optional[LocalInfo],
                             catalog_info: Optional[CatalogInfo],
                             configured_default: str) -> Optional[str]:
    """Pick the channel an install or refresh should use by default.

    Preference order: the installed tracking channel (if the catalog still
    offers it), the configured default, the catalog's default track, the
    first channel the catalog lists.
    """
    tracking = None
    if local_info is not None and local_info.tracking_channel:
        tracking = _normalize_channel(local_info.tracking_channel)

    if catalog_info is None:
        return tracking

    channels = catalog_info.channels
    if tracking in channels:
        return tracking
    if configured_default in channels:
        return configured_default
    if catalog_info.default_channel:
        return catalog_info.default_channel
    return next(iter(channels), None)


class PackageState:
    """State machine of a single package."""

    def __init__(self, store: 'PackageStateStore', name: str):
        self.store = store
        self.daemon = store.daemon
        self.name = name
        self.value = AsyncValue.loading()
        self.refreshing = False
        self.last_error: Optional[BaseException] = None
        self.disposed = False

        self._listeners: List[Callable[['PackageState'], None]] = []
        self._watchers: List[ChangeWatcher] = []
        self._background: Set[asyncio.Task] = set()
        self._build_task: Optional[asyncio.Task] = None
        self._builds: Set[asyncio.Future] = set()
        self._generation = 0
        self._busy = False
        self._aborting = False
        self._refs = 0

    def __repr__(self):
        return f"<PackageState {self.name} {self.value.status.value} {self.phase.value}>"

    # =========================================================================
    # Observation
    # =========================================================================

    @property
    def record(self) -> Optional[PackageRecord]:
        return self.value.record

    @property
    def phase(self) -> Phase:
        if self._aborting:
            return Phase.ABORTING
        record = self.record
        if self._watchers or (record is not None and record.active_change_id):
            return Phase.IN_PROGRESS
        if self._busy:
            # Waiting for the daemon to accept a request, or rebuilding after it
            return Phase.REQUESTED
        return Phase.IDLE

    @property
    def watched_change_ids(self) -> Set[str]:
        return {w.change_id for w in self._watchers}

    @property
    def is_busy(self) -> bool:
        return self._busy or bool(self._watchers)

    def add_listener(self, callback: Callable[['PackageState'], None]) -> Callable[[], None]:
        """Call ``callback(state)`` on every state change; returns an unsubscribe function."""
        self._listeners.append(callback)
        return lambda: self._listeners.remove(callback)

    def _notify(self):
        for callback in list(self._listeners):
            callback(self)

    def _set_value(self, value: AsyncValue):
        self.value = value
        self._notify()

    async def ready(self) -> AsyncValue:
        """Wait for the pending build, if any, and return the current value."""
        if self._build_task is not None and not self._build_task.done():
            await asyncio.shield(self._build_task)
        return self.value

    # =========================================================================
    # Build
    # =========================================================================

    async def build(self) -> PackageRecord:
        """Reconcile local, catalog and change data into a fresh record.

        Raises:
            PackageNotFoundError: Neither source knows the package
            DaemonError: A lookup failed and nothing could be salvaged
        """
        local = await self.daemon.get_local_info(self.name)
        if local.is_error:
            raise local.error
        local_info = local.value

        catalog = await self.daemon.get_catalog_info(self.name)
        catalog_info = catalog.value
        if catalog.is_error:
            if local_info is None:
                raise catalog.error
            logger.warning(
                f"Catalog lookup for {self.name} failed, using local data only: "
                f"{catalog.error}"
            )

        changes = await self.daemon.list_changes(self.name)
        active_change_id = next((c.id for c in changes if not c.ready), None)
        if (active_change_id is not None and not self.disposed
                and active_change_id not in self.watched_change_ids):
            logger.info(f"Resuming watch of change {active_change_id} for {self.name}")
            self._start_background_watch(active_change_id)

        if local_info is None and catalog_info is None:
            raise PackageNotFoundError(self.name)

        checker = self.store.update_checker
        # Recomputed on every build, never cached here
        has_update = bool(checker.has_update(self.name)) if checker else False
        logger.debug(f"{self.name}: has_update={has_update}")

        return PackageRecord(
            name=self.name,
            local_info=local_info,
            catalog_info=catalog_info,
            selected_channel=default_selected_channel(
                local_info, catalog_info, self.store.default_channel
            ),
            active_change_id=active_change_id,
            has_update=has_update,
        )

    async def rebuild(self) -> AsyncValue:
        """Rebuild the record and publish the outcome.

        The previous value stays visible while rebuilding. A build started
        before a newer one never overwrites the newer result.
        """
        self._generation += 1
        generation = self._generation
        self.refreshing = True
        build = asyncio.ensure_future(self.build())
        self._builds.add(build)
        build.add_done_callback(self._builds.discard)
        try:
            record = await asyncio.shield(build)
            value = AsyncValue.data(record)
        except asyncio.CancelledError:
            if build.cancelled() and self.disposed:
                # Cut short by dispose(), not by our caller
                return self.value
            build.cancel()
            raise
        except Exception as e:
            if not isinstance(e, (PackageNotFoundError, DaemonError)):
                logger.error(f"Unexpected error building {self.name}: {e!r}")
            value = AsyncValue.failure(e)
        finally:
            if generation == self._generation:
                self.refreshing = False

        if generation != self._generation or self.disposed:
            return self.value

        record = value.record
        if record is not None:
            watched = self.watched_change_ids
            active_change_id = record.active_change_id
            if active_change_id not in watched:
                # Finished between listing and now
                active_change_id = None
            current = self.record
            if (active_change_id is None and current is not None
                    and current.active_change_id in watched):
                # Started after the listing; its watcher is still waiting
                active_change_id = current.active_change_id
            if active_change_id != record.active_change_id:
                value = AsyncValue.data(record.copy_with(active_change_id=active_change_id))
        self._set_value(value)
        return value

    def _start_build(self) -> asyncio.Task:
        self._build_task = asyncio.create_task(self.rebuild())
        return self._build_task

    # =========================================================================
    # Change tracking
    # =========================================================================

    def _set_change_id(self, change_id: Optional[str]):
        record = self.record
        if record is not None:
            self._set_value(AsyncValue.data(record.copy_with(active_change_id=change_id)))

    def _clear_change_id(self, change_id: str):
        record = self.record
        if record is not None and record.active_change_id == change_id:
            self._set_change_id(None)

    def _register_watcher(self, watcher: ChangeWatcher):
        if watcher not in self._watchers:
            self._watchers.append(watcher)

    def _unregister_watcher(self, watcher: ChangeWatcher):
        if watcher in self._watchers:
            self._watchers.remove(watcher)

    def watcher_for(self, change_id: str) -> ChangeWatcher:
        return ChangeWatcher(self.daemon, self, change_id)

    def _start_background_watch(self, change_id: str):
        watcher = self.watcher_for(change_id)
        # Registered now so a concurrent build does not start a second one
        self._register_watcher(watcher)
        task = asyncio.create_task(self._background_watch(watcher))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _background_watch(self, watcher: ChangeWatcher):
        try:
            await watcher.watch()
        except ChangeFailedError as e:
            logger.warning(f"Resumed change {watcher.change_id} for {self.name} failed: {e}")
            self.last_error = e
        except DaemonError as e:
            logger.error(f"Lost track of change {watcher.change_id} for {self.name}: {e}")
            self.last_error = e

    # =========================================================================
    # Operation guards
    # =========================================================================

    @contextlib.contextmanager
    def operation(self, action: str) -> Iterator['PackageState']:
        """Reserve the package for one mutating operation."""
        if self.is_busy:
            record = self.record
            raise OperationInProgressError(
                action, self.name, record.active_change_id if record else None
            )
        self._busy = True
        self._notify()
        try:
            yield self
        finally:
            self._busy = False
            self._notify()

    @contextlib.contextmanager
    def aborting(self, change_id: str) -> Iterator['PackageState']:
        """Mark the package as aborting ``change_id`` for the duration of the block."""
        if self._aborting:
            raise OperationInProgressError('cancel', self.name, change_id)
        self._aborting = True
        self._notify()
        try:
            yield self
        finally:
            self._aborting = False
            self._notify()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def dispose(self):
        """Cancel everything this package is watching. The daemon changes go on."""
        if self.disposed:
            return
        self.disposed = True
        for watcher in list(self._watchers):
            watcher.cancel()
        for task in list(self._background):
            task.cancel()
        if self._build_task is not None and not self._build_task.done():
            self._build_task.cancel()
        for build in list(self._builds):
            build.cancel()
        self._listeners.clear()
        logger.debug(f"Disposed state of {self.name}")


class PackageStateStore:
    """Map from package name to its single PackageState, with ref counting."""

    def __init__(self, daemon: 'DaemonClient', update_checker=None,
                 default_channel: str = None):
        """Initialize store.

        Args:
            daemon: Client for the package daemon
            update_checker: Object with ``has_update(name) -> bool`` (None = no updates)
            default_channel: Preferred channel (default: from config)
        """
        self.daemon = daemon
        self.update_checker = update_checker
        self.default_channel = default_channel or config.get_default_channel()
        self._states: Dict[str, PackageState] = {}

    def __contains__(self, name: str) -> bool:
        return name in self._states

    def __len__(self) -> int:
        return len(self._states)

    def names(self) -> List[str]:
        return list(self._states)

    def get(self, name: str) -> Optional[PackageState]:
        return self._states.get(name)

    def acquire(self, name: str) -> PackageState:
        """Get the state for ``name``, creating and building it on first use.

        Must be called from a running event loop. Every acquire needs a
        matching release.
        """
        state = self._states.get(name)
        if state is None:
            state = PackageState(self, name)
            self._states[name] = state
            state._start_build()
            logger.debug(f"Created state for {name}")
        state._refs += 1
        return state

    def release(self, name: str):
        """Drop one reference; the state is disposed with the last one."""
        state = self._states.get(name)
        if state is None:
            return
        state._refs -= 1
        if state._refs <= 0:
            del self._states[name]
            state.dispose()

    @contextlib.asynccontextmanager
    async def hold(self, name: str) -> AsyncIterator[PackageState]:
        """Acquire ``name`` for the duration of the block, after its first build."""
        state = self.acquire(name)
        try:
            await state.ready()
            yield state
        finally:
            self.release(name)

    async def invalidate(self, name: str) -> Optional[AsyncValue]:
        """Rebuild one package, if anyone holds it."""
        state = self._states.get(name)
        if state is None:
            return None
        return await state.rebuild()

    async def invalidate_all(self) -> List[AsyncValue]:
        """Rebuild every held package (e.g. after the update list changed)."""
        states = list(self._states.values())
        return list(await asyncio.gather(*(s.rebuild() for s in states)))

    def close(self):
        """Dispose every state regardless of references."""
        states, self._states = self._states, {}
        for state in states.values():
            state.dispose()
