"""
Operation controller: the public surface for package actions.

Every mutating action follows the same sequence:
    1. Check preconditions against the package's current record
    2. Send the request to the daemon, which answers with a change id
    3. Record the change id on the package
    4. Wait for the change to finish (ChangeWatcher)
    5. Clear the change id and, depending on the action, rebuild the record

Nothing here retries; a failed change is reported to the caller, who
decides whether to try again.
"""

import asyncio
import logging
from typing import TYPE_CHECKING, Iterable, Optional, Set

from .errors import ChangeFailedError, PreconditionError
from .models import AsyncValue, ChangeRecord, Confinement, PackageRecord
from .progress import ActiveChange, ProgressAggregator
from .store import PackageState, PackageStateStore

if TYPE_CHECKING:
    from ..daemon.client import DaemonClient
    from .installed import InstalledPackagesView

logger = logging.getLogger(__name__)


class OperationController:
    """Sequences daemon calls for install, refresh, remove, cancel and channel selection."""

    def __init__(self, daemon: 'DaemonClient', store: PackageStateStore = None,
                 installed_view: 'InstalledPackagesView' = None):
        """Initialize controller.

        Args:
            daemon: Client for the package daemon
            store: Package state store (default: new store sharing ``daemon``,
                using ``installed_view`` as its update checker)
            installed_view: Aggregate view invalidated after removals; held
                packages are rebuilt whenever its set of updates changes
        """
        self.daemon = daemon
        self.installed_view = installed_view
        if store is None:
            store = PackageStateStore(daemon, update_checker=installed_view)
        self.store = store
        self._rebuilds: Set[asyncio.Task] = set()
        self._known_updates: Set[str] = set()
        if installed_view is not None:
            self._known_updates = installed_view.refreshable
            installed_view.add_listener(self._on_installed_changed)

    def _on_installed_changed(self):
        updates = self.installed_view.refreshable
        if updates == self._known_updates:
            return
        self._known_updates = updates
        logger.debug(f"Update availability changed, rebuilding {len(self.store)} packages")
        task = asyncio.ensure_future(self.store.invalidate_all())
        self._rebuilds.add(task)
        task.add_done_callback(self._rebuilds.discard)

    # =========================================================================
    # Precondition helpers
    # =========================================================================

    def _state(self, name: str, action: str) -> PackageState:
        state = self.store.get(name)
        if state is None:
            raise PreconditionError(action, name, "package state is not loaded")
        return state

    def _require_record(self, name: str, action: str) -> PackageState:
        state = self._state(name, action)
        if state.record is None:
            raise PreconditionError(action, name, "package must be loaded first")
        return state

    def _require_catalog(self, name: str, action: str) -> PackageState:
        state = self._require_record(name, action)
        if not state.record.has_catalog_info:
            raise PreconditionError(
                action, name, "package must be loaded from the catalog first"
            )
        return state

    def _selected_channel(self, record: PackageRecord, action: str):
        channel = record.selected_channel_info
        if channel is None:
            raise PreconditionError(
                action, record.name,
                f"invalid or unavailable channel {record.selected_channel!r}"
            )
        return channel

    async def _run_change(self, state: PackageState, action: str, change_id: str,
                          invalidate: bool = True) -> ChangeRecord:
        state._set_change_id(change_id)
        try:
            return await state.watcher_for(change_id).watch(invalidate=invalidate)
        except ChangeFailedError as e:
            logger.error(f"{action} of {state.name} failed: {e}")
            state.last_error = e
            raise

    # =========================================================================
    # Mutating operations
    # =========================================================================

    async def install(self, name: str) -> ChangeRecord:
        """Install the package from its selected channel."""
        state = self._require_catalog(name, 'install')
        with state.operation('install'):
            record = state.record
            channel = self._selected_channel(record, 'install')
            classic = channel.confinement is Confinement.CLASSIC
            logger.info(f"Installing {name} from {channel.name} (classic={classic})")
            change_id = await self.daemon.install(name, channel.name, classic)
            return await self._run_change(state, 'install', change_id)

    async def refresh(self, name: str) -> ChangeRecord:
        """Update the package to the latest revision of its selected channel."""
        state = self._require_catalog(name, 'refresh')
        with state.operation('refresh'):
            record = state.record
            channel = self._selected_channel(record, 'refresh')
            classic = channel.confinement is Confinement.CLASSIC
            logger.info(f"Refreshing {name} from {channel.name} (classic={classic})")
            change_id = await self.daemon.refresh(name, channel.name, classic)
            return await self._run_change(state, 'refresh', change_id)

    async def remove(self, name: str) -> ChangeRecord:
        """Uninstall the package.

        The installed-packages view is invalidated only when the removal
        succeeds.
        """
        state = self._require_record(name, 'remove')
        with state.operation('remove'):
            logger.info(f"Removing {name}")
            change_id = await self.daemon.remove(name)
            change = await self._run_change(state, 'remove', change_id)
        if self.installed_view is not None:
            self.installed_view.invalidate()
        return change

    async def cancel(self, name: str) -> Optional[ChangeRecord]:
        """Abort the package's active change.

        Returns immediately, without talking to the daemon, when nothing
        is in progress. The record is not rebuilt after the abort; the
        aborted operation's own watcher takes care of that.
        """
        state = self._require_catalog(name, 'cancel')
        change_id = state.record.active_change_id
        if change_id is None:
            return None
        with state.aborting(change_id):
            logger.info(f"Aborting change {change_id} of {name}")
            abort = await self.daemon.abort_change(change_id)
            state._set_change_id(abort.id)
            return await state.watcher_for(abort.id).watch(invalidate=False)

    def select_channel(self, name: str, channel: str) -> PackageRecord:
        """Select the channel used by the next install or refresh.

        Purely local; the daemon is not contacted.
        """
        state = self._require_catalog(name, 'select channel')
        record = state.record
        if channel not in record.catalog_info.channels:
            raise PreconditionError(
                'select channel', name, f"unknown channel {channel!r}"
            )
        record = record.copy_with(selected_channel=channel)
        state._set_value(AsyncValue.data(record))
        return record

    # =========================================================================
    # Progress
    # =========================================================================

    def observe_progress(self, change_ids: Iterable[str]) -> ProgressAggregator:
        """Aggregate progress over any set of changes.

        Independent of the packages' own watchers; subscribe to the
        returned aggregator to receive samples.
        """
        return ProgressAggregator(self.daemon, change_ids)

    def active_change(self, change_id: str) -> ActiveChange:
        """Follow the latest snapshot of one change."""
        active = ActiveChange(self.daemon, change_id)
        active.start()
        return active
