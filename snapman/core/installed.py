"""Aggregate view of installed packages and pending updates."""

import asyncio
import logging
from typing import TYPE_CHECKING, Callable, List, Optional, Set

from .models import LocalInfo

if TYPE_CHECKING:
    from ..daemon.client import DaemonClient

logger = logging.getLogger(__name__)


class InstalledPackagesView:
    """Cached list of installed packages plus the names with updates.

    Also serves as the update checker of the package state store: a
    package "has an update" when the daemon last listed it as refreshable.
    ``invalidate()`` (for instance after a removal) drops the installed
    list and reloads it in the background.
    """

    def __init__(self, daemon: 'DaemonClient'):
        self.daemon = daemon
        self._installed: Optional[List[LocalInfo]] = None
        self._refreshable: Set[str] = set()
        self._load_task: Optional[asyncio.Task] = None
        self._listeners: List[Callable[[], None]] = []
        self.invalidations = 0

    @property
    def is_loaded(self) -> bool:
        return self._installed is not None

    @property
    def installed(self) -> List[LocalInfo]:
        return list(self._installed or [])

    @property
    def refreshable(self) -> Set[str]:
        return set(self._refreshable)

    def add_listener(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Call ``callback()`` whenever the view is invalidated or reloaded."""
        self._listeners.append(callback)
        return lambda: self._listeners.remove(callback)

    def _notify(self):
        for callback in list(self._listeners):
            callback()

    async def _fetch(self) -> List[LocalInfo]:
        installed = await self.daemon.list_installed()
        refreshable = await self.daemon.list_refreshable()
        self._installed = sorted(installed, key=lambda info: info.name)
        self._refreshable = set(refreshable)
        logger.debug(
            f"Loaded {len(installed)} installed packages, "
            f"{len(refreshable)} with updates"
        )
        self._notify()
        return self.installed

    async def load(self) -> List[LocalInfo]:
        """Return installed packages, fetching them if the cache is empty."""
        if self._installed is not None:
            return self.installed
        if self._load_task is None or self._load_task.done():
            self._load_task = asyncio.create_task(self._fetch())
        return await asyncio.shield(self._load_task)

    def invalidate(self):
        """Forget the installed list and start fetching a fresh one.

        The last known refreshable names keep answering has_update()
        until the reload replaces them. Must be called from a running
        event loop.
        """
        self.invalidations += 1
        self._installed = None
        if self._load_task is not None and not self._load_task.done():
            self._load_task.cancel()
        self._load_task = asyncio.create_task(self._fetch())
        self._load_task.add_done_callback(self._reload_done)
        logger.debug("Installed packages view invalidated, reloading")
        self._notify()

    def _reload_done(self, task: asyncio.Task):
        if not task.cancelled() and task.exception() is not None:
            logger.warning(f"Reloading installed packages failed: {task.exception()}")

    def has_update(self, name: str) -> bool:
        return name in self._refreshable
