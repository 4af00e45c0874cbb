"""Abstract daemon interface consumed by the state store and the controller.

Implementations are handed to the store and controller at construction
time. The daemon session is shared by every watcher and controller of a
process; all calls are either reads or self-contained command/response
pairs keyed by change id.
"""

from abc import ABC, abstractmethod
from typing import AsyncIterator, List

from ..core.models import CatalogInfo, ChangeRecord, LocalInfo, Lookup


class DaemonClient(ABC):
    """Operations the package daemon must provide."""

    # =========================================================================
    # Lookups
    # =========================================================================

    @abstractmethod
    async def get_local_info(self, name: str) -> Lookup[LocalInfo]:
        """Installed metadata, NOT_FOUND when the package is not installed."""

    @abstractmethod
    async def get_catalog_info(self, name: str) -> Lookup[CatalogInfo]:
        """Catalog metadata, NOT_FOUND when the catalog has no such package."""

    @abstractmethod
    async def list_changes(self, name: str) -> List[ChangeRecord]:
        """All changes (ready or not) touching the package, oldest first."""

    @abstractmethod
    async def list_installed(self) -> List[LocalInfo]:
        """Every installed package."""

    @abstractmethod
    async def list_refreshable(self) -> List[str]:
        """Names of installed packages with a newer catalog revision."""

    # =========================================================================
    # Commands (each returns the id of the change doing the work)
    # =========================================================================

    @abstractmethod
    async def install(self, name: str, channel: str, classic: bool) -> str:
        pass

    @abstractmethod
    async def refresh(self, name: str, channel: str, classic: bool) -> str:
        pass

    @abstractmethod
    async def remove(self, name: str) -> str:
        pass

    @abstractmethod
    async def abort_change(self, change_id: str) -> ChangeRecord:
        """Ask the daemon to abort a change; returns the abort change."""

    # =========================================================================
    # Streams
    # =========================================================================

    @abstractmethod
    def watch_change(self, change_id: str) -> AsyncIterator[ChangeRecord]:
        """Stream of snapshots of a change.

        Closing the iterator releases the subscription; the change keeps
        running daemon-side.
        """
