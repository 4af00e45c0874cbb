"""Wait for a daemon change to reach a terminal state."""

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING, Optional

from .errors import ChangeFailedError, DaemonError
from .models import ChangeRecord

if TYPE_CHECKING:
    from ..daemon.client import DaemonClient
    from .store import PackageState

logger = logging.getLogger(__name__)


class ChangeWatcher:
    """Follows one change of one package until it completes or fails.

    Holds the only subscription to the change's stream. Whatever the
    outcome (success, failure, or cancellation of the watch itself) the
    package's active change id is cleared on the way out.
    """

    def __init__(self, daemon: 'DaemonClient', state: 'PackageState',
                 change_id: str):
        self.daemon = daemon
        self.state = state
        self.change_id = change_id
        self._task: Optional[asyncio.Task] = None

    async def _consume(self) -> ChangeRecord:
        async with contextlib.aclosing(self.daemon.watch_change(self.change_id)) as stream:
            async for change in stream:
                logger.debug(
                    f"Change {self.change_id} ({self.state.name}): "
                    f"ready={change.ready} progress={change.progress:.2f}"
                )
                if change.error:
                    raise ChangeFailedError(self.change_id, change.error)
                if change.ready:
                    return change
        raise DaemonError(
            f"Event stream for change {self.change_id} ended before completion",
            kind="stream-closed",
        )

    async def watch(self, invalidate: bool = True) -> ChangeRecord:
        """Wait for the change to finish.

        Args:
            invalidate: Rebuild the package record after a successful change

        Returns:
            The terminal ChangeRecord

        Raises:
            ChangeFailedError: The change finished with an error
            DaemonError: The event stream failed
        """
        if self._task is not None:
            raise RuntimeError(f"Change {self.change_id} is already being watched")

        self.state._register_watcher(self)
        self._task = asyncio.ensure_future(self._consume())
        try:
            change = await self._task
        finally:
            self.state._unregister_watcher(self)
            self.state._clear_change_id(self.change_id)

        logger.info(f"Change {self.change_id} for {self.state.name} completed")
        if invalidate:
            await self.state.rebuild()
        return change

    def cancel(self):
        """Drop the subscription. The change itself keeps running daemon-side."""
        if self._task is not None and not self._task.done():
            self._task.cancel()
