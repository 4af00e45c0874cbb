"""
Progress reporting for daemon changes.

Architecture:
    watch_change(A) --> producer A --+
    watch_change(B) --> producer B --+--> mean of fractions --> Broadcast
                                     |                           |-> subscriber 1
    ...                              +                           |-> subscriber 2

Producers start with the first subscriber and are all cancelled when the
last subscriber detaches. A disposed aggregator is not restarted.
"""

import asyncio
import contextlib
import logging
from typing import (TYPE_CHECKING, Callable, Dict, Generic, Iterable, List,
                    Optional, TypeVar)

from .errors import DaemonError
from .models import ChangeRecord

if TYPE_CHECKING:
    from ..daemon.client import DaemonClient

logger = logging.getLogger(__name__)

T = TypeVar('T')

_CLOSED = object()


class Subscription(Generic[T]):
    """One consumer's view of a Broadcast.

    Iterate with ``async for``; leave with ``close()`` or by using the
    subscription as an async context manager.
    """

    def __init__(self, channel: 'Broadcast[T]'):
        self._channel = channel
        self._queue: asyncio.Queue = asyncio.Queue()
        self.closed = False

    def _put(self, item):
        self._queue.put_nowait(item)

    def __aiter__(self):
        return self

    async def __anext__(self) -> T:
        if self.closed:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            self.closed = True
            raise StopAsyncIteration
        return item

    def close(self):
        if not self.closed:
            self.closed = True
            self._channel._detach(self)

    async def __aenter__(self) -> 'Subscription[T]':
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.close()


class Broadcast(Generic[T]):
    """Fan-out channel: every published item reaches every subscriber."""

    def __init__(self, on_idle: Optional[Callable[[], None]] = None):
        self._subscribers: List[Subscription[T]] = []
        self._on_idle = on_idle
        self.closed = False

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> Subscription[T]:
        if self.closed:
            raise RuntimeError("Cannot subscribe to a closed channel")
        subscription = Subscription(self)
        self._subscribers.append(subscription)
        return subscription

    def publish(self, item: T):
        for subscription in self._subscribers:
            subscription._put(item)

    def close(self):
        """Close the channel; pending subscribers finish their iteration."""
        if self.closed:
            return
        self.closed = True
        subscribers, self._subscribers = self._subscribers, []
        for subscription in subscribers:
            subscription._put(_CLOSED)

    def _detach(self, subscription: Subscription[T]):
        if subscription in self._subscribers:
            self._subscribers.remove(subscription)
            if not self._subscribers and self._on_idle:
                self._on_idle()


class ProgressAggregator:
    """Mean progress over a set of changes, republished on every event."""

    def __init__(self, daemon: 'DaemonClient', change_ids: Iterable[str]):
        self.daemon = daemon
        # Keep caller order, drop duplicates
        self.change_ids = tuple(dict.fromkeys(change_ids))
        self._fractions: Dict[str, float] = {cid: 0.0 for cid in self.change_ids}
        self._channel: Broadcast[float] = Broadcast(on_idle=self._dispose)
        self._producers: List[asyncio.Task] = []
        self._started = False
        self.disposed = False

    @property
    def current(self) -> float:
        if not self._fractions:
            return 0.0
        return sum(self._fractions.values()) / len(self._fractions)

    def subscribe(self) -> Subscription[float]:
        """Attach a consumer, starting the producers on first use."""
        if self.disposed:
            raise RuntimeError("Progress aggregator has been disposed")
        subscription = self._channel.subscribe()
        if not self._started:
            self._started = True
            self._producers = [
                asyncio.create_task(self._produce(cid)) for cid in self.change_ids
            ]
        return subscription

    async def _produce(self, change_id: str):
        try:
            async with contextlib.aclosing(self.daemon.watch_change(change_id)) as stream:
                async for change in stream:
                    self._fractions[change_id] = change.progress
                    self._channel.publish(self.current)
        except DaemonError as e:
            logger.warning(f"Progress stream for change {change_id} failed: {e}")
        except Exception:
            logger.exception(f"Unexpected error in progress stream for change {change_id}")

    def _dispose(self):
        if self.disposed:
            return
        self.disposed = True
        for task in self._producers:
            task.cancel()
        self._channel.close()
        logger.debug(f"Progress aggregator for {list(self.change_ids)} disposed")

    def close(self):
        """Dispose regardless of attached subscribers."""
        self._dispose()


class ActiveChange:
    """Latest snapshot of a single change, for callers showing task details."""

    def __init__(self, daemon: 'DaemonClient', change_id: str):
        self.daemon = daemon
        self.change_id = change_id
        self.change: Optional[ChangeRecord] = None
        self._listeners: List[Callable[[ChangeRecord], None]] = []
        self._task: Optional[asyncio.Task] = None

    def add_listener(self, callback: Callable[[ChangeRecord], None]) -> Callable[[], None]:
        self._listeners.append(callback)
        return lambda: self._listeners.remove(callback)

    def start(self) -> asyncio.Task:
        if self._task is None:
            self._task = asyncio.create_task(self._follow())
        return self._task

    async def _follow(self):
        async with contextlib.aclosing(self.daemon.watch_change(self.change_id)) as stream:
            async for change in stream:
                self.change = change
                for callback in list(self._listeners):
                    callback(change)
                if change.ready:
                    break

    def stop(self):
        if self._task is not None and not self._task.done():
            self._task.cancel()
