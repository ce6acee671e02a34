"""
Progress Broadcaster

In-process fan-out of progress events, one logical channel per job. Every
subscriber gets its own queue and receives all events published after it
subscribed. Nothing is replayed, so late subscribers read current state from
the job store first.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional, Set

from dualcast.schemas.progress import ProgressEvent

logger = logging.getLogger(__name__)


class Subscription:
    """A single subscriber's view of one job channel"""

    def __init__(self, job_id: str, max_queue_size: int = 1000):
        self.job_id = job_id
        self.queue: "asyncio.Queue[Optional[ProgressEvent]]" = asyncio.Queue(maxsize=max_queue_size)
        self.closed = False

    def put(self, event: Optional[ProgressEvent]) -> None:
        if self.closed:
            return
        try:
            self.queue.put_nowait(event)
        except asyncio.QueueFull:
            # Slow consumer: drop the oldest event rather than block the pipeline
            self.queue.get_nowait()
            self.queue.put_nowait(event)
            logger.warning(f"Dropped a progress event for slow subscriber on job {self.job_id}")

    async def get(self, timeout: Optional[float] = None) -> Optional[ProgressEvent]:
        if timeout is None:
            return await self.queue.get()
        return await asyncio.wait_for(self.queue.get(), timeout)

    def __aiter__(self) -> AsyncIterator[ProgressEvent]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[ProgressEvent]:
        while True:
            event = await self.queue.get()
            if event is None:
                return
            yield event


class ProgressBroadcaster:
    def __init__(self, max_queue_size: int = 1000):
        self.max_queue_size = max_queue_size
        self._channels: Dict[str, Set[Subscription]] = {}

    def publish(self, job_id: str, event: ProgressEvent) -> int:
        """Deliver an event to every current subscriber of the job channel"""
        subscribers = self._channels.get(job_id, ())
        for subscription in list(subscribers):
            subscription.put(event)
        return len(subscribers)

    def open(self, job_id: str) -> Subscription:
        subscription = Subscription(job_id, self.max_queue_size)
        self._channels.setdefault(job_id, set()).add(subscription)
        logger.debug(f"Subscriber attached to job {job_id}")
        return subscription

    def close(self, subscription: Subscription) -> None:
        subscribers = self._channels.get(subscription.job_id)
        if subscribers is not None:
            subscribers.discard(subscription)
            if not subscribers:
                del self._channels[subscription.job_id]
        if not subscription.closed:
            subscription.put(None)
            subscription.closed = True

    @asynccontextmanager
    async def subscribe(self, job_id: str):
        """Yield a subscription that iterates events from this point forward"""
        subscription = self.open(job_id)
        try:
            yield subscription
        finally:
            self.close(subscription)

    def close_channel(self, job_id: str) -> None:
        """End every subscriber's iteration for a job"""
        for subscription in list(self._channels.get(job_id, ())):
            self.close(subscription)

    def subscriber_count(self, job_id: str) -> int:
        return len(self._channels.get(job_id, ()))


_broadcaster: Optional[ProgressBroadcaster] = None


def get_broadcaster() -> ProgressBroadcaster:
    """Get global progress broadcaster instance"""
    global _broadcaster
    if _broadcaster is None:
        _broadcaster = ProgressBroadcaster()
    return _broadcaster
