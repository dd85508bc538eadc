"""
In-process change notifications for the guests table.

Writers call `change_broker.publish(...)` after committing; every open
Subscription on the same table receives the event on its own event loop.
Publishing is safe from worker threads (sync endpoints run in a
threadpool), subscribers are async iterators.
"""
import asyncio
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

GUESTS_TABLE = "guests"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class GuestChange(BaseModel):
    event: Literal["INSERT", "UPDATE", "DELETE"]
    table: str = GUESTS_TABLE
    old: Optional[Dict[str, Any]] = None  # full prior row for UPDATE and DELETE
    new: Optional[Dict[str, Any]] = None  # full new row for INSERT and UPDATE
    commit_timestamp: datetime = Field(default_factory=_utcnow)


class Subscription:
    """A queue of changes bound to the event loop that opened it"""

    def __init__(self, broker: "ChangeBroker", table: str, loop: asyncio.AbstractEventLoop):
        self.broker = broker
        self.table = table
        self.loop = loop
        self.queue: "asyncio.Queue[GuestChange]" = asyncio.Queue()
        self.closed = False

    def deliver(self, change: GuestChange):
        if self.closed or self.loop.is_closed():
            return
        self.loop.call_soon_threadsafe(self.queue.put_nowait, change)

    async def get(self) -> GuestChange:
        return await self.queue.get()

    def drain(self) -> List[GuestChange]:
        """Pop every change already waiting, without blocking"""
        pending = []
        while True:
            try:
                pending.append(self.queue.get_nowait())
            except asyncio.QueueEmpty:
                return pending

    def unsubscribe(self):
        self.broker.unsubscribe(self)

    def __aiter__(self):
        return self

    async def __anext__(self) -> GuestChange:
        if self.closed:
            raise StopAsyncIteration
        return await self.get()


class ChangeBroker:
    def __init__(self):
        self._lock = threading.Lock()
        self._subscriptions: List[Subscription] = []

    def subscribe(self, table: str = GUESTS_TABLE) -> Subscription:
        """Must be called from a running event loop"""
        subscription = Subscription(self, table, asyncio.get_running_loop())
        with self._lock:
            self._subscriptions.append(subscription)
        logger.debug(f"Subscribed to {table} changes ({self.subscriber_count} open)")
        return subscription

    def unsubscribe(self, subscription: Subscription):
        subscription.closed = True
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)
        logger.debug(f"Unsubscribed from {subscription.table} changes ({self.subscriber_count} open)")

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def publish(self, change: GuestChange):
        with self._lock:
            targets = [s for s in self._subscriptions if s.table == change.table]
        for subscription in targets:
            try:
                subscription.deliver(change)
            except RuntimeError as e:
                # loop shut down between the check and the call
                logger.warning(f"Dropping change for closed subscriber: {e}")
                self.unsubscribe(subscription)

    def publish_many(self, changes: List[GuestChange]):
        for change in changes:
            self.publish(change)


# Singleton instance
change_broker = ChangeBroker()
