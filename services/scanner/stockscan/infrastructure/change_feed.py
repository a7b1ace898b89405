"""Change feed for committed inventory movements.

Dashboards subscribe with an optional filter and receive every movement row
committed after they subscribed. Rows are picked up from the SQLAlchemy
session lifecycle (``after_flush`` / ``after_commit`` / ``after_rollback``),
so anything that writes an ``InventoryMovement`` through a session feeds the
stream and writers never talk to observers directly.

Publishing never blocks the writer: each record is handed to the
subscriber's event loop with ``call_soon_threadsafe`` and buffered in a
bounded queue. A subscriber whose buffer is full misses the record.
"""

import asyncio
import threading
from typing import Any, Optional

from sqlalchemy import event
from sqlalchemy.orm import Session

from shared.core import get_logger
from stockscan.core_settings import get_settings
from stockscan.domain.models import InventoryMovement

logger = get_logger(__name__)

_PENDING_KEY = "pending_movements"


def movement_snapshot(movement: InventoryMovement) -> dict[str, Any]:
    return {
        "id": movement.id,
        "product_id": movement.product_id,
        "movement_type": movement.movement_type,
        "quantity": movement.quantity,
        "notes": movement.notes,
        "device_id": movement.device_id,
        "created_at": movement.created_at.isoformat() if movement.created_at else None,
    }


class Subscription:
    """A single observer's view of the feed.

    Use as an async iterator; close it (or leave the ``async with`` block)
    to stop receiving.
    """

    def __init__(
        self,
        feed: "ChangeFeed",
        loop: asyncio.AbstractEventLoop,
        queue_size: int,
        device_id: Optional[str] = None,
        movement_type: Optional[str] = None,
    ):
        self._feed = feed
        self._loop = loop
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self.device_id = device_id
        self.movement_type = movement_type
        self.dropped = 0
        self.closed = False

    def matches(self, record: dict[str, Any]) -> bool:
        if self.device_id is not None and record.get("device_id") != self.device_id:
            return False
        if self.movement_type is not None and record.get("movement_type") != self.movement_type:
            return False
        return True

    def _deliver(self, record: dict[str, Any]) -> None:
        # Runs on the subscriber's loop
        try:
            self._queue.put_nowait(record)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(
                "Change feed subscriber buffer full, dropping movement",
                extra={'extra_fields': {'movement_id': record.get("id"), 'dropped': self.dropped}},
            )

    async def get(self) -> dict[str, Any]:
        return await self._queue.get()

    def __aiter__(self):
        return self

    async def __anext__(self) -> dict[str, Any]:
        if self.closed:
            raise StopAsyncIteration
        return await self.get()

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._feed._unsubscribe(self)


class ChangeFeed:
    def __init__(self, queue_size: int = 100):
        self.queue_size = queue_size
        self._subscribers: set[Subscription] = set()
        self._lock = threading.Lock()

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def subscribe(self, device_id: Optional[str] = None, movement_type: Optional[str] = None) -> Subscription:
        """Register an observer on the running event loop."""
        subscription = Subscription(
            self,
            asyncio.get_running_loop(),
            self.queue_size,
            device_id=device_id,
            movement_type=movement_type,
        )
        with self._lock:
            self._subscribers.add(subscription)
        return subscription

    def _unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            self._subscribers.discard(subscription)

    def publish(self, record: dict[str, Any]) -> int:
        """Fan a committed record out to matching subscribers.

        Safe to call from any thread. Returns how many subscribers the
        record was handed to.
        """
        with self._lock:
            targets = [s for s in self._subscribers if s.matches(record)]

        delivered = 0
        for subscription in targets:
            try:
                subscription._loop.call_soon_threadsafe(subscription._deliver, record)
            except RuntimeError:
                # Subscriber's loop has been closed underneath it
                logger.warning("Removing change feed subscriber with closed event loop")
                subscription.close()
                continue
            delivered += 1
        return delivered


change_feed = ChangeFeed(get_settings().CHANGE_FEED_QUEUE_SIZE)


@event.listens_for(Session, "after_flush")
def _collect_new_movements(session: Session, flush_context) -> None:
    for obj in session.new:
        if isinstance(obj, InventoryMovement):
            session.info.setdefault(_PENDING_KEY, []).append(movement_snapshot(obj))


@event.listens_for(Session, "after_commit")
def _publish_committed_movements(session: Session) -> None:
    for record in session.info.pop(_PENDING_KEY, []):
        change_feed.publish(record)


@event.listens_for(Session, "after_rollback")
def _discard_rolled_back_movements(session: Session) -> None:
    session.info.pop(_PENDING_KEY, None)
