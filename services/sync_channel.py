import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

logger = logging.getLogger(__name__)

ChangeCallback = Callable[["ChangeEvent"], Awaitable[None]]


@dataclass
class ChangeEvent:
    table: str
    operation: str  # insert | update | delete
    record: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Subscription:
    handle: int
    table: str
    filter: Dict[str, Any]
    callback: ChangeCallback

    def matches(self, event: ChangeEvent) -> bool:
        if event.table != self.table:
            return False
        return all(event.record.get(key) == value for key, value in self.filter.items())


class SyncChannel:
    """Fans record-store changes out to subscribed sessions.

    Delivery is push based and at-least-once. Each callback runs in its own
    task, so notifications for different tables may be observed in any order.
    """

    def __init__(self):
        self._subscriptions: Dict[int, Subscription] = {}
        self._handles = itertools.count(1)
        self._tasks: Set[asyncio.Task] = set()

    def subscribe(self, table: str, filter: Dict[str, Any], callback: ChangeCallback) -> int:
        handle = next(self._handles)
        self._subscriptions[handle] = Subscription(handle, table, dict(filter), callback)
        logger.debug(f"Subscription {handle} registered on {table} {filter}")
        return handle

    def unsubscribe(self, handle: int) -> None:
        self._subscriptions.pop(handle, None)

    def subscriber_count(self, table: Optional[str] = None) -> int:
        if table is None:
            return len(self._subscriptions)
        return sum(1 for sub in self._subscriptions.values() if sub.table == table)

    def publish(self, event: ChangeEvent) -> None:
        for subscription in list(self._subscriptions.values()):
            if not subscription.matches(event):
                continue
            task = asyncio.get_running_loop().create_task(self._deliver(subscription, event))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    def publish_many(self, events: List[ChangeEvent]) -> None:
        for event in events:
            self.publish(event)

    async def _deliver(self, subscription: Subscription, event: ChangeEvent) -> None:
        # Unsubscribed while the task was pending
        if subscription.handle not in self._subscriptions:
            return
        try:
            await subscription.callback(event)
        except Exception as e:
            logger.error(
                f"Subscriber {subscription.handle} failed on {event.table} {event.operation}: {e}",
                exc_info=True,
            )

    async def drain(self) -> None:
        """Wait until every notification published so far has been delivered"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
