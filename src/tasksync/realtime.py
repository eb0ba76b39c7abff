"""Change feeds delivering per-user task events.

A feed hands out subscriptions; a subscription is an async iterator of
``ChangeEvent`` values for exactly one owner and can be closed with
``unsubscribe()``. Two feeds are provided:

- ``LocalChangeFeed``: in-process fan-out. Whoever performs a write publishes
  the resulting event, and every subscription for that owner receives it.
- ``PollingChangeFeed``: takes periodic snapshots through a
  ``TaskStoreConnector`` and turns the differences between consecutive
  snapshots into events. Works against any backend that can list tasks.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING

from tasksync.api.exceptions import RemoteError
from tasksync.api.models import ChangeEvent, Task, TaskDeleted, TaskInserted, TaskUpdated

if TYPE_CHECKING:
    from tasksync.api.protocols import TaskStoreConnector

logger = logging.getLogger(__name__)


class QueueSubscription:
    """Queue-backed subscription for one owner."""

    def __init__(
        self,
        owner_id: str,
        on_close: Callable[[QueueSubscription], None] | None = None,
    ) -> None:
        self.owner_id = owner_id
        self._queue: asyncio.Queue[ChangeEvent | None] = asyncio.Queue()
        self._closed = False
        self._on_close = on_close

    @property
    def closed(self) -> bool:
        return self._closed

    def push(self, event: ChangeEvent) -> bool:
        """Queue an event; returns False if the subscription is already closed."""
        if self._closed:
            return False
        self._queue.put_nowait(event)
        return True

    def unsubscribe(self) -> None:
        """Close the subscription. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(None)
        if self._on_close is not None:
            self._on_close(self)

    def __aiter__(self) -> QueueSubscription:
        return self

    async def __anext__(self) -> ChangeEvent:
        event = await self._queue.get()
        if event is None:
            raise StopAsyncIteration
        return event

    def __repr__(self) -> str:
        return f"QueueSubscription(owner_id='{self.owner_id}', closed={self._closed})"


class LocalChangeFeed:
    """In-process change feed keyed by owner id."""

    def __init__(self) -> None:
        self._subscriptions: defaultdict[str, list[QueueSubscription]] = defaultdict(list)

    def subscribe(self, owner_id: str) -> QueueSubscription:
        subscription = QueueSubscription(owner_id, on_close=self._remove)
        self._subscriptions[owner_id].append(subscription)
        logger.debug("Opened local subscription for owner %s", owner_id)
        return subscription

    def publish(self, owner_id: str, event: ChangeEvent) -> int:
        """Deliver ``event`` to every open subscription of ``owner_id``.

        Returns:
            int: Number of subscriptions that received the event
        """
        delivered = 0
        for subscription in list(self._subscriptions.get(owner_id, ())):
            if subscription.push(event):
                delivered += 1
        return delivered

    def subscriber_count(self, owner_id: str) -> int:
        return len(self._subscriptions.get(owner_id, ()))

    def _remove(self, subscription: QueueSubscription) -> None:
        subscriptions = self._subscriptions.get(subscription.owner_id)
        if subscriptions is None:
            return
        if subscription in subscriptions:
            subscriptions.remove(subscription)
        if not subscriptions:
            del self._subscriptions[subscription.owner_id]
        logger.debug("Closed local subscription for owner %s", subscription.owner_id)


def diff_snapshots(previous: Mapping[str, Task], current: Mapping[str, Task]) -> list[ChangeEvent]:
    """Translate two consecutive snapshots into change events.

    Args:
        previous: Earlier snapshot keyed by task id
        current: Later snapshot keyed by task id

    Returns:
        list[ChangeEvent]: Inserts and updates in ``current`` order, then deletes
    """
    events: list[ChangeEvent] = []
    for task_id, task in current.items():
        before = previous.get(task_id)
        if before is None:
            events.append(TaskInserted(record=task))
        elif before != task:
            events.append(TaskUpdated(record=task))
    events.extend(
        TaskDeleted(task_id=task_id) for task_id in previous if task_id not in current
    )
    return events


class PollingChangeFeed:
    """Change feed built from periodic connector snapshots.

    The first successful snapshot of each subscription is a baseline and
    produces no events. A failed snapshot is logged and skipped; the next
    poll compares against the last successful one.
    """

    def __init__(self, connector: TaskStoreConnector, interval_seconds: float = 5.0) -> None:
        if interval_seconds <= 0:
            msg = "interval_seconds must be positive"
            raise ValueError(msg)
        self._connector = connector
        self._interval = interval_seconds
        self._pollers: dict[QueueSubscription, asyncio.Task[None]] = {}

    def subscribe(self, owner_id: str) -> QueueSubscription:
        """Open a subscription and start its polling task.

        Must be called from a running event loop.
        """
        subscription = QueueSubscription(owner_id, on_close=self._stop)
        self._pollers[subscription] = asyncio.get_running_loop().create_task(
            self._poll(subscription), name=f"tasksync-poll-{owner_id}"
        )
        logger.debug("Started polling owner %s every %.1fs", owner_id, self._interval)
        return subscription

    @property
    def active_pollers(self) -> int:
        return len(self._pollers)

    async def _poll(self, subscription: QueueSubscription) -> None:
        snapshot: dict[str, Task] | None = None
        while not subscription.closed:
            try:
                tasks = await self._connector.list_tasks(subscription.owner_id)
            except RemoteError as e:
                logger.warning("Snapshot for owner %s failed: %s", subscription.owner_id, e)
            else:
                current = {task.id: task for task in reversed(tasks)}
                if snapshot is not None:
                    for event in diff_snapshots(snapshot, current):
                        subscription.push(event)
                snapshot = current
            await asyncio.sleep(self._interval)

    def _stop(self, subscription: QueueSubscription) -> None:
        poller = self._pollers.pop(subscription, None)
        if poller is not None:
            poller.cancel()
            logger.debug("Stopped polling owner %s", subscription.owner_id)

    async def aclose(self) -> None:
        """Close every open subscription and wait for pollers to finish."""
        pollers = list(self._pollers.values())
        for subscription in list(self._pollers):
            subscription.unsubscribe()
        await asyncio.gather(*pollers, return_exceptions=True)
