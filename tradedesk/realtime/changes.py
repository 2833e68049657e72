"""Table change notifications.

The database publishes a ``ChangeEvent`` for every row it writes. Consumers
subscribe per table, optionally narrowed by event type and by column filters
(``{"user_id": "..."}``), and typically respond with a full refetch.
"""
import asyncio
import inspect
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set
from uuid import uuid4

import structlog

from tradedesk.core.models import ChangeEventType

logger = structlog.get_logger(__name__)

ChangeCallback = Callable[["ChangeEvent"], Any]


@dataclass
class ChangeEvent:
    """A single row change."""
    table: str
    event: ChangeEventType
    record: Dict[str, Any]
    timestamp: datetime = field(default_factory=datetime.utcnow)


@dataclass
class Subscription:
    """Handle returned by ChangeFeed.subscribe."""
    table: str
    callback: ChangeCallback
    event: str = "*"
    filter: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid4()))

    def matches(self, change: ChangeEvent) -> bool:
        if change.table != self.table:
            return False
        if self.event != "*" and change.event.value != self.event:
            return False
        for column, value in self.filter.items():
            if change.record.get(column) != value:
                return False
        return True


class ChangeFeed:
    """In-process publish/subscribe for row changes."""

    def __init__(self):
        self._subscriptions: Dict[str, Subscription] = {}
        self._tasks: Set[asyncio.Task] = set()

    def subscribe(
        self,
        table: str,
        callback: ChangeCallback,
        event: str = "*",
        filter: Optional[Dict[str, Any]] = None,
    ) -> Subscription:
        """Register a callback for changes on a table.

        Args:
            table: Table name (e.g. "portfolio_holdings")
            callback: Sync or async callable receiving the ChangeEvent
            event: "INSERT", "UPDATE", "DELETE" or "*"
            filter: Column values the record must match

        Returns:
            Subscription handle for unsubscribe()
        """
        if event != "*" and event not in ChangeEventType.__members__:
            raise ValueError(f"Unknown change event: {event}")

        subscription = Subscription(
            table=table, callback=callback, event=event, filter=filter or {}
        )
        self._subscriptions[subscription.id] = subscription
        logger.debug("changes.subscribed", table=table, event=event, filter=filter)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        self._subscriptions.pop(subscription.id, None)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def publish(self, change: ChangeEvent) -> None:
        """Deliver a change to every matching subscriber.

        Async callbacks are scheduled on the running loop and not awaited.
        Errors raised by callbacks are logged and never reach the publisher.
        """
        for subscription in list(self._subscriptions.values()):
            if not subscription.matches(change):
                continue
            try:
                result = subscription.callback(change)
            except Exception as e:
                logger.error(
                    "changes.callback_error",
                    table=change.table,
                    subscription=subscription.id,
                    error=str(e),
                )
                continue

            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._tasks.add(task)
                task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("changes.callback_error", error=str(error))

    async def drain(self) -> None:
        """Wait for all scheduled async callbacks to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def pending_callbacks(self) -> List[asyncio.Task]:
        return list(self._tasks)
