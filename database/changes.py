"""
Change Feed
===========
In-process "realtime" notifications for committed writes.

The Database publishes one ChangeEvent after every committed insert,
update or delete. Anything that wants to stay current (the position
monitor, a dashboard, a test) subscribes to a table, optionally only for
one owner, instead of polling.

Subscribers are awaited in turn. One that raises is logged and skipped:
a broken listener never fails or rolls back the write that triggered it.
"""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from utils.logger import get_logger

logger = get_logger(__name__)

Listener = Callable[["ChangeEvent"], Awaitable[None]]


@dataclass
class ChangeEvent:
    table: str
    event: str  # insert | update | delete
    user_id: str | None
    row: dict[str, Any] = field(default_factory=dict)


@dataclass(eq=False)
class _Subscription:
    table: str
    listener: Listener
    user_id: str | None = None
    events: tuple[str, ...] = ("insert", "update", "delete")

    def matches(self, change: ChangeEvent) -> bool:
        if change.table != self.table or change.event not in self.events:
            return False
        return self.user_id is None or change.user_id == self.user_id


class ChangeFeed:
    """
    Usage:
        feed = ChangeFeed()
        unsubscribe = feed.subscribe("positions", on_change, user_id="alice")
        ...
        unsubscribe()
    """

    def __init__(self):
        self._subscriptions: list[_Subscription] = []

    def subscribe(
        self,
        table: str,
        listener: Listener,
        user_id: str | None = None,
        events: tuple[str, ...] = ("insert", "update", "delete"),
    ) -> Callable[[], None]:
        """Register a listener. Returns a function that removes it again."""
        subscription = _Subscription(table, listener, user_id, events)
        self._subscriptions.append(subscription)

        def unsubscribe() -> None:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

        return unsubscribe

    async def publish(self, change: ChangeEvent) -> None:
        for subscription in list(self._subscriptions):
            if not subscription.matches(change):
                continue
            try:
                await subscription.listener(change)
            except Exception as e:
                logger.error(
                    "change_listener_failed",
                    table=change.table,
                    change=change.event,
                    error=str(e),
                )
