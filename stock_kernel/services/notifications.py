"""
Notification sinks -- "inventory level changed" delivery.

Responsibility:
    Receives InventoryLevelChanged payloads after a unit of work commits so
    that other subsystems (reorder-point monitors, dashboards) can react.

Architecture position:
    Kernel > Services.  Injected into UnitOfWork / InventoryAccountingEngine;
    there is no process-wide event bus.

Invariants enforced:
    - Delivery is fire-and-forget.  Nothing published here can fail or roll
      back the movement that produced it (UnitOfWork publishes only after
      commit and logs sink errors).
"""

from abc import ABC, abstractmethod
from typing import Callable

from stock_kernel.domain.dtos import InventoryLevelChanged
from stock_kernel.logging_config import get_logger

logger = get_logger("services.notifications")

Subscriber = Callable[[InventoryLevelChanged], None]


class NotificationSink(ABC):
    """Destination for committed inventory level changes."""

    @abstractmethod
    def publish(self, event: InventoryLevelChanged) -> None:
        ...


class NullNotificationSink(NotificationSink):
    """Discards every notification."""

    def publish(self, event: InventoryLevelChanged) -> None:
        return None


class RecordingNotificationSink(NotificationSink):
    """Keeps published notifications in memory (tests and tooling)."""

    def __init__(self):
        self.events: list[InventoryLevelChanged] = []

    def publish(self, event: InventoryLevelChanged) -> None:
        self.events.append(event)

    def clear(self) -> None:
        self.events.clear()


class SubscriberNotificationSink(NotificationSink):
    """
    Fans each notification out to registered callables.

    A subscriber that raises is logged and skipped; the remaining
    subscribers still receive the notification.
    """

    def __init__(self):
        self._subscribers: list[Subscriber] = []

    def subscribe(self, subscriber: Subscriber) -> None:
        self._subscribers.append(subscriber)

    def unsubscribe(self, subscriber: Subscriber) -> None:
        self._subscribers.remove(subscriber)

    def publish(self, event: InventoryLevelChanged) -> None:
        for subscriber in list(self._subscribers):
            try:
                subscriber(event)
            except Exception:
                logger.exception(
                    "notification_subscriber_failed",
                    extra={
                        **event.key.as_log_fields(),
                        "operation": event.operation,
                        "subscriber": getattr(subscriber, "__name__", repr(subscriber)),
                    },
                )
