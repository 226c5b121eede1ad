"""
Link Notifications

The registry announces every committed change as LinkCreated / LinkRemoved.
Delivery is fire-and-forget: there is no acknowledgment, and a failing
sink never rolls back or fails the write that produced it.
"""

from abc import ABC, abstractmethod
from threading import Lock

from ..schemas import LinkNotification, NotificationType
from ..observability import get_logger


logger = get_logger(__name__)


class NotificationSink(ABC):
    """Consumer of registry notifications (indexer, UI bridge, ...)."""

    @abstractmethod
    def publish(self, notification: LinkNotification) -> None:
        pass


class LoggingNotificationSink(NotificationSink):
    """Writes each notification to the structured log."""

    def publish(self, notification: LinkNotification) -> None:
        logger.info(
            "Link created" if notification.notification_type == NotificationType.LINK_CREATED
            else "Link removed",
            notification_type=notification.notification_type.value,
            account=notification.account,
            pubkey=notification.pubkey,
        )


class InMemoryNotificationSink(NotificationSink):
    """Collects notifications in order. For tests and embedding."""

    def __init__(self):
        self._notifications: list[LinkNotification] = []
        self._lock = Lock()

    def publish(self, notification: LinkNotification) -> None:
        with self._lock:
            self._notifications.append(notification)

    @property
    def notifications(self) -> list[LinkNotification]:
        with self._lock:
            return list(self._notifications)

    def of_type(self, notification_type: NotificationType) -> list[LinkNotification]:
        return [n for n in self.notifications if n.notification_type == notification_type]

    def clear(self) -> None:
        with self._lock:
            self._notifications.clear()


def dispatch(sinks: list[NotificationSink], notification: LinkNotification) -> None:
    """Deliver to every sink; a failing sink is logged and skipped."""
    for sink in sinks:
        try:
            sink.publish(notification)
        except Exception:
            logger.exception(
                "Notification sink failed",
                sink=type(sink).__name__,
                notification_type=notification.notification_type.value,
                account=notification.account,
            )
