"""Notification collaborator.

Notifications are fire-and-forget: they are sent after the atomic unit
commits and a failing sink never affects the booking outcome.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

logger = logging.getLogger(__name__)


class NotificationEvent(str, Enum):
    """Events the scheduling core reports."""

    APPOINTMENT_BOOKED = "appointment_booked"
    APPOINTMENT_CANCELLED = "appointment_cancelled"
    APPOINTMENT_RESCHEDULED = "appointment_rescheduled"


@dataclass(frozen=True)
class Notification:
    event: NotificationEvent
    patient_id: int
    doctor_id: int
    summary: str


class NotificationSink(Protocol):
    """Receiver for booking notifications."""

    async def notify(self, notification: Notification) -> None:
        ...


class LoggingNotificationSink:
    """Default sink that records notifications in the application log."""

    async def notify(self, notification: Notification) -> None:
        logger.info(
            f"Notification {notification.event.value}: patient={notification.patient_id} "
            f"doctor={notification.doctor_id} summary={notification.summary!r}"
        )


class RecordingNotificationSink:
    """Sink that keeps notifications in memory."""

    def __init__(self) -> None:
        self.sent: list[Notification] = []

    async def notify(self, notification: Notification) -> None:
        self.sent.append(notification)


async def notify_safely(sink: NotificationSink | None, notification: Notification) -> bool:
    """Deliver a notification without letting sink failures propagate.

    Returns:
        True if the sink accepted the notification
    """
    if sink is None:
        return False
    try:
        await sink.notify(notification)
    except Exception:
        logger.exception(
            f"Failed to deliver {notification.event.value} notification "
            f"for patient {notification.patient_id}"
        )
        return False
    return True
