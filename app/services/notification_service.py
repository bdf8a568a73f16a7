"""Notification service for sending push notifications via FCM."""

from typing import Any
from uuid import UUID

import structlog
from firebase_admin import messaging

logger = structlog.get_logger(__name__)


# Title and body templates keyed by event
TEMPLATES: dict[str, tuple[str, str]] = {
    "appointment_requested": (
        "Appointment Requested",
        "Appointment on {date} at {time} is awaiting advance payment",
    ),
    "appointment_confirmed": (
        "Appointment Confirmed",
        "Your appointment on {date} at {time} is confirmed",
    ),
    "appointment_cancelled": (
        "Appointment Cancelled",
        "Appointment on {date} at {time} was cancelled",
    ),
    "appointment_rescheduled": (
        "Appointment Rescheduled",
        "Appointment moved to {date} at {time}",
    ),
    "appointment_completed": (
        "Appointment Completed",
        "Appointment on {date} at {time} is completed",
    ),
    "appointment_no_show": (
        "Missed Appointment",
        "Appointment on {date} at {time} was marked as missed",
    ),
    "appointment_reminder": (
        "Upcoming Appointment",
        "Reminder: appointment on {date} at {time}",
    ),
}


def user_topic(user_id: UUID | str) -> str:
    """FCM topic every device of a user subscribes to."""
    return f"user-{user_id}"


class NotificationService:
    """
    Best-effort push notifications for appointment events.

    Delivery problems are logged and swallowed; a notification never fails
    the booking operation that triggered it.
    """

    def __init__(self, enabled: bool = True):
        """Initialize notifier; a disabled notifier only logs."""
        self.enabled = enabled

    async def send_to_user(
        self,
        user_id: UUID | str,
        title: str,
        body: str,
        data: dict[str, str] | None = None,
    ) -> bool:
        """
        Send a notification to all devices of a user.

        Args:
            user_id: Recipient user ID
            title: Notification title
            body: Notification body
            data: Optional data payload

        Returns:
            True if FCM accepted the message
        """
        if not self.enabled:
            logger.debug("notification_skipped", user_id=str(user_id), title=title)
            return False

        message = messaging.Message(
            notification=messaging.Notification(title=title, body=body),
            data=data or {},
            topic=user_topic(user_id),
            android=messaging.AndroidConfig(
                priority="high",
                notification=messaging.AndroidNotification(sound="default"),
            ),
            apns=messaging.APNSConfig(
                payload=messaging.APNSPayload(aps=messaging.Aps(sound="default")),
            ),
        )

        try:
            message_id = messaging.send(message)
        except Exception as e:
            logger.warning(
                "notification_failed",
                user_id=str(user_id),
                title=title,
                error=str(e),
            )
            return False

        logger.info("push_notification_sent", user_id=str(user_id), message_id=message_id)
        return True

    async def appointment_event(self, event: str, appointment: dict[str, Any]) -> None:
        """
        Notify both participants of an appointment about an event.

        Args:
            event: Event name, one of ``TEMPLATES``
            appointment: Appointment row
        """
        title, template = TEMPLATES[event]
        body = template.format(
            date=appointment["appointment_date"].strftime("%b %d"),
            time=appointment["slot_start"].strftime("%H:%M"),
        )
        data = {
            "type": event,
            "appointment_id": str(appointment["id"]),
            "status": str(appointment["status"]),
            "screen": "/appointments",
        }

        for user_id in (appointment["patient_id"], appointment["practitioner_id"]):
            await self.send_to_user(user_id, title, body, data)
