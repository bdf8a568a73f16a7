"""Booking policy values and the cancellation lead-time rule."""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from uuid import UUID
from zoneinfo import ZoneInfo

from app.config import Settings, settings
from app.core.exceptions import ForbiddenException
from app.schemas.appointments import Actor, ActorRole, AppointmentStatus


@dataclass(frozen=True)
class BookingPolicy:
    """Tunable booking rules, read once from settings."""

    advance_ratio: float = 0.3
    cancellation_lead_time: timedelta = timedelta(hours=2)
    same_day_buffer: timedelta = timedelta(minutes=30)

    @classmethod
    def from_settings(cls, config: Settings = settings) -> "BookingPolicy":
        """Build the policy from application settings."""
        return cls(
            advance_ratio=config.advance_payment_ratio,
            cancellation_lead_time=timedelta(minutes=config.cancellation_lead_time_minutes),
            same_day_buffer=timedelta(minutes=config.same_day_booking_buffer_minutes),
        )


def appointment_start(day: date, slot_start: time, timezone: str) -> datetime:
    """Aware start instant of a slot in the practitioner's timezone."""
    return datetime.combine(day, slot_start, tzinfo=ZoneInfo(timezone))


class CancellationPolicy:
    """Reject late cancellations from non-privileged actors."""

    def __init__(self, lead_time: timedelta):
        """Initialize with the minimum notice a patient must give."""
        self.lead_time = lead_time

    @staticmethod
    def is_privileged(actor: Actor, practitioner_id: UUID) -> bool:
        """Admins and the appointment's own practitioner bypass the lead time."""
        return actor.role == ActorRole.ADMIN or (
            actor.role == ActorRole.PRACTITIONER and actor.id == practitioner_id
        )

    def ensure_can_cancel(
        self,
        actor: Actor,
        practitioner_id: UUID,
        starts_at: datetime,
        now: datetime,
        current_status: str | None = None,
    ) -> None:
        """
        Check the lead-time rule.

        Raises:
            ForbiddenException: If a non-privileged actor cancels inside the lead time
        """
        if self.is_privileged(actor, practitioner_id):
            return
        if now > starts_at - self.lead_time:
            hours = self.lead_time.total_seconds() / 3600
            raise ForbiddenException(
                f"Cannot cancel appointment less than {hours:g} hours before scheduled time",
                current_status=current_status,
                requested_status=AppointmentStatus.CANCELLED.value,
            )
