"""Move an appointment to a new slot by cancelling and re-booking atomically."""

from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import Clock, utc_now
from app.core.redis_client import CacheManager
from app.models.appointments import appointments
from app.schemas.appointments import (
    Actor,
    AppointmentResponse,
    AppointmentStatus,
    RescheduleRequest,
)
from app.services.appointment_service import AppointmentService, ensure_transition, pick_slot
from app.services.cancellation_policy import BookingPolicy
from app.services.notification_service import NotificationService

logger = structlog.get_logger(__name__)

RESCHEDULE_REASON = "Rescheduled"


class RescheduleService:
    """
    Reschedule appointments.

    The original is cancelled and a new pending appointment is inserted in a
    single transaction, linked back through ``rescheduled_from_id``. If the
    new slot is taken the whole transaction rolls back and the original
    appointment stays as it was.
    """

    def __init__(
        self,
        db: AsyncSession,
        *,
        clock: Clock = utc_now,
        notifier: NotificationService | None = None,
        cache: CacheManager | None = None,
        policy: BookingPolicy | None = None,
    ):
        """Initialize service with database session and collaborators."""
        self.db = db
        self.clock = clock
        self.lifecycle = AppointmentService(
            db,
            clock=clock,
            notifier=notifier,
            cache=cache,
            policy=policy,
        )

    async def reschedule(
        self,
        appointment_id: UUID,
        actor: Actor,
        data: RescheduleRequest,
    ) -> AppointmentResponse:
        """
        Move an active appointment to a new date and slot.

        Payment state, consultation type, symptoms and urgency carry over to
        the new appointment.

        Args:
            appointment_id: Appointment to move
            actor: Patient, practitioner or admin
            data: New date and slot

        Returns:
            The new pending appointment

        Raises:
            NotFoundException: If appointment or practitioner not found
            ForbiddenException: If actor is not a participant
            InvalidTransitionException: If the original is no longer active
            ValidationException: If the practitioner does not work on the new date
            SlotConflictException: If the new slot is taken
        """
        lifecycle = self.lifecycle
        original = await lifecycle.get_row(appointment_id)
        lifecycle.ensure_participant(actor, original)
        ensure_transition(AppointmentStatus(original["status"]), AppointmentStatus.CANCELLED)

        practitioner = await lifecycle.availability.get_practitioner(original["practitioner_id"])
        availability = await lifecycle.availability.resolve_for(practitioner, data.new_date)
        slot = pick_slot(availability, data.new_slot)

        now = self.clock()
        cancelled = await lifecycle.appointments.conditional_update(
            original["id"],
            original["version"],
            {
                "status": AppointmentStatus.CANCELLED.value,
                "cancel_reason": RESCHEDULE_REASON,
                "cancelled_by": actor.id,
                "cancelled_at": now,
                # The pending gateway order follows the appointment
                "payment_order_ref": None,
                "payment_order_type": None,
                "updated_at": now,
            },
            appointments.c.status == original["status"],
        )
        if cancelled is None:
            await self.db.rollback()
            latest = await lifecycle.get_row(original["id"])
            logger.info(
                "reschedule_lost_race",
                appointment_id=str(original["id"]),
                current_status=latest["status"],
            )
            ensure_transition(AppointmentStatus(latest["status"]), AppointmentStatus.CANCELLED)
            await lifecycle.raise_lost_race(original["id"], AppointmentStatus.CANCELLED.value)

        # Rolls back the cancellation above on conflict
        row = await lifecycle.guard.reserve(
            {
                "patient_id": original["patient_id"],
                "practitioner_id": original["practitioner_id"],
                "appointment_date": data.new_date,
                "slot_start": slot.start,
                "slot_end": slot.end,
                "status": AppointmentStatus.PENDING.value,
                "consultation_type": original["consultation_type"],
                "symptoms": original["symptoms"],
                "urgency": original["urgency"],
                "advance_amount": original["advance_amount"],
                "remaining_amount": original["remaining_amount"],
                "total_amount": original["total_amount"],
                "advance_paid": original["advance_paid"],
                "final_paid": original["final_paid"],
                "advance_payment_ref": original["advance_payment_ref"],
                "final_payment_ref": original["final_payment_ref"],
                "payment_order_ref": original["payment_order_ref"],
                "payment_order_type": original["payment_order_type"],
                "rescheduled_from_id": original["id"],
                "created_at": now,
                "updated_at": now,
            },
            commit=False,
        )
        await self.db.commit()

        logger.info(
            "appointment_rescheduled",
            appointment_id=str(original["id"]),
            new_appointment_id=str(row["id"]),
            date=data.new_date.isoformat(),
            slot=slot.label(),
        )

        lifecycle.invalidate(original)
        lifecycle.invalidate(row)
        await lifecycle.notify("appointment_rescheduled", row)
        return AppointmentResponse.from_row(row)
