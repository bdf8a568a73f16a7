"""Appointment lifecycle: booking, transitions and payment flags."""

from datetime import date, timedelta
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import ColumnElement
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import Clock, utc_now
from app.core.exceptions import (
    ForbiddenException,
    InvalidTransitionException,
    NotFoundException,
    PreconditionFailedException,
    SlotConflictException,
    ValidationException,
)
from app.core.redis_client import CacheManager
from app.models.appointments import appointments
from app.repositories.appointment_repository import AppointmentRepository
from app.repositories.practitioner_repository import PractitionerRepository
from app.schemas.appointments import (
    Actor,
    ActorRole,
    AppointmentFilters,
    AppointmentListResponse,
    AppointmentRequest,
    AppointmentResponse,
    AppointmentStatus,
    FeedbackCreate,
)
from app.schemas.scheduling import DayAvailability, TimeSlot, UnavailableReason
from app.services import pricing
from app.services.availability_service import AvailabilityService
from app.services.cancellation_policy import BookingPolicy, CancellationPolicy, appointment_start
from app.services.conflict_guard import ConflictGuard
from app.services.notification_service import NotificationService

logger = structlog.get_logger(__name__)

# Allowed status transitions; terminal statuses have none
TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    AppointmentStatus.PENDING: frozenset({AppointmentStatus.CONFIRMED, AppointmentStatus.CANCELLED}),
    AppointmentStatus.CONFIRMED: frozenset(
        {AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED, AppointmentStatus.NO_SHOW}
    ),
}

UNPAYABLE_STATUSES = (AppointmentStatus.CANCELLED.value, AppointmentStatus.COMPLETED.value)


def pick_slot(availability: DayAvailability, requested: TimeSlot) -> TimeSlot:
    """
    Match a requested slot against resolved availability.

    Args:
        availability: Resolved availability of the requested date
        requested: Slot chosen by the patient

    Returns:
        The generated slot starting at the requested time

    Raises:
        ValidationException: If the practitioner does not work on that date
        SlotConflictException: If the slot is not among the free slots
    """
    if availability.reason in (UnavailableReason.DATE_IN_PAST, UnavailableReason.NOT_WORKING):
        raise ValidationException(
            f"Practitioner is not available on {availability.date.isoformat()}"
            f" ({availability.reason.value})"
        )

    slot = availability.offers(requested.start)
    if slot is None:
        raise SlotConflictException(f"Time slot {requested.label()} is not available")
    return slot


def ensure_transition(current: AppointmentStatus, target: AppointmentStatus) -> None:
    """
    Check a status change against the transition table.

    Raises:
        InvalidTransitionException: If the change is not allowed
    """
    if target not in TRANSITIONS.get(current, frozenset()):
        raise InvalidTransitionException(
            f"Cannot change appointment from {current.value} to {target.value}",
            current_status=current.value,
            requested_status=target.value,
        )


class AppointmentService:
    """Service for the appointment lifecycle."""

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
        self.notifier = notifier
        self.cache = cache
        self.policy = policy or BookingPolicy.from_settings()
        self.appointments = AppointmentRepository(db)
        self.practitioners = PractitionerRepository(db)
        self.guard = ConflictGuard(db)
        self.cancellation = CancellationPolicy(self.policy.cancellation_lead_time)
        self.availability = AvailabilityService(
            db,
            clock=clock,
            buffer_minutes=int(self.policy.same_day_buffer.total_seconds() // 60),
        )

    # Helpers shared with rescheduling and payments

    async def get_row(self, appointment_id: UUID) -> dict[str, Any]:
        """
        Load an appointment row.

        Raises:
            NotFoundException: If appointment not found
        """
        row = await self.appointments.get(appointment_id)
        if not row:
            raise NotFoundException("Appointment not found")
        return row

    @staticmethod
    def ensure_participant(actor: Actor, appointment: dict[str, Any]) -> None:
        """Only the patient, the practitioner or an admin may act on an appointment."""
        if actor.is_admin:
            return
        if actor.id not in (appointment["patient_id"], appointment["practitioner_id"]):
            raise ForbiddenException("Access denied to this appointment")

    @staticmethod
    def ensure_practitioner(actor: Actor, appointment: dict[str, Any]) -> None:
        """Only the appointment's practitioner or an admin may run clinical transitions."""
        if actor.is_admin:
            return
        if actor.role != ActorRole.PRACTITIONER or actor.id != appointment["practitioner_id"]:
            raise ForbiddenException(
                "Only the practitioner of this appointment can perform this action",
                current_status=appointment["status"],
            )

    async def notify(self, event: str, appointment: dict[str, Any]) -> None:
        """Send an appointment event notification without failing the caller."""
        if self.notifier is None:
            return
        try:
            await self.notifier.appointment_event(event, appointment)
        except Exception as e:
            logger.warning(
                "notification_failed",
                notification_event=event,
                appointment_id=str(appointment["id"]),
                error=str(e),
            )

    def invalidate(self, appointment: dict[str, Any]) -> None:
        """Drop the cached availability of the appointment's date."""
        AvailabilityService.invalidate(
            self.cache,
            appointment["practitioner_id"],
            appointment["appointment_date"],
        )

    async def raise_lost_race(self, appointment_id: UUID, requested: str | None) -> None:
        """Report a lost conditional update with the status that won."""
        latest = await self.get_row(appointment_id)
        raise InvalidTransitionException(
            "Appointment was modified by another request",
            current_status=latest["status"],
            requested_status=requested,
        )

    async def _transition(
        self,
        appointment: dict[str, Any],
        target: AppointmentStatus,
        extra: dict[str, Any] | None = None,
        *conditions: ColumnElement[bool],
    ) -> dict[str, Any]:
        current = AppointmentStatus(appointment["status"])
        ensure_transition(current, target)

        values = {"status": target.value, "updated_at": self.clock(), **(extra or {})}
        row = await self.appointments.conditional_update(
            appointment["id"],
            appointment["version"],
            values,
            appointments.c.status == current.value,
            *conditions,
        )
        if row is None:
            await self.db.rollback()
            await self.raise_lost_race(appointment["id"], target.value)
        await self.db.commit()

        logger.info(
            "appointment_transitioned",
            appointment_id=str(appointment["id"]),
            from_status=current.value,
            to_status=target.value,
        )
        return row  # type: ignore[return-value]

    # Booking

    async def request_appointment(
        self,
        actor: Actor,
        data: AppointmentRequest,
    ) -> AppointmentResponse:
        """
        Book a pending appointment for a patient.

        The fee is priced from the practitioner's current consultation fee and
        frozen on the appointment.

        Args:
            actor: Requesting patient
            data: Appointment request

        Returns:
            Created appointment

        Raises:
            ForbiddenException: If the actor is not a patient
            NotFoundException: If practitioner not found
            ValidationException: If the practitioner does not work on that date
            SlotConflictException: If the slot or the patient's time is taken
        """
        if actor.role != ActorRole.PATIENT:
            raise ForbiddenException("Only patients can request appointments")

        practitioner = await self.availability.get_practitioner(data.practitioner_id)
        modes = practitioner["consultation_modes"] or []
        if modes and data.consultation_type.value not in modes:
            raise ValidationException(
                f"Practitioner does not offer {data.consultation_type.value} consultations"
            )

        availability = await self.availability.resolve_for(practitioner, data.appointment_date)
        slot = pick_slot(availability, data.slot)

        payment = pricing.compute(practitioner["consultation_fee"], self.policy.advance_ratio)
        now = self.clock()

        row = await self.guard.reserve(
            {
                "patient_id": actor.id,
                "practitioner_id": practitioner["id"],
                "appointment_date": data.appointment_date,
                "slot_start": slot.start,
                "slot_end": slot.end,
                "status": AppointmentStatus.PENDING.value,
                "consultation_type": data.consultation_type.value,
                "symptoms": data.symptoms,
                "urgency": data.urgency.value,
                "advance_amount": payment.advance_amount,
                "remaining_amount": payment.remaining_amount,
                "total_amount": payment.total_amount,
                "created_at": now,
                "updated_at": now,
            }
        )

        logger.info(
            "appointment_requested",
            appointment_id=str(row["id"]),
            patient_id=str(actor.id),
            practitioner_id=str(practitioner["id"]),
            date=data.appointment_date.isoformat(),
            slot=slot.label(),
        )

        self.invalidate(row)
        await self.notify("appointment_requested", row)
        return AppointmentResponse.from_row(row)

    # Clinical transitions

    async def confirm(self, appointment_id: UUID, actor: Actor) -> AppointmentResponse:
        """
        Confirm a pending appointment whose advance has been paid.

        Raises:
            NotFoundException: If appointment not found
            ForbiddenException: If actor is not the appointment's practitioner
            InvalidTransitionException: If the appointment is not pending
            PreconditionFailedException: If the advance is unpaid
        """
        appointment = await self.get_row(appointment_id)
        self.ensure_practitioner(actor, appointment)
        ensure_transition(AppointmentStatus(appointment["status"]), AppointmentStatus.CONFIRMED)

        if not appointment["advance_paid"]:
            raise PreconditionFailedException(
                "Advance payment is required before confirmation",
                current_status=appointment["status"],
                requested_status=AppointmentStatus.CONFIRMED.value,
            )

        row = await self._transition(
            appointment,
            AppointmentStatus.CONFIRMED,
            None,
            appointments.c.advance_paid.is_(True),
        )
        await self.notify("appointment_confirmed", row)
        return AppointmentResponse.from_row(row)

    async def complete(self, appointment_id: UUID, actor: Actor) -> AppointmentResponse:
        """Mark a confirmed appointment as completed."""
        appointment = await self.get_row(appointment_id)
        self.ensure_practitioner(actor, appointment)
        row = await self._transition(appointment, AppointmentStatus.COMPLETED)
        await self.notify("appointment_completed", row)
        return AppointmentResponse.from_row(row)

    async def mark_no_show(self, appointment_id: UUID, actor: Actor) -> AppointmentResponse:
        """Mark a confirmed appointment as missed by the patient."""
        appointment = await self.get_row(appointment_id)
        self.ensure_practitioner(actor, appointment)
        row = await self._transition(appointment, AppointmentStatus.NO_SHOW)
        await self.notify("appointment_no_show", row)
        return AppointmentResponse.from_row(row)

    async def cancel(
        self,
        appointment_id: UUID,
        actor: Actor,
        reason: str | None = None,
    ) -> AppointmentResponse:
        """
        Cancel a pending or confirmed appointment.

        Patients must cancel at least the configured lead time before the
        appointment starts; the practitioner and admins may cancel any time.

        Args:
            appointment_id: Appointment ID
            actor: Cancelling user
            reason: Optional cancellation reason

        Returns:
            Cancelled appointment

        Raises:
            NotFoundException: If appointment not found
            ForbiddenException: If actor is not a participant or is too late
            InvalidTransitionException: If the appointment is already terminal
        """
        appointment = await self.get_row(appointment_id)
        self.ensure_participant(actor, appointment)
        ensure_transition(AppointmentStatus(appointment["status"]), AppointmentStatus.CANCELLED)

        practitioner = await self.practitioners.get(appointment["practitioner_id"])
        timezone = practitioner["timezone"] if practitioner else "UTC"
        now = self.clock()
        self.cancellation.ensure_can_cancel(
            actor,
            appointment["practitioner_id"],
            appointment_start(appointment["appointment_date"], appointment["slot_start"], timezone),
            now,
            current_status=appointment["status"],
        )

        row = await self._transition(
            appointment,
            AppointmentStatus.CANCELLED,
            {"cancel_reason": reason, "cancelled_by": actor.id, "cancelled_at": now},
        )

        self.invalidate(row)
        await self.notify("appointment_cancelled", row)
        return AppointmentResponse.from_row(row)

    # Payment flags

    async def _record_payment(
        self,
        appointment: dict[str, Any],
        values: dict[str, Any],
        *conditions: ColumnElement[bool],
        already_applied: str,
    ) -> dict[str, Any]:
        row = await self.appointments.conditional_update(
            appointment["id"],
            appointment["version"],
            {**values, "updated_at": self.clock()},
            *conditions,
        )
        if row is None:
            await self.db.rollback()
            latest = await self.get_row(appointment["id"])
            if latest[already_applied]:
                # A duplicate callback won the race
                return latest
            await self.raise_lost_race(appointment["id"], None)
        await self.db.commit()
        return row  # type: ignore[return-value]

    async def pay_advance(self, appointment_id: UUID, payment_ref: str) -> AppointmentResponse:
        """
        Record a verified advance payment. Applying it again is a no-op.

        Raises:
            NotFoundException: If appointment not found
            InvalidTransitionException: If the appointment is cancelled or completed
        """
        appointment = await self.get_row(appointment_id)
        if appointment["advance_paid"]:
            logger.info("payment_already_applied", appointment_id=str(appointment_id), payment="advance")
            return AppointmentResponse.from_row(appointment)

        if appointment["status"] in UNPAYABLE_STATUSES:
            raise InvalidTransitionException(
                f"Cannot pay advance for a {appointment['status']} appointment",
                current_status=appointment["status"],
            )

        row = await self._record_payment(
            appointment,
            {"advance_paid": True, "advance_payment_ref": payment_ref},
            appointments.c.advance_paid.is_(False),
            appointments.c.status.notin_(UNPAYABLE_STATUSES),
            already_applied="advance_paid",
        )
        logger.info("advance_paid", appointment_id=str(appointment_id), payment_ref=payment_ref)
        return AppointmentResponse.from_row(row)

    async def pay_final(self, appointment_id: UUID, payment_ref: str) -> AppointmentResponse:
        """
        Record a verified payment of the remaining amount. Applying it again is a no-op.

        Raises:
            NotFoundException: If appointment not found
            InvalidTransitionException: If the advance has not been paid
        """
        appointment = await self.get_row(appointment_id)
        if appointment["final_paid"]:
            logger.info("payment_already_applied", appointment_id=str(appointment_id), payment="final")
            return AppointmentResponse.from_row(appointment)

        if not appointment["advance_paid"]:
            raise InvalidTransitionException(
                "Advance payment must be completed first",
                current_status=appointment["status"],
            )

        row = await self._record_payment(
            appointment,
            {"final_paid": True, "remaining_amount": 0, "final_payment_ref": payment_ref},
            appointments.c.final_paid.is_(False),
            appointments.c.advance_paid.is_(True),
            already_applied="final_paid",
        )
        logger.info("final_paid", appointment_id=str(appointment_id), payment_ref=payment_ref)
        return AppointmentResponse.from_row(row)

    async def pay_in_full(self, appointment_id: UUID, payment_ref: str) -> AppointmentResponse:
        """
        Record a verified payment of the whole fee at once. Applying it again is a no-op.

        Raises:
            NotFoundException: If appointment not found
            InvalidTransitionException: If the appointment is cancelled or completed
        """
        appointment = await self.get_row(appointment_id)
        if appointment["advance_paid"] and appointment["final_paid"]:
            logger.info("payment_already_applied", appointment_id=str(appointment_id), payment="full")
            return AppointmentResponse.from_row(appointment)

        if appointment["status"] in UNPAYABLE_STATUSES:
            raise InvalidTransitionException(
                f"Cannot pay for a {appointment['status']} appointment",
                current_status=appointment["status"],
            )

        values = {"advance_paid": True, "final_paid": True, "remaining_amount": 0, "final_payment_ref": payment_ref}
        # One gateway payment settles both parts
        if not appointment["advance_paid"]:
            values["advance_payment_ref"] = payment_ref

        row = await self._record_payment(
            appointment,
            values,
            appointments.c.final_paid.is_(False),
            appointments.c.status.notin_(UNPAYABLE_STATUSES),
            already_applied="final_paid",
        )
        logger.info("full_payment_received", appointment_id=str(appointment_id), payment_ref=payment_ref)
        return AppointmentResponse.from_row(row)

    async def is_joinable(self, appointment_id: UUID, actor: Actor | None = None) -> bool:
        """A video session may start once the appointment is confirmed and fully paid."""
        appointment = await self.get_row(appointment_id)
        if actor is not None:
            self.ensure_participant(actor, appointment)
        return (
            appointment["status"] == AppointmentStatus.CONFIRMED.value
            and appointment["advance_paid"]
            and appointment["final_paid"]
        )

    # Reads

    async def get_appointment(self, appointment_id: UUID, actor: Actor) -> AppointmentResponse:
        """
        Get appointment by ID.

        Raises:
            NotFoundException: If appointment not found
            ForbiddenException: If user doesn't have access
        """
        appointment = await self.get_row(appointment_id)
        self.ensure_participant(actor, appointment)
        return AppointmentResponse.from_row(appointment)

    async def list_appointments(
        self,
        actor: Actor,
        filters: AppointmentFilters,
    ) -> AppointmentListResponse:
        """
        List appointments visible to the actor with filtering and pagination.

        Patients see their own bookings, practitioners their own schedule and
        admins everything.
        """
        conditions: list[ColumnElement[bool]] = []
        if actor.role == ActorRole.PATIENT:
            conditions.append(appointments.c.patient_id == actor.id)
        elif actor.role == ActorRole.PRACTITIONER:
            conditions.append(appointments.c.practitioner_id == actor.id)

        if filters.status:
            conditions.append(appointments.c.status == filters.status.value)
        if filters.practitioner_id:
            conditions.append(appointments.c.practitioner_id == filters.practitioner_id)
        if filters.from_date:
            conditions.append(appointments.c.appointment_date >= filters.from_date)
        if filters.to_date:
            conditions.append(appointments.c.appointment_date <= filters.to_date)

        offset = (filters.page - 1) * filters.page_size
        total, rows = await self.appointments.list_page(conditions, filters.page_size, offset)

        return AppointmentListResponse(
            total=total,
            page=filters.page,
            page_size=filters.page_size,
            items=[AppointmentResponse.from_row(row) for row in rows],
        )

    async def list_upcoming_confirmed(self, from_date: date, to_date: date) -> list[dict[str, Any]]:
        """Confirmed appointments dated within [from_date, to_date]."""
        return await self.appointments.list_by_status_between(
            AppointmentStatus.CONFIRMED, from_date, to_date
        )

    async def list_stale_pending(self, older_than: timedelta) -> list[dict[str, Any]]:
        """Pending appointments still awaiting their advance after ``older_than``."""
        return await self.appointments.list_pending_created_before(self.clock() - older_than)

    # Feedback

    async def add_feedback(
        self,
        appointment_id: UUID,
        actor: Actor,
        data: FeedbackCreate,
    ) -> AppointmentResponse:
        """
        Store the patient's rating of a completed appointment.

        Raises:
            NotFoundException: If appointment not found
            ForbiddenException: If actor is not the appointment's patient
            InvalidTransitionException: If not completed or already rated
        """
        appointment = await self.get_row(appointment_id)
        if actor.id != appointment["patient_id"]:
            raise ForbiddenException("Only the patient can rate this appointment")

        if appointment["status"] != AppointmentStatus.COMPLETED.value:
            raise InvalidTransitionException(
                "Feedback can only be given for completed appointments",
                current_status=appointment["status"],
            )
        if appointment["feedback_rating"] is not None:
            raise InvalidTransitionException(
                "Feedback has already been submitted",
                current_status=appointment["status"],
            )

        now = self.clock()
        row = await self.appointments.conditional_update(
            appointment_id,
            appointment["version"],
            {
                "feedback_rating": data.rating,
                "feedback_comment": data.comment,
                "feedback_submitted_at": now,
                "updated_at": now,
            },
            appointments.c.feedback_rating.is_(None),
        )
        if row is None:
            await self.db.rollback()
            await self.raise_lost_race(appointment_id, None)

        await self.practitioners.record_rating(appointment["practitioner_id"], data.rating)
        await self.db.commit()

        logger.info("feedback_submitted", appointment_id=str(appointment_id), rating=data.rating)
        return AppointmentResponse.from_row(row)  # type: ignore[arg-type]
