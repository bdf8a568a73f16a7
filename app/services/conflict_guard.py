"""No-double-booking enforcement at reservation time."""

from typing import Any

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import SlotConflictException
from app.models.appointments import PATIENT_SLOT_INDEX, PRACTITIONER_SLOT_INDEX
from app.repositories.appointment_repository import AppointmentRepository

logger = structlog.get_logger(__name__)


def conflict_scope(error: IntegrityError) -> str | None:
    """
    Identify which active-slot uniqueness index rejected an insert.

    PostgreSQL reports the index name; SQLite reports the indexed columns.

    Returns:
        "patient", "practitioner", or None for unrelated integrity errors
    """
    message = str(error.orig) if error.orig is not None else str(error)
    if PATIENT_SLOT_INDEX in message or "appointments.patient_id" in message:
        return "patient"
    if PRACTITIONER_SLOT_INDEX in message or "appointments.practitioner_id" in message:
        return "practitioner"
    return None


class ConflictGuard:
    """
    Reserve slots through the store's partial unique indexes.

    A read of current bookings is only ever a hint; the insert itself is the
    check, so two callers racing for one slot cannot both succeed.
    """

    def __init__(self, db: AsyncSession):
        """Initialize guard with database session."""
        self.db = db
        self.appointments = AppointmentRepository(db)

    async def reserve(self, values: dict[str, Any], *, commit: bool = True) -> dict[str, Any]:
        """
        Insert an active appointment holding a slot.

        Args:
            values: Column values of the new appointment
            commit: Commit on success; pass False to extend an open transaction

        Returns:
            Inserted appointment row

        Raises:
            SlotConflictException: If the practitioner's slot or the patient's
                time is already held by an active appointment
        """
        try:
            row = await self.appointments.insert(values)
            if commit:
                await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            scope = conflict_scope(e)
            if scope is None:
                raise

            logger.info(
                "slot_conflict",
                scope=scope,
                practitioner_id=str(values["practitioner_id"]),
                patient_id=str(values["patient_id"]),
                date=values["appointment_date"].isoformat(),
                slot_start=values["slot_start"].strftime("%H:%M"),
            )
            if scope == "patient":
                raise SlotConflictException(
                    "You already have an appointment at this time",
                    scope=scope,
                ) from e
            raise SlotConflictException("Time slot is already booked", scope=scope) from e

        return row
