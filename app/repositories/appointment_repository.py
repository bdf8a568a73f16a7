"""Appointment persistence with conditional writes."""

from collections.abc import Sequence
from datetime import date, datetime, time
from typing import Any
from uuid import UUID

from sqlalchemy import ColumnElement, and_, func, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.appointments import appointments
from app.schemas.appointments import ACTIVE_STATUSES, AppointmentStatus

ACTIVE_STATUS_VALUES = sorted(status.value for status in ACTIVE_STATUSES)


class AppointmentRepository:
    """Database operations for appointments."""

    def __init__(self, db: AsyncSession):
        """Initialize repository with database session."""
        self.db = db

    async def get(self, appointment_id: UUID) -> dict[str, Any] | None:
        """Get appointment by ID."""
        stmt = select(appointments).where(appointments.c.id == appointment_id)
        result = await self.db.execute(stmt)
        row = result.mappings().first()
        return dict(row) if row else None

    async def get_by_order_ref(self, order_ref: str) -> dict[str, Any] | None:
        """Get the appointment a gateway order was created for."""
        stmt = select(appointments).where(appointments.c.payment_order_ref == order_ref)
        result = await self.db.execute(stmt)
        row = result.mappings().first()
        return dict(row) if row else None

    async def booked_slot_starts(self, practitioner_id: UUID, day: date) -> set[time]:
        """Slot starts held by active appointments of a practitioner on a date."""
        stmt = select(appointments.c.slot_start).where(
            appointments.c.practitioner_id == practitioner_id,
            appointments.c.appointment_date == day,
            appointments.c.status.in_(ACTIVE_STATUS_VALUES),
        )
        result = await self.db.execute(stmt)
        return set(result.scalars().all())

    async def insert(self, values: dict[str, Any]) -> dict[str, Any]:
        """
        Insert an appointment; the caller commits.

        Raises:
            IntegrityError: If an active appointment already holds the slot
        """
        stmt = insert(appointments).values(**values).returning(appointments)
        result = await self.db.execute(stmt)
        return dict(result.mappings().one())

    async def conditional_update(
        self,
        appointment_id: UUID,
        expected_version: int,
        values: dict[str, Any],
        *conditions: ColumnElement[bool],
    ) -> dict[str, Any] | None:
        """
        Update an appointment only if it is still at ``expected_version``.

        The version is bumped on success; the caller commits.

        Returns:
            Updated row, or None if the row changed concurrently or a condition failed
        """
        stmt = (
            update(appointments)
            .where(
                appointments.c.id == appointment_id,
                appointments.c.version == expected_version,
                *conditions,
            )
            .values(**values, version=appointments.c.version + 1)
            .returning(appointments)
        )
        result = await self.db.execute(stmt)
        row = result.mappings().first()
        return dict(row) if row else None

    async def list_page(
        self,
        conditions: Sequence[ColumnElement[bool]],
        limit: int,
        offset: int,
    ) -> tuple[int, list[dict[str, Any]]]:
        """Count and page appointments matching conditions."""
        count_stmt = select(func.count()).select_from(appointments).where(and_(*conditions))
        total_result = await self.db.execute(count_stmt)
        total = total_result.scalar() or 0

        stmt = (
            select(appointments)
            .where(and_(*conditions))
            .order_by(appointments.c.appointment_date.desc(), appointments.c.slot_start.desc())
            .limit(limit)
            .offset(offset)
        )
        result = await self.db.execute(stmt)
        return total, [dict(row) for row in result.mappings().all()]

    async def list_by_status_between(
        self,
        status: AppointmentStatus,
        from_date: date,
        to_date: date,
    ) -> list[dict[str, Any]]:
        """Appointments in a status with dates in [from_date, to_date]."""
        stmt = (
            select(appointments)
            .where(
                appointments.c.status == status.value,
                appointments.c.appointment_date >= from_date,
                appointments.c.appointment_date <= to_date,
            )
            .order_by(appointments.c.appointment_date, appointments.c.slot_start)
        )
        result = await self.db.execute(stmt)
        return [dict(row) for row in result.mappings().all()]

    async def list_pending_created_before(self, cutoff: datetime) -> list[dict[str, Any]]:
        """Pending appointments with an unpaid advance created before ``cutoff``."""
        stmt = (
            select(appointments)
            .where(
                appointments.c.status == AppointmentStatus.PENDING.value,
                appointments.c.advance_paid.is_(False),
                appointments.c.created_at < cutoff,
            )
            .order_by(appointments.c.created_at)
        )
        result = await self.db.execute(stmt)
        return [dict(row) for row in result.mappings().all()]
