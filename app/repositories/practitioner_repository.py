"""Practitioner and availability persistence."""

from datetime import date
from typing import Any
from uuid import UUID

from sqlalchemy import delete, insert, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.practitioners import practitioner_availability, practitioners
from app.schemas.scheduling import DateOverrideEntry, Weekday, WeeklyEntry


class PractitionerRepository:
    """Database operations for practitioners and their availability."""

    def __init__(self, db: AsyncSession):
        """Initialize repository with database session."""
        self.db = db

    async def get(self, practitioner_id: UUID) -> dict[str, Any] | None:
        """Get practitioner by ID."""
        stmt = select(practitioners).where(practitioners.c.id == practitioner_id)
        result = await self.db.execute(stmt)
        row = result.mappings().first()
        return dict(row) if row else None

    async def create(self, values: dict[str, Any]) -> dict[str, Any]:
        """Insert a practitioner; the caller commits."""
        stmt = insert(practitioners).values(**values).returning(practitioners)
        result = await self.db.execute(stmt)
        return dict(result.mappings().one())

    async def list_entries(self, practitioner_id: UUID) -> list[WeeklyEntry | DateOverrideEntry]:
        """All stored availability entries of a practitioner."""
        stmt = (
            select(practitioner_availability)
            .where(practitioner_availability.c.practitioner_id == practitioner_id)
            .order_by(
                practitioner_availability.c.specific_date,
                practitioner_availability.c.day_of_week,
            )
        )
        result = await self.db.execute(stmt)
        return [self._to_entry(row) for row in result.mappings().all()]

    async def find_entries_for_date(
        self,
        practitioner_id: UUID,
        day: date,
    ) -> tuple[DateOverrideEntry | None, WeeklyEntry | None]:
        """
        Fetch the date override and the weekly entry that could apply to a date.

        Returns:
            Tuple of (override, weekly entry), either may be None
        """
        weekday = Weekday.from_date(day)
        stmt = select(practitioner_availability).where(
            practitioner_availability.c.practitioner_id == practitioner_id,
            or_(
                practitioner_availability.c.specific_date == day,
                practitioner_availability.c.day_of_week == weekday.value,
            ),
        )
        result = await self.db.execute(stmt)

        override: DateOverrideEntry | None = None
        weekly: WeeklyEntry | None = None
        for row in result.mappings().all():
            entry = self._to_entry(row)
            if isinstance(entry, DateOverrideEntry):
                override = entry
            else:
                weekly = entry
        return override, weekly

    async def replace_entries(
        self,
        practitioner_id: UUID,
        entries: list[WeeklyEntry | DateOverrideEntry],
    ) -> None:
        """Replace all availability entries; the caller commits."""
        await self.db.execute(
            delete(practitioner_availability).where(
                practitioner_availability.c.practitioner_id == practitioner_id
            )
        )
        if not entries:
            return

        rows = []
        for entry in entries:
            rows.append(
                {
                    "practitioner_id": practitioner_id,
                    "day_of_week": entry.day.value if isinstance(entry, WeeklyEntry) else None,
                    "specific_date": entry.date if isinstance(entry, DateOverrideEntry) else None,
                    "is_available": entry.is_available,
                    "windows": [window.model_dump(mode="json") for window in entry.windows],
                }
            )
        await self.db.execute(insert(practitioner_availability), rows)

    async def record_rating(self, practitioner_id: UUID, rating: int) -> None:
        """Fold a new rating into the running average; the caller commits."""
        count = practitioners.c.rating_count
        average = practitioners.c.rating_average
        await self.db.execute(
            update(practitioners)
            .where(practitioners.c.id == practitioner_id)
            .values(
                rating_average=(average * count + rating) / (count + 1),
                rating_count=count + 1,
            )
        )

    @staticmethod
    def _to_entry(row: Any) -> WeeklyEntry | DateOverrideEntry:
        if row["specific_date"] is not None:
            return DateOverrideEntry(
                date=row["specific_date"],
                is_available=row["is_available"],
                windows=row["windows"],
            )
        return WeeklyEntry(
            day=row["day_of_week"],
            is_available=row["is_available"],
            windows=row["windows"],
        )
