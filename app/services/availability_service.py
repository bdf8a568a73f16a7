"""Resolve a practitioner's bookable slots for a date."""

from datetime import date, datetime, timedelta
from typing import Any
from uuid import UUID
from zoneinfo import ZoneInfo

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.clock import Clock, utc_now
from app.core.exceptions import NotFoundException, ValidationException
from app.core.redis_client import CacheManager
from app.repositories.appointment_repository import AppointmentRepository
from app.repositories.practitioner_repository import PractitionerRepository
from app.schemas.scheduling import DayAvailability, TimeSlot, UnavailableReason
from app.services import slot_generator

logger = structlog.get_logger(__name__)


class AvailabilityService:
    """
    Availability resolver.

    Results are snapshots: a slot listed here may be taken by the time a
    booking lands, so booking always goes through the conflict guard.
    """

    DEFAULT_RANGE_DAYS = 7

    def __init__(
        self,
        db: AsyncSession,
        *,
        clock: Clock = utc_now,
        buffer_minutes: int | None = None,
        cache: CacheManager | None = None,
        cache_ttl: int | None = None,
        max_range_days: int | None = None,
    ):
        """Initialize service with database session and policy values."""
        self.practitioners = PractitionerRepository(db)
        self.appointments = AppointmentRepository(db)
        self.clock = clock
        self.buffer = timedelta(
            minutes=(
                settings.same_day_booking_buffer_minutes
                if buffer_minutes is None
                else buffer_minutes
            )
        )
        self.cache = cache
        self.cache_ttl = settings.availability_cache_ttl_seconds if cache_ttl is None else cache_ttl
        self.max_range_days = max_range_days or settings.max_availability_range_days

    @staticmethod
    def cache_key(practitioner_id: UUID, day: date) -> str:
        """Generate cache key for a practitioner's day."""
        return f"availability:{practitioner_id}:{day.isoformat()}"

    @classmethod
    def invalidate(cls, cache: CacheManager | None, practitioner_id: UUID, day: date) -> None:
        """Drop a cached snapshot after its bookings changed."""
        if cache:
            cache.delete(cls.cache_key(practitioner_id, day))

    async def get_practitioner(self, practitioner_id: UUID) -> dict[str, Any]:
        """
        Get an active practitioner.

        Raises:
            NotFoundException: If the practitioner does not exist or is inactive
        """
        practitioner = await self.practitioners.get(practitioner_id)
        if not practitioner or not practitioner["is_active"]:
            raise NotFoundException("Practitioner not found")
        return practitioner

    def local_now(self, practitioner: dict[str, Any]) -> datetime:
        """Current time in the practitioner's reference timezone."""
        return self.clock().astimezone(ZoneInfo(practitioner["timezone"]))

    async def resolve(self, practitioner_id: UUID, day: date) -> DayAvailability:
        """
        Resolve bookable slots of a practitioner on a date.

        Args:
            practitioner_id: Practitioner ID
            day: Calendar date in the practitioner's timezone

        Returns:
            Day availability with free slots ordered by start time

        Raises:
            NotFoundException: If practitioner not found
        """
        practitioner = await self.get_practitioner(practitioner_id)
        return await self.resolve_for(practitioner, day)

    async def resolve_cached(self, practitioner_id: UUID, day: date) -> DayAvailability:
        """Resolve with a short-lived read-through cache for browsing clients."""
        if self.cache and self.cache_ttl:
            cached = self.cache.get_json(self.cache_key(practitioner_id, day))
            if cached:
                return DayAvailability.model_validate(cached)

        availability = await self.resolve(practitioner_id, day)

        if self.cache and self.cache_ttl:
            self.cache.set_json(
                self.cache_key(practitioner_id, day),
                availability.model_dump(mode="json"),
                ttl=self.cache_ttl,
            )
        return availability

    async def resolve_range(
        self,
        practitioner_id: UUID,
        start: date | None = None,
        end: date | None = None,
    ) -> list[DayAvailability]:
        """
        Resolve availability for each date in [start, end].

        Defaults to the next seven days starting today in the practitioner's timezone.

        Raises:
            NotFoundException: If practitioner not found
            ValidationException: If the range is inverted or too long
        """
        practitioner = await self.get_practitioner(practitioner_id)

        if start is None:
            start = self.local_now(practitioner).date()
        if end is None:
            end = start + timedelta(days=self.DEFAULT_RANGE_DAYS - 1)
        if end < start:
            raise ValidationException("end_date must not be before start_date")
        if (end - start).days + 1 > self.max_range_days:
            raise ValidationException(f"Date range may span at most {self.max_range_days} days")

        days = []
        current = start
        while current <= end:
            days.append(await self.resolve_for(practitioner, current))
            current += timedelta(days=1)
        return days

    async def resolve_for(self, practitioner: dict[str, Any], day: date) -> DayAvailability:
        """Resolve for an already loaded practitioner row."""
        practitioner_id = practitioner["id"]
        duration = practitioner["consultation_duration_minutes"]
        now_local = self.local_now(practitioner)
        today = now_local.date()

        def unavailable(reason: UnavailableReason, window: TimeSlot | None = None) -> DayAvailability:
            return DayAvailability(
                practitioner_id=practitioner_id,
                date=day,
                is_available=False,
                working_window=window,
                reason=reason,
                consultation_duration_minutes=duration,
            )

        override, weekly = await self.practitioners.find_entries_for_date(practitioner_id, day)
        entry = override or weekly

        if entry is None or not entry.is_available:
            return unavailable(UnavailableReason.NOT_WORKING)

        if day < today:
            return unavailable(UnavailableReason.DATE_IN_PAST)

        windows = [window for window in entry.windows if window.is_available]
        if not windows:
            return unavailable(UnavailableReason.NOT_WORKING)
        working_window = TimeSlot(
            start=min(window.start for window in windows),
            end=max(window.end for window in windows),
        )

        # Slots never overlap, even when stored windows do
        candidates: list[TimeSlot] = []
        for window in sorted(windows, key=lambda w: w.start):
            for slot in slot_generator.generate(window.start, window.end, duration):
                if candidates and slot.start < candidates[-1].end:
                    continue
                candidates.append(slot)

        booked = await self.appointments.booked_slot_starts(practitioner_id, day)
        slots = [slot for slot in candidates if slot.start not in booked]

        if day == today:
            cutoff = now_local + self.buffer
            tz = now_local.tzinfo
            slots = [slot for slot in slots if datetime.combine(day, slot.start, tzinfo=tz) >= cutoff]

        if not slots:
            return unavailable(UnavailableReason.FULLY_BOOKED, working_window)

        logger.debug(
            "availability_resolved",
            practitioner_id=str(practitioner_id),
            date=day.isoformat(),
            free_slots=len(slots),
            booked_slots=len(booked),
        )

        return DayAvailability(
            practitioner_id=practitioner_id,
            date=day,
            is_available=True,
            working_window=working_window,
            slots=slots,
            consultation_duration_minutes=duration,
        )
