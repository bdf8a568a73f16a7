"""Tests for availability resolution."""

import json
from datetime import UTC, date, datetime, time, timedelta
from itertools import pairwise
from uuid import uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import NotFoundException, ValidationException
from app.core.redis_client import CacheManager
from app.repositories.practitioner_repository import PractitionerRepository
from app.schemas.appointments import Actor, ActorRole
from app.schemas.scheduling import (
    AvailabilityWindow,
    PractitionerCreate,
    TimeSlot,
    UnavailableReason,
    Weekday,
    WeeklyEntry,
)
from app.services.availability_service import AvailabilityService
from app.services.practitioner_service import PractitionerService
from conftest import FIXED_NOW, MONDAY, MONDAY_AVAILABILITY, booking, fixed_clock


async def create_practitioner(db: AsyncSession, availability, **overrides) -> dict:
    """Create a practitioner profile as an admin."""
    data = {
        "full_name": "Dr. Test",
        "consultation_fee": 500,
        "consultation_duration_minutes": 30,
        "timezone": "UTC",
        "availability": availability,
        **overrides,
    }
    admin = Actor(id=uuid4(), role=ActorRole.ADMIN)
    created = await PractitionerService(db, clock=fixed_clock()).create_practitioner(
        admin, PractitionerCreate(**data)
    )
    return created.model_dump()


@pytest.mark.asyncio
async def test_resolve_lists_all_slots_of_window(db_session, practitioner):
    """Test an unbooked Monday window yields every slot in order."""
    availability = await AvailabilityService(db_session, clock=fixed_clock()).resolve(
        practitioner["id"], MONDAY
    )

    assert availability.is_available is True
    assert availability.reason is None
    assert availability.working_window == TimeSlot(start=time(9, 0), end=time(11, 0))
    assert [s.label() for s in availability.slots] == [
        "09:00-09:30",
        "09:30-10:00",
        "10:00-10:30",
        "10:30-11:00",
    ]


@pytest.mark.asyncio
async def test_resolve_excludes_booked_slot(db_session, service, practitioner, patient):
    """Test a booked slot disappears from later resolutions."""
    await service.request_appointment(
        patient,
        booking(practitioner["id"], time(9, 30)),
    )

    availability = await AvailabilityService(db_session, clock=fixed_clock()).resolve(
        practitioner["id"], MONDAY
    )

    assert [s.start for s in availability.slots] == [time(9, 0), time(10, 0), time(10, 30)]


@pytest.mark.asyncio
async def test_resolve_frees_cancelled_slot(db_session, service, practitioner, patient):
    """Test cancelling an appointment makes its slot bookable again."""
    booked = await service.request_appointment(
        patient,
        booking(practitioner["id"], time(9, 30)),
    )
    await service.cancel(booked.id, patient)

    availability = await AvailabilityService(db_session, clock=fixed_clock()).resolve(
        practitioner["id"], MONDAY
    )

    assert time(9, 30) in [s.start for s in availability.slots]


@pytest.mark.asyncio
async def test_resolve_fully_booked(db_session, service, practitioner):
    """Test a day whose slots are all taken reports fully_booked."""
    for hour, minute in ((9, 0), (9, 30), (10, 0), (10, 30)):
        await service.request_appointment(
            Actor(id=uuid4(), role=ActorRole.PATIENT),
            booking(practitioner["id"], time(hour, minute)),
        )

    availability = await AvailabilityService(db_session, clock=fixed_clock()).resolve(
        practitioner["id"], MONDAY
    )

    assert availability.is_available is False
    assert availability.reason == UnavailableReason.FULLY_BOOKED
    assert availability.working_window == TimeSlot(start=time(9, 0), end=time(11, 0))
    assert availability.slots == []


@pytest.mark.asyncio
async def test_resolve_not_working_day(db_session, practitioner):
    """Test a weekday without an entry is not a working day."""
    availability = await AvailabilityService(db_session, clock=fixed_clock()).resolve(
        practitioner["id"], MONDAY + timedelta(days=1)
    )

    assert availability.is_available is False
    assert availability.reason == UnavailableReason.NOT_WORKING
    assert availability.working_window is None


@pytest.mark.asyncio
async def test_resolve_past_date(db_session, practitioner):
    """Test a working day in the past cannot be booked."""
    availability = await AvailabilityService(db_session, clock=fixed_clock()).resolve(
        practitioner["id"], MONDAY - timedelta(days=7)
    )

    assert availability.is_available is False
    assert availability.reason == UnavailableReason.DATE_IN_PAST


@pytest.mark.asyncio
async def test_date_override_replaces_weekly_entry(db_session):
    """Test a date override wins over the weekly entry of that weekday."""
    practitioner = await create_practitioner(
        db_session,
        [
            *MONDAY_AVAILABILITY,
            {"date": MONDAY.isoformat(), "windows": [{"start": "13:00", "end": "14:00"}]},
            {"date": (MONDAY + timedelta(days=7)).isoformat(), "isAvailable": False},
        ],
    )
    service = AvailabilityService(db_session, clock=fixed_clock())

    overridden = await service.resolve(practitioner["id"], MONDAY)
    day_off = await service.resolve(practitioner["id"], MONDAY + timedelta(days=7))
    regular = await service.resolve(practitioner["id"], MONDAY + timedelta(days=14))

    assert [s.label() for s in overridden.slots] == ["13:00-13:30", "13:30-14:00"]
    assert day_off.reason == UnavailableReason.NOT_WORKING
    assert [s.start for s in regular.slots][0] == time(9, 0)


@pytest.mark.asyncio
async def test_switched_off_window_is_skipped(db_session):
    """Test windows marked unavailable produce no slots."""
    practitioner = await create_practitioner(
        db_session,
        [
            {
                "day": "monday",
                "windows": [
                    {"start": "09:00", "end": "10:00"},
                    {"start": "10:00", "end": "11:00", "is_available": False},
                    {"start": "14:00", "end": "15:00"},
                ],
            }
        ],
    )

    availability = await AvailabilityService(db_session, clock=fixed_clock()).resolve(
        practitioner["id"], MONDAY
    )

    assert [s.label() for s in availability.slots] == [
        "09:00-09:30",
        "09:30-10:00",
        "14:00-14:30",
        "14:30-15:00",
    ]
    assert availability.working_window == TimeSlot(start=time(9, 0), end=time(15, 0))


@pytest.mark.asyncio
async def test_overlapping_windows_are_rejected(db_session):
    """Test a schedule with overlapping windows cannot be saved."""
    with pytest.raises(ValidationException, match="Overlapping"):
        await create_practitioner(
            db_session,
            [
                {
                    "day": "monday",
                    "windows": [{"start": "09:00", "end": "10:00"}, {"start": "09:15", "end": "10:15"}],
                }
            ],
        )


@pytest.mark.asyncio
async def test_stored_overlapping_windows_yield_disjoint_slots(db_session, practitioner):
    """Test slots never overlap even when stored windows do."""
    overlapping = WeeklyEntry(
        day=Weekday.MONDAY,
        windows=[
            AvailabilityWindow(start=time(9, 15), end=time(10, 15)),
            AvailabilityWindow(start=time(9, 0), end=time(10, 0)),
        ],
    )
    await PractitionerRepository(db_session).replace_entries(practitioner["id"], [overlapping])
    await db_session.commit()

    availability = await AvailabilityService(db_session, clock=fixed_clock()).resolve(
        practitioner["id"], MONDAY
    )

    assert [s.label() for s in availability.slots] == ["09:00-09:30", "09:30-10:00"]
    for previous, current in pairwise(availability.slots):
        assert previous.end <= current.start


@pytest.mark.asyncio
async def test_same_day_buffer(db_session, practitioner):
    """Test same-day slots starting within the buffer are hidden."""
    clock = fixed_clock(datetime(2030, 1, 7, 9, 10, tzinfo=UTC))
    service = AvailabilityService(db_session, clock=clock, buffer_minutes=30)

    availability = await service.resolve(practitioner["id"], MONDAY)

    assert [s.start for s in availability.slots] == [time(10, 0), time(10, 30)]


@pytest.mark.asyncio
async def test_same_day_after_last_slot(db_session, practitioner):
    """Test a working day whose slots have all started is fully booked."""
    clock = fixed_clock(datetime(2030, 1, 7, 10, 45, tzinfo=UTC))
    service = AvailabilityService(db_session, clock=clock, buffer_minutes=30)

    availability = await service.resolve(practitioner["id"], MONDAY)

    assert availability.reason == UnavailableReason.FULLY_BOOKED


@pytest.mark.asyncio
async def test_today_is_taken_from_practitioner_timezone(db_session):
    """Test the same instant is a different calendar day in another timezone."""
    sunday = FIXED_NOW.date()
    availability = [
        {"day": "sunday", "windows": [{"start": "13:00", "end": "15:00"}]},
        *MONDAY_AVAILABILITY,
    ]
    in_utc = await create_practitioner(db_session, availability, timezone="UTC")
    in_auckland = await create_practitioner(db_session, availability, timezone="Pacific/Auckland")
    service = AvailabilityService(db_session, clock=fixed_clock(), buffer_minutes=30)

    # 12:00 UTC on Sunday is already 01:00 on Monday in Auckland
    utc_sunday = await service.resolve(in_utc["id"], sunday)
    auckland_sunday = await service.resolve(in_auckland["id"], sunday)
    auckland_monday = await service.resolve(in_auckland["id"], MONDAY)

    assert [s.start for s in utc_sunday.slots] == [time(13, 0), time(13, 30), time(14, 0), time(14, 30)]
    assert auckland_sunday.reason == UnavailableReason.DATE_IN_PAST
    assert len(auckland_monday.slots) == 4


@pytest.mark.asyncio
async def test_resolve_unknown_practitioner(db_session):
    """Test resolving for a missing practitioner fails."""
    with pytest.raises(NotFoundException):
        await AvailabilityService(db_session, clock=fixed_clock()).resolve(uuid4(), MONDAY)


@pytest.mark.asyncio
async def test_resolve_range_defaults_to_next_week(db_session, practitioner):
    """Test the default range starts today and spans seven days."""
    days = await AvailabilityService(db_session, clock=fixed_clock()).resolve_range(practitioner["id"])

    assert [day.date for day in days] == [FIXED_NOW.date() + timedelta(days=i) for i in range(7)]
    assert [day.is_available for day in days] == [False, True, False, False, False, False, False]


@pytest.mark.asyncio
async def test_resolve_range_validation(db_session, practitioner):
    """Test inverted and oversized ranges are rejected."""
    service = AvailabilityService(db_session, clock=fixed_clock(), max_range_days=31)

    with pytest.raises(ValidationException):
        await service.resolve_range(practitioner["id"], MONDAY, MONDAY - timedelta(days=1))
    with pytest.raises(ValidationException):
        await service.resolve_range(practitioner["id"], MONDAY, MONDAY + timedelta(days=31))

    days = await service.resolve_range(practitioner["id"], MONDAY, MONDAY + timedelta(days=30))
    assert len(days) == 31


@pytest.mark.asyncio
async def test_resolve_cached_stores_snapshot(db_session, practitioner, cache: CacheManager):
    """Test a cache miss resolves and stores the snapshot with a TTL."""
    service = AvailabilityService(db_session, clock=fixed_clock(), cache=cache, cache_ttl=30)

    availability = await service.resolve_cached(practitioner["id"], MONDAY)

    key = AvailabilityService.cache_key(practitioner["id"], MONDAY)
    cache.redis.get.assert_called_once_with(key)
    cache.redis.setex.assert_called_once()
    stored_key, ttl, payload = cache.redis.setex.call_args.args
    assert stored_key == key
    assert ttl == 30
    assert len(json.loads(payload)["slots"]) == len(availability.slots) == 4


@pytest.mark.asyncio
async def test_resolve_cached_hit_skips_database(db_session, practitioner, cache: CacheManager):
    """Test a cache hit is returned as is."""
    snapshot = {
        "practitioner_id": str(practitioner["id"]),
        "date": MONDAY.isoformat(),
        "is_available": True,
        "working_window": {"start": "09:00", "end": "11:00"},
        "slots": [{"start": "10:30", "end": "11:00"}],
        "reason": None,
        "consultation_duration_minutes": 30,
    }
    cache.redis.get.return_value = json.dumps(snapshot)
    service = AvailabilityService(db_session, clock=fixed_clock(), cache=cache, cache_ttl=30)

    availability = await service.resolve_cached(practitioner["id"], MONDAY)

    assert [s.label() for s in availability.slots] == ["10:30-11:00"]
    cache.redis.setex.assert_not_called()


def test_invalidate_deletes_day_key(cache: CacheManager):
    """Test invalidation drops exactly one practitioner day."""
    practitioner_id = uuid4()

    AvailabilityService.invalidate(cache, practitioner_id, date(2030, 1, 7))

    cache.redis.delete.assert_called_once_with(f"availability:{practitioner_id}:2030-01-07")
