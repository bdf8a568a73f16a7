"""Tests for double-booking protection."""

import asyncio
from datetime import time
from uuid import uuid4

import pytest

from app.core.exceptions import SlotConflictException
from app.schemas.appointments import Actor, ActorRole, AppointmentStatus
from app.schemas.scheduling import PractitionerCreate
from app.services.conflict_guard import ConflictGuard
from app.services.practitioner_service import PractitionerService
from conftest import MONDAY, MONDAY_AVAILABILITY, booking, fixed_clock


def reservation(patient_id, practitioner_id, start: time, end: time) -> dict:
    """Column values of a pending appointment."""
    return {
        "patient_id": patient_id,
        "practitioner_id": practitioner_id,
        "appointment_date": MONDAY,
        "slot_start": start,
        "slot_end": end,
        "status": AppointmentStatus.PENDING.value,
        "advance_amount": 240,
        "remaining_amount": 560,
        "total_amount": 800,
    }


@pytest.mark.asyncio
async def test_concurrent_requests_for_one_slot(session_factory, make_service, practitioner):
    """Test two racing bookings of the same slot produce exactly one appointment."""

    async def attempt():
        async with session_factory() as session:
            service = make_service(session)
            patient = Actor(id=uuid4(), role=ActorRole.PATIENT)
            try:
                return await service.request_appointment(patient, booking(practitioner["id"], time(9, 30)))
            except SlotConflictException as e:
                return e

    results = await asyncio.gather(attempt(), attempt())

    booked = [result for result in results if not isinstance(result, SlotConflictException)]
    conflicts = [result for result in results if isinstance(result, SlotConflictException)]
    assert len(booked) == 1
    assert len(conflicts) == 1
    assert booked[0].status == AppointmentStatus.PENDING


@pytest.mark.asyncio
async def test_reserve_rejects_taken_slot_despite_stale_read(db_session, practitioner, patient, other_patient):
    """Test the insert itself rejects a slot another booking already holds."""
    guard = ConflictGuard(db_session)
    await guard.reserve(reservation(patient.id, practitioner["id"], time(9, 30), time(10, 0)))

    # A caller whose availability snapshot predates the first booking
    with pytest.raises(SlotConflictException) as exc_info:
        await guard.reserve(reservation(other_patient.id, practitioner["id"], time(9, 30), time(10, 0)))

    assert exc_info.value.scope == "practitioner"
    assert exc_info.value.status_code == 409


@pytest.mark.asyncio
async def test_patient_cannot_hold_two_appointments_at_once(service, db_session, practitioner, patient):
    """Test a patient's time is exclusive across practitioners."""
    admin = Actor(id=uuid4(), role=ActorRole.ADMIN)
    second = await PractitionerService(db_session, clock=fixed_clock()).create_practitioner(
        admin,
        PractitionerCreate(
            full_name="Dr. Second",
            consultation_fee=600,
            availability=MONDAY_AVAILABILITY,
        ),
    )
    await service.request_appointment(patient, booking(practitioner["id"], time(9, 0)))

    with pytest.raises(SlotConflictException) as exc_info:
        await service.request_appointment(patient, booking(second.id, time(9, 0)))

    assert exc_info.value.scope == "patient"


@pytest.mark.asyncio
async def test_cancelled_slot_can_be_rebooked(service, practitioner, patient, other_patient):
    """Test only active appointments hold a slot."""
    first = await service.request_appointment(patient, booking(practitioner["id"], time(9, 0)))
    await service.cancel(first.id, patient)

    second = await service.request_appointment(other_patient, booking(practitioner["id"], time(9, 0)))

    assert second.status == AppointmentStatus.PENDING
    assert second.id != first.id


@pytest.mark.asyncio
async def test_failed_reservation_leaves_session_usable(service, practitioner, patient, other_patient):
    """Test a conflict rolls back cleanly and later bookings proceed."""
    await service.request_appointment(patient, booking(practitioner["id"], time(9, 0)))
    guard = ConflictGuard(service.db)

    with pytest.raises(SlotConflictException):
        await guard.reserve(reservation(other_patient.id, practitioner["id"], time(9, 0), time(9, 30)))

    appointment = await service.request_appointment(other_patient, booking(practitioner["id"], time(9, 30)))
    assert appointment.slot.start == time(9, 30)
