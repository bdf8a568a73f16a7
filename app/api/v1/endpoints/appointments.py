"""Appointment endpoints."""

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Query, status

from app.dependencies import AppointmentServiceDep, CurrentActor, RescheduleServiceDep
from app.schemas.appointments import (
    AppointmentFilters,
    AppointmentListResponse,
    AppointmentRequest,
    AppointmentResponse,
    AppointmentStatus,
    CancelRequest,
    FeedbackCreate,
    JoinableResponse,
    RescheduleRequest,
)

router = APIRouter()


@router.post(
    "/",
    response_model=AppointmentResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Appointments"],
    summary="Request an appointment",
)
async def request_appointment(
    data: AppointmentRequest,
    actor: CurrentActor,
    service: AppointmentServiceDep,
) -> AppointmentResponse:
    """
    Book a pending appointment in one of the practitioner's free slots.

    Args:
        data: Practitioner, date and slot
        actor: Authenticated patient
        service: Appointment service

    Returns:
        Created appointment awaiting its advance payment
    """
    return await service.request_appointment(actor, data)


@router.get(
    "/",
    response_model=AppointmentListResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="List appointments",
)
async def list_appointments(
    actor: CurrentActor,
    service: AppointmentServiceDep,
    status_filter: AppointmentStatus | None = Query(None, alias="status"),
    practitioner_id: UUID | None = Query(None),
    from_date: date | None = Query(None),
    to_date: date | None = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
) -> AppointmentListResponse:
    """
    List appointments visible to the authenticated user.

    Args:
        actor: Authenticated user
        service: Appointment service
        status_filter: Filter by status
        practitioner_id: Filter by practitioner ID
        from_date: Earliest appointment date
        to_date: Latest appointment date
        page: Page number
        page_size: Items per page

    Returns:
        Paginated list of appointments
    """
    filters = AppointmentFilters(
        status=status_filter,
        practitioner_id=practitioner_id,
        from_date=from_date,
        to_date=to_date,
        page=page,
        page_size=page_size,
    )
    return await service.list_appointments(actor, filters)


@router.get(
    "/{appointment_id}",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Get appointment by ID",
)
async def get_appointment(
    appointment_id: UUID,
    actor: CurrentActor,
    service: AppointmentServiceDep,
) -> AppointmentResponse:
    """Get a specific appointment by ID."""
    return await service.get_appointment(appointment_id, actor)


@router.post(
    "/{appointment_id}/confirm",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Confirm appointment",
)
async def confirm_appointment(
    appointment_id: UUID,
    actor: CurrentActor,
    service: AppointmentServiceDep,
) -> AppointmentResponse:
    """
    Confirm a pending appointment whose advance has been paid.

    Only the appointment's practitioner or an admin may confirm.
    """
    return await service.confirm(appointment_id, actor)


@router.post(
    "/{appointment_id}/complete",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Complete appointment",
)
async def complete_appointment(
    appointment_id: UUID,
    actor: CurrentActor,
    service: AppointmentServiceDep,
) -> AppointmentResponse:
    """Mark a confirmed appointment as completed."""
    return await service.complete(appointment_id, actor)


@router.post(
    "/{appointment_id}/no-show",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Mark appointment as no-show",
)
async def mark_no_show(
    appointment_id: UUID,
    actor: CurrentActor,
    service: AppointmentServiceDep,
) -> AppointmentResponse:
    """Mark a confirmed appointment as missed by the patient."""
    return await service.mark_no_show(appointment_id, actor)


@router.post(
    "/{appointment_id}/cancel",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Cancel appointment",
)
async def cancel_appointment(
    appointment_id: UUID,
    actor: CurrentActor,
    service: AppointmentServiceDep,
    data: CancelRequest | None = None,
) -> AppointmentResponse:
    """
    Cancel a pending or confirmed appointment.

    Patients must cancel ahead of the configured lead time.

    Args:
        appointment_id: Appointment ID
        actor: Authenticated user
        service: Appointment service
        data: Optional cancellation reason

    Returns:
        Cancelled appointment
    """
    reason = data.reason if data else None
    return await service.cancel(appointment_id, actor, reason)


@router.post(
    "/{appointment_id}/reschedule",
    response_model=AppointmentResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Appointments"],
    summary="Reschedule appointment",
)
async def reschedule_appointment(
    appointment_id: UUID,
    data: RescheduleRequest,
    actor: CurrentActor,
    service: RescheduleServiceDep,
) -> AppointmentResponse:
    """
    Move an appointment to a new slot.

    The original appointment is cancelled and a new pending one is returned.
    """
    return await service.reschedule(appointment_id, actor, data)


@router.post(
    "/{appointment_id}/feedback",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Rate a completed appointment",
)
async def add_feedback(
    appointment_id: UUID,
    data: FeedbackCreate,
    actor: CurrentActor,
    service: AppointmentServiceDep,
) -> AppointmentResponse:
    """Submit the patient's rating and comment for a completed appointment."""
    return await service.add_feedback(appointment_id, actor, data)


@router.get(
    "/{appointment_id}/joinable",
    response_model=JoinableResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Check if the video session can start",
)
async def is_joinable(
    appointment_id: UUID,
    actor: CurrentActor,
    service: AppointmentServiceDep,
) -> JoinableResponse:
    """Whether the appointment is confirmed and fully paid."""
    joinable = await service.is_joinable(appointment_id, actor)
    return JoinableResponse(appointment_id=appointment_id, joinable=joinable)
