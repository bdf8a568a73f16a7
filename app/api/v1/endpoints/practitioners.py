"""Practitioner and availability endpoints."""

from datetime import date
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Body, Query, status

from app.dependencies import AvailabilityServiceDep, CurrentActor, PractitionerServiceDep
from app.schemas.scheduling import (
    AvailabilityRangeResponse,
    AvailabilityResponse,
    DayAvailability,
    PractitionerCreate,
    PractitionerResponse,
)

router = APIRouter()


@router.post(
    "/",
    response_model=PractitionerResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Practitioners"],
    summary="Create practitioner profile",
)
async def create_practitioner(
    data: PractitionerCreate,
    actor: CurrentActor,
    service: PractitionerServiceDep,
) -> PractitionerResponse:
    """
    Create a practitioner profile.

    Args:
        data: Profile data with optional initial availability
        actor: Authenticated practitioner or admin
        service: Practitioner service

    Returns:
        Created practitioner
    """
    return await service.create_practitioner(actor, data)


@router.get(
    "/{practitioner_id}",
    response_model=PractitionerResponse,
    status_code=status.HTTP_200_OK,
    tags=["Practitioners"],
    summary="Get practitioner by ID",
)
async def get_practitioner(
    practitioner_id: UUID,
    service: PractitionerServiceDep,
) -> PractitionerResponse:
    """Get a practitioner's public profile."""
    return await service.get_practitioner(practitioner_id)


@router.get(
    "/{practitioner_id}/availability/schedule",
    response_model=AvailabilityResponse,
    status_code=status.HTTP_200_OK,
    tags=["Practitioners"],
    summary="Get stored availability",
)
async def get_schedule(
    practitioner_id: UUID,
    service: PractitionerServiceDep,
) -> AvailabilityResponse:
    """Weekly entries and date overrides as stored."""
    return await service.get_availability(practitioner_id)


@router.put(
    "/{practitioner_id}/availability",
    response_model=AvailabilityResponse,
    status_code=status.HTTP_200_OK,
    tags=["Practitioners"],
    summary="Replace availability",
)
async def replace_availability(
    practitioner_id: UUID,
    actor: CurrentActor,
    service: PractitionerServiceDep,
    availability: Any = Body(...),
) -> AvailabilityResponse:
    """
    Replace a practitioner's weekly availability and date overrides.

    Args:
        practitioner_id: Practitioner ID
        actor: The practitioner or an admin
        service: Practitioner service
        availability: List of entries, or a mapping keyed by weekday or ISO date

    Returns:
        Stored availability
    """
    return await service.replace_availability(practitioner_id, actor, availability)


@router.get(
    "/{practitioner_id}/availability",
    response_model=DayAvailability | AvailabilityRangeResponse,
    status_code=status.HTTP_200_OK,
    tags=["Practitioners"],
    summary="Get bookable slots",
)
async def get_availability(
    practitioner_id: UUID,
    service: AvailabilityServiceDep,
    day: date | None = Query(None, alias="date"),
    start_date: date | None = Query(None),
    end_date: date | None = Query(None),
) -> DayAvailability | AvailabilityRangeResponse:
    """
    Get free slots for one date, or for each date of a range.

    Without ``date`` the range defaults to the next seven days.

    Args:
        practitioner_id: Practitioner ID
        service: Availability service
        day: Single date to resolve
        start_date: First date of the range
        end_date: Last date of the range

    Returns:
        Day availability, or one entry per date of the range
    """
    if day is not None:
        return await service.resolve_cached(practitioner_id, day)

    days = await service.resolve_range(practitioner_id, start_date, end_date)
    return AvailabilityRangeResponse(practitioner_id=practitioner_id, days=days)
