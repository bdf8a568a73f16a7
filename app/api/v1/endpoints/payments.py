"""Payment endpoints."""

from fastapi import APIRouter, status

from app.dependencies import CurrentActor, PaymentServiceDep
from app.schemas.appointments import (
    AppointmentResponse,
    PaymentOrderCreate,
    PaymentOrderResponse,
    PaymentVerification,
)

router = APIRouter()


@router.post(
    "/orders",
    response_model=PaymentOrderResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Payments"],
    summary="Create payment order",
)
async def create_order(
    data: PaymentOrderCreate,
    actor: CurrentActor,
    service: PaymentServiceDep,
) -> PaymentOrderResponse:
    """
    Create a gateway order for an appointment.

    Args:
        data: Appointment and which part of the fee to pay
        actor: Authenticated patient
        service: Payment service

    Returns:
        Gateway order to hand to the checkout
    """
    return await service.create_order(data.appointment_id, actor, data.payment_type)


@router.post(
    "/verify",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    tags=["Payments"],
    summary="Verify payment",
)
async def verify_payment(
    data: PaymentVerification,
    actor: CurrentActor,
    service: PaymentServiceDep,
) -> AppointmentResponse:
    """
    Apply a signed checkout result to its appointment.

    Submitting the same result twice leaves the appointment unchanged.
    """
    return await service.verify(data)
