"""Payment orders and verified gateway callbacks for appointments."""

from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import Clock, utc_now
from app.core.exceptions import (
    ExternalGatewayException,
    ForbiddenException,
    InvalidTransitionException,
    NotFoundException,
    PreconditionFailedException,
)
from app.core.payment_gateway import PaymentGatewayClient
from app.schemas.appointments import (
    Actor,
    AppointmentResponse,
    AppointmentStatus,
    PaymentOrderResponse,
    PaymentType,
    PaymentVerification,
)
from app.services.appointment_service import AppointmentService

logger = structlog.get_logger(__name__)

CLOSED_STATUSES = (
    AppointmentStatus.CANCELLED.value,
    AppointmentStatus.COMPLETED.value,
    AppointmentStatus.NO_SHOW.value,
)

RECEIPT_PREFIXES = {
    PaymentType.ADVANCE: "appt_adv",
    PaymentType.REMAINING: "appt_rem",
    PaymentType.FULL: "appt_full",
}


class PaymentService:
    """Service for collecting appointment payments through the gateway."""

    def __init__(
        self,
        db: AsyncSession,
        gateway: PaymentGatewayClient,
        lifecycle: AppointmentService | None = None,
        *,
        clock: Clock = utc_now,
    ):
        """Initialize service with database session, gateway and lifecycle."""
        self.db = db
        self.gateway = gateway
        self.clock = clock
        self.lifecycle = lifecycle or AppointmentService(db, clock=clock)

    async def create_order(
        self,
        appointment_id: UUID,
        actor: Actor,
        payment_type: PaymentType,
    ) -> PaymentOrderResponse:
        """
        Create a gateway order for part or all of an appointment's fee.

        The order reference and type are stored on the appointment so the
        callback is applied to the payment that was actually ordered.

        Args:
            appointment_id: Appointment ID
            actor: Paying patient
            payment_type: Advance, remaining balance or full fee

        Returns:
            Created order

        Raises:
            NotFoundException: If appointment not found
            ForbiddenException: If actor is not the appointment's patient
            InvalidTransitionException: If the appointment is closed or already paid
            PreconditionFailedException: If the remaining balance is not yet payable
            ExternalGatewayException: If the gateway call fails
        """
        appointment = await self.lifecycle.get_row(appointment_id)
        if actor.id != appointment["patient_id"]:
            raise ForbiddenException("Only the patient can pay for this appointment")

        status = appointment["status"]
        if status in CLOSED_STATUSES:
            raise InvalidTransitionException(
                f"Cannot pay for a {status} appointment",
                current_status=status,
            )
        if appointment["final_paid"]:
            raise InvalidTransitionException(
                "Payment already completed for this appointment",
                current_status=status,
            )

        if payment_type == PaymentType.ADVANCE:
            if appointment["advance_paid"]:
                raise InvalidTransitionException(
                    "Advance payment already completed",
                    current_status=status,
                )
            amount = appointment["advance_amount"]
        elif payment_type == PaymentType.REMAINING:
            if not appointment["advance_paid"]:
                raise PreconditionFailedException(
                    "Advance payment must be completed first",
                    current_status=status,
                )
            if status != AppointmentStatus.CONFIRMED.value:
                raise PreconditionFailedException(
                    "Practitioner must confirm the appointment before the remaining amount is paid",
                    current_status=status,
                )
            amount = appointment["remaining_amount"]
        else:
            if appointment["advance_paid"]:
                raise InvalidTransitionException(
                    "Advance already collected, pay the remaining balance instead",
                    current_status=status,
                )
            amount = appointment["total_amount"]

        order = await self.gateway.create_order(
            amount,
            receipt=f"{RECEIPT_PREFIXES[payment_type]}_{appointment_id.hex[-20:]}",
            notes={
                "appointment_id": str(appointment_id),
                "payment_type": payment_type.value,
            },
        )

        row = await self.lifecycle.appointments.conditional_update(
            appointment_id,
            appointment["version"],
            {
                "payment_order_ref": order["id"],
                "payment_order_type": payment_type.value,
                "updated_at": self.clock(),
            },
        )
        if row is None:
            await self.db.rollback()
            await self.lifecycle.raise_lost_race(appointment_id, None)
        await self.db.commit()

        logger.info(
            "payment_order_stored",
            appointment_id=str(appointment_id),
            order_ref=order["id"],
            payment_type=payment_type.value,
            amount=amount,
        )

        return PaymentOrderResponse(
            appointment_id=appointment_id,
            order_ref=order["id"],
            payment_type=payment_type,
            amount=amount,
            currency=order.get("currency", self.gateway.currency),
        )

    async def verify(self, callback: PaymentVerification) -> AppointmentResponse:
        """
        Apply a signed gateway callback to the appointment it belongs to.

        Replaying a callback is harmless; each payment flag is set once.

        Raises:
            ExternalGatewayException: If the signature does not match
            NotFoundException: If no appointment holds the order
        """
        if not self.gateway.verify_signature(
            callback.order_ref, callback.payment_ref, callback.signature
        ):
            logger.warning(
                "payment_signature_mismatch",
                order_ref=callback.order_ref,
                payment_ref=callback.payment_ref,
            )
            raise ExternalGatewayException("Invalid payment signature")

        appointment = await self.lifecycle.appointments.get_by_order_ref(callback.order_ref)
        if not appointment:
            raise NotFoundException("Payment order not found")

        payment_type = PaymentType(appointment["payment_order_type"])
        logger.info(
            "payment_verified",
            appointment_id=str(appointment["id"]),
            order_ref=callback.order_ref,
            payment_type=payment_type.value,
        )

        if payment_type == PaymentType.ADVANCE:
            return await self.lifecycle.pay_advance(appointment["id"], callback.payment_ref)
        if payment_type == PaymentType.REMAINING:
            return await self.lifecycle.pay_final(appointment["id"], callback.payment_ref)
        return await self.lifecycle.pay_in_full(appointment["id"], callback.payment_ref)
