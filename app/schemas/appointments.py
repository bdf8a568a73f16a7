"""Appointment schemas for request/response validation."""

from collections.abc import Mapping
from datetime import date, datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from app.schemas.scheduling import TimeSlot


class AppointmentStatus(str, Enum):
    """Appointment status enumeration."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"

    @property
    def is_terminal(self) -> bool:
        """Terminal statuses have no outgoing transitions."""
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED, AppointmentStatus.NO_SHOW}
)
ACTIVE_STATUSES = frozenset({AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED})


class ConsultationType(str, Enum):
    """Consultation type enumeration."""

    VIDEO = "video"
    IN_PERSON = "in_person"


class Urgency(str, Enum):
    """Urgency level enumeration."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    EMERGENCY = "emergency"


class ActorRole(str, Enum):
    """Role of the caller performing an operation."""

    PATIENT = "patient"
    PRACTITIONER = "practitioner"
    ADMIN = "admin"


class Actor(BaseModel):
    """Authenticated caller."""

    id: UUID
    role: ActorRole

    model_config = {"frozen": True}

    @property
    def is_admin(self) -> bool:
        return self.role == ActorRole.ADMIN


class PaymentType(str, Enum):
    """Which part of the fee a gateway order collects."""

    ADVANCE = "advance"
    REMAINING = "remaining"
    FULL = "full"


class PaymentState(BaseModel):
    """Two-phase payment split of an appointment."""

    advance_amount: int
    remaining_amount: int
    total_amount: int
    advance_paid: bool = False
    final_paid: bool = False
    advance_payment_ref: str | None = None
    final_payment_ref: str | None = None


class AppointmentRequest(BaseModel):
    """Schema for requesting a new appointment."""

    practitioner_id: UUID
    appointment_date: date
    slot: TimeSlot
    consultation_type: ConsultationType = ConsultationType.VIDEO
    symptoms: str | None = Field(None, max_length=2000)
    urgency: Urgency = Urgency.MEDIUM


class CancelRequest(BaseModel):
    """Schema for cancelling an appointment."""

    reason: str | None = Field(None, max_length=500)


class RescheduleRequest(BaseModel):
    """Schema for moving an appointment to a new slot."""

    new_date: date
    new_slot: TimeSlot


class FeedbackCreate(BaseModel):
    """Schema for patient feedback on a completed appointment."""

    rating: int = Field(..., ge=1, le=5)
    comment: str | None = Field(None, max_length=1000)


class AppointmentResponse(BaseModel):
    """Schema for appointment response."""

    id: UUID
    patient_id: UUID
    practitioner_id: UUID
    appointment_date: date
    slot: TimeSlot
    status: AppointmentStatus
    consultation_type: ConsultationType
    symptoms: str | None = None
    urgency: Urgency
    payment: PaymentState
    cancel_reason: str | None = None
    cancelled_by: UUID | None = None
    cancelled_at: datetime | None = None
    rescheduled_from_id: UUID | None = None
    feedback_rating: int | None = None
    feedback_comment: str | None = None
    version: int
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "AppointmentResponse":
        """Build a response from an ``appointments`` row mapping."""
        data = dict(row)
        data["slot"] = TimeSlot(start=data.pop("slot_start"), end=data.pop("slot_end"))
        data["payment"] = PaymentState(
            advance_amount=data["advance_amount"],
            remaining_amount=data["remaining_amount"],
            total_amount=data["total_amount"],
            advance_paid=data["advance_paid"],
            final_paid=data["final_paid"],
            advance_payment_ref=data.get("advance_payment_ref"),
            final_payment_ref=data.get("final_payment_ref"),
        )
        return cls.model_validate(data)


class AppointmentListResponse(BaseModel):
    """Schema for paginated appointment list response."""

    total: int
    page: int
    page_size: int
    items: list[AppointmentResponse]


class AppointmentFilters(BaseModel):
    """Schema for appointment filtering."""

    status: AppointmentStatus | None = None
    practitioner_id: UUID | None = None
    from_date: date | None = None
    to_date: date | None = None
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1, le=100)


class JoinableResponse(BaseModel):
    """Whether a video session may start for an appointment."""

    appointment_id: UUID
    joinable: bool


class PaymentOrderCreate(BaseModel):
    """Schema for creating a gateway order."""

    appointment_id: UUID
    payment_type: PaymentType = PaymentType.ADVANCE


class PaymentOrderResponse(BaseModel):
    """Gateway order created for an appointment payment."""

    appointment_id: UUID
    order_ref: str
    payment_type: PaymentType
    amount: int
    currency: str


class PaymentVerification(BaseModel):
    """Gateway callback payload."""

    order_ref: str = Field(..., min_length=1, max_length=100)
    payment_ref: str = Field(..., min_length=1, max_length=100)
    signature: str = Field(..., min_length=1)
