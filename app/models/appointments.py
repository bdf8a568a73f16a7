"""Appointments table model using SQLAlchemy Core."""

from uuid import uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    Time,
    Uuid,
    false,
    func,
    text,
)

# Metadata for all tables
metadata = MetaData()

ACTIVE_STATUS_CLAUSE = "status IN ('pending', 'confirmed')"

PRACTITIONER_SLOT_INDEX = "uq_appointments_practitioner_active_slot"
PATIENT_SLOT_INDEX = "uq_appointments_patient_active_slot"

# Appointments table
appointments = Table(
    "appointments",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    # Ownership / references
    Column("patient_id", Uuid, nullable=False, index=True),
    Column("practitioner_id", Uuid, nullable=False, index=True),
    # Calendar date in the practitioner's reference timezone
    Column("appointment_date", Date, nullable=False),
    Column("slot_start", Time, nullable=False),
    Column("slot_end", Time, nullable=False),
    # Status management
    Column("status", String(20), nullable=False, server_default="pending"),
    Column("consultation_type", String(20), nullable=False, server_default="video"),
    Column("symptoms", Text, nullable=True),
    Column("urgency", String(20), nullable=False, server_default="medium"),
    # Payment state, frozen at booking time
    Column("advance_amount", Integer, nullable=False),
    Column("remaining_amount", Integer, nullable=False),
    Column("total_amount", Integer, nullable=False),
    Column("advance_paid", Boolean, nullable=False, server_default=false()),
    Column("final_paid", Boolean, nullable=False, server_default=false()),
    Column("payment_order_ref", String(100), nullable=True, unique=True),
    Column("payment_order_type", String(20), nullable=True),
    Column("advance_payment_ref", String(100), nullable=True),
    Column("final_payment_ref", String(100), nullable=True),
    # Cancellation
    Column("cancel_reason", Text, nullable=True),
    Column("cancelled_by", Uuid, nullable=True),
    Column("cancelled_at", DateTime(timezone=True), nullable=True),
    # Audit link to the appointment this one replaced
    Column(
        "rescheduled_from_id",
        Uuid,
        ForeignKey("appointments.id", ondelete="SET NULL"),
        nullable=True,
    ),
    # Feedback
    Column("feedback_rating", Integer, nullable=True),
    Column("feedback_comment", Text, nullable=True),
    Column("feedback_submitted_at", DateTime(timezone=True), nullable=True),
    # Optimistic concurrency
    Column("version", Integer, nullable=False, server_default=text("1")),
    # Audit fields
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    # Constraints
    CheckConstraint(
        "status IN ('pending', 'confirmed', 'completed', 'cancelled', 'no_show')",
        name="appointments_status_check",
    ),
    CheckConstraint(
        "final_paid OR advance_amount + remaining_amount = total_amount",
        name="appointments_amount_split_check",
    ),
    CheckConstraint(
        "advance_paid OR NOT final_paid",
        name="appointments_final_after_advance_check",
    ),
    CheckConstraint(
        "status <> 'confirmed' OR advance_paid",
        name="appointments_confirmed_paid_check",
    ),
    CheckConstraint(
        "slot_start < slot_end",
        name="appointments_slot_order_check",
    ),
    CheckConstraint(
        "feedback_rating IS NULL OR feedback_rating BETWEEN 1 AND 5",
        name="appointments_feedback_rating_check",
    ),
    # No double booking among active appointments
    Index(
        PRACTITIONER_SLOT_INDEX,
        "practitioner_id",
        "appointment_date",
        "slot_start",
        unique=True,
        postgresql_where=text(ACTIVE_STATUS_CLAUSE),
        sqlite_where=text(ACTIVE_STATUS_CLAUSE),
    ),
    Index(
        PATIENT_SLOT_INDEX,
        "patient_id",
        "appointment_date",
        "slot_start",
        unique=True,
        postgresql_where=text(ACTIVE_STATUS_CLAUSE),
        sqlite_where=text(ACTIVE_STATUS_CLAUSE),
    ),
    Index("idx_appointments_status", "status"),
)
