"""Practitioner and availability tables using SQLAlchemy Core."""

from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    Uuid,
    func,
    text,
    true,
)

metadata = MetaData()

practitioners = Table(
    "practitioners",
    metadata,
    # Same id as the practitioner's account in the auth system
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column("full_name", Text, nullable=False),
    Column("specialization", String(200), index=True),
    # Practice information
    Column("consultation_fee", Integer, nullable=False),
    Column("consultation_duration_minutes", Integer, nullable=False, server_default=text("30")),
    Column("timezone", String(64), nullable=False, server_default="UTC"),
    Column("consultation_modes", JSON),
    Column("is_active", Boolean, nullable=False, server_default=true()),
    # Ratings
    Column("rating_average", Float, nullable=False, server_default=text("0")),
    Column("rating_count", Integer, nullable=False, server_default=text("0")),
    # Metadata
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    CheckConstraint("consultation_fee >= 0", name="practitioners_fee_check"),
    CheckConstraint(
        "consultation_duration_minutes > 0",
        name="practitioners_duration_check",
    ),
)

# Each row is either a weekly entry (day_of_week) or a date override (specific_date)
practitioner_availability = Table(
    "practitioner_availability",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column(
        "practitioner_id",
        Uuid,
        ForeignKey("practitioners.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    ),
    Column("day_of_week", String(9), nullable=True),
    Column("specific_date", Date, nullable=True),
    Column("is_available", Boolean, nullable=False, server_default=true()),
    # [{"start": "09:00", "end": "11:00", "is_available": true}, ...]
    Column("windows", JSON, nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    UniqueConstraint("practitioner_id", "day_of_week", name="uq_availability_weekday"),
    UniqueConstraint("practitioner_id", "specific_date", name="uq_availability_date"),
    CheckConstraint(
        "(day_of_week IS NULL AND specific_date IS NOT NULL) "
        "OR (day_of_week IS NOT NULL AND specific_date IS NULL)",
        name="practitioner_availability_kind_check",
    ),
)
