"""Create appointments table with active-slot uniqueness.

Revision ID: 002
Revises: 001
Create Date: 2026-10-19 00:10:00.000000

"""

from typing import Sequence, Union

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ACTIVE_STATUS_CLAUSE = "status IN ('pending', 'confirmed')"


def upgrade() -> None:
    """Upgrade database schema."""
    op.create_table(
        "appointments",
        sa.Column(
            "id", postgresql.UUID(), server_default=sa.text("gen_random_uuid()"), nullable=False
        ),
        sa.Column("patient_id", postgresql.UUID(), nullable=False),
        sa.Column("practitioner_id", postgresql.UUID(), nullable=False),
        sa.Column("appointment_date", sa.Date(), nullable=False),
        sa.Column("slot_start", sa.Time(), nullable=False),
        sa.Column("slot_end", sa.Time(), nullable=False),
        sa.Column("status", sa.VARCHAR(length=20), server_default="pending", nullable=False),
        sa.Column(
            "consultation_type", sa.VARCHAR(length=20), server_default="video", nullable=False
        ),
        sa.Column("symptoms", sa.Text(), nullable=True),
        sa.Column("urgency", sa.VARCHAR(length=20), server_default="medium", nullable=False),
        sa.Column("advance_amount", sa.Integer(), nullable=False),
        sa.Column("remaining_amount", sa.Integer(), nullable=False),
        sa.Column("total_amount", sa.Integer(), nullable=False),
        sa.Column("advance_paid", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("final_paid", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("payment_order_ref", sa.VARCHAR(length=100), nullable=True),
        sa.Column("payment_order_type", sa.VARCHAR(length=20), nullable=True),
        sa.Column("advance_payment_ref", sa.VARCHAR(length=100), nullable=True),
        sa.Column("final_payment_ref", sa.VARCHAR(length=100), nullable=True),
        sa.Column("cancel_reason", sa.Text(), nullable=True),
        sa.Column("cancelled_by", postgresql.UUID(), nullable=True),
        sa.Column("cancelled_at", postgresql.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("rescheduled_from_id", postgresql.UUID(), nullable=True),
        sa.Column("feedback_rating", sa.Integer(), nullable=True),
        sa.Column("feedback_comment", sa.Text(), nullable=True),
        sa.Column("feedback_submitted_at", postgresql.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), server_default=sa.text("1"), nullable=False),
        sa.Column(
            "created_at",
            postgresql.TIMESTAMP(timezone=True),
            server_default=sa.text("NOW()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            postgresql.TIMESTAMP(timezone=True),
            server_default=sa.text("NOW()"),
            nullable=False,
        ),
        sa.CheckConstraint(
            "status IN ('pending', 'confirmed', 'completed', 'cancelled', 'no_show')",
            name="appointments_status_check",
        ),
        sa.CheckConstraint(
            "final_paid OR advance_amount + remaining_amount = total_amount",
            name="appointments_amount_split_check",
        ),
        sa.CheckConstraint(
            "advance_paid OR NOT final_paid",
            name="appointments_final_after_advance_check",
        ),
        sa.CheckConstraint(
            "status <> 'confirmed' OR advance_paid",
            name="appointments_confirmed_paid_check",
        ),
        sa.CheckConstraint("slot_start < slot_end", name="appointments_slot_order_check"),
        sa.CheckConstraint(
            "feedback_rating IS NULL OR feedback_rating BETWEEN 1 AND 5",
            name="appointments_feedback_rating_check",
        ),
        sa.ForeignKeyConstraint(
            ["rescheduled_from_id"], ["appointments.id"], ondelete="SET NULL"
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("payment_order_ref"),
    )

    op.create_index("ix_appointments_patient_id", "appointments", ["patient_id"])
    op.create_index("ix_appointments_practitioner_id", "appointments", ["practitioner_id"])
    op.create_index("idx_appointments_status", "appointments", ["status"])

    # No double booking among active appointments
    op.create_index(
        "uq_appointments_practitioner_active_slot",
        "appointments",
        ["practitioner_id", "appointment_date", "slot_start"],
        unique=True,
        postgresql_where=sa.text(ACTIVE_STATUS_CLAUSE),
    )
    op.create_index(
        "uq_appointments_patient_active_slot",
        "appointments",
        ["patient_id", "appointment_date", "slot_start"],
        unique=True,
        postgresql_where=sa.text(ACTIVE_STATUS_CLAUSE),
    )


def downgrade() -> None:
    """Downgrade database schema."""
    op.drop_index("uq_appointments_patient_active_slot", table_name="appointments")
    op.drop_index("uq_appointments_practitioner_active_slot", table_name="appointments")
    op.drop_index("idx_appointments_status", table_name="appointments")
    op.drop_index("ix_appointments_practitioner_id", table_name="appointments")
    op.drop_index("ix_appointments_patient_id", table_name="appointments")
    op.drop_table("appointments")
