"""Create practitioners and practitioner_availability tables.

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

from typing import Sequence, Union

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade database schema."""
    op.execute('CREATE EXTENSION IF NOT EXISTS "pgcrypto"')

    op.create_table(
        "practitioners",
        sa.Column(
            "id", postgresql.UUID(), server_default=sa.text("gen_random_uuid()"), nullable=False
        ),
        sa.Column("full_name", sa.Text(), nullable=False),
        sa.Column("specialization", sa.VARCHAR(length=200), nullable=True),
        sa.Column("consultation_fee", sa.Integer(), nullable=False),
        sa.Column(
            "consultation_duration_minutes",
            sa.Integer(),
            server_default=sa.text("30"),
            nullable=False,
        ),
        sa.Column("timezone", sa.VARCHAR(length=64), server_default="UTC", nullable=False),
        sa.Column("consultation_modes", postgresql.JSON(), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.Column("rating_average", sa.Float(), server_default=sa.text("0"), nullable=False),
        sa.Column("rating_count", sa.Integer(), server_default=sa.text("0"), nullable=False),
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
        sa.CheckConstraint("consultation_fee >= 0", name="practitioners_fee_check"),
        sa.CheckConstraint(
            "consultation_duration_minutes > 0", name="practitioners_duration_check"
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_practitioners_specialization", "practitioners", ["specialization"])

    op.create_table(
        "practitioner_availability",
        sa.Column(
            "id", postgresql.UUID(), server_default=sa.text("gen_random_uuid()"), nullable=False
        ),
        sa.Column("practitioner_id", postgresql.UUID(), nullable=False),
        sa.Column("day_of_week", sa.VARCHAR(length=9), nullable=True),
        sa.Column("specific_date", sa.Date(), nullable=True),
        sa.Column("is_available", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.Column("windows", postgresql.JSON(), nullable=False),
        sa.Column(
            "created_at",
            postgresql.TIMESTAMP(timezone=True),
            server_default=sa.text("NOW()"),
            nullable=False,
        ),
        sa.CheckConstraint(
            "(day_of_week IS NULL AND specific_date IS NOT NULL) "
            "OR (day_of_week IS NOT NULL AND specific_date IS NULL)",
            name="practitioner_availability_kind_check",
        ),
        sa.ForeignKeyConstraint(["practitioner_id"], ["practitioners.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("practitioner_id", "day_of_week", name="uq_availability_weekday"),
        sa.UniqueConstraint("practitioner_id", "specific_date", name="uq_availability_date"),
    )
    op.create_index(
        "ix_practitioner_availability_practitioner_id",
        "practitioner_availability",
        ["practitioner_id"],
    )


def downgrade() -> None:
    """Downgrade database schema."""
    op.drop_index(
        "ix_practitioner_availability_practitioner_id",
        table_name="practitioner_availability",
    )
    op.drop_table("practitioner_availability")
    op.drop_index("ix_practitioners_specialization", table_name="practitioners")
    op.drop_table("practitioners")
