"""Slot retirement and per-provider overlap guard.

Revision ID: 002
Revises: 001
Create Date: 2025-01-02 00:00:00.000000

Adds:
- availability_slots.status (active/deleted) and deleted_at, so slots that
  cancelled appointments still reference can be retired instead of removed
- on PostgreSQL, an exclusion constraint rejecting two live slots of one
  provider whose [start_time, end_time) ranges intersect
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Add slot status columns and the overlap exclusion constraint."""
    op.add_column(
        "availability_slots",
        sa.Column(
            "status",
            sa.String(20),
            nullable=False,
            server_default="active",
        ),
    )
    op.add_column(
        "availability_slots",
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
    )

    if op.get_bind().dialect.name == "postgresql":
        # btree_gist provides the = operator class for the integer columns
        op.execute("CREATE EXTENSION IF NOT EXISTS btree_gist")
        op.execute(
            """
            ALTER TABLE availability_slots
            ADD CONSTRAINT ex_availability_slots_no_overlap
            EXCLUDE USING gist (
                provider_id WITH =,
                provider_kind WITH =,
                tstzrange(start_time, end_time, '[)') WITH &&
            )
            WHERE (status <> 'deleted')
            """
        )


def downgrade() -> None:
    """Drop the overlap guard and slot status columns."""
    if op.get_bind().dialect.name == "postgresql":
        op.execute(
            "ALTER TABLE availability_slots "
            "DROP CONSTRAINT IF EXISTS ex_availability_slots_no_overlap"
        )
    op.drop_column("availability_slots", "deleted_at")
    op.drop_column("availability_slots", "status")
