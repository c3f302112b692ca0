"""Scheduling core schema.

Revision ID: 001
Revises:
Create Date: 2025-01-01 00:00:00.000000

Adds:
- availability_slots with a version column for optimistic checks
- appointments with a partial unique index on live slot bindings
- patient_balances and the append-only ledger_transactions log
- telemedicine_sessions bound 1:1 to appointments
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create scheduling, ledger and telemedicine tables."""

    # ========================================================================
    # AVAILABILITY SLOTS
    # ========================================================================

    op.create_table(
        "availability_slots",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("provider_id", sa.Integer(), nullable=False),
        # doctor, nurse or lab
        sa.Column("provider_kind", sa.String(20), nullable=False),
        # Null marks a telemedicine slot
        sa.Column("clinic_id", sa.Integer(), nullable=True),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "is_available",
            sa.Boolean(),
            nullable=False,
            server_default=sa.true(),
        ),
        sa.Column("version", sa.Integer(), nullable=False),
        # Timestamps
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        # Constraints
        sa.PrimaryKeyConstraint("id", name="pk_availability_slots"),
        sa.CheckConstraint(
            "end_time > start_time",
            name="ck_availability_slots_end_after_start",
        ),
    )
    op.create_index(
        "ix_availability_slots_provider_id",
        "availability_slots",
        ["provider_id"],
    )
    op.create_index(
        "ix_availability_slots_clinic_id",
        "availability_slots",
        ["clinic_id"],
    )
    op.create_index(
        "ix_availability_slots_provider_window",
        "availability_slots",
        ["provider_id", "provider_kind", "start_time"],
    )

    # ========================================================================
    # APPOINTMENTS
    # ========================================================================

    op.create_table(
        "appointments",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("patient_id", sa.Integer(), nullable=False),
        sa.Column("doctor_id", sa.Integer(), nullable=False),
        sa.Column("clinic_id", sa.Integer(), nullable=True),
        sa.Column("slot_id", sa.Integer(), nullable=False),
        # in-person or telemedicine
        sa.Column("type", sa.String(20), nullable=False),
        # booked, in-progress, completed, cancelled
        sa.Column(
            "status",
            sa.String(20),
            nullable=False,
            server_default="booked",
        ),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        # Billing
        sa.Column(
            "fee",
            sa.Numeric(10, 2),
            nullable=False,
            server_default="0",
        ),
        sa.Column("payment_method", sa.String(20), nullable=False),
        sa.Column("payment_status", sa.String(30), nullable=False),
        # Visit timestamps
        sa.Column("checked_in_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("checked_out_at", sa.DateTime(timezone=True), nullable=True),
        # Cancellation tracking
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_by", sa.Integer(), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        # Reschedule lineage
        sa.Column("rescheduled_from_id", sa.Integer(), nullable=True),
        sa.Column(
            "reschedule_count",
            sa.Integer(),
            nullable=False,
            server_default="0",
        ),
        # Timestamps
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        # Constraints
        sa.PrimaryKeyConstraint("id", name="pk_appointments"),
        sa.ForeignKeyConstraint(
            ["slot_id"],
            ["availability_slots.id"],
            name="fk_appointments_slot_id_availability_slots",
            ondelete="RESTRICT",
        ),
        sa.ForeignKeyConstraint(
            ["rescheduled_from_id"],
            ["appointments.id"],
            name="fk_appointments_rescheduled_from_id_appointments",
            ondelete="SET NULL",
        ),
        sa.CheckConstraint("fee >= 0", name="ck_appointments_fee_non_negative"),
    )
    op.create_index("ix_appointments_patient_id", "appointments", ["patient_id"])
    op.create_index("ix_appointments_doctor_id", "appointments", ["doctor_id"])
    op.create_index("ix_appointments_slot_id", "appointments", ["slot_id"])
    op.create_index("ix_appointments_status", "appointments", ["status"])

    # At most one live appointment per slot
    op.create_index(
        "uq_appointments_active_slot",
        "appointments",
        ["slot_id"],
        unique=True,
        postgresql_where=sa.text("status <> 'cancelled'"),
        sqlite_where=sa.text("status <> 'cancelled'"),
    )

    # ========================================================================
    # BALANCE LEDGER
    # ========================================================================

    op.create_table(
        "patient_balances",
        sa.Column("patient_id", sa.Integer(), autoincrement=False, nullable=False),
        sa.Column(
            "balance",
            sa.Numeric(10, 2),
            nullable=False,
            server_default="0",
        ),
        sa.Column("version", sa.Integer(), nullable=False),
        # Timestamps
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        # Constraints
        sa.PrimaryKeyConstraint("patient_id", name="pk_patient_balances"),
        sa.CheckConstraint(
            "balance >= 0",
            name="ck_patient_balances_balance_non_negative",
        ),
    )

    op.create_table(
        "ledger_transactions",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("patient_id", sa.Integer(), nullable=False),
        # deposit, debit, refund
        sa.Column("kind", sa.String(20), nullable=False),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("related_appointment_id", sa.Integer(), nullable=True),
        # completed, pending, reversed
        sa.Column(
            "status",
            sa.String(20),
            nullable=False,
            server_default="completed",
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        # Constraints
        sa.PrimaryKeyConstraint("id", name="pk_ledger_transactions"),
        sa.ForeignKeyConstraint(
            ["related_appointment_id"],
            ["appointments.id"],
            name="fk_ledger_transactions_related_appointment_id_appointments",
            ondelete="SET NULL",
        ),
        sa.CheckConstraint("amount > 0", name="ck_ledger_transactions_amount_positive"),
    )
    op.create_index(
        "ix_ledger_transactions_patient_id",
        "ledger_transactions",
        ["patient_id"],
    )
    op.create_index("ix_ledger_transactions_kind", "ledger_transactions", ["kind"])
    op.create_index(
        "ix_ledger_transactions_related_appointment_id",
        "ledger_transactions",
        ["related_appointment_id"],
    )
    op.create_index(
        "ix_ledger_transactions_created_at",
        "ledger_transactions",
        ["created_at"],
    )

    # ========================================================================
    # TELEMEDICINE SESSIONS
    # ========================================================================

    op.create_table(
        "telemedicine_sessions",
        sa.Column("appointment_id", sa.Integer(), autoincrement=False, nullable=False),
        # scheduled, in-progress, completed, cancelled
        sa.Column(
            "status",
            sa.String(20),
            nullable=False,
            server_default="scheduled",
        ),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ended_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("summary", sa.Text(), nullable=True),
        # Timestamps
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        # Constraints
        sa.PrimaryKeyConstraint("appointment_id", name="pk_telemedicine_sessions"),
        sa.ForeignKeyConstraint(
            ["appointment_id"],
            ["appointments.id"],
            name="fk_telemedicine_sessions_appointment_id_appointments",
            ondelete="CASCADE",
        ),
    )


def downgrade() -> None:
    """Drop scheduling, ledger and telemedicine tables."""
    op.drop_table("telemedicine_sessions")

    op.drop_index("ix_ledger_transactions_created_at", table_name="ledger_transactions")
    op.drop_index(
        "ix_ledger_transactions_related_appointment_id",
        table_name="ledger_transactions",
    )
    op.drop_index("ix_ledger_transactions_kind", table_name="ledger_transactions")
    op.drop_index("ix_ledger_transactions_patient_id", table_name="ledger_transactions")
    op.drop_table("ledger_transactions")
    op.drop_table("patient_balances")

    op.drop_index("uq_appointments_active_slot", table_name="appointments")
    op.drop_index("ix_appointments_status", table_name="appointments")
    op.drop_index("ix_appointments_slot_id", table_name="appointments")
    op.drop_index("ix_appointments_doctor_id", table_name="appointments")
    op.drop_index("ix_appointments_patient_id", table_name="appointments")
    op.drop_table("appointments")

    op.drop_index("ix_availability_slots_provider_window", table_name="availability_slots")
    op.drop_index("ix_availability_slots_clinic_id", table_name="availability_slots")
    op.drop_index("ix_availability_slots_provider_id", table_name="availability_slots")
    op.drop_table("availability_slots")
