"""Declarative base shared by the scheduling, ledger and telemedicine tables."""

from datetime import datetime

from sqlalchemy import DateTime, Integer, MetaData
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, registry

from clinic_booking.utils.time import utc_now

# Constraint names must stay in step with the Alembic revisions
convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

_mapper_registry = registry(metadata=MetaData(naming_convention=convention))


class Base(DeclarativeBase):
    """Tables keyed by an opaque autoincrement integer."""

    registry = _mapper_registry
    metadata = _mapper_registry.metadata

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
    )


class BaseNoId(DeclarativeBase):
    """Tables whose primary key is another entity's id.

    Used for the 1:1 rows hanging off a patient or an appointment.
    """

    registry = _mapper_registry
    metadata = _mapper_registry.metadata


class CreatedAtMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        nullable=False,
    )


class TimestampMixin(CreatedAtMixin):
    """Adds ``updated_at``, stamped on every UPDATE."""

    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        default=None,
        onupdate=utc_now,
        nullable=True,
    )
