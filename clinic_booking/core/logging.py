"""Logging setup and the audit trail of booking state changes."""

import logging
import sys
from typing import Any

from clinic_booking.core.config import settings

# Context attributes that services attach through ``extra=``
CONTEXT_FIELDS = (
    "action",
    "actor",
    "entity_type",
    "entity_id",
    "metadata",
)


class StructuredFormatter(logging.Formatter):
    """``key=value`` records carrying the audit context when present."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for field in CONTEXT_FIELDS:
            if hasattr(record, field):
                log_data[field] = getattr(record, field)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return " ".join(f"{k}={v}" for k, v in log_data.items())


def setup_logging() -> None:
    """Configure the root logger once at application start."""
    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)

    if settings.is_dev:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )
    else:
        formatter = StructuredFormatter()

    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.database_echo else logging.WARNING
    )


class AuditLogger:
    """Records committed slot, booking, ledger and session changes.

    Entries are written only after the atomic unit they describe has
    committed, so the audit trail never mentions rolled back work.
    """

    def __init__(self, name: str = "audit") -> None:
        self.logger = logging.getLogger(name)

    def log(
        self,
        action: str,
        actor_role: str,
        actor_id: int | str | None,
        entity_type: str,
        entity_id: int | str | None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        actor = f"{actor_role}:{actor_id if actor_id is not None else 'system'}"
        self.logger.info(
            f"{action} {entity_type}#{entity_id if entity_id is not None else '-'} by {actor}",
            extra={
                "action": action,
                "actor": actor,
                "entity_type": entity_type,
                "entity_id": entity_id,
                "metadata": metadata or {},
            },
        )


audit_logger = AuditLogger()
