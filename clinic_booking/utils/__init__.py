"""Utility modules."""

from clinic_booking.utils.time import ensure_utc, utc_now

__all__ = ["ensure_utc", "utc_now"]
