"""Shared schema types."""

from datetime import datetime
from typing import Annotated

from pydantic import AfterValidator, BaseModel

from clinic_booking.utils.time import ensure_utc

# Timestamps always leave the API as aware UTC values
UTCDateTime = Annotated[datetime, AfterValidator(ensure_utc)]


class ErrorResponse(BaseModel):
    """Body returned for domain errors."""

    detail: str
    code: str
