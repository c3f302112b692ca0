"""Pydantic schemas for telemedicine sessions."""

from pydantic import BaseModel, Field

from clinic_booking.models.telemedicine import TelemedicineSessionStatus
from clinic_booking.schemas.common import UTCDateTime


class SessionEnd(BaseModel):
    summary: str | None = Field(default=None, max_length=10000)
    notes: str | None = Field(default=None, max_length=4000)


class ParticipantRead(BaseModel):
    id: int
    role: str

    model_config = {"from_attributes": True}


class TelemedicineSessionRead(BaseModel):
    """Telemedicine session response."""

    appointment_id: int
    status: TelemedicineSessionStatus
    started_at: UTCDateTime | None
    ended_at: UTCDateTime | None
    summary: str | None
    participants: list[ParticipantRead] = Field(default_factory=list)

    model_config = {"from_attributes": True}


class PresenceRead(BaseModel):
    appointment_id: int
    participants: list[ParticipantRead]
