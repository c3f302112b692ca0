"""API v1 router aggregating all endpoints."""

from fastapi import APIRouter

from clinic_booking.api.v1 import appointments, availability, balance, health, telemedicine

api_router = APIRouter()

# Health check
api_router.include_router(
    health.router,
    prefix="/health",
    tags=["health"],
)

# Provider availability
api_router.include_router(
    availability.router,
    prefix="/availability",
    tags=["availability"],
)

# Booking and appointment lifecycle
api_router.include_router(
    appointments.router,
    prefix="/appointments",
    tags=["appointments"],
)

# Patient balance ledger
api_router.include_router(
    balance.router,
    prefix="/balance",
    tags=["balance"],
)

# Telemedicine sessions
api_router.include_router(
    telemedicine.router,
    prefix="/telemedicine",
    tags=["telemedicine"],
)
