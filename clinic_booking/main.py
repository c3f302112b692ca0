"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError

from clinic_booking.api.v1.router import api_router
from clinic_booking.core.config import settings
from clinic_booking.core.logging import setup_logging
from clinic_booking.db.init_db import init_db
from clinic_booking.db.session import engine
from clinic_booking.services.exceptions import InsufficientFundsError, SchedulingError

SERVICE_NAME = "Clinic Booking API"
SERVICE_VERSION = "0.1.0"

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Create the dev schema on startup and release pooled connections on shutdown."""
    logger.info(f"Starting {SERVICE_NAME} (env={settings.env}, currency={settings.currency})")

    if settings.init_db_on_startup and settings.is_dev:
        logger.info("Creating scheduling tables")
        await init_db()

    yield

    await engine.dispose()
    logger.info(f"Stopped {SERVICE_NAME}")


app = FastAPI(
    title=SERVICE_NAME,
    description="Appointment scheduling, booking and balance ledger for clinics",
    version=SERVICE_VERSION,
    docs_url="/docs" if settings.is_dev else None,
    redoc_url="/redoc" if settings.is_dev else None,
    openapi_url="/openapi.json" if settings.is_dev else None,
    lifespan=lifespan,
)

if settings.cors_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "DELETE"],
        allow_headers=["Authorization", "Content-Type"],
    )


@app.exception_handler(SchedulingError)
async def scheduling_error_handler(request: Request, exc: SchedulingError) -> JSONResponse:
    """Render domain errors with their stable code."""
    logger.info(f"{request.method} {request.url.path} rejected: {exc.code}: {exc.message}")

    content = {"detail": exc.message, "code": exc.code}
    if isinstance(exc, InsufficientFundsError) and exc.required is not None:
        content["required"] = str(exc.required)
        content["available"] = str(exc.available)

    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(OperationalError)
async def store_error_handler(request: Request, exc: OperationalError) -> JSONResponse:
    """The unit was rolled back; the whole request may be retried."""
    logger.error(f"{request.method} {request.url.path} aborted by the store: {exc.orig!r}")
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "Storage unavailable, retry the request", "code": "store_unavailable"},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled exception on {request.method} {request.url.path}")

    detail = "Internal server error" if settings.is_prod else str(exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": detail},
    )


app.include_router(api_router, prefix="/api/v1")


@app.get("/", include_in_schema=False)
async def root() -> dict:
    return {
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "docs": "/docs" if settings.is_dev else None,
    }
