from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.router import api_router
from app.core.config import get_settings
from app.services.availability_models import resolve_timezone


logger = logging.getLogger(__name__)


def _configure_logging() -> None:
    root_logger = logging.getLogger()
    if root_logger.handlers:
        return
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def create_application() -> FastAPI:
    _configure_logging()
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        openapi_url=f"{settings.api_prefix}/openapi.json",
        docs_url=f"{settings.api_prefix}/docs",
        redoc_url=f"{settings.api_prefix}/redoc",
        lifespan=_lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router, prefix=settings.api_prefix)

    return app


@asynccontextmanager
async def _lifespan(_: FastAPI) -> AsyncIterator[None]:
    _log_booking_configuration()
    yield


def _log_booking_configuration() -> None:
    settings = get_settings()
    resolve_timezone(settings.appointment_timezone)
    logger.info(
        "Booking configured timezone=%s counselors=%s",
        settings.appointment_timezone,
        ", ".join(settings.known_counselors) or "none",
    )
    if not settings.email_enabled:
        logger.warning("SMTP is not configured; confirmation emails will be skipped")
    if not settings.sms_enabled:
        logger.info("Twilio is not configured; SMS notifications will be skipped")


app = create_application()
