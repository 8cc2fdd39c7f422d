"""
Router registry for the calendar sync backend.

Centralizes all API router registrations for cleaner main.py.
Routers are grouped by domain/functionality.
"""
import logging
from fastapi import FastAPI

logger = logging.getLogger(__name__)


def register_webhook_routers(app: FastAPI):
    """Register provider push-notification routers."""
    from app.webhooks import calendar_webhooks

    app.include_router(calendar_webhooks.router)


def register_calendar_routers(app: FastAPI):
    """Register calendar provisioning, availability and channel routers."""
    from app.api import calendar_routes

    app.include_router(calendar_routes.router)


def register_booking_routers(app: FastAPI):
    """Register booking admission routers."""
    from app.api import booking_routes

    app.include_router(booking_routes.router)


def register_all_routers(app: FastAPI):
    """Register all routers with the application."""
    register_webhook_routers(app)
    register_calendar_routers(app)
    register_booking_routers(app)

    logger.info("✅ All routers registered")
