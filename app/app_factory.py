"""
FastAPI application factory.

Creates and configures the FastAPI application with:
- OpenAPI documentation with security schemes
- CORS middleware
- Calendar, booking and webhook routers
"""
import logging
import os
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.dependencies import CalendarServices
from app.routers_registry import register_all_routers
from app.startup import lifespan

logger = logging.getLogger(__name__)


def create_openapi_schema(app: FastAPI):
    """Generate custom OpenAPI schema with security schemes."""
    def custom_openapi():
        if app.openapi_schema:
            return app.openapi_schema

        from fastapi.openapi.utils import get_openapi

        openapi_schema = get_openapi(
            title=app.title,
            version=app.version,
            description=app.description,
            routes=app.routes,
        )

        openapi_schema.setdefault("components", {})["securitySchemes"] = {
            "bearerAuth": {
                "type": "http",
                "scheme": "bearer",
                "bearerFormat": "JWT",
                "description": "Enter your JWT token"
            }
        }

        openapi_schema["tags"] = [
            {"name": "Calendar", "description": "Calendar provisioning, availability and channels"},
            {"name": "Bookings", "description": "Booking admission"},
            {"name": "Calendar Webhooks", "description": "Provider push notifications"},
        ]

        app.openapi_schema = openapi_schema
        return app.openapi_schema

    return custom_openapi


def configure_cors(app: FastAPI):
    """Configure CORS middleware from CORS_ORIGINS (comma separated)."""
    origins = [
        origin.strip()
        for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000,http://localhost:5173").split(",")
        if origin.strip()
    ]

    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )


def create_app(services: Optional[CalendarServices] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        services: Prebuilt service container; built from config at startup when omitted

    Returns:
        Configured FastAPI application instance
    """
    app = FastAPI(
        title="Practice Calendar Sync",
        description="""
Calendar synchronisation and booking admission for practitioner calendars.

## Features
- Provider push notifications with incremental sync
- Conflict detection between appointments and calendar busy time
- Webhook channel renewal
- Idempotent, fail-closed booking admission
- Calendar provisioning with rollback and batch mode

## Authentication
Protected endpoints require Bearer token authentication.
""",
        version="1.0.0",
        lifespan=lifespan,
        redirect_slashes=False,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )
    app.state.services = services

    app.openapi = create_openapi_schema(app)
    configure_cors(app)
    register_all_routers(app)

    @app.get("/health", tags=["health"])
    async def health():
        return {"status": "healthy", "service": "practice-calendar-sync", "version": app.version}

    return app
