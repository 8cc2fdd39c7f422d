"""
Application startup and shutdown lifecycle management.

Handles:
- Wiring of the calendar services (unless a prebuilt container was supplied)
- Channel renewal worker start/stop
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from app import config

logger = logging.getLogger(__name__)


def init_services(app: FastAPI):
    """Build the service container unless one was injected (tests)."""
    if getattr(app.state, "services", None) is not None:
        logger.info("Using preconfigured calendar services")
        return

    from app.dependencies import build_services
    app.state.services = build_services()


async def init_workers(app: FastAPI):
    """Initialize background workers."""
    app.state.channel_worker = None
    if not config.CHANNEL_RENEWAL_WORKER_ENABLED:
        logger.info("Channel renewal worker disabled (CHANNEL_RENEWAL_WORKER_ENABLED=false)")
        return

    try:
        from app.workers.channel_renewal_worker import ChannelRenewalWorker
        worker = ChannelRenewalWorker(app.state.services.channel_manager)
        worker.start()
        app.state.channel_worker = worker
        logger.info("✅ Channel renewal worker started")
    except Exception as e:
        logger.error(f"Failed to start channel renewal worker: {str(e)}")


async def stop_workers(app: FastAPI):
    """Stop all background workers gracefully."""
    worker = getattr(app.state, "channel_worker", None)
    if worker is None:
        return
    try:
        worker.stop()
        logger.info("✅ Channel renewal worker stopped")
    except Exception as e:
        logger.error(f"Error stopping channel renewal worker: {str(e)}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle manager."""
    # === STARTUP ===
    logger.info("Starting Practice Calendar Sync...")

    init_services(app)
    await init_workers(app)

    yield

    # === SHUTDOWN ===
    logger.info("Shutting down services...")
    await stop_workers(app)
    logger.info("Practice Calendar Sync shutdown complete")
