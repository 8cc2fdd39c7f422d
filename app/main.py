"""
Practice Calendar Sync - Main Application
Provider webhooks, calendar provisioning and booking admission
"""

import os
import logging

from dotenv import load_dotenv

# Load environment variables FIRST; app.config reads them at import time
load_dotenv()

# Configure centralized logging (container-aware: no timestamps in Docker/Fly.io)
from app.utils.logging_config import configure_logging  # noqa: E402
configure_logging()

from app.app_factory import create_app  # noqa: E402

logger = logging.getLogger(__name__)

app = create_app()
logger.info("Practice Calendar Sync application created")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", 8000)),
        reload=os.getenv("ENVIRONMENT", "production") == "development"
    )
