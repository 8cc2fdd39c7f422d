"""
Centralized Logging Configuration

Provides consistent logging setup across the application.
When running in containers (Docker/Kubernetes/Fly.io), timestamps are omitted
from the Python log formatter since container runtimes add their own timestamps.

Practitioner e-mail addresses must never reach the logs in clear text; use
mask_email() for a single address and redact_emails() for free-form text.

Usage:
    from app.utils.logging_config import configure_logging
    configure_logging()
"""
import os
import re
import sys
import logging
from typing import Optional

# Detect container environment
IS_CONTAINERIZED = bool(
    os.environ.get('FLY_APP_NAME') or  # Fly.io
    os.environ.get('KUBERNETES_SERVICE_HOST') or  # Kubernetes
    os.path.exists('/.dockerenv')  # Docker
)

# Log format without timestamp for containers (runtime adds it)
CONTAINER_FORMAT = "[%(name)s] %(levelname)s: %(message)s"

# Log format with timestamp for local development
LOCAL_FORMAT = "[%(asctime)s] [%(name)s] %(levelname)s: %(message)s"

DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

EMAIL_PATTERN = re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}")

NOISY_LOGGERS = (
    'httpx',
    'httpcore',
    'hpack',
    'apscheduler',
    'googleapiclient.discovery',
    'googleapiclient.discovery_cache',
    'google.auth.transport.requests',
)


def configure_logging(level: int = logging.INFO, force: bool = False) -> None:
    """
    Configure logging for the application.

    Args:
        level: Logging level (default: INFO)
        force: Force reconfiguration even if already configured
    """
    root_logger = logging.getLogger()

    if root_logger.handlers and not force:
        return

    if force:
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)

    log_format = CONTAINER_FORMAT if IS_CONTAINERIZED else LOCAL_FORMAT
    datefmt = None if IS_CONTAINERIZED else DATE_FORMAT

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(log_format, datefmt=datefmt))

    root_logger.setLevel(level)
    root_logger.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def mask_email(email: Optional[str]) -> str:
    """
    Mask an e-mail address for logging: "jane.doe@example.com" -> "ja***@example.com".
    """
    if not email or '@' not in email:
        return '***'
    local, domain = email.split('@', 1)
    return f"{local[:2]}***@{domain}"


def redact_emails(text: Optional[str]) -> str:
    """Replace every e-mail address in free-form text with a placeholder."""
    if not text:
        return text or ''
    return EMAIL_PATTERN.sub('[email]', text)
