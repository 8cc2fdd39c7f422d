"""
Application Configuration
Centralized configuration for the calendar provider, sync, booking and provisioning
"""
import os


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


# Database
CALENDAR_DB_SCHEMA = os.getenv("CALENDAR_DB_SCHEMA", "public")

# Calendar provider (Google Calendar via service account)
GOOGLE_SERVICE_ACCOUNT_KEY = os.getenv("GOOGLE_SERVICE_ACCOUNT_KEY")
GOOGLE_SERVICE_ACCOUNT_SUBJECT = os.getenv("GOOGLE_SERVICE_ACCOUNT_SUBJECT")
CALENDAR_WEBHOOK_URL = os.getenv("CALENDAR_WEBHOOK_URL")
CALENDAR_TIMEZONE = os.getenv("CALENDAR_TIMEZONE", "Europe/London")
PROVIDER_TIMEOUT_SECONDS = float(os.getenv("PROVIDER_TIMEOUT_SECONDS", "30"))
PROVIDER_MAX_RETRIES = int(os.getenv("PROVIDER_MAX_RETRIES", "3"))
PROVIDER_RETRY_BACKOFF_SECONDS = float(os.getenv("PROVIDER_RETRY_BACKOFF_SECONDS", "1.0"))

# Incremental sync and conflict detection
SYNC_LOOKBACK_DAYS = int(os.getenv("SYNC_LOOKBACK_DAYS", "30"))
CONFLICT_WINDOW_DAYS = int(os.getenv("CONFLICT_WINDOW_DAYS", "30"))
SYNC_TOKEN_CACHE_TTL_SECONDS = int(os.getenv("SYNC_TOKEN_CACHE_TTL_SECONDS", "86400"))
SYNC_TOKEN_CACHE_MAX_ENTRIES = int(os.getenv("SYNC_TOKEN_CACHE_MAX_ENTRIES", "10000"))
WEBHOOK_LOCK_MAX_HOLD_SECONDS = int(os.getenv("WEBHOOK_LOCK_MAX_HOLD_SECONDS", "600"))

# Unknown channel ids can optionally be matched by provider resource id
WEBHOOK_RESOURCE_ID_FALLBACK = _env_bool("WEBHOOK_RESOURCE_ID_FALLBACK", "false")

# Webhook channel lifecycle
CHANNEL_RENEWAL_WINDOW_HOURS = int(os.getenv("CHANNEL_RENEWAL_WINDOW_HOURS", "24"))
CHANNEL_RENEWAL_INTERVAL_HOURS = int(os.getenv("CHANNEL_RENEWAL_INTERVAL_HOURS", "6"))
CHANNEL_HEALTH_CHECK_INTERVAL_MINUTES = int(os.getenv("CHANNEL_HEALTH_CHECK_INTERVAL_MINUTES", "60"))
CHANNEL_UNHEALTHY_ERROR_RATIO = float(os.getenv("CHANNEL_UNHEALTHY_ERROR_RATIO", "0.1"))
CHANNEL_RENEWAL_WORKER_ENABLED = _env_bool("CHANNEL_RENEWAL_WORKER_ENABLED", "true")

# Booking admission
BOOKING_MAX_ADVANCE_DAYS = int(os.getenv("BOOKING_MAX_ADVANCE_DAYS", "365"))
BOOKING_MIN_DURATION_MINUTES = int(os.getenv("BOOKING_MIN_DURATION_MINUTES", "15"))
BOOKING_MAX_DURATION_MINUTES = int(os.getenv("BOOKING_MAX_DURATION_MINUTES", "240"))
BOOKING_LANGUAGE = os.getenv("BOOKING_LANGUAGE", "en")

# Alternative slot search
ALTERNATIVE_SLOT_DAYS = int(os.getenv("ALTERNATIVE_SLOT_DAYS", "4"))
ALTERNATIVE_SLOT_FIRST_HOUR = int(os.getenv("ALTERNATIVE_SLOT_FIRST_HOUR", "9"))
ALTERNATIVE_SLOT_LAST_HOUR = int(os.getenv("ALTERNATIVE_SLOT_LAST_HOUR", "19"))
ALTERNATIVE_SLOT_STEP_MINUTES = int(os.getenv("ALTERNATIVE_SLOT_STEP_MINUTES", "60"))
ALTERNATIVE_SLOT_MAX_SUGGESTIONS = int(os.getenv("ALTERNATIVE_SLOT_MAX_SUGGESTIONS", "6"))
DEFAULT_SESSION_MINUTES = int(os.getenv("DEFAULT_SESSION_MINUTES", "50"))

# Calendar provisioning
PROVISIONING_MAX_ATTEMPTS = int(os.getenv("PROVISIONING_MAX_ATTEMPTS", "3"))
PROVISIONING_RETRY_DELAY_SECONDS = float(os.getenv("PROVISIONING_RETRY_DELAY_SECONDS", "2.0"))
PROVISIONING_CONCURRENCY = int(os.getenv("PROVISIONING_CONCURRENCY", "3"))
PROVISIONING_BATCH_STAGGER_SECONDS = float(os.getenv("PROVISIONING_BATCH_STAGGER_SECONDS", "1.5"))
PROVISIONING_OPERATION_SPACING_SECONDS = float(os.getenv("PROVISIONING_OPERATION_SPACING_SECONDS", "1.2"))

# Email (SMTP)
SMTP_HOST = os.getenv("SMTP_HOST")
SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
SMTP_USERNAME = os.getenv("SMTP_USERNAME")
SMTP_PASSWORD = os.getenv("SMTP_PASSWORD")
SMTP_FROM_EMAIL = os.getenv("SMTP_FROM_EMAIL", "no-reply@example.com")
SMTP_FROM_NAME = os.getenv("SMTP_FROM_NAME", "Practice Calendar")
SMTP_USE_TLS = _env_bool("SMTP_USE_TLS", "true")
ADMIN_NOTIFICATION_EMAIL = os.getenv("ADMIN_NOTIFICATION_EMAIL")
SUPPORT_EMAIL = os.getenv("SUPPORT_EMAIL", "support@example.com")
