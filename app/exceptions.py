"""
Custom exceptions for the calendar sync backend.
"""


class CalendarServiceError(Exception):
    """Raised when a calendar provider operation fails."""

    def __init__(self, message: str, code: str = "PROVIDER_ERROR", retryable: bool = False):
        self.message = message
        self.code = code
        self.retryable = retryable
        super().__init__(message)


class ResourceNotFoundError(CalendarServiceError):
    """Raised when a provider calendar, event or channel does not exist."""

    def __init__(self, message: str):
        super().__init__(message, code="NOT_FOUND", retryable=False)


class SyncTokenExpiredError(CalendarServiceError):
    """Raised when the provider rejects a continuation token (HTTP 410)."""

    def __init__(self, calendar_id: str = None):
        self.calendar_id = calendar_id
        message = f"Sync token expired for calendar {calendar_id}" if calendar_id else "Sync token expired"
        super().__init__(message, code="SYNC_TOKEN_EXPIRED", retryable=True)


class QuotaExceededError(CalendarServiceError):
    """Raised when the provider throttles requests."""

    def __init__(self, message: str = "Calendar API quota exceeded"):
        super().__init__(message, code="QUOTA_EXCEEDED", retryable=True)


class ProviderConfigurationError(CalendarServiceError):
    """Raised when the provider client is missing credentials or a webhook URL."""

    def __init__(self, message: str):
        super().__init__(message, code="CONFIG_ERROR", retryable=False)


class InvalidWebhookNotificationError(Exception):
    """Raised when an inbound push notification lacks a mandatory field."""

    def __init__(self, field: str, message: str = None):
        self.field = field
        self.message = message or f"Missing required webhook header: {field}"
        super().__init__(self.message)


class DuplicateIdempotencyKeyError(Exception):
    """Raised when an appointment with the same idempotency key already exists."""

    def __init__(self, idempotency_key: str):
        self.idempotency_key = idempotency_key
        super().__init__(f"Appointment with idempotency key {idempotency_key} already exists")


class PractitionerNotFoundError(Exception):
    """Raised when a practitioner is not found or is not eligible."""

    def __init__(self, practitioner_id: str, message: str = None):
        self.practitioner_id = practitioner_id
        self.message = message or f"Practitioner {practitioner_id} not found"
        super().__init__(self.message)


class StoreError(Exception):
    """Raised when a persistence operation fails."""

    def __init__(self, operation: str, cause: Exception = None):
        self.operation = operation
        self.cause = cause
        message = f"Store operation '{operation}' failed"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)
