"""
Standard API response envelopes.

Routes return {"success": true, "data": {...}, "metadata": {...}} or the
matching error shape, so clients can branch on `success` alone.
"""
from pydantic import BaseModel, Field
from typing import Any, Optional
from datetime import datetime

from app.utils.timezone_utils import utc_now


class ResponseMetadata(BaseModel):
    """Metadata included with API responses."""
    request_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=utc_now)
    version: str = "1.0"


class ErrorResponse(BaseModel):
    """Standard error response."""
    success: bool = False
    error: str
    error_code: Optional[str] = None
    details: Optional[dict] = None
    metadata: Optional[ResponseMetadata] = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str = "healthy"
    version: str = "1.0.0"
    services: dict = Field(default_factory=dict)


def success_response(data: Any, request_id: str | None = None) -> dict:
    """
    Create standard success response.

    Args:
        data: The response data
        request_id: Optional correlation ID for tracing
    """
    return {
        "success": True,
        "data": data,
        "metadata": {
            "request_id": request_id,
            "timestamp": utc_now().isoformat(),
            "version": "1.0",
        },
    }


def error_response(
    message: str,
    code: str | None = None,
    details: dict | None = None,
    request_id: str | None = None
) -> dict:
    """
    Create standard error response.

    Args:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error details
        request_id: Optional correlation ID for tracing
    """
    return {
        "success": False,
        "error": message,
        "error_code": code,
        "details": details,
        "metadata": {
            "request_id": request_id,
            "timestamp": utc_now().isoformat(),
            "version": "1.0",
        },
    }
