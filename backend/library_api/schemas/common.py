"""
Library API Backend — Shared Schemas
=====================================

What:  Summary shapes embedded in other responses, the error envelope,
       the health payload and the blank-string normaliser used by the
       request models.
Who:   Imported by schemas/user.py, schemas/book.py, schemas/loan.py and
       the route layer.
"""

import uuid
from typing import Any, Optional

from pydantic import BaseModel, Field


def blank_to_none(value: Any) -> Any:
    """Turn "" and whitespace-only strings into None; everything else passes through."""
    if isinstance(value, str) and not value.strip():
        return None
    return value


# ══════════════════════════════════════════════════════════════════════════
# Summaries — joined into book/user/loan responses
# ══════════════════════════════════════════════════════════════════════════


class UserSummary(BaseModel):
    """Owner or borrower as shown next to a book or loan."""
    id: uuid.UUID
    name: str
    email: str

    model_config = {"from_attributes": True}


class BookSummary(BaseModel):
    """Book as shown next to a loan."""
    id: uuid.UUID
    title: str
    author: str
    thumbnail: Optional[str] = None

    model_config = {"from_attributes": True}


# ══════════════════════════════════════════════════════════════════════════
# Error Response Models — Consistent error format across all endpoints
# ══════════════════════════════════════════════════════════════════════════


class ErrorResponse(BaseModel):
    """
    What:  Standardized error response format for all API errors.

    Fields:
        error: Machine-readable error code (e.g., "conflict", "not_found")
        message: Human-readable description for display to users
        details: Optional extra context (e.g., which field failed validation)
        request_id: Correlation ID for tracing this error in server logs

    Example:
        {
            "error": "conflict",
            "message": "Book not available",
            "details": null,
            "request_id": "3f2a9c1e"
        }
    """
    error: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error description")
    details: Optional[dict] = Field(default=None, description="Additional error context")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")


class HealthResponse(BaseModel):
    """
    What:  Health check response showing service and dependency status.
    Who:   Returned by GET /health for monitoring and load balancer health checks.

    The metadata resolver being down only degrades the service: books can
    still be created with placeholder data.
    """
    status: str = Field(description="Overall service status: healthy, degraded, unhealthy")
    version: str = Field(description="Application version")
    database: str = Field(description="Database connectivity: connected, disconnected")
    metadata_resolver: str = Field(
        description="Google Books status: available, unavailable, circuit_open"
    )
    uptime_seconds: float = Field(description="Seconds since service started")


def reject_null(value: Any) -> Any:
    """Partial updates may omit a required field but not set it to null."""
    if value is None:
        raise ValueError("may not be null")
    return value
