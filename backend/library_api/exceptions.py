"""
Library API Backend — Custom Exception Hierarchy
=================================================

What:  Application-specific exceptions for the lending domain.
How:   Each exception class carries a message and optional context dict.
       Global exception handlers (registered in main.py) catch these and
       return structured JSON error responses with correct HTTP status codes.
Who:   Raised by the store and services; caught by global handlers.

Exception Hierarchy:
    LibraryError (base)
    ├── ValidationError           → 400 Bad Request
    ├── NotFoundError             → 404 Not Found
    ├── ConflictError             → 409 Conflict (invariant violation)
    ├── ForbiddenError            → 403 Forbidden
    ├── UpstreamUnavailableError  → never reaches a client; metadata lookups degrade to None
    └── DatabaseError             → 500 Internal Server Error

Raising any of these inside a store transaction rolls the transaction back
before the exception leaves the store.
"""

from typing import Any, Dict, Optional


class LibraryError(Exception):
    """
    Base exception for all application errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info (logged, only selectively returned)
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(LibraryError):
    """
    Raised when input passes schema validation but is still unusable.

    HTTP: 400 Bad Request. Schema-level failures are FastAPI's own 422.
    """

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class NotFoundError(LibraryError):
    """
    Raised when a referenced user, book or loan does not exist.

    SQLAlchemy returns None for missing rows; services convert that None into
    this exception so the global handler can answer 404.

    `message` overrides the generated text when the caller needs a fixed
    wording (e.g. "Rental not found").
    """

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[str] = None,
        message: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        if message is None:
            message = f"The requested {resource} was not found"
            if resource_id:
                message = f"{resource} with ID '{resource_id}' was not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx)
        self.resource = resource


class ConflictError(LibraryError):
    """
    Raised when an operation would violate a lending invariant.

    When:    Book not available, borrow limit reached, overdue books,
             deleting a book or user with active loans, returning an
             already-returned loan, duplicate unique value.
    HTTP:    409 Conflict

    Always carries a human-readable reason. Never retried automatically:
    a caller retrying after a conflict starts a fresh attempt that is
    subject to the same checks.
    """

    def __init__(
        self,
        message: str = "The request conflicts with the current state",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class ForbiddenError(LibraryError):
    """
    Raised when the acting user may not perform the operation.

    When:    Returning a loan as someone who is neither the borrower,
             the book owner, nor an ADMIN.
    HTTP:    403 Forbidden
    """

    def __init__(
        self,
        message: str = "You do not have permission to perform this action",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class UpstreamUnavailableError(LibraryError):
    """
    Raised inside the metadata resolver when Google Books cannot be used.

    When:    Circuit breaker open, transport failure after retries,
             non-2xx response, undecodable body.

    The resolver catches this itself and returns None, so callers only
    ever see "no metadata" and fall back to placeholder data.
    """

    def __init__(
        self,
        message: str = "Book metadata service is temporarily unavailable",
        retry_after: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if retry_after:
            ctx["retry_after"] = retry_after
        super().__init__(message=message, context=ctx)
        self.retry_after = retry_after


class DatabaseError(LibraryError):
    """
    Raised when database operations fail unexpectedly.

    HTTP: 500 Internal Server Error. The client message is always generic;
    the original error type is kept in `context` for the server log.
    """

    def __init__(
        self,
        message: str = "A database error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)
