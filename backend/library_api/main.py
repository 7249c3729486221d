"""
Library API Backend — FastAPI Application Factory
==================================================

What:  Creates and configures the FastAPI application instance.
How:   create_app() builds the store, the metadata resolver and the
       services, registers middleware, exception handlers and routers,
       and returns the app. uvicorn serves the module-level `app`.

Application Architecture:
    ┌─────────────────────────────────────────────────────┐
    │                   FastAPI App                       │
    │                                                     │
    │  Middleware Chain:                                  │
    │  ┌────────────┐ ┌──────────┐ ┌─────────┐ ┌────────┐ │
    │  │ Rate Limit │→│ Req ID   │→│ Logging │→│ CORS   │ │
    │  └────────────┘ └──────────┘ └─────────┘ └────────┘ │
    │                                                     │
    │  Routes (/api/v1, HTTP Basic):                      │
    │  ┌──────────┐ ┌──────────┐ ┌──────────┐ ┌─────────┐ │
    │  │ /users   │ │ /books   │ │ /loans   │ │ /health │ │
    │  └──────────┘ └──────────┘ └──────────┘ └─────────┘ │
    │                                                     │
    │  app.state: settings, store, metadata_resolver,     │
    │             user/book/loan services                 │
    │                                                     │
    │  Exception Handlers:                                │
    │  Validation→400 Forbidden→403 NotFound→404          │
    │  Conflict→409 Database→500                          │
    └─────────────────────────────────────────────────────┘

Lifecycle:
    Startup:  configure logging, validate configuration, log banner
    Shutdown: close the resolver's HTTP client, dispose the engine
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from library_api import __version__
from library_api.config import Settings, settings as default_settings
from library_api.dependencies import require_basic_auth
from library_api.exceptions import (
    ConflictError,
    DatabaseError,
    ForbiddenError,
    LibraryError,
    NotFoundError,
    UpstreamUnavailableError,
    ValidationError,
)
from library_api.logging_config import setup_logging
from library_api.middleware.logging import RequestLoggingMiddleware
from library_api.middleware.rate_limit import RateLimitMiddleware
from library_api.middleware.request_id import RequestIDMiddleware, request_id_var
from library_api.routes import books, health, loans, users
from library_api.services.book_service import BookService
from library_api.services.eligibility import EligibilityService
from library_api.services.google_books_service import GoogleBooksService
from library_api.services.loan_service import LoanService
from library_api.services.metadata_base import MetadataResolver
from library_api.services.user_service import UserService
from library_api.store import EntityStore

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifecycle
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    config: Settings = app.state.settings

    setup_logging(config)
    logger.info("=" * 60)
    logger.info("Library API %s starting up...", __version__)

    try:
        config.validate_required_for_production()
    except ValueError as e:
        logger.error("Configuration error: %s", str(e))

    if not config.auth_enabled:
        logger.warning("HTTP Basic authentication is DISABLED (BASIC_USER is empty)")

    logger.info("Database: %s", "SQLite" if config.is_sqlite else "PostgreSQL")
    logger.info("Server ready at http://%s:%d", config.backend_host, config.backend_port)
    logger.info("API docs: http://%s:%d/docs", config.backend_host, config.backend_port)
    logger.info("=" * 60)

    yield

    logger.info("Library API shutting down...")
    await app.state.metadata_resolver.aclose()
    await app.state.store.dispose()
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def _error_response(status_code: int, error: str, message: str, details=None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error": error,
            "message": message,
            "details": details,
            "request_id": request_id_var.get(""),
        },
    )


def register_exception_handlers(app: FastAPI) -> None:
    """
    Map application exceptions to HTTP responses.

    Handler hierarchy:
        ValidationError           → 400
        ForbiddenError            → 403
        NotFoundError             → 404
        ConflictError             → 409
        UpstreamUnavailableError  → 503 (resolvers normally swallow it)
        DatabaseError             → 500, generic message
        LibraryError (base)       → 500
        Exception (fallback)      → 500, logged with traceback

    Response bodies never carry stack traces or SQL; those go to the log.
    """

    @app.exception_handler(ValidationError)
    async def handle_validation_error(request: Request, exc: ValidationError):
        logger.warning("[%s] Validation error: %s", request_id_var.get(""), exc.message)
        return _error_response(400, "validation_error", exc.message, exc.context)

    @app.exception_handler(ForbiddenError)
    async def handle_forbidden(request: Request, exc: ForbiddenError):
        return _error_response(403, "forbidden", exc.message)

    @app.exception_handler(NotFoundError)
    async def handle_not_found(request: Request, exc: NotFoundError):
        return _error_response(404, "not_found", exc.message)

    @app.exception_handler(ConflictError)
    async def handle_conflict(request: Request, exc: ConflictError):
        logger.info("[%s] Conflict: %s", request_id_var.get(""), exc.message)
        return _error_response(409, "conflict", exc.message)

    @app.exception_handler(UpstreamUnavailableError)
    async def handle_upstream_unavailable(request: Request, exc: UpstreamUnavailableError):
        response = _error_response(503, "service_unavailable", exc.message)
        if exc.retry_after:
            response.headers["Retry-After"] = str(exc.retry_after)
        return response

    @app.exception_handler(DatabaseError)
    async def handle_database_error(request: Request, exc: DatabaseError):
        logger.error(
            "[%s] Database error: %s | Context: %s",
            request_id_var.get(""),
            exc.message,
            exc.context,
        )
        return _error_response(500, "server_error", "An internal error occurred. Please try again later.")

    @app.exception_handler(LibraryError)
    async def handle_library_error(request: Request, exc: LibraryError):
        logger.error("[%s] Unhandled application error: %s", request_id_var.get(""), exc.message)
        return _error_response(500, "server_error", exc.message)

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.error(
            "[%s] Unexpected error: %s",
            request_id_var.get(""),
            str(exc),
            exc_info=True,
        )
        return _error_response(
            500,
            "internal_server_error",
            "An unexpected error occurred. Please try again or contact support.",
        )


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app(
    config: Optional[Settings] = None,
    store: Optional[EntityStore] = None,
    metadata_resolver: Optional[MetadataResolver] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        config: Settings to use (defaults to the environment-loaded singleton)
        store: EntityStore to inject; built from config.database_url if omitted
        metadata_resolver: ISBN resolver; GoogleBooksService if omitted

    Tests pass their own store and a stub resolver.
    """
    config = config or default_settings
    store = store or EntityStore.from_url(config.database_url, config)
    metadata_resolver = metadata_resolver or GoogleBooksService(config)

    app = FastAPI(
        title="Library API",
        description=(
            "Library lending backend: users, books and loans, with tier-based "
            "borrowing limits, overdue blocking and ISBN lookup via Google Books."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # ── Services ──────────────────────────────────────────────────────────
    eligibility = EligibilityService(store)
    app.state.settings = config
    app.state.store = store
    app.state.metadata_resolver = metadata_resolver
    app.state.user_service = UserService(store, eligibility)
    app.state.book_service = BookService(store, metadata_resolver)
    app.state.loan_service = LoanService(store, eligibility)

    # ── Middleware (last added runs first) ────────────────────────────────
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[
            "X-Request-ID",
            "X-Total-Count",
            "Retry-After",
        ],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(
        RateLimitMiddleware,
        max_requests=config.rate_limit_requests,
        window_seconds=config.rate_limit_window,
    )

    register_exception_handlers(app)

    # ── Routers ───────────────────────────────────────────────────────────
    protected = [Depends(require_basic_auth)]
    app.include_router(users.router, dependencies=protected)
    app.include_router(books.router, dependencies=protected)
    app.include_router(loans.router, dependencies=protected)
    app.include_router(health.router)

    return app


app = create_app()
