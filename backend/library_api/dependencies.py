"""
Library API Backend — Route Dependencies
=========================================

What:  FastAPI dependency providers for the services and the HTTP Basic guard.
How:   Services live on app.state (built in create_app); these getters hand
       them to route handlers via Depends(). Tests build the app with their
       own store and resolver, so nothing here touches a global.
"""

import logging
import secrets
import uuid
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from library_api.services.book_service import BookService
from library_api.services.loan_service import LoanService
from library_api.services.user_service import UserService

logger = logging.getLogger(__name__)

_basic = HTTPBasic(realm="LibraryApp", auto_error=False)


def get_user_service(request: Request) -> UserService:
    return request.app.state.user_service


def get_book_service(request: Request) -> BookService:
    return request.app.state.book_service


def get_loan_service(request: Request) -> LoanService:
    return request.app.state.loan_service


def get_acting_user_id(
    x_user_id: Optional[uuid.UUID] = Header(
        default=None,
        description="ID of the user performing the action (used for return permission checks)",
    ),
) -> Optional[uuid.UUID]:
    return x_user_id


async def require_basic_auth(
    request: Request,
    credentials: Optional[HTTPBasicCredentials] = Depends(_basic),
) -> None:
    """
    Reject the request unless it carries the configured Basic credentials.

    Disabled when BASIC_USER is empty (a warning is logged at startup).
    Comparison uses secrets.compare_digest to avoid timing leaks.
    """
    config = request.app.state.settings
    if not config.auth_enabled:
        return

    valid = credentials is not None and (
        secrets.compare_digest(credentials.username.encode(), config.basic_user.encode())
        and secrets.compare_digest(credentials.password.encode(), config.basic_pass.encode())
    )
    if not valid:
        logger.info("Rejected request to %s: bad or missing credentials", request.url.path)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": 'Basic realm="LibraryApp"'},
        )
