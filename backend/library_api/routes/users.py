"""
Library API Backend — User Route Handlers
==========================================

What:  /api/v1/users endpoints.
How:   Thin handlers: parse input, call UserService, shape the response.
       Lists set X-Total-Count for the frontend tables.
"""

import logging
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status

from library_api.dependencies import get_user_service
from library_api.models import UserRole, UserTier
from library_api.schemas.book import BookResponse
from library_api.schemas.common import ErrorResponse
from library_api.schemas.loan import LoanResponse
from library_api.schemas.user import (
    BorrowEligibility,
    UserCreate,
    UserDetail,
    UserResponse,
    UserUpdate,
)
from library_api.services.user_service import UserService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/users", tags=["Users"])

_NOT_FOUND = {404: {"description": "User not found", "model": ErrorResponse}}


@router.get(
    "",
    response_model=List[UserResponse],
    summary="List users",
    description="Filter by free-text `q` (name or email), exact `email`, `role` or `tier`.",
)
async def list_users(
    response: Response,
    q: Optional[str] = Query(default=None, description="Substring of name or email"),
    email: Optional[str] = Query(default=None),
    role: Optional[UserRole] = Query(default=None),
    tier: Optional[UserTier] = Query(default=None),
    service: UserService = Depends(get_user_service),
):
    users = await service.list(q=q, email=email, role=role, tier=tier)
    response.headers["X-Total-Count"] = str(len(users))
    return users


@router.post(
    "",
    response_model=UserResponse,
    status_code=status.HTTP_201_CREATED,
    responses={409: {"description": "Email already in use", "model": ErrorResponse}},
    summary="Create a user",
)
async def create_user(
    body: UserCreate,
    service: UserService = Depends(get_user_service),
):
    return await service.create(body.model_dump())


@router.get(
    "/{user_id}",
    response_model=UserDetail,
    responses=_NOT_FOUND,
    summary="Get a user with their active loans",
)
async def get_user(
    user_id: UUID,
    service: UserService = Depends(get_user_service),
):
    return await service.get(user_id)


@router.patch(
    "/{user_id}",
    response_model=UserResponse,
    responses={**_NOT_FOUND, 409: {"description": "Email already in use", "model": ErrorResponse}},
    summary="Update a user",
    description="Partial update: only fields present in the body are changed.",
)
async def update_user(
    user_id: UUID,
    body: UserUpdate,
    service: UserService = Depends(get_user_service),
):
    return await service.update(user_id, body.model_dump(exclude_unset=True))


@router.delete(
    "/{user_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={**_NOT_FOUND, 409: {"description": "User has active loans", "model": ErrorResponse}},
    summary="Delete a user",
)
async def delete_user(
    user_id: UUID,
    service: UserService = Depends(get_user_service),
) -> Response:
    await service.remove(user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/{user_id}/loans",
    response_model=List[LoanResponse],
    responses=_NOT_FOUND,
    summary="List a user's loans",
)
async def list_user_loans(
    user_id: UUID,
    service: UserService = Depends(get_user_service),
):
    return await service.loans(user_id)


@router.get(
    "/{user_id}/books",
    response_model=List[BookResponse],
    responses=_NOT_FOUND,
    summary="List books owned by a user",
)
async def list_user_books(
    user_id: UUID,
    service: UserService = Depends(get_user_service),
):
    return await service.books(user_id)


@router.get(
    "/{user_id}/can-borrow",
    response_model=BorrowEligibility,
    responses=_NOT_FOUND,
    summary="Check borrow eligibility",
    description="Whether the user may start a new loan now, with counts and the blocking reason.",
)
async def can_borrow(
    user_id: UUID,
    service: UserService = Depends(get_user_service),
):
    return await service.can_borrow(user_id)
