"""
Library API Backend — Loan Route Handlers
==========================================

What:  /api/v1/loans endpoints: lend, return, list, cleanup.

PATCH /loans/{id}/return reads the optional X-User-Id header as the acting
user. Without it the return is not permission-checked.
"""

import logging
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status

from library_api.dependencies import get_acting_user_id, get_loan_service
from library_api.schemas.common import ErrorResponse
from library_api.schemas.loan import LoanCreate, LoanResponse
from library_api.services.loan_service import LoanService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/loans", tags=["Loans"])

_NOT_FOUND = {404: {"description": "Rental not found", "model": ErrorResponse}}


@router.get(
    "",
    response_model=List[LoanResponse],
    summary="List loans",
    description="Filters combine with AND. `overdue=true` keeps active loans past their due date.",
)
async def list_loans(
    response: Response,
    book_id: Optional[UUID] = Query(default=None),
    borrower_id: Optional[UUID] = Query(default=None),
    overdue: Optional[bool] = Query(default=None),
    service: LoanService = Depends(get_loan_service),
):
    loans = await service.list(book_id=book_id, borrower_id=borrower_id, overdue=overdue)
    response.headers["X-Total-Count"] = str(len(loans))
    return loans


@router.get(
    "/overdue",
    response_model=List[LoanResponse],
    summary="List overdue loans",
)
async def list_overdue_loans(
    service: LoanService = Depends(get_loan_service),
):
    return await service.list_overdue()


@router.post(
    "",
    response_model=LoanResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        404: {"description": "Borrower not found", "model": ErrorResponse},
        409: {"description": "Book not available or borrower not eligible", "model": ErrorResponse},
    },
    summary="Lend a book",
)
async def create_loan(
    body: LoanCreate,
    service: LoanService = Depends(get_loan_service),
):
    return await service.lend(body.book_id, body.borrower_id, days=body.days)


@router.get(
    "/{loan_id}",
    response_model=LoanResponse,
    responses=_NOT_FOUND,
    summary="Get a loan",
)
async def get_loan(
    loan_id: UUID,
    service: LoanService = Depends(get_loan_service),
):
    return await service.get(loan_id)


@router.delete(
    "/{loan_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={**_NOT_FOUND, 409: {"description": "Loan is still active", "model": ErrorResponse}},
    summary="Delete a returned loan",
)
async def delete_loan(
    loan_id: UUID,
    service: LoanService = Depends(get_loan_service),
) -> Response:
    await service.remove(loan_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.patch(
    "/{loan_id}/return",
    response_model=LoanResponse,
    responses={
        **_NOT_FOUND,
        403: {"description": "Acting user may not return this loan", "model": ErrorResponse},
        409: {"description": "Loan already returned", "model": ErrorResponse},
    },
    summary="Return a loaned book",
)
async def return_loan(
    loan_id: UUID,
    acting_user_id: Optional[UUID] = Depends(get_acting_user_id),
    service: LoanService = Depends(get_loan_service),
):
    return await service.return_loan(loan_id, acting_user_id=acting_user_id)
