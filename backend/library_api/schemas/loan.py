"""Request and response models for /api/v1/loans."""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from library_api.schemas.common import BookSummary, UserSummary

DEFAULT_LOAN_DAYS = 14


class LoanCreate(BaseModel):
    book_id: uuid.UUID
    borrower_id: uuid.UUID
    days: int = Field(default=DEFAULT_LOAN_DAYS, ge=1, le=365, description="Loan length in days")


class LoanResponse(BaseModel):
    """
    A loan with the book and borrower it links.

    returned_at is null while the loan is active.
    """
    id: uuid.UUID
    book_id: uuid.UUID
    borrower_id: uuid.UUID
    lent_at: datetime
    due_at: datetime
    returned_at: Optional[datetime] = None
    book: BookSummary
    borrower: UserSummary

    model_config = {"from_attributes": True}
