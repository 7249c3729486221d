"""
Library API Backend — User Schemas
===================================

What:  Request and response models for /api/v1/users.
How:   Request models normalise blank optional strings to None before the
       services see them. Response models read straight from ORM objects
       (from_attributes); joined data only appears where the service loaded it.
"""

import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from library_api.models.enums import UserRole, UserTier
from library_api.schemas.common import BookSummary, blank_to_none, reject_null


# ══════════════════════════════════════════════════════════════════════════
# Request Models
# ══════════════════════════════════════════════════════════════════════════


class UserCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    email: EmailStr
    role: UserRole = Field(default=UserRole.USER)
    tier: UserTier = Field(default=UserTier.TIER_4, description="Borrow limit tier")
    phone: Optional[str] = Field(default=None, max_length=64)
    address: Optional[str] = Field(default=None, max_length=512)

    @field_validator("phone", "address", mode="before")
    @classmethod
    def normalise_blank(cls, v):
        return blank_to_none(v)


class UserUpdate(BaseModel):
    """Partial update. Only fields present in the request body are applied; unknown keys are a 422."""
    model_config = {"extra": "forbid"}

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    email: Optional[EmailStr] = None
    role: Optional[UserRole] = None
    tier: Optional[UserTier] = None
    phone: Optional[str] = Field(default=None, max_length=64)
    address: Optional[str] = Field(default=None, max_length=512)

    @field_validator("phone", "address", mode="before")
    @classmethod
    def normalise_blank(cls, v):
        return blank_to_none(v)

    @field_validator("name", "email", "role", "tier", mode="before")
    @classmethod
    def required_not_null(cls, v):
        return reject_null(v)


# ══════════════════════════════════════════════════════════════════════════
# Response Models
# ══════════════════════════════════════════════════════════════════════════


class UserResponse(BaseModel):
    id: uuid.UUID
    name: str
    email: str
    role: UserRole
    tier: UserTier
    phone: Optional[str] = None
    address: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class UserLoanItem(BaseModel):
    """An active loan as listed on the borrower's detail page."""
    id: uuid.UUID
    lent_at: datetime
    due_at: datetime
    book: BookSummary

    model_config = {"from_attributes": True}


class UserDetail(UserResponse):
    """
    What:  Single user with the books they currently hold.
    Who:   Returned by GET /api/v1/users/{id}.
    """
    active_loans: List[UserLoanItem] = Field(default_factory=list)


class BorrowEligibility(BaseModel):
    """
    What:  Whether a user may start a new loan right now, and why not.
    Who:   Returned by GET /api/v1/users/{id}/can-borrow; consulted by lend.

    max_loans is -1 for administrators (no numeric cap). The overdue rule
    still applies to them.
    """
    can_borrow: bool
    current_loans: int = Field(ge=0)
    max_loans: int = Field(description="Maximum concurrent loans, -1 = unlimited")
    has_overdue_books: bool
    overdue_count: int = Field(ge=0)
    reason: Optional[str] = Field(default=None, description="Why borrowing is blocked")
