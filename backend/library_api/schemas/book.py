"""
Library API Backend — Book Schemas
===================================

What:  Request and response models for /api/v1/books, plus BookMetadata,
       the normalised result of an ISBN lookup.

Validation rules on create:
    - title and author required
    - at least one of isbn10 / isbn13
    - blank optional strings become None
    - thumbnail, when given, must be an http(s) URL
"""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from library_api.models.enums import BookStatus
from library_api.schemas.common import UserSummary, blank_to_none, reject_null

_OPTIONAL_TEXT_FIELDS = ("publisher", "isbn10", "isbn13", "description", "comment", "thumbnail")

# Column widths of the books table
TEXT_MAX = 512
PUBLISHER_MAX = 255
ISBN10_MAX = 10
ISBN13_MAX = 13
THUMBNAIL_MAX = 1024


def _check_thumbnail(value: Optional[str]) -> Optional[str]:
    if value is not None and not value.startswith(("http://", "https://")):
        raise ValueError("thumbnail must be an http(s) URL")
    return value


# ══════════════════════════════════════════════════════════════════════════
# Metadata — what the resolver hands back
# ══════════════════════════════════════════════════════════════════════════


class BookMetadata(BaseModel):
    """
    Descriptive book data resolved from an ISBN.

    Bounded like the books columns, so resolved data always fits the row.
    """
    title: str = Field(max_length=TEXT_MAX)
    author: str = Field(max_length=TEXT_MAX)
    publisher: Optional[str] = Field(default=None, max_length=PUBLISHER_MAX)
    published_at: Optional[datetime] = None
    isbn10: Optional[str] = Field(default=None, max_length=ISBN10_MAX)
    isbn13: Optional[str] = Field(default=None, max_length=ISBN13_MAX)
    description: Optional[str] = None
    thumbnail: Optional[str] = Field(default=None, max_length=THUMBNAIL_MAX)


# ══════════════════════════════════════════════════════════════════════════
# Request Models
# ══════════════════════════════════════════════════════════════════════════


class BookCreate(BaseModel):
    title: str = Field(min_length=1, max_length=TEXT_MAX)
    author: str = Field(min_length=1, max_length=TEXT_MAX)
    publisher: Optional[str] = Field(default=None, max_length=PUBLISHER_MAX)
    published_at: Optional[datetime] = None
    isbn10: Optional[str] = Field(default=None, max_length=ISBN10_MAX)
    isbn13: Optional[str] = Field(default=None, max_length=ISBN13_MAX)
    description: Optional[str] = None
    comment: Optional[str] = None
    thumbnail: Optional[str] = Field(default=None, max_length=THUMBNAIL_MAX)
    owner_id: Optional[uuid.UUID] = None

    @field_validator(*_OPTIONAL_TEXT_FIELDS, "published_at", "owner_id", mode="before")
    @classmethod
    def normalise_blank(cls, v):
        return blank_to_none(v)

    @field_validator("thumbnail")
    @classmethod
    def validate_thumbnail(cls, v: Optional[str]) -> Optional[str]:
        return _check_thumbnail(v)

    @model_validator(mode="after")
    def require_isbn(self) -> "BookCreate":
        if not self.isbn10 and not self.isbn13:
            raise ValueError("Either isbn10 or isbn13 is required")
        return self


class BookUpdate(BaseModel):
    """
    Partial update of descriptive fields and owner.

    status is absent and unknown keys are rejected (422): status follows
    lend/return, or is set explicitly through PATCH /books/{id}/status.
    """
    model_config = {"extra": "forbid"}

    title: Optional[str] = Field(default=None, min_length=1, max_length=TEXT_MAX)
    author: Optional[str] = Field(default=None, min_length=1, max_length=TEXT_MAX)
    publisher: Optional[str] = Field(default=None, max_length=PUBLISHER_MAX)
    published_at: Optional[datetime] = None
    isbn10: Optional[str] = Field(default=None, max_length=ISBN10_MAX)
    isbn13: Optional[str] = Field(default=None, max_length=ISBN13_MAX)
    description: Optional[str] = None
    comment: Optional[str] = None
    thumbnail: Optional[str] = Field(default=None, max_length=THUMBNAIL_MAX)
    owner_id: Optional[uuid.UUID] = None

    @field_validator(*_OPTIONAL_TEXT_FIELDS, "published_at", "owner_id", mode="before")
    @classmethod
    def normalise_blank(cls, v):
        return blank_to_none(v)

    @field_validator("thumbnail")
    @classmethod
    def validate_thumbnail(cls, v: Optional[str]) -> Optional[str]:
        return _check_thumbnail(v)

    @field_validator("title", "author", mode="before")
    @classmethod
    def required_not_null(cls, v):
        return reject_null(v)


class BookStatusUpdate(BaseModel):
    status: BookStatus


class IsbnBookCreate(BaseModel):
    """Body of POST /books/isbn/{isbn}. May be empty."""
    owner_id: Optional[uuid.UUID] = None


# ══════════════════════════════════════════════════════════════════════════
# Response Models
# ══════════════════════════════════════════════════════════════════════════


class BookResponse(BaseModel):
    id: uuid.UUID
    title: str
    author: str
    publisher: Optional[str] = None
    published_at: Optional[datetime] = None
    isbn10: Optional[str] = None
    isbn13: Optional[str] = None
    description: Optional[str] = None
    comment: Optional[str] = None
    thumbnail: Optional[str] = None
    status: BookStatus
    owner_id: Optional[uuid.UUID] = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class BookLoanItem(BaseModel):
    """The active loan of a book, with who holds it."""
    id: uuid.UUID
    lent_at: datetime
    due_at: datetime
    borrower: UserSummary

    model_config = {"from_attributes": True}


class BookDetail(BookResponse):
    """
    What:  Single book with its owner and, if lent, the current loan.
    Who:   Returned by GET /api/v1/books/{id}.
    """
    owner: Optional[UserSummary] = None
    active_loan: Optional[BookLoanItem] = None
