"""
Library API Backend — User SQLAlchemy Model
============================================

What:  ORM model representing the `users` table.
Who:   Used by UserService, the Eligibility Evaluator and the loan permission check.

Table Design:
    - email is unique; duplicates surface as ConflictError from the store
    - role/tier stored as short strings (portable across PostgreSQL and SQLite)
    - A user owns books (weak link, books.owner_id) and borrows them (strong
      link, loans.borrower_id). Deleting a user is guarded in UserService.
"""

import uuid
from datetime import datetime
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import Enum, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from library_api.database import Base, UTCDateTime, utcnow
from library_api.models.enums import UserRole, UserTier

if TYPE_CHECKING:
    from library_api.models.book import Book
    from library_api.models.loan import Loan


class User(Base):
    """
    A library member or administrator.

    Relationships use lazy="raise": every query that needs books or loans
    must ask for them with an explicit loader option, since implicit lazy
    loads are not possible on an async session.
    """

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True, index=True)

    role: Mapped[UserRole] = mapped_column(
        Enum(UserRole, native_enum=False, length=16),
        nullable=False,
        default=UserRole.USER,
    )

    # Default tier is the most restrictive one (one book at a time)
    tier: Mapped[UserTier] = mapped_column(
        Enum(UserTier, native_enum=False, length=16),
        nullable=False,
        default=UserTier.TIER_4,
    )

    phone: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    address: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    books: Mapped[List["Book"]] = relationship(back_populates="owner", lazy="raise")
    loans: Mapped[List["Loan"]] = relationship(back_populates="borrower", lazy="raise")

    # Read-only view of loans with returned_at IS NULL
    active_loans: Mapped[List["Loan"]] = relationship(
        primaryjoin="and_(User.id == Loan.borrower_id, Loan.returned_at.is_(None))",
        viewonly=True,
        lazy="raise",
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email='{self.email}', role='{self.role.value}')>"
