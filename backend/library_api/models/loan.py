"""
Library API Backend — Loan SQLAlchemy Model
============================================

What:  ORM model representing the `loans` table.
Who:   Created only by LoanService.lend; mutated once by LoanService.return_loan.

Lifecycle:
    NONE ──lend──▶ ACTIVE (returned_at IS NULL) ──return──▶ RETURNED (terminal)

Indexes:
    - uq_loans_active_book: partial unique index, at most one active loan per
      book. Supported by PostgreSQL and SQLite.
    - idx_loans_borrower_active: active-loan count per borrower (eligibility).
    - idx_loans_due_active: overdue listing.
"""

import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import ForeignKey, Index, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from library_api.database import Base, UTCDateTime, utcnow

if TYPE_CHECKING:
    from library_api.models.book import Book
    from library_api.models.user import User


class Loan(Base):
    """A single lending of a book to a borrower."""

    __tablename__ = "loans"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    book_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("books.id", ondelete="RESTRICT"),
        nullable=False,
    )
    borrower_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
    )

    lent_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    due_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    returned_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    book: Mapped["Book"] = relationship(back_populates="loans", lazy="raise")
    borrower: Mapped["User"] = relationship(back_populates="loans", lazy="raise")

    __table_args__ = (
        Index(
            "uq_loans_active_book",
            "book_id",
            unique=True,
            postgresql_where=text("returned_at IS NULL"),
            sqlite_where=text("returned_at IS NULL"),
        ),
        Index("idx_loans_borrower_active", "borrower_id", "returned_at"),
        Index("idx_loans_due_active", "due_at", "returned_at"),
    )

    @property
    def is_active(self) -> bool:
        return self.returned_at is None

    def is_overdue(self, now: datetime) -> bool:
        """True when the loan is still out and its due date has passed."""
        return self.returned_at is None and self.due_at < now

    def __repr__(self) -> str:
        state = "active" if self.is_active else "returned"
        return f"<Loan(id={self.id}, book_id={self.book_id}, {state})>"
