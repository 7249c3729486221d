"""
Library API Backend — Book SQLAlchemy Model
============================================

What:  ORM model representing the `books` table.
Who:   Used by BookService (catalogue + lifecycle guard) and LoanService.

Invariants maintained by the services (not by this model):
    - status == LENT  iff an active loan (returned_at IS NULL) exists
    - status == AVAILABLE iff none does
    - a book with an active loan is never deleted
"""

import uuid
from datetime import datetime
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import Enum, ForeignKey, Index, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from library_api.database import Base, UTCDateTime, utcnow
from library_api.models.enums import BookStatus

if TYPE_CHECKING:
    from library_api.models.loan import Loan
    from library_api.models.user import User


class Book(Base):
    """A catalogued book, optionally owned by a user."""

    __tablename__ = "books"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    title: Mapped[str] = mapped_column(String(512), nullable=False)
    author: Mapped[str] = mapped_column(String(512), nullable=False)
    publisher: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    published_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    isbn10: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    isbn13: Mapped[Optional[str]] = mapped_column(String(13), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    comment: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    thumbnail: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)

    status: Mapped[BookStatus] = mapped_column(
        Enum(BookStatus, native_enum=False, length=16),
        nullable=False,
        default=BookStatus.AVAILABLE,
    )

    # Weak reference: the owner does not own the book's lifetime.
    # UserService clears this column before deleting the owner.
    owner_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    owner: Mapped[Optional["User"]] = relationship(back_populates="books", lazy="raise")
    loans: Mapped[List["Loan"]] = relationship(back_populates="book", lazy="raise")

    # At most one row thanks to uq_loans_active_book
    active_loan: Mapped[Optional["Loan"]] = relationship(
        primaryjoin="and_(Book.id == Loan.book_id, Loan.returned_at.is_(None))",
        viewonly=True,
        uselist=False,
        lazy="raise",
    )

    __table_args__ = (
        Index("idx_books_title", "title"),
        Index("idx_books_isbn13", "isbn13"),
        Index("idx_books_owner_id", "owner_id"),
    )

    def __repr__(self) -> str:
        return f"<Book(id={self.id}, title='{self.title}', status='{self.status.value}')>"
