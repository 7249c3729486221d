"""
Library API Backend — Book Service & Lifecycle Guard
=====================================================

What:  Catalogue operations on books, ISBN-based creation, and the
       guards that tie a book's deletion and status to its loans.
Who:   Called by routes/books.py and the seed command.

Guards:
    remove()      refuses while an active loan exists; otherwise deletes the
                  book's returned loans and the book in one transaction
    set_status()  administrative overwrite, no cross-check against loans
    update()      never touches status (lend/return own LENT/AVAILABLE)

ISBN creation:
    create_from_isbn() asks the metadata resolver first. A None answer is
    not an error: the book is created from placeholder data instead.
"""

import logging
import re
import uuid
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, or_
from sqlalchemy.orm import selectinload

from library_api.exceptions import ConflictError, NotFoundError, ValidationError
from library_api.models import Book, BookStatus, Loan, User
from library_api.schemas.book import BookMetadata
from library_api.services.metadata_base import MetadataResolver
from library_api.store import EntityStore, StoreTransaction

logger = logging.getLogger(__name__)

_ISBN_PATTERN = re.compile(r"^(\d{9}[\dX]|\d{13})$")

BOOK_DETAIL = (
    selectinload(Book.owner),
    selectinload(Book.active_loan).selectinload(Loan.borrower),
)


def normalise_isbn(isbn: str) -> str:
    """
    Strip spaces and hyphens and upper-case a trailing x.

    Raises:
        ValidationError: the result is not a 10- or 13-character ISBN.
    """
    cleaned = re.sub(r"[\s-]", "", isbn or "").upper()
    if not _ISBN_PATTERN.match(cleaned):
        raise ValidationError(
            message=f"'{isbn}' is not a valid ISBN-10 or ISBN-13",
            field="isbn",
        )
    return cleaned


def placeholder_metadata(isbn: str) -> BookMetadata:
    """Stand-in data used when an ISBN cannot be resolved."""
    return BookMetadata(title=f"Book with ISBN {isbn}", author="Unknown", isbn13=isbn)


class BookService:
    """
    Book operations.

    Responsibilities:
        - list()/get(): catalogue reads
        - create()/create_from_isbn()/lookup_isbn(): cataloguing
        - update(): descriptive fields and owner
        - remove()/set_status(): lifecycle guard
    """

    def __init__(self, store: EntityStore, resolver: MetadataResolver):
        self.store = store
        self.resolver = resolver

    async def list(
        self,
        q: Optional[str] = None,
        status: Optional[BookStatus] = None,
        author: Optional[str] = None,
    ) -> List[Book]:
        """
        Books matching every supplied filter, newest first.

        q is a case-insensitive substring match on title, author, isbn10 or
        isbn13. author is a substring match on author alone.
        """
        criteria = []
        if q:
            pattern = f"%{q}%"
            criteria.append(
                or_(
                    Book.title.ilike(pattern),
                    Book.author.ilike(pattern),
                    Book.isbn10.ilike(pattern),
                    Book.isbn13.ilike(pattern),
                )
            )
        if status is not None:
            criteria.append(Book.status == status)
        if author:
            criteria.append(Book.author.ilike(f"%{author}%"))

        return await self.store.find_many(Book, *criteria, order_by=(Book.created_at.desc(),))

    async def get(self, book_id: uuid.UUID) -> Book:
        book = await self.store.find_one(Book, Book.id == book_id, options=BOOK_DETAIL)
        if book is None:
            raise NotFoundError("book", str(book_id), message="Book not found")
        return book

    async def create(self, data: Dict[str, Any]) -> Book:
        """
        Create a book from validated fields.

        Raises:
            NotFoundError: owner_id given but no such user.
        """
        async with self.store.transaction() as tx:
            await self._ensure_owner_exists(tx, data.get("owner_id"))
            book = await tx.create(Book, **data)

        logger.info("Book created: %s (%s)", book.id, book.title)
        return book

    async def create_from_isbn(self, isbn: str, owner_id: Optional[uuid.UUID] = None) -> Book:
        """
        Catalogue a book from its ISBN.

        Resolver failures never surface here; an unresolved ISBN yields
        {title: "Book with ISBN {isbn}", author: "Unknown", isbn13: isbn}.
        """
        isbn = normalise_isbn(isbn)
        metadata = await self.resolver.fetch_by_isbn(isbn)
        if metadata is None:
            logger.warning("No metadata for ISBN %s, using placeholder", isbn)
            metadata = placeholder_metadata(isbn)

        data = metadata.model_dump()
        data["owner_id"] = owner_id
        return await self.create(data)

    async def lookup_isbn(self, isbn: str) -> BookMetadata:
        """Resolver passthrough; NotFound when nothing could be resolved."""
        isbn = normalise_isbn(isbn)
        metadata = await self.resolver.fetch_by_isbn(isbn)
        if metadata is None:
            raise NotFoundError(
                "book information",
                message=f"No book information found for ISBN {isbn}",
            )
        return metadata

    async def update(self, book_id: uuid.UUID, patch: Dict[str, Any]) -> Book:
        if "status" in patch:
            raise ValidationError(
                message="Book status cannot be changed here; use the status endpoint",
                field="status",
            )
        async with self.store.transaction() as tx:
            if patch.get("owner_id") is not None:
                await self._ensure_owner_exists(tx, patch["owner_id"])
            book = await tx.update(Book, book_id, patch)
            if book is None:
                raise NotFoundError("book", str(book_id), message="Book not found")
        return book

    async def remove(self, book_id: uuid.UUID) -> None:
        """
        Delete a book and its returned loans.

        Raises:
            NotFoundError: "Book not found"
            ConflictError: the book has an active loan (nothing is changed)
        """
        async with self.store.transaction() as tx:
            book = await tx.find_one(
                Book,
                Book.id == book_id,
                options=(selectinload(Book.loans),),
                for_update=True,
            )
            if book is None:
                raise NotFoundError("book", str(book_id), message="Book not found")

            if any(loan.returned_at is None for loan in book.loans):
                raise ConflictError(
                    message="Cannot delete book with active loans. Please return the book first.",
                    context={"book_id": str(book_id)},
                )

            history = len(book.loans)
            if history:
                await tx.execute(delete(Loan).where(Loan.book_id == book_id))
            await tx.delete(Book, book_id)

        logger.info("Book %s deleted with %d historical loan(s)", book_id, history)

    async def set_status(self, book_id: uuid.UUID, status: BookStatus) -> Book:
        """
        Overwrite a book's status.

        No check against loans happens here: this is the administrative
        correction path (e.g. marking a book LOST).
        """
        book = await self.store.update(Book, book_id, {"status": status})
        if book is None:
            raise NotFoundError("book", str(book_id), message="Book not found")
        logger.info("Book %s status set to %s", book_id, status.value)
        return book

    @staticmethod
    async def _ensure_owner_exists(tx: StoreTransaction, owner_id: Optional[uuid.UUID]) -> None:
        if owner_id is None:
            return
        owner = await tx.find_one(User, User.id == owner_id)
        if owner is None:
            raise NotFoundError("user", str(owner_id), message="Owner not found")
