"""
Library API Backend — Loan Lifecycle Manager
=============================================

What:  Lending and returning books, plus loan listing and cleanup.
How:   Each write runs in one store transaction. Invariants are checked
       inside that transaction, after the rows involved are locked, so the
       check and the write cannot be separated by another request.
Who:   Called by routes/loans.py (and UserService for a user's loans).

Loan State Machine:
    ┌──────┐   lend    ┌────────┐   return_loan   ┌──────────┐
    │ NONE │──────────▶│ ACTIVE │────────────────▶│ RETURNED │ (terminal)
    └──────┘           └────────┘                 └──────────┘

    ACTIVE   ⇔ returned_at IS NULL ⇔ book.status == LENT
    RETURNED never goes back to ACTIVE; a new lend creates a new loan.

Concurrency:
    Two lends racing for one book: the first to lock the book row wins.
    The second sees status LENT and fails with Conflict("Book not available").
    If both somehow insert, uq_loans_active_book rejects the second insert
    and the resulting integrity conflict is reported the same way.
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from sqlalchemy.orm import selectinload

from library_api.database import utcnow
from library_api.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from library_api.models import Book, BookStatus, Loan, User, UserRole
from library_api.schemas.loan import DEFAULT_LOAN_DAYS
from library_api.services.eligibility import EligibilityService
from library_api.store import EntityStore, StoreTransaction

logger = logging.getLogger(__name__)

MIN_LOAN_DAYS = 1
MAX_LOAN_DAYS = 365

# Loader options for every loan handed back to the route layer
LOAN_DETAIL = (selectinload(Loan.book), selectinload(Loan.borrower))


class LoanService:
    """
    Loan lifecycle operations.

    Responsibilities:
        - lend(): availability + eligibility check, create loan, mark book LENT
        - return_loan(): permission check, close loan, mark book AVAILABLE
        - list()/list_overdue()/get(): reads with book and borrower joined
        - remove(): administrative delete of a returned loan
    """

    def __init__(
        self,
        store: EntityStore,
        eligibility: Optional[EligibilityService] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.clock = clock
        self.eligibility = eligibility or EligibilityService(store, clock=clock)

    async def lend(
        self,
        book_id: uuid.UUID,
        borrower_id: uuid.UUID,
        days: int = DEFAULT_LOAN_DAYS,
    ) -> Loan:
        """
        Lend `book_id` to `borrower_id` for `days` days.

        Workflow (one transaction):
            1. Lock the book; it must exist and be AVAILABLE
            2. Evaluate the borrower's eligibility on the same transaction
            3. Create the loan (lent_at = now, due_at = now + days)
            4. Mark the book LENT

        Raises:
            ValidationError: days outside 1..365
            ConflictError: book missing/unavailable, or borrower not eligible
            NotFoundError: borrower does not exist
        """
        if not MIN_LOAN_DAYS <= days <= MAX_LOAN_DAYS:
            raise ValidationError(
                message=f"days must be between {MIN_LOAN_DAYS} and {MAX_LOAN_DAYS}",
                field="days",
            )

        try:
            async with self.store.transaction() as tx:
                book = await tx.find_one(Book, Book.id == book_id, for_update=True)
                if book is None or book.status != BookStatus.AVAILABLE:
                    raise ConflictError(
                        message="Book not available",
                        context={"book_id": str(book_id)},
                    )

                eligibility = await self.eligibility.can_borrow(borrower_id, tx=tx, for_update=True)
                if not eligibility.can_borrow:
                    raise ConflictError(
                        message=eligibility.reason or "User cannot borrow more books",
                        context={"borrower_id": str(borrower_id)},
                    )

                now = self.clock()
                loan = await tx.create(
                    Loan,
                    book_id=book.id,
                    borrower_id=borrower_id,
                    lent_at=now,
                    due_at=now + timedelta(days=days),
                    returned_at=None,
                )
                await tx.update(Book, book.id, {"status": BookStatus.LENT})
                loan = await tx.find_one(Loan, Loan.id == loan.id, options=LOAN_DETAIL)
        except ConflictError as e:
            if e.context.get("integrity_error"):
                # Lost the race on uq_loans_active_book
                raise ConflictError(
                    message="Book not available",
                    context={"book_id": str(book_id)},
                ) from e
            raise

        logger.info(
            "Book %s lent to user %s (loan %s, due %s)",
            book_id,
            borrower_id,
            loan.id,
            loan.due_at.isoformat(),
        )
        return loan

    async def return_loan(
        self,
        loan_id: uuid.UUID,
        acting_user_id: Optional[uuid.UUID] = None,
    ) -> Loan:
        """
        Close an active loan and make its book AVAILABLE again.

        When `acting_user_id` is given it must be an ADMIN, the borrower or
        the book's owner. Without it the caller is trusted.

        Raises:
            NotFoundError: "Rental not found"
            ForbiddenError: acting user may not return this loan
            ConflictError: loan already returned (book status untouched)
        """
        async with self.store.transaction() as tx:
            loan = await tx.find_one(
                Loan,
                Loan.id == loan_id,
                options=(
                    selectinload(Loan.book).selectinload(Book.owner),
                    selectinload(Loan.borrower),
                ),
                for_update=True,
            )
            if loan is None:
                raise NotFoundError("loan", str(loan_id), message="Rental not found")

            if acting_user_id is not None:
                await self._check_return_permission(tx, loan, acting_user_id)

            if loan.returned_at is not None:
                raise ConflictError(
                    message="Loan has already been returned",
                    context={"loan_id": str(loan_id)},
                )

            await tx.update(Loan, loan.id, {"returned_at": self.clock()})
            await tx.update(Book, loan.book_id, {"status": BookStatus.AVAILABLE})

        logger.info("Loan %s returned (book %s)", loan.id, loan.book_id)
        return loan

    async def _check_return_permission(
        self,
        tx: StoreTransaction,
        loan: Loan,
        acting_user_id: uuid.UUID,
    ) -> None:
        actor = await tx.find_one(User, User.id == acting_user_id)
        allowed = actor is not None and (
            actor.role == UserRole.ADMIN
            or actor.id == loan.borrower_id
            or actor.id == loan.book.owner_id
        )
        if not allowed:
            logger.warning("User %s denied return of loan %s", acting_user_id, loan.id)
            raise ForbiddenError(
                message="You do not have permission to return this book",
                context={"loan_id": str(loan.id)},
            )

    async def list(
        self,
        book_id: Optional[uuid.UUID] = None,
        borrower_id: Optional[uuid.UUID] = None,
        overdue: Optional[bool] = None,
    ) -> List[Loan]:
        """
        Loans matching every supplied filter, newest first.

        overdue=True keeps only active loans past their due date. Without
        filters all loans are returned.
        """
        criteria = []
        if book_id is not None:
            criteria.append(Loan.book_id == book_id)
        if borrower_id is not None:
            criteria.append(Loan.borrower_id == borrower_id)
        if overdue:
            criteria.append(Loan.due_at < self.clock())
            criteria.append(Loan.returned_at.is_(None))

        return await self.store.find_many(
            Loan,
            *criteria,
            options=LOAN_DETAIL,
            order_by=(Loan.lent_at.desc(),),
        )

    async def list_overdue(self) -> List[Loan]:
        return await self.list(overdue=True)

    async def get(self, loan_id: uuid.UUID) -> Loan:
        loan = await self.store.find_one(Loan, Loan.id == loan_id, options=LOAN_DETAIL)
        if loan is None:
            raise NotFoundError("loan", str(loan_id), message="Rental not found")
        return loan

    async def remove(self, loan_id: uuid.UUID) -> None:
        """
        Delete a returned loan record.

        Active loans cannot be deleted: the book would stay LENT with no
        loan behind it. Return the loan first.
        """
        async with self.store.transaction() as tx:
            loan = await tx.find_one(Loan, Loan.id == loan_id, for_update=True)
            if loan is None:
                raise NotFoundError("loan", str(loan_id), message="Rental not found")
            if loan.returned_at is None:
                raise ConflictError(
                    message="Cannot delete an active loan. Please return the book first.",
                    context={"loan_id": str(loan_id)},
                )
            await tx.delete(Loan, loan_id)

        logger.info("Loan %s deleted", loan_id)
