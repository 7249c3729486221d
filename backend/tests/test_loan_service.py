"""
Library API Backend — Loan Service Tests
=========================================

What:  Tests for the loan lifecycle (lend, return, list, remove).
How:   Real SQLite store per test; books and users come from the conftest
       factories.

What we test:
    ✅ lend creates an active loan and marks the book LENT
    ✅ lend rejects unavailable books, ineligible borrowers, bad day counts
    ✅ a failed lend leaves nothing behind (book stays AVAILABLE)
    ✅ two concurrent lends of one book: exactly one wins
    ✅ two concurrent lends to one TIER_4 user: the limit holds
    ✅ two concurrent returns of one loan: exactly one closes it
    ✅ return closes the loan once; a second return changes nothing
    ✅ return permission (borrower, owner, ADMIN; anyone else is Forbidden)
    ✅ list filters and overdue listing
    ✅ remove refuses active loans
"""

import asyncio
from datetime import timedelta
from uuid import uuid4

import pytest

from library_api.database import utcnow
from library_api.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from library_api.models import Book, BookStatus, Loan, UserRole, UserTier
from library_api.store import StoreTransaction


async def _book_status(store, book_id) -> BookStatus:
    book = await store.find_one(Book, Book.id == book_id)
    return book.status


class TestLend:

    @pytest.mark.asyncio
    async def test_lend_success(self, loan_service, store, make_user, make_book):
        """A lend creates an active loan due in 14 days and marks the book LENT."""
        user = await make_user()
        book = await make_book()

        before = utcnow()
        loan = await loan_service.lend(book.id, user.id)

        assert loan.book_id == book.id
        assert loan.borrower_id == user.id
        assert loan.returned_at is None
        assert loan.book.status == BookStatus.LENT
        assert loan.borrower.id == user.id
        assert timedelta(days=14) - timedelta(seconds=5) < loan.due_at - before < timedelta(days=14, seconds=5)
        assert await _book_status(store, book.id) == BookStatus.LENT

    @pytest.mark.asyncio
    async def test_lend_custom_days(self, loan_service, make_user, make_book):
        loan = await loan_service.lend((await make_book()).id, (await make_user()).id, days=3)
        assert loan.due_at - loan.lent_at == timedelta(days=3)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("days", [0, -1, 366])
    async def test_lend_rejects_days_out_of_range(self, loan_service, store, make_user, make_book, days):
        book = await make_book()
        with pytest.raises(ValidationError):
            await loan_service.lend(book.id, (await make_user()).id, days=days)
        assert await store.find_many(Loan) == []

    @pytest.mark.asyncio
    async def test_lend_lent_book(self, loan_service, make_user, make_book, make_loan):
        book = await make_book()
        await make_loan(book, await make_user(tier=UserTier.TIER_1))

        with pytest.raises(ConflictError) as exc_info:
            await loan_service.lend(book.id, (await make_user()).id)
        assert exc_info.value.message == "Book not available"

    @pytest.mark.asyncio
    async def test_lend_lost_book(self, loan_service, make_user, make_book):
        book = await make_book(status=BookStatus.LOST)
        with pytest.raises(ConflictError, match="Book not available"):
            await loan_service.lend(book.id, (await make_user()).id)

    @pytest.mark.asyncio
    async def test_lend_missing_book(self, loan_service, make_user):
        with pytest.raises(ConflictError, match="Book not available"):
            await loan_service.lend(uuid4(), (await make_user()).id)

    @pytest.mark.asyncio
    async def test_lend_missing_borrower(self, loan_service, store, make_book):
        """Unknown borrower is NotFound, and the book is left AVAILABLE."""
        book = await make_book()
        with pytest.raises(NotFoundError, match="User not found"):
            await loan_service.lend(book.id, uuid4())
        assert await _book_status(store, book.id) == BookStatus.AVAILABLE
        assert await store.find_many(Loan) == []

    @pytest.mark.asyncio
    async def test_lend_at_limit(self, loan_service, store, make_user, make_book, make_loan):
        user = await make_user(tier=UserTier.TIER_3)
        await make_loan(await make_book(title="One"), user)
        await make_loan(await make_book(title="Two"), user)
        third = await make_book(title="Three")

        with pytest.raises(ConflictError) as exc_info:
            await loan_service.lend(third.id, user.id)
        assert exc_info.value.message == "User has reached borrowing limit (2/2)"
        assert await _book_status(store, third.id) == BookStatus.AVAILABLE

    @pytest.mark.asyncio
    async def test_lend_with_overdue_book(self, loan_service, make_user, make_book, make_loan):
        user = await make_user(tier=UserTier.TIER_1)
        await make_loan(await make_book(title="Late"), user, due_in=timedelta(days=-1))

        with pytest.raises(ConflictError, match="overdue"):
            await loan_service.lend((await make_book(title="Next")).id, user.id)

    @pytest.mark.asyncio
    async def test_admin_with_overdue_book_is_blocked(self, loan_service, make_user, make_book, make_loan):
        admin = await make_user(role=UserRole.ADMIN)
        await make_loan(await make_book(title="Late"), admin, due_in=timedelta(days=-1))

        with pytest.raises(ConflictError, match="overdue"):
            await loan_service.lend((await make_book(title="Next")).id, admin.id)

    @pytest.mark.asyncio
    async def test_admin_ignores_tier_limit(self, loan_service, make_user, make_book):
        admin = await make_user(role=UserRole.ADMIN, tier=UserTier.TIER_4)
        for title in ("A", "B", "C"):
            await loan_service.lend((await make_book(title=title)).id, admin.id)

    @pytest.mark.asyncio
    async def test_concurrent_lends_one_winner(self, loan_service, store, make_user, make_book):
        """Two lends racing for one book: one loan, one 'Book not available'."""
        book = await make_book()
        first = await make_user(tier=UserTier.TIER_1)
        second = await make_user(tier=UserTier.TIER_1)

        results = await asyncio.gather(
            loan_service.lend(book.id, first.id),
            loan_service.lend(book.id, second.id),
            return_exceptions=True,
        )

        loans = [r for r in results if isinstance(r, Loan)]
        errors = [r for r in results if isinstance(r, Exception)]
        assert len(loans) == 1
        assert len(errors) == 1
        assert isinstance(errors[0], ConflictError)
        assert errors[0].message == "Book not available"

        active = await store.find_many(Loan, Loan.book_id == book.id, Loan.returned_at.is_(None))
        assert len(active) == 1

    @pytest.mark.asyncio
    async def test_concurrent_lends_respect_borrow_limit(self, loan_service, store, make_user, make_book):
        """Two lends of different books to one TIER_4 user: only one fits the limit."""
        user = await make_user(tier=UserTier.TIER_4)
        dune = await make_book(title="Dune")
        emma = await make_book(title="Emma")

        results = await asyncio.gather(
            loan_service.lend(dune.id, user.id),
            loan_service.lend(emma.id, user.id),
            return_exceptions=True,
        )

        loans = [r for r in results if isinstance(r, Loan)]
        errors = [r for r in results if isinstance(r, Exception)]
        assert len(loans) == 1
        assert len(errors) == 1
        assert isinstance(errors[0], ConflictError)
        assert errors[0].message == "User has reached borrowing limit (1/1)"

        active = await store.find_many(Loan, Loan.borrower_id == user.id, Loan.returned_at.is_(None))
        assert len(active) == 1
        statuses = sorted([await _book_status(store, dune.id), await _book_status(store, emma.id)])
        assert statuses == sorted([BookStatus.AVAILABLE, BookStatus.LENT])

    @pytest.mark.asyncio
    async def test_failure_after_insert_rolls_back(self, loan_service, store, make_user, make_book, monkeypatch):
        """If marking the book LENT fails, the new loan is rolled back too."""
        book = await make_book()
        user = await make_user()

        async def broken_update(self, model, entity_id, patch):
            raise RuntimeError("simulated failure")

        monkeypatch.setattr(StoreTransaction, "update", broken_update)

        with pytest.raises(RuntimeError):
            await loan_service.lend(book.id, user.id)

        monkeypatch.undo()
        assert await store.find_many(Loan) == []
        assert await _book_status(store, book.id) == BookStatus.AVAILABLE


class TestReturnLoan:

    @pytest.mark.asyncio
    async def test_return_success(self, loan_service, store, make_user, make_book):
        user = await make_user()
        book = await make_book()
        loan = await loan_service.lend(book.id, user.id)

        returned = await loan_service.return_loan(loan.id)

        assert returned.returned_at is not None
        assert await _book_status(store, book.id) == BookStatus.AVAILABLE

    @pytest.mark.asyncio
    async def test_book_can_be_lent_again_after_return(self, loan_service, make_user, make_book):
        book = await make_book()
        loan = await loan_service.lend(book.id, (await make_user()).id)
        await loan_service.return_loan(loan.id)

        again = await loan_service.lend(book.id, (await make_user()).id)
        assert again.id != loan.id

    @pytest.mark.asyncio
    async def test_concurrent_returns_one_winner(self, loan_service, store, make_user, make_book):
        """Two returns of the same loan at once: one closes it, the other conflicts."""
        book = await make_book()
        loan = await loan_service.lend(book.id, (await make_user()).id)

        results = await asyncio.gather(
            loan_service.return_loan(loan.id),
            loan_service.return_loan(loan.id),
            return_exceptions=True,
        )

        returned = [r for r in results if isinstance(r, Loan)]
        errors = [r for r in results if isinstance(r, Exception)]
        assert len(returned) == 1
        assert len(errors) == 1
        assert isinstance(errors[0], ConflictError)
        assert errors[0].message == "Loan has already been returned"

        stored = await store.find_one(Loan, Loan.id == loan.id)
        assert stored.returned_at is not None
        assert await _book_status(store, book.id) == BookStatus.AVAILABLE

    @pytest.mark.asyncio
    async def test_double_return_is_conflict_and_keeps_status(self, loan_service, book_service, store, make_user, make_book):
        """A second return fails and does not touch the book's current status."""
        book = await make_book()
        loan = await loan_service.lend(book.id, (await make_user()).id)
        await loan_service.return_loan(loan.id)
        await book_service.set_status(book.id, BookStatus.LOST)

        with pytest.raises(ConflictError, match="already been returned"):
            await loan_service.return_loan(loan.id)
        assert await _book_status(store, book.id) == BookStatus.LOST

    @pytest.mark.asyncio
    async def test_return_unknown_loan(self, loan_service):
        with pytest.raises(NotFoundError) as exc_info:
            await loan_service.return_loan(uuid4())
        assert exc_info.value.message == "Rental not found"

    @pytest.mark.asyncio
    async def test_borrower_may_return(self, loan_service, make_user, make_book):
        borrower = await make_user()
        loan = await loan_service.lend((await make_book()).id, borrower.id)
        returned = await loan_service.return_loan(loan.id, acting_user_id=borrower.id)
        assert returned.returned_at is not None

    @pytest.mark.asyncio
    async def test_owner_may_return(self, loan_service, make_user, make_book):
        owner = await make_user()
        loan = await loan_service.lend((await make_book(owner_id=owner.id)).id, (await make_user()).id)
        returned = await loan_service.return_loan(loan.id, acting_user_id=owner.id)
        assert returned.returned_at is not None

    @pytest.mark.asyncio
    async def test_admin_may_return(self, loan_service, make_user, make_book):
        admin = await make_user(role=UserRole.ADMIN)
        loan = await loan_service.lend((await make_book()).id, (await make_user()).id)
        returned = await loan_service.return_loan(loan.id, acting_user_id=admin.id)
        assert returned.returned_at is not None

    @pytest.mark.asyncio
    async def test_stranger_may_not_return(self, loan_service, store, make_user, make_book):
        book = await make_book()
        loan = await loan_service.lend(book.id, (await make_user()).id)
        stranger = await make_user()

        with pytest.raises(ForbiddenError):
            await loan_service.return_loan(loan.id, acting_user_id=stranger.id)
        assert await _book_status(store, book.id) == BookStatus.LENT

    @pytest.mark.asyncio
    async def test_unknown_acting_user_is_forbidden(self, loan_service, make_user, make_book):
        loan = await loan_service.lend((await make_book()).id, (await make_user()).id)
        with pytest.raises(ForbiddenError):
            await loan_service.return_loan(loan.id, acting_user_id=uuid4())


class TestListAndRemove:

    @pytest.mark.asyncio
    async def test_list_filters(self, loan_service, make_user, make_book, make_loan):
        alice = await make_user(name="Alice", tier=UserTier.TIER_1)
        bob = await make_user(name="Bob", tier=UserTier.TIER_1)
        dune = await make_book(title="Dune")
        emma = await make_book(title="Emma")
        await make_loan(dune, alice)
        await make_loan(emma, bob, due_in=timedelta(days=-3))

        assert len(await loan_service.list()) == 2
        assert [loan.book.title for loan in await loan_service.list(borrower_id=alice.id)] == ["Dune"]
        assert [loan.borrower.name for loan in await loan_service.list(book_id=emma.id)] == ["Bob"]
        assert await loan_service.list(book_id=dune.id, borrower_id=bob.id) == []

        overdue = await loan_service.list(overdue=True)
        assert [loan.book_id for loan in overdue] == [emma.id]
        assert [loan.id for loan in await loan_service.list_overdue()] == [overdue[0].id]
        assert len(await loan_service.list(overdue=False)) == 2

    @pytest.mark.asyncio
    async def test_returned_loan_is_not_overdue(self, loan_service, make_user, make_book, make_loan):
        await make_loan(await make_book(), await make_user(), due_in=timedelta(days=-3), returned=True)
        assert await loan_service.list_overdue() == []

    @pytest.mark.asyncio
    async def test_get_loads_book_and_borrower(self, loan_service, make_user, make_book, make_loan):
        loan = await make_loan(await make_book(title="Dune"), await make_user(name="Alice"))
        fetched = await loan_service.get(loan.id)
        assert fetched.book.title == "Dune"
        assert fetched.borrower.name == "Alice"

    @pytest.mark.asyncio
    async def test_get_unknown(self, loan_service):
        with pytest.raises(NotFoundError, match="Rental not found"):
            await loan_service.get(uuid4())

    @pytest.mark.asyncio
    async def test_remove_active_loan_is_conflict(self, loan_service, make_user, make_book, make_loan):
        loan = await make_loan(await make_book(), await make_user())
        with pytest.raises(ConflictError, match="Cannot delete an active loan"):
            await loan_service.remove(loan.id)

    @pytest.mark.asyncio
    async def test_remove_returned_loan(self, loan_service, store, make_user, make_book, make_loan):
        loan = await make_loan(await make_book(), await make_user(), returned=True)
        await loan_service.remove(loan.id)
        assert await store.find_one(Loan, Loan.id == loan.id) is None

    @pytest.mark.asyncio
    async def test_remove_unknown(self, loan_service):
        with pytest.raises(NotFoundError):
            await loan_service.remove(uuid4())
