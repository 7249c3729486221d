"""
Library API Backend — Eligibility Evaluator
============================================

What:  Decides whether a user may start a new loan right now.
How:   `evaluate_eligibility()` is a pure function over the user, their
       active loans and the current time. `EligibilityService` loads those
       inputs from the store and calls it, either in its own transaction or
       inside a caller's (lend passes its transaction and locks the user row).
Who:   UserService (GET /users/{id}/can-borrow) and LoanService.lend.

Rules, in order:
    1. Any overdue active loan blocks borrowing, whatever the role or tier.
    2. ADMIN has no numeric cap (max_loans = -1).
    3. Otherwise max_loans comes from the tier table; the user may borrow
       while current_loans < max_loans.
"""

import logging
import uuid
from datetime import datetime
from typing import Callable, Optional, Sequence

from library_api.database import utcnow
from library_api.exceptions import NotFoundError
from library_api.models import Loan, User, UserRole, UserTier
from library_api.schemas.user import BorrowEligibility
from library_api.store import EntityStore, StoreTransaction

logger = logging.getLogger(__name__)

TIER_LIMITS = {
    UserTier.TIER_1: 3,
    UserTier.TIER_2: 3,
    UserTier.TIER_3: 2,
    UserTier.TIER_4: 1,
}
DEFAULT_LIMIT = 1
UNLIMITED = -1


def borrow_limit(tier) -> int:
    """Maximum concurrent loans for `tier`; unknown tiers get the default of 1."""
    return TIER_LIMITS.get(tier, DEFAULT_LIMIT)


def evaluate_eligibility(user: User, active_loans: Sequence[Loan], now: datetime) -> BorrowEligibility:
    current = len(active_loans)
    overdue = sum(1 for loan in active_loans if loan.due_at < now)
    is_admin = user.role == UserRole.ADMIN
    max_loans = UNLIMITED if is_admin else borrow_limit(user.tier)

    if overdue > 0:
        return BorrowEligibility(
            can_borrow=False,
            current_loans=current,
            max_loans=max_loans,
            has_overdue_books=True,
            overdue_count=overdue,
            reason=f"User has {overdue} overdue book(s). Please return them before borrowing more.",
        )

    if is_admin:
        return BorrowEligibility(
            can_borrow=True,
            current_loans=current,
            max_loans=UNLIMITED,
            has_overdue_books=False,
            overdue_count=0,
        )

    allowed = current < max_loans
    return BorrowEligibility(
        can_borrow=allowed,
        current_loans=current,
        max_loans=max_loans,
        has_overdue_books=False,
        overdue_count=0,
        reason=None if allowed else f"User has reached borrowing limit ({current}/{max_loans})",
    )


class EligibilityService:
    """Store-backed wrapper around `evaluate_eligibility`. Read-only."""

    def __init__(self, store: EntityStore, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.clock = clock

    async def can_borrow(
        self,
        user_id: uuid.UUID,
        tx: Optional[StoreTransaction] = None,
        for_update: bool = False,
    ) -> BorrowEligibility:
        """
        Eligibility for `user_id`.

        Args:
            tx: Run on this transaction instead of opening a new one.
            for_update: Lock the user row (PostgreSQL) so two lends for the
                same borrower cannot both pass the limit check.

        Raises:
            NotFoundError: no such user.
        """
        if tx is None:
            async with self.store.transaction() as own_tx:
                return await self._evaluate(own_tx, user_id, for_update)
        return await self._evaluate(tx, user_id, for_update)

    async def _evaluate(self, tx: StoreTransaction, user_id: uuid.UUID, for_update: bool) -> BorrowEligibility:
        user = await tx.find_one(User, User.id == user_id, for_update=for_update)
        if user is None:
            raise NotFoundError("user", str(user_id), message="User not found")

        active_loans = await tx.find_many(
            Loan,
            Loan.borrower_id == user_id,
            Loan.returned_at.is_(None),
        )
        result = evaluate_eligibility(user, active_loans, self.clock())
        logger.debug(
            "Eligibility for user %s: can_borrow=%s (%d/%d, overdue=%d)",
            user_id,
            result.can_borrow,
            result.current_loans,
            result.max_loans,
            result.overdue_count,
        )
        return result
