"""
Library API Backend — User Service
===================================

What:  User CRUD, the active-loan deletion guard, and per-user views
       (loans, owned books, borrow eligibility).
Who:   Called by routes/users.py.

Deletion (one transaction):
    active loan exists → Conflict, nothing changes
    otherwise          → delete returned loans, clear owner_id on owned
                         books, delete the user
"""

import logging
import uuid
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, func, or_, update
from sqlalchemy.orm import selectinload

from library_api.exceptions import ConflictError, NotFoundError
from library_api.models import Book, Loan, User, UserRole, UserTier
from library_api.schemas.user import BorrowEligibility
from library_api.services.eligibility import EligibilityService
from library_api.services.loan_service import LOAN_DETAIL
from library_api.store import EntityStore, StoreTransaction

logger = logging.getLogger(__name__)

USER_DETAIL = (selectinload(User.active_loans).selectinload(Loan.book),)


class UserService:

    def __init__(self, store: EntityStore, eligibility: Optional[EligibilityService] = None):
        self.store = store
        self.eligibility = eligibility or EligibilityService(store)

    async def list(
        self,
        q: Optional[str] = None,
        email: Optional[str] = None,
        role: Optional[UserRole] = None,
        tier: Optional[UserTier] = None,
    ) -> List[User]:
        """Users matching every filter. q searches name and email."""
        criteria = []
        if q:
            pattern = f"%{q}%"
            criteria.append(or_(User.name.ilike(pattern), User.email.ilike(pattern)))
        if email:
            criteria.append(func.lower(User.email) == email.lower())
        if role is not None:
            criteria.append(User.role == role)
        if tier is not None:
            criteria.append(User.tier == tier)

        return await self.store.find_many(User, *criteria, order_by=(User.created_at.desc(),))

    async def get(self, user_id: uuid.UUID) -> User:
        user = await self.store.find_one(User, User.id == user_id, options=USER_DETAIL)
        if user is None:
            raise NotFoundError("user", str(user_id), message="User not found")
        return user

    async def create(self, data: Dict[str, Any]) -> User:
        async with self.store.transaction() as tx:
            await self._ensure_email_free(tx, data["email"])
            user = await tx.create(User, **data)

        logger.info("User created: %s", user.id)
        return user

    async def update(self, user_id: uuid.UUID, patch: Dict[str, Any]) -> User:
        async with self.store.transaction() as tx:
            if patch.get("email"):
                await self._ensure_email_free(tx, patch["email"], exclude_id=user_id)
            user = await tx.update(User, user_id, patch)
            if user is None:
                raise NotFoundError("user", str(user_id), message="User not found")
        return user

    async def remove(self, user_id: uuid.UUID) -> None:
        """
        Raises:
            NotFoundError: no such user
            ConflictError: the user still holds a book
        """
        async with self.store.transaction() as tx:
            user = await tx.find_one(
                User,
                User.id == user_id,
                options=(selectinload(User.active_loans),),
                for_update=True,
            )
            if user is None:
                raise NotFoundError("user", str(user_id), message="User not found")
            if user.active_loans:
                raise ConflictError(
                    message="Cannot delete user with active loans. Please return all books first.",
                    context={"user_id": str(user_id), "active_loans": len(user.active_loans)},
                )

            await tx.execute(delete(Loan).where(Loan.borrower_id == user_id))
            await tx.execute(update(Book).where(Book.owner_id == user_id).values(owner_id=None))
            await tx.delete(User, user_id)

        logger.info("User %s deleted", user_id)

    async def loans(self, user_id: uuid.UUID) -> List[Loan]:
        """All loans of a user, active and returned, newest first."""
        async with self.store.transaction() as tx:
            await self._ensure_exists(tx, user_id)
            return await tx.find_many(
                Loan,
                Loan.borrower_id == user_id,
                options=LOAN_DETAIL,
                order_by=(Loan.lent_at.desc(),),
            )

    async def books(self, user_id: uuid.UUID) -> List[Book]:
        """Books owned by a user."""
        async with self.store.transaction() as tx:
            await self._ensure_exists(tx, user_id)
            return await tx.find_many(
                Book,
                Book.owner_id == user_id,
                order_by=(Book.created_at.desc(),),
            )

    async def can_borrow(self, user_id: uuid.UUID) -> BorrowEligibility:
        return await self.eligibility.can_borrow(user_id)

    @staticmethod
    async def _ensure_exists(tx: StoreTransaction, user_id: uuid.UUID) -> None:
        if await tx.find_one(User, User.id == user_id) is None:
            raise NotFoundError("user", str(user_id), message="User not found")

    @staticmethod
    async def _ensure_email_free(
        tx: StoreTransaction,
        email: str,
        exclude_id: Optional[uuid.UUID] = None,
    ) -> None:
        criteria = [func.lower(User.email) == email.lower()]
        if exclude_id is not None:
            criteria.append(User.id != exclude_id)
        if await tx.find_one(User, *criteria) is not None:
            raise ConflictError(
                message="A user with this email already exists",
                context={"email": email},
            )
