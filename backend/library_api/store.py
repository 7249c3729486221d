"""
Library API Backend — Entity Store
===================================

What:  The persistence handle every service receives at construction.
How:   Wraps an async engine and session factory. All work happens inside
       a scoped transaction: acquire a session, run the unit of work,
       commit on success, roll back on any exception.
Who:   Built once in create_app() (or by tests) and injected into the
       services. Nothing else opens sessions.

Usage:
    async with store.transaction() as tx:
        book = await tx.find_one(Book, Book.id == book_id, for_update=True)
        ...
        # leaving the block commits; raising rolls back

    # one-off reads/writes get their own short transaction
    user = await store.find_one(User, User.email == email)

Error translation (inside a transaction):
    LibraryError         → re-raised unchanged (after rollback)
    IntegrityError       → ConflictError (context["integrity_error"] = True)
    other SQLAlchemyError → DatabaseError, logged with traceback
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Sequence, Type, TypeVar

from sqlalchemy import delete as sql_delete
from sqlalchemy import select, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from library_api.config import Settings
from library_api.database import Base, create_engine_from_url, create_session_factory
from library_api.exceptions import ConflictError, DatabaseError, LibraryError

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=Base)
ResultT = TypeVar("ResultT")


class StoreTransaction:
    """
    CRUD surface bound to one open session.

    Changes are flushed immediately so generated ids and defaults are
    visible to the rest of the unit of work; the commit happens when the
    owning `transaction()` block exits.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def find_one(
        self,
        model: Type[ModelT],
        *criteria: Any,
        options: Sequence[Any] = (),
        for_update: bool = False,
    ) -> Optional[ModelT]:
        """
        First row matching `criteria`, or None.

        for_update=True adds SELECT ... FOR UPDATE on PostgreSQL. SQLite
        ignores the clause; there the whole transaction already holds the
        write lock (see database.py).
        """
        stmt = select(model).where(*criteria).limit(1)
        if options:
            # Reload relationships even if the row is already in the identity map
            stmt = stmt.options(*options).execution_options(populate_existing=True)
        if for_update:
            stmt = stmt.with_for_update(of=model)
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def find_many(
        self,
        model: Type[ModelT],
        *criteria: Any,
        options: Sequence[Any] = (),
        order_by: Sequence[Any] = (),
    ) -> List[ModelT]:
        stmt = select(model).where(*criteria)
        if options:
            stmt = stmt.options(*options).execution_options(populate_existing=True)
        if order_by:
            stmt = stmt.order_by(*order_by)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def create(self, model: Type[ModelT], **data: Any) -> ModelT:
        instance = model(**data)
        self.session.add(instance)
        await self.session.flush()
        return instance

    async def update(self, model: Type[ModelT], entity_id: Any, patch: Dict[str, Any]) -> Optional[ModelT]:
        """Apply `patch` to the row with primary key `entity_id`. None when missing."""
        instance = await self.session.get(model, entity_id)
        if instance is None:
            return None
        for field, value in patch.items():
            setattr(instance, field, value)
        await self.session.flush()
        return instance

    async def delete(self, model: Type[ModelT], entity_id: Any) -> bool:
        """Delete by primary key. Returns False when nothing was deleted."""
        result = await self.session.execute(
            sql_delete(model).where(model.id == entity_id)
        )
        return result.rowcount > 0

    async def execute(self, statement: Any) -> Any:
        return await self.session.execute(statement)


class EntityStore:
    """
    Durable store for users, books and loans.

    Responsibilities:
        - transaction(): scoped unit of work (the one atomicity primitive)
        - run_transaction(): same thing for a callable
        - find_one/find_many/create/update/delete/execute: one-shot helpers,
          each in its own short transaction
        - ping()/dispose(): health check and shutdown
    """

    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self._session_factory = create_session_factory(engine)

    @classmethod
    def from_url(cls, database_url: str, config: Optional[Settings] = None) -> "EntityStore":
        return cls(create_engine_from_url(database_url, config))

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[StoreTransaction]:
        async with self._session_factory() as session:
            try:
                async with session.begin():
                    yield StoreTransaction(session)
            except LibraryError:
                raise
            except IntegrityError as e:
                logger.info("Integrity violation rolled back: %s", e.orig)
                raise ConflictError(
                    message="The request conflicts with existing data",
                    context={"integrity_error": True},
                ) from e
            except SQLAlchemyError as e:
                logger.error("Database error, transaction rolled back: %s", str(e), exc_info=True)
                raise DatabaseError(context={"original_error": type(e).__name__}) from e

    async def run_transaction(
        self, fn: Callable[[StoreTransaction], Awaitable[ResultT]]
    ) -> ResultT:
        """Run `fn(tx)` inside one transaction and return its result."""
        async with self.transaction() as tx:
            return await fn(tx)

    # ── One-shot helpers ──────────────────────────────────────────────────
    async def find_one(self, model: Type[ModelT], *criteria: Any, **kwargs: Any) -> Optional[ModelT]:
        async with self.transaction() as tx:
            return await tx.find_one(model, *criteria, **kwargs)

    async def find_many(self, model: Type[ModelT], *criteria: Any, **kwargs: Any) -> List[ModelT]:
        async with self.transaction() as tx:
            return await tx.find_many(model, *criteria, **kwargs)

    async def create(self, model: Type[ModelT], **data: Any) -> ModelT:
        async with self.transaction() as tx:
            return await tx.create(model, **data)

    async def update(self, model: Type[ModelT], entity_id: Any, patch: Dict[str, Any]) -> Optional[ModelT]:
        async with self.transaction() as tx:
            return await tx.update(model, entity_id, patch)

    async def delete(self, model: Type[ModelT], entity_id: Any) -> bool:
        async with self.transaction() as tx:
            return await tx.delete(model, entity_id)

    async def execute(self, statement: Any) -> Any:
        async with self.transaction() as tx:
            return await tx.execute(statement)

    # ── Lifecycle ─────────────────────────────────────────────────────────
    async def create_schema(self) -> None:
        """Create all tables from model metadata (tests and local SQLite only)."""
        import library_api.models  # noqa: F401  registers the tables

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def ping(self) -> bool:
        """True when a trivial query succeeds."""
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.warning("Database health check failed: %s", str(e))
            return False

    async def dispose(self) -> None:
        """Close all pooled connections. Called during app shutdown."""
        await self.engine.dispose()
        logger.info("Database engine disposed")
