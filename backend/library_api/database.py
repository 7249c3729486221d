"""
Library API Backend — Database Engine & Session Factory
========================================================

What:  Async SQLAlchemy engine construction, session factory and the
       declarative Base shared by all models.
How:   `create_engine_from_url()` builds an async engine with pooling for
       PostgreSQL, or a serialised-writer configuration for SQLite.
       The EntityStore (store.py) owns the engine and hands out sessions.
Who:   Used by the EntityStore, Alembic and the test fixtures.

Connection Pooling Strategy (PostgreSQL):
    pool_size=20:      Persistent connections for normal load
    max_overflow=10:   Temporary connections for traffic spikes (total max = 30)
    pool_pre_ping:     Validates connections before use
    pool_recycle=3600: Recycles connections every hour

SQLite:
    Every transaction starts with BEGIN IMMEDIATE, so the first statement of
    a lend/return already holds the write lock. Two lends racing for the same
    book therefore run one after the other and the second one reads the
    committed LENT status. Foreign keys are switched on per connection.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime, event
from sqlalchemy.engine import Engine
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.types import TypeDecorator

from library_api.config import Settings, settings as default_settings


# ── Base Model ────────────────────────────────────────────────────────────
class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy ORM models.

    All models inherit from this class so they register with a single
    metadata object (used by Alembic and by `create_all` in tests).
    """
    pass


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware DateTime that always comes back as UTC.

    PostgreSQL returns aware datetimes already; SQLite stores naive text and
    returns naive values. Normalising here lets the services compare
    `due_at < now` without caring which backend is in use.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: Optional[datetime], dialect) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value: Optional[datetime], dialect) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Engine Configuration ──────────────────────────────────────────────────
def _configure_sqlite(sync_engine: Engine) -> None:
    """Attach the connect/begin listeners that make SQLite behave transactionally."""

    @event.listens_for(sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # Take BEGIN away from the driver so the "begin" hook below owns it
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_engine_from_url(
    database_url: str,
    config: Optional[Settings] = None,
) -> AsyncEngine:
    """
    Build the async engine for `database_url`.

    Pool options from settings apply to server databases only; SQLite uses
    SQLAlchemy's default pool for its URL type.
    """
    config = config or default_settings
    is_sqlite = database_url.startswith("sqlite")

    engine_kwargs = {
        # Echo SQL queries in DEBUG mode for development visibility
        "echo": config.log_level == "DEBUG",
    }
    if not is_sqlite:
        engine_kwargs.update(
            pool_size=config.db_pool_size,
            max_overflow=config.db_max_overflow,
            pool_pre_ping=config.db_pool_pre_ping,
            pool_recycle=3600,
        )

    engine = create_async_engine(database_url, **engine_kwargs)
    if is_sqlite:
        _configure_sqlite(engine.sync_engine)
    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """
    Session factory bound to `engine`.

    expire_on_commit=False keeps loaded attributes readable after commit,
    so services can return ORM objects to the route layer for serialisation.
    """
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
