"""
Library API Backend — Test Configuration (conftest.py)
=======================================================

What:  Shared pytest fixtures for the entire test suite.
How:   Every test gets its own file-backed SQLite database (aiosqlite) with
       the schema created from model metadata, so tests never share state
       and need no PostgreSQL or network.

Fixture Hierarchy (all function-scoped):
    test_settings ─┬─ store ─┬─ eligibility_service
                   │         ├─ loan_service
                   │         ├─ book_service ── resolver (StubResolver)
                   │         ├─ user_service
                   │         └─ make_user / make_book / make_loan
                   └─ test_client (create_app over the same store + stub resolver)
"""

import os
from datetime import timedelta
from typing import Dict, List, Optional
from uuid import uuid4

# Override settings for testing BEFORE any library_api import
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./test_library.db"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["BASIC_USER"] = "librarian"
os.environ["BASIC_PASS"] = "test-pass"
os.environ["RETRY_MAX_ATTEMPTS"] = "1"
os.environ["RETRY_MIN_WAIT"] = "0"
os.environ["RETRY_MAX_WAIT"] = "0"
os.environ["RATE_LIMIT_REQUESTS"] = "100000"

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from library_api.config import Settings
from library_api.database import utcnow
from library_api.models import Book, BookStatus, Loan, User, UserRole, UserTier
from library_api.schemas.book import BookMetadata
from library_api.services.book_service import BookService
from library_api.services.eligibility import EligibilityService
from library_api.services.loan_service import LoanService
from library_api.services.metadata_base import MetadataResolver
from library_api.services.user_service import UserService
from library_api.store import EntityStore

BASIC_AUTH = ("librarian", "test-pass")


class StubResolver(MetadataResolver):
    """
    In-memory MetadataResolver.

    Returns the BookMetadata registered for an ISBN, None otherwise, and
    records every lookup in `calls`.
    """

    def __init__(self, known: Optional[Dict[str, BookMetadata]] = None):
        self.known = dict(known or {})
        self.calls: List[str] = []
        self.healthy = True

    async def fetch_by_isbn(self, isbn: str) -> Optional[BookMetadata]:
        self.calls.append(isbn)
        return self.known.get(isbn)

    async def health_check(self) -> bool:
        return self.healthy


# ══════════════════════════════════════════════════════════════════════════
# Infrastructure
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def test_settings() -> Settings:
    return Settings()


@pytest_asyncio.fixture
async def store(tmp_path, test_settings):
    """
    A fresh EntityStore on its own SQLite file.

    File-backed (not :memory:) so concurrent transactions use separate
    connections, like they would against PostgreSQL.
    """
    db_store = EntityStore.from_url(
        f"sqlite+aiosqlite:///{tmp_path / 'library.db'}",
        test_settings,
    )
    await db_store.create_schema()
    yield db_store
    await db_store.dispose()


@pytest.fixture
def resolver() -> StubResolver:
    return StubResolver()


# ══════════════════════════════════════════════════════════════════════════
# Services
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def eligibility_service(store) -> EligibilityService:
    return EligibilityService(store)


@pytest.fixture
def loan_service(store, eligibility_service) -> LoanService:
    return LoanService(store, eligibility_service)


@pytest.fixture
def book_service(store, resolver) -> BookService:
    return BookService(store, resolver)


@pytest.fixture
def user_service(store, eligibility_service) -> UserService:
    return UserService(store, eligibility_service)


# ══════════════════════════════════════════════════════════════════════════
# Factories
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def make_user(store):
    """
    Create a user straight through the store.

    Usage:
        user = await make_user(tier=UserTier.TIER_3)
    """
    async def _make(**overrides) -> User:
        data = {
            "name": "Test Reader",
            "email": f"reader-{uuid4().hex[:8]}@example.com",
            "role": UserRole.USER,
            "tier": UserTier.TIER_4,
        }
        data.update(overrides)
        return await store.create(User, **data)

    return _make


@pytest.fixture
def make_book(store):
    async def _make(**overrides) -> Book:
        data = {
            "title": "The Hobbit",
            "author": "J.R.R. Tolkien",
            "isbn13": "9780547928227",
            "status": BookStatus.AVAILABLE,
        }
        data.update(overrides)
        return await store.create(Book, **data)

    return _make


@pytest.fixture
def make_loan(store):
    """
    Insert a loan directly, bypassing lend().

    Keeps the LENT/AVAILABLE invariant: an active loan marks its book LENT.
    `due_in` is a timedelta from now; negative values make the loan overdue.
    """
    async def _make(
        book: Book,
        borrower: User,
        due_in: timedelta = timedelta(days=14),
        returned: bool = False,
    ) -> Loan:
        now = utcnow()
        async with store.transaction() as tx:
            loan = await tx.create(
                Loan,
                book_id=book.id,
                borrower_id=borrower.id,
                lent_at=now - timedelta(days=1),
                due_at=now + due_in,
                returned_at=now if returned else None,
            )
            if not returned:
                await tx.update(Book, book.id, {"status": BookStatus.LENT})
        return loan

    return _make


# ══════════════════════════════════════════════════════════════════════════
# HTTP client
# ══════════════════════════════════════════════════════════════════════════

@pytest_asyncio.fixture
async def test_client(test_settings, store, resolver):
    """
    HTTPX AsyncClient talking to an app wired to the test store.

    Sends the test Basic credentials by default; pass `auth=None` per
    request to test the 401 path.
    """
    from library_api.main import create_app

    app = create_app(config=test_settings, store=store, metadata_resolver=resolver)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test", auth=BASIC_AUTH) as client:
        yield client
