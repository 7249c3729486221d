"""
Library API Backend — Catalogue Seeding
========================================

What:  Fills the catalogue from a list of ISBNs.
How:   Each ISBN goes through BookService.create_from_isbn, so an ISBN that
       Google Books cannot resolve still produces a placeholder book.

Usage:
    python -m library_api.seed                   # default list of popular books
    python -m library_api.seed 9780547928227 ... # specific ISBNs
    python -m library_api.seed --create-schema   # local SQLite without Alembic
"""

import argparse
import asyncio
import logging
import uuid
from typing import Iterable, Optional, Tuple

from library_api.config import settings
from library_api.exceptions import LibraryError
from library_api.logging_config import setup_logging
from library_api.services.book_service import BookService, placeholder_metadata
from library_api.services.google_books_service import GoogleBooksService
from library_api.store import EntityStore

logger = logging.getLogger(__name__)

DEFAULT_ISBNS = (
    "9780061120084",  # To Kill a Mockingbird
    "9780451524935",  # 1984
    "9780141439518",  # Pride and Prejudice
    "9780743273565",  # The Great Gatsby
    "9780316769174",  # The Catcher in the Rye
    "9780544003415",  # The Lord of the Rings
    "9780747532699",  # Harry Potter and the Philosopher's Stone
    "9780547928227",  # The Hobbit
    "9781451673319",  # Fahrenheit 451
    "9780141441146",  # Jane Eyre
    "9780060850524",  # Brave New World
    "9780451526342",  # Animal Farm
    "9780061122415",  # The Alchemist
    "9780060883287",  # One Hundred Years of Solitude
    "9780375842207",  # The Book Thief
    "9780156027328",  # Life of Pi
    "9780439023528",  # The Hunger Games
    "9780385490818",  # The Handmaid's Tale
    "9780525559474",  # The Midnight Library
    "9780593135204",  # Project Hail Mary
)


async def seed_books(
    book_service: BookService,
    isbns: Iterable[str],
    owner_id: Optional[uuid.UUID] = None,
) -> Tuple[int, int, int]:
    """
    Create one book per ISBN.

    Returns:
        (resolved, placeholders, failed) counts. An ISBN fails only when
        the book itself cannot be stored (e.g. invalid ISBN, unknown owner).
    """
    resolved = placeholders = failed = 0
    isbns = list(isbns)
    for index, isbn in enumerate(isbns, start=1):
        try:
            book = await book_service.create_from_isbn(isbn, owner_id=owner_id)
        except LibraryError as e:
            failed += 1
            logger.error("(%d/%d) ISBN %s failed: %s", index, len(isbns), isbn, e.message)
            continue

        if book.title == placeholder_metadata(book.isbn13 or isbn).title:
            placeholders += 1
            logger.info("(%d/%d) ISBN %s stored with placeholder data", index, len(isbns), isbn)
        else:
            resolved += 1
            logger.info("(%d/%d) ISBN %s → %s by %s", index, len(isbns), isbn, book.title, book.author)

    return resolved, placeholders, failed


async def main(args: argparse.Namespace) -> int:
    store = EntityStore.from_url(args.database_url or settings.database_url)
    resolver = GoogleBooksService(settings)
    try:
        if args.create_schema:
            await store.create_schema()
        book_service = BookService(store, resolver)
        resolved, placeholders, failed = await seed_books(
            book_service,
            args.isbns or DEFAULT_ISBNS,
            owner_id=args.owner_id,
        )
    finally:
        await resolver.aclose()
        await store.dispose()

    print(f"Seed complete: {resolved} resolved, {placeholders} placeholder, {failed} failed")
    return 1 if failed else 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Seed the library catalogue from ISBNs")
    parser.add_argument("isbns", nargs="*", help="ISBNs to add (default: built-in list)")
    parser.add_argument("--owner-id", type=uuid.UUID, default=None, help="Owner of the created books")
    parser.add_argument("--database-url", default=None, help="Override DATABASE_URL")
    parser.add_argument(
        "--create-schema",
        action="store_true",
        help="Create tables from the models first (local SQLite only; use Alembic otherwise)",
    )
    return parser


if __name__ == "__main__":
    setup_logging(settings)
    raise SystemExit(asyncio.run(main(build_parser().parse_args())))
