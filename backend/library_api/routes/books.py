"""
Library API Backend — Book Route Handlers
==========================================

What:  /api/v1/books endpoints, including ISBN lookup and creation.

Route order matters: the literal /isbn/... paths are declared before
/{book_id} so they are never parsed as a book id.
"""

import logging
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Body, Depends, Query, Response, status

from library_api.dependencies import get_book_service
from library_api.models import BookStatus
from library_api.schemas.book import (
    BookCreate,
    BookDetail,
    BookMetadata,
    BookResponse,
    BookStatusUpdate,
    BookUpdate,
    IsbnBookCreate,
)
from library_api.schemas.common import ErrorResponse
from library_api.services.book_service import BookService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/books", tags=["Books"])

_NOT_FOUND = {404: {"description": "Book not found", "model": ErrorResponse}}


@router.get(
    "",
    response_model=List[BookResponse],
    summary="List books",
    description="`q` matches title, author or ISBN; `status` is exact; `author` is a substring.",
)
async def list_books(
    response: Response,
    q: Optional[str] = Query(default=None),
    status_filter: Optional[BookStatus] = Query(default=None, alias="status"),
    author: Optional[str] = Query(default=None),
    service: BookService = Depends(get_book_service),
):
    books = await service.list(q=q, status=status_filter, author=author)
    response.headers["X-Total-Count"] = str(len(books))
    return books


@router.post(
    "",
    response_model=BookResponse,
    status_code=status.HTTP_201_CREATED,
    responses={404: {"description": "Owner not found", "model": ErrorResponse}},
    summary="Create a book",
)
async def create_book(
    body: BookCreate,
    service: BookService = Depends(get_book_service),
):
    return await service.create(body.model_dump())


@router.post(
    "/isbn/{isbn}",
    response_model=BookResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"description": "Invalid ISBN", "model": ErrorResponse}},
    summary="Create a book from its ISBN",
    description=(
        "Looks the ISBN up on Google Books. When nothing can be resolved the book "
        "is still created with placeholder title and author."
    ),
)
async def create_book_from_isbn(
    isbn: str,
    body: Optional[IsbnBookCreate] = Body(default=None),
    service: BookService = Depends(get_book_service),
):
    owner_id = body.owner_id if body else None
    return await service.create_from_isbn(isbn, owner_id=owner_id)


@router.get(
    "/isbn/{isbn}/info",
    response_model=BookMetadata,
    responses={
        400: {"description": "Invalid ISBN", "model": ErrorResponse},
        404: {"description": "No metadata found", "model": ErrorResponse},
    },
    summary="Look up ISBN metadata without creating a book",
)
async def lookup_isbn(
    isbn: str,
    service: BookService = Depends(get_book_service),
):
    return await service.lookup_isbn(isbn)


@router.get(
    "/{book_id}",
    response_model=BookDetail,
    responses=_NOT_FOUND,
    summary="Get a book with owner and current loan",
)
async def get_book(
    book_id: UUID,
    service: BookService = Depends(get_book_service),
):
    return await service.get(book_id)


@router.patch(
    "/{book_id}",
    response_model=BookResponse,
    responses=_NOT_FOUND,
    summary="Update a book",
    description="Partial update of descriptive fields and owner. Status has its own endpoint.",
)
async def update_book(
    book_id: UUID,
    body: BookUpdate,
    service: BookService = Depends(get_book_service),
):
    return await service.update(book_id, body.model_dump(exclude_unset=True))


@router.delete(
    "/{book_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={**_NOT_FOUND, 409: {"description": "Book has an active loan", "model": ErrorResponse}},
    summary="Delete a book and its loan history",
)
async def delete_book(
    book_id: UUID,
    service: BookService = Depends(get_book_service),
) -> Response:
    await service.remove(book_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.patch(
    "/{book_id}/status",
    response_model=BookResponse,
    responses=_NOT_FOUND,
    summary="Set a book's status",
    description="Administrative override (e.g. LOST). Not checked against loans.",
)
async def set_book_status(
    book_id: UUID,
    body: BookStatusUpdate,
    service: BookService = Depends(get_book_service),
):
    return await service.set_status(book_id, body.status)
