"""Book Resources - Library Catalog Access

Exposes catalog data via read-only resources. Browsing needs no credentials.

Resources:
- library://books/list - First page of the catalog, ordered by title
- library://books/{book_id} - One book with its copy counts
"""

import logging
from typing import Any

from fastmcp.exceptions import ResourceError
from pydantic import BaseModel, Field

from ..database.book_repository import BookRepository, BookSearchParams
from ..database.repository import PaginationParams
from ..database.session import session_scope
from ..models.book import Book
from ..observability import trace_resource

logger = logging.getLogger(__name__)


class BookListResponse(BaseModel):
    """Response schema with books and pagination metadata."""

    books: list[Book] = Field(..., description="List of books in this page")
    total: int = Field(..., description="Total number of books matching filters")
    page: int = Field(..., description="Current page number")
    page_size: int = Field(..., description="Number of items per page")
    total_pages: int = Field(..., description="Total number of pages")
    has_next: bool = Field(..., description="Whether there's a next page")
    has_previous: bool = Field(..., description="Whether there's a previous page")


@trace_resource("books_list")
async def list_books_handler() -> dict[str, Any]:
    """Returns the first page of the catalog."""
    try:
        with session_scope() as session:
            result = BookRepository(session).search(
                BookSearchParams(), PaginationParams(page=1, page_size=50)
            )

            response = BookListResponse(
                books=result.items,
                total=result.total,
                page=result.page,
                page_size=result.page_size,
                total_pages=result.total_pages,
                has_next=result.has_next,
                has_previous=result.has_previous,
            )
            return response.model_dump(mode="json")

    except Exception as e:
        logger.exception("Error in books/list resource")
        raise ResourceError(f"Failed to retrieve book list: {e!s}") from e


@trace_resource("book_detail")
async def get_book_handler(book_id: str) -> dict[str, Any]:
    """Returns details for a specific book, including available copies."""
    try:
        logger.debug("MCP Resource Request - books/%s", book_id)

        with session_scope() as session:
            book = BookRepository(session).get_by_id(book_id)

            if book is None:
                raise ResourceError(f"Book not found: {book_id}")

            return book.model_dump(mode="json")

    except ResourceError:
        raise
    except Exception as e:
        logger.exception("Error in books/{book_id} resource")
        raise ResourceError(f"Failed to retrieve book details: {e!s}") from e


book_resources: list[dict[str, Any]] = [
    {
        "uri": "library://books/list",
        "name": "Book Catalog",
        "description": "Browse the library catalog with copy counts, ordered by title.",
        "mime_type": "application/json",
        "handler": list_books_handler,
    },
    {
        "uri_template": "library://books/{book_id}",
        "name": "Book Details",
        "description": "Get detailed information about a specific book by its ID",
        "mime_type": "application/json",
        "handler": get_book_handler,
    },
]
