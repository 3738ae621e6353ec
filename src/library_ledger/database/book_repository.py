"""
Book repository implementation for the Library Ledger.

This repository owns the catalog side of the data store:

1. **Browsing**: search with text, genre and availability filters, paginated
2. **Administration**: create, update and delete catalog entries
3. **Copy accounting**: quantity changes, which recompute ``available`` from
   the number of open loans so the ledger invariant keeps holding

Borrow and return never touch books through this class; the loan ledger
adjusts ``available`` with its own conditional UPDATEs.
"""

import logging
import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError

from ..models.book import Book as BookModel
from ..models.book import BookBase, normalize_isbn
from ..models.loan import utc_now
from .repository import (
    BaseRepository,
    DuplicateError,
    InvalidArgumentError,
    NotFoundError,
    PaginatedResponse,
    PaginationParams,
)
from .schema import Book as BookDB
from .schema import Loan as LoanDB
from .schema import LoanStatusEnum
from .session import safe_commit, safe_query

logger = logging.getLogger(__name__)


class BookCreateSchema(BookBase):
    """Schema for creating a new book; ``available`` starts equal to ``quantity``."""

    quantity: int = Field(default=1, ge=0, description="Copies owned by the library")


class BookUpdateSchema(BaseModel):
    """Schema for updating a book - all fields optional, ``available`` is not settable."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    isbn: str | None = None
    title: str | None = Field(None, min_length=1, max_length=500)
    author: str | None = Field(None, min_length=1, max_length=200)
    genre: str | None = Field(None, max_length=100)
    published_year: int | None = Field(None, ge=1450, le=datetime.now().year + 1)
    description: str | None = Field(None, max_length=2000)
    quantity: int | None = Field(None, ge=0)

    @field_validator("isbn")
    @classmethod
    def validate_isbn(cls, v: str | None) -> str | None:
        return normalize_isbn(v) if v is not None else None

    @field_validator("title", "author")
    @classmethod
    def strip_text(cls, v: str | None) -> str | None:
        if v is None:
            return None
        stripped = v.strip()
        if not stripped:
            raise ValueError("must not be blank")
        return stripped

    @field_validator("genre")
    @classmethod
    def normalize_genre(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return None
        return v.strip().title()


class BookSearchParams(BaseModel):
    """Filters for catalog browsing."""

    search: str | None = None  # title, author or ISBN contains
    genre: str | None = None  # case-insensitive exact match
    available_only: bool = False


def new_book_id() -> str:
    return f"book_{uuid.uuid4().hex[:12]}"


class BookRepository(BaseRepository[BookDB, BookModel]):
    """
    Repository for catalog data access.

    Write methods commit their own transaction through ``safe_commit``; any
    rule violation is raised before anything is flushed.
    """

    @property
    def model_class(self):
        return BookDB

    @property
    def response_schema(self):
        return BookModel

    def search(
        self,
        search_params: BookSearchParams | None = None,
        pagination: PaginationParams | None = None,
    ) -> PaginatedResponse[BookModel]:
        """
        Search the catalog.

        Args:
            search_params: Text, genre and availability filters
            pagination: Pagination parameters

        Returns:
            Paginated response with matching books ordered by title
        """
        search_params = search_params or BookSearchParams()
        query = select(BookDB)

        if search_params.search and search_params.search.strip():
            term = f"%{search_params.search.strip().lower()}%"
            compact = search_params.search.replace("-", "").replace(" ", "").upper()
            query = query.where(
                or_(
                    func.lower(BookDB.title).like(term),
                    func.lower(BookDB.author).like(term),
                    BookDB.isbn.like(f"%{compact}%"),
                )
            )

        if search_params.genre and search_params.genre.strip():
            query = query.where(func.lower(BookDB.genre) == search_params.genre.strip().lower())

        if search_params.available_only:
            query = query.where(BookDB.available > 0)

        query = query.order_by(BookDB.title.asc(), BookDB.id.asc())

        return self._paginate_query(query, pagination)

    def get_by_isbn(self, isbn: str) -> BookModel | None:
        """
        Get book by ISBN.

        Args:
            isbn: ISBN-10 or ISBN-13, with or without hyphens

        Returns:
            Book model or None if not found
        """
        try:
            normalized_isbn = normalize_isbn(isbn)
        except ValueError:
            return None

        query = (
            select(BookDB)
            .where(BookDB.isbn == normalized_isbn)
            .execution_options(populate_existing=True)
        )
        result = safe_query(
            self.session,
            lambda s: s.execute(query).scalar_one_or_none(),
            "Failed to get book by ISBN",
        )

        if result is None:
            return None

        return self._to_response_model(result)

    def list_genres(self) -> list[str]:
        """Distinct genres present in the catalog, alphabetically."""
        query = (
            select(BookDB.genre).where(BookDB.genre.is_not(None)).distinct().order_by(BookDB.genre)
        )
        results = safe_query(
            self.session, lambda s: s.execute(query).scalars().all(), "Failed to get genres"
        )
        return list(results)

    def count_open_loans(self, book_id: str) -> int:
        query = (
            select(func.count())
            .select_from(LoanDB)
            .where(LoanDB.book_id == book_id, LoanDB.status == LoanStatusEnum.BORROWED)
        )
        return (
            safe_query(self.session, lambda s: s.execute(query).scalar(), "Failed to count open loans")
            or 0
        )

    def _isbn_taken(self, isbn: str, exclude_id: str | None = None) -> bool:
        query = select(func.count()).select_from(BookDB).where(BookDB.isbn == isbn)
        if exclude_id is not None:
            query = query.where(BookDB.id != exclude_id)
        count = safe_query(
            self.session, lambda s: s.execute(query).scalar(), "Failed to check ISBN existence"
        )
        return count > 0

    def create(self, data: BookCreateSchema) -> BookModel:
        """
        Add a book to the catalog.

        Raises:
            DuplicateError: If a book with the same ISBN exists
        """
        if self._isbn_taken(data.isbn):
            raise DuplicateError(f"Book with ISBN {data.isbn} already exists")

        now = utc_now()
        book = BookDB(
            id=new_book_id(),
            available=data.quantity,
            created_at=now,
            updated_at=now,
            **data.model_dump(),
        )
        self.session.add(book)

        try:
            self.session.flush()
        except IntegrityError as e:
            # lost a race with a concurrent create of the same ISBN
            self.session.rollback()
            raise DuplicateError(f"Book with ISBN {data.isbn} already exists") from e

        safe_commit(self.session, "create book")
        self.session.refresh(book)
        logger.info("Created book %s (ISBN %s)", book.id, book.isbn)
        return self._to_response_model(book)

    def set_quantity(self, book_id: str, new_quantity: int) -> BookModel:
        """
        Change the number of copies owned and recompute ``available``.

        The new quantity may not drop below the copies currently on loan.

        Raises:
            NotFoundError: If the book does not exist
            InvalidArgumentError: If new_quantity is negative or below the open loan count
        """
        if new_quantity < 0:
            raise InvalidArgumentError("Quantity cannot be negative")

        book = self._get_db_object(book_id, for_update=True)
        if book is None:
            raise NotFoundError(f"Book {book_id} not found")

        self._apply_quantity(book, new_quantity)

        safe_commit(self.session, "adjust quantity")
        self.session.refresh(book)
        return self._to_response_model(book)

    def _apply_quantity(self, book: BookDB, new_quantity: int) -> None:
        open_loans = self.count_open_loans(book.id)
        if new_quantity < open_loans:
            raise InvalidArgumentError(
                f"Quantity {new_quantity} is below the {open_loans} copies currently on loan"
            )

        logger.info(
            "Quantity of %s changed from %d to %d (%d on loan)",
            book.id,
            book.quantity,
            new_quantity,
            open_loans,
        )
        book.quantity = new_quantity
        book.available = new_quantity - open_loans
        book.updated_at = utc_now()

    def update(self, book_id: str, data: BookUpdateSchema) -> BookModel:
        """
        Update catalog metadata.

        Only fields present in ``data`` change. A ``quantity`` change is applied
        the same way as ``set_quantity``.

        Raises:
            NotFoundError: If the book does not exist
            DuplicateError: If the new ISBN belongs to another book
            InvalidArgumentError: If the new quantity is below the open loan count
        """
        book = self._get_db_object(book_id, for_update=True)
        if book is None:
            raise NotFoundError(f"Book {book_id} not found")

        update_dict = data.model_dump(exclude_unset=True)

        for required in ("isbn", "title", "author"):
            if required in update_dict and update_dict[required] is None:
                raise InvalidArgumentError(f"{required} cannot be cleared")

        new_isbn = update_dict.get("isbn")
        if new_isbn is not None and new_isbn != book.isbn and self._isbn_taken(new_isbn, book.id):
            raise DuplicateError(f"Book with ISBN {new_isbn} already exists")

        new_quantity = update_dict.pop("quantity", None)
        if new_quantity is not None:
            self._apply_quantity(book, new_quantity)

        for field, value in update_dict.items():
            setattr(book, field, value)

        book.updated_at = utc_now()

        try:
            self.session.flush()
        except IntegrityError as e:
            self.session.rollback()
            raise DuplicateError(f"Book with ISBN {new_isbn} already exists") from e

        safe_commit(self.session, "update book")
        self.session.refresh(book)
        return self._to_response_model(book)

    def delete(self, book_id: str) -> None:
        """
        Remove a book from the catalog.

        Closed loans keep their title and ISBN snapshot; their ``book_id`` is
        cleared.

        Raises:
            NotFoundError: If the book does not exist
            InvalidArgumentError: If the book has copies on loan
        """
        book = self._get_db_object(book_id, for_update=True)
        if book is None:
            raise NotFoundError(f"Book {book_id} not found")

        open_loans = self.count_open_loans(book_id)
        if open_loans:
            raise InvalidArgumentError(
                f"Cannot delete book {book_id}: {open_loans} copies are on loan"
            )

        self.session.execute(
            update(LoanDB)
            .where(LoanDB.book_id == book_id)
            .values(book_id=None)
            .execution_options(synchronize_session=False)
        )
        self.session.delete(book)

        safe_commit(self.session, "delete book")
        logger.info("Deleted book %s", book_id)
