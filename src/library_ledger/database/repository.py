"""
Repository pattern implementation for the Library Ledger.

Repositories keep SQL out of the REST handlers and MCP tools. Each method works
inside the caller's session and returns Pydantic models, so results serialize
cleanly to JSON on both surfaces.

The base repository provides lookups by ID and the shared pagination helper;
``BookRepository`` and ``LoanRepository`` add the catalog and ledger rules.
"""

from abc import ABC, abstractmethod
from typing import Generic, TypeVar

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ..config import get_config
from ..errors import (
    AlreadyReturnedError,
    DuplicateError,
    DuplicateLoanError,
    ForbiddenError,
    InvalidArgumentError,
    LedgerError,
    NotFoundError,
    StorageError,
    UnauthorizedError,
    UnavailableError,
)
from .schema import Base
from .session import safe_query

ModelType = TypeVar("ModelType", bound=Base)
ResponseSchemaType = TypeVar("ResponseSchemaType", bound=BaseModel)

class PaginationParams(BaseModel):
    """Standard pagination parameters for list operations."""

    page: int = 1
    page_size: int = 20

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size

    def validate_params(self, max_page_size: int = 100) -> None:
        """
        Validate pagination parameters.

        Raises:
            InvalidArgumentError: If page or page size are out of range
        """
        if self.page < 1:
            raise InvalidArgumentError("Page must be >= 1")
        if self.page_size < 1 or self.page_size > max_page_size:
            raise InvalidArgumentError(f"Page size must be between 1 and {max_page_size}")


class PaginatedResponse(BaseModel, Generic[ResponseSchemaType]):
    """Standard paginated response for list operations."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    items: list[ResponseSchemaType]
    total: int
    page: int
    page_size: int
    total_pages: int
    has_next: bool
    has_previous: bool

    @classmethod
    def build(
        cls, items: list[ResponseSchemaType], total: int, pagination: PaginationParams
    ) -> "PaginatedResponse[ResponseSchemaType]":
        return cls(
            items=items,
            total=total,
            page=pagination.page,
            page_size=pagination.page_size,
            total_pages=(total + pagination.page_size - 1) // pagination.page_size,
            has_next=pagination.page * pagination.page_size < total,
            has_previous=pagination.page > 1,
        )


class BaseRepository(ABC, Generic[ModelType, ResponseSchemaType]):
    """
    Abstract base repository.

    Subclasses name their SQLAlchemy model and Pydantic response schema; the
    base class supplies ID lookups and pagination.
    """

    def __init__(self, session: Session):
        self.session = session

    @property
    @abstractmethod
    def model_class(self) -> type[ModelType]:
        """Return the SQLAlchemy model class."""

    @property
    @abstractmethod
    def response_schema(self) -> type[ResponseSchemaType]:
        """Return the Pydantic response schema."""

    def _to_response_model(self, db_obj: ModelType) -> ResponseSchemaType:
        return self.response_schema.model_validate(db_obj, from_attributes=True)

    def _get_db_object(self, id: str, for_update: bool = False) -> ModelType | None:
        query = (
            select(self.model_class)
            .where(self.model_class.id == str(id))
            .execution_options(populate_existing=True)
        )
        if for_update:
            query = query.with_for_update()
        return safe_query(
            self.session,
            lambda s: s.execute(query).scalar_one_or_none(),
            f"Failed to get {self.model_class.__name__} by ID",
        )

    def get_by_id(self, id: str) -> ResponseSchemaType | None:
        """
        Get entity by ID.

        Returns:
            Pydantic model or None if not found
        """
        db_obj = self._get_db_object(id)
        if db_obj is None:
            return None
        return self._to_response_model(db_obj)

    def _paginate_query(self, query, pagination: PaginationParams | None, to_model=None):
        """Count, slice and convert a select() into a PaginatedResponse."""
        if not pagination:
            pagination = PaginationParams()

        pagination.validate_params(get_config().max_page_size)
        to_model = to_model or self._to_response_model

        count_query = select(func.count()).select_from(query.order_by(None).subquery())
        total = (
            safe_query(
                self.session,
                lambda s: s.execute(count_query).scalar(),
                "Failed to count in pagination",
            )
            or 0
        )

        query = (
            query.offset(pagination.offset)
            .limit(pagination.page_size)
            .execution_options(populate_existing=True)
        )
        results = safe_query(
            self.session,
            lambda s: s.execute(query).unique().scalars().all(),
            "Failed to get paginated results",
        )

        return PaginatedResponse.build([to_model(item) for item in results], total, pagination)


__all__ = [
    "AlreadyReturnedError",
    "BaseRepository",
    "DuplicateError",
    "DuplicateLoanError",
    "ForbiddenError",
    "InvalidArgumentError",
    "LedgerError",
    "NotFoundError",
    "PaginatedResponse",
    "PaginationParams",
    "StorageError",
    "UnauthorizedError",
    "UnavailableError",
]
