"""
Database package for the Library Ledger.

SQLAlchemy schema, session management and the two repositories:
``BookRepository`` for the catalog and ``LoanRepository`` for the loan ledger.
"""

from .book_repository import (
    BookCreateSchema,
    BookRepository,
    BookSearchParams,
    BookUpdateSchema,
)
from .loan_repository import CirculationStats, LoanFilter, LoanRepository
from .repository import (
    AlreadyReturnedError,
    DuplicateError,
    DuplicateLoanError,
    ForbiddenError,
    InvalidArgumentError,
    LedgerError,
    NotFoundError,
    PaginatedResponse,
    PaginationParams,
    StorageError,
    UnauthorizedError,
    UnavailableError,
)
from .schema import Base, Book, Loan, LoanStatusEnum
from .session import (
    DatabaseManager,
    get_db_manager,
    get_session,
    reset_db_manager,
    safe_commit,
    safe_query,
    session_scope,
    set_db_manager,
)

__all__ = [
    "AlreadyReturnedError",
    "Base",
    "Book",
    "BookCreateSchema",
    "BookRepository",
    "BookSearchParams",
    "BookUpdateSchema",
    "CirculationStats",
    "DatabaseManager",
    "DuplicateError",
    "DuplicateLoanError",
    "ForbiddenError",
    "InvalidArgumentError",
    "LedgerError",
    "Loan",
    "LoanFilter",
    "LoanRepository",
    "LoanStatusEnum",
    "NotFoundError",
    "PaginatedResponse",
    "PaginationParams",
    "StorageError",
    "UnauthorizedError",
    "UnavailableError",
    "get_db_manager",
    "get_session",
    "reset_db_manager",
    "safe_commit",
    "safe_query",
    "session_scope",
    "set_db_manager",
]
