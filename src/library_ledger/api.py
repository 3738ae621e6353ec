"""REST API for the Library Ledger.

Routes:
- ``/books``: catalog browsing (public) and administration (librarians)
- ``/borrow``: borrowing, returning and loan listings
- ``/health``: database connectivity check

Callers authenticate with ``Authorization: Bearer <token>``. Every library
error is answered as ``{"error": <code>, "message": <text>}`` with the HTTP
status from ``ERROR_STATUS``. JSON bodies use camelCase field names.
"""

import logging
from collections.abc import Generator
from datetime import UTC, datetime

from fastapi import APIRouter, Depends, FastAPI, Query, Request, Response, Security, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from sqlalchemy.orm import Session

from . import __version__
from .access import Authenticator, Identity, Role, StaticTokenAuthenticator, require_role
from .config import get_config
from .database.book_repository import (
    BookCreateSchema,
    BookRepository,
    BookSearchParams,
    BookUpdateSchema,
)
from .database.loan_repository import CirculationStats, LoanFilter, LoanRepository
from .database.repository import (
    InvalidArgumentError,
    LedgerError,
    NotFoundError,
    PaginatedResponse,
    PaginationParams,
)
from .database.session import DatabaseManager, get_db_manager
from .models.book import Book
from .models.loan import Loan
from .observability import record_catalog_change

logger = logging.getLogger(__name__)

ERROR_STATUS: dict[str, int] = {
    "not_found": status.HTTP_404_NOT_FOUND,
    "unavailable": status.HTTP_409_CONFLICT,
    "duplicate_loan": status.HTTP_409_CONFLICT,
    "already_returned": status.HTTP_409_CONFLICT,
    "duplicate": status.HTTP_409_CONFLICT,
    "invalid_argument": 422,
    "forbidden": status.HTTP_403_FORBIDDEN,
    "unauthorized": status.HTTP_401_UNAUTHORIZED,
    "storage_error": status.HTTP_500_INTERNAL_SERVER_ERROR,
}

bearer_scheme = HTTPBearer(auto_error=False)


class BorrowRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    book_id: str


class ReturnRequest(BaseModel):
    """Return by ``loanId``, or by ``bookId`` (plus ``borrowerId`` for librarians)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    book_id: str | None = None
    loan_id: str | None = None
    borrower_id: str | None = None


# --- Dependencies ---


def get_session(request: Request) -> Generator[Session, None, None]:
    """One transactional session per request."""
    db_manager: DatabaseManager = request.app.state.db_manager
    with db_manager.session_scope() as session:
        yield session


def get_loan_repository(
    request: Request, session: Session = Depends(get_session)
) -> LoanRepository:
    return LoanRepository(session, request.app.state.loan_period_days)


def get_book_repository(session: Session = Depends(get_session)) -> BookRepository:
    return BookRepository(session)


def get_identity(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Security(bearer_scheme),
) -> Identity:
    authenticator: Authenticator = request.app.state.authenticator
    return authenticator.authenticate(credentials.credentials if credentials else None)


def require_librarian(identity: Identity = Depends(get_identity)) -> Identity:
    return require_role(identity, Role.LIBRARIAN)


def get_pagination(
    page: int = Query(1),
    page_size: int = Query(20, alias="pageSize"),
) -> PaginationParams:
    pagination = PaginationParams(page=page, page_size=page_size)
    pagination.validate_params(get_config().max_page_size)
    return pagination


# --- Books ---

books_router = APIRouter(prefix="/books", tags=["books"])


@books_router.get("", response_model=PaginatedResponse[Book])
def list_books(
    search: str | None = None,
    genre: str | None = None,
    available_only: bool = Query(False, alias="availableOnly"),
    pagination: PaginationParams = Depends(get_pagination),
    repo: BookRepository = Depends(get_book_repository),
):
    return repo.search(
        BookSearchParams(search=search, genre=genre, available_only=available_only), pagination
    )


@books_router.get("/genres", response_model=list[str])
def list_genres(repo: BookRepository = Depends(get_book_repository)):
    return repo.list_genres()


@books_router.get("/{book_id}", response_model=Book)
def get_book(book_id: str, repo: BookRepository = Depends(get_book_repository)):
    book = repo.get_by_id(book_id)
    if book is None:
        raise NotFoundError(f"Book {book_id} not found")
    return book


@books_router.post("", response_model=Book, status_code=status.HTTP_201_CREATED)
def create_book(
    payload: BookCreateSchema,
    identity: Identity = Depends(require_librarian),
    repo: BookRepository = Depends(get_book_repository),
):
    book = repo.create(payload)
    record_catalog_change("create")
    logger.info("%s added book %s", identity.user_id, book.id)
    return book


@books_router.put("/{book_id}", response_model=Book)
def update_book(
    book_id: str,
    payload: BookUpdateSchema,
    identity: Identity = Depends(require_librarian),
    repo: BookRepository = Depends(get_book_repository),
):
    book = repo.update(book_id, payload)
    record_catalog_change("update")
    logger.info("%s updated book %s", identity.user_id, book_id)
    return book


@books_router.delete("/{book_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_book(
    book_id: str,
    identity: Identity = Depends(require_librarian),
    repo: BookRepository = Depends(get_book_repository),
):
    repo.delete(book_id)
    record_catalog_change("delete")
    logger.info("%s deleted book %s", identity.user_id, book_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# --- Borrowing ---

borrow_router = APIRouter(prefix="/borrow", tags=["borrow"])


@borrow_router.post("", response_model=Loan, status_code=status.HTTP_201_CREATED)
def borrow_book(
    payload: BorrowRequest,
    identity: Identity = Depends(get_identity),
    repo: LoanRepository = Depends(get_loan_repository),
):
    return repo.borrow(identity.user_id, payload.book_id)


@borrow_router.post("/return", response_model=Loan)
def return_book(
    payload: ReturnRequest,
    identity: Identity = Depends(get_identity),
    repo: LoanRepository = Depends(get_loan_repository),
):
    if payload.loan_id:
        return repo.return_loan(loan_id=payload.loan_id, actor=identity)

    if not payload.book_id:
        raise InvalidArgumentError("Either bookId or loanId is required")

    return repo.return_loan(
        borrower_id=payload.borrower_id or identity.user_id,
        book_id=payload.book_id,
        actor=identity,
    )


@borrow_router.get("/my-books", response_model=PaginatedResponse[Loan])
def my_books(
    identity: Identity = Depends(get_identity),
    pagination: PaginationParams = Depends(get_pagination),
    repo: LoanRepository = Depends(get_loan_repository),
):
    return repo.list_open_loans_for_borrower(identity.user_id, pagination)


@borrow_router.get("/all", response_model=PaginatedResponse[Loan])
def all_loans(
    loan_status: LoanFilter | None = Query(None, alias="status"),
    borrower_id: str | None = Query(None, alias="borrowerId"),
    identity: Identity = Depends(require_librarian),  # noqa: ARG001
    pagination: PaginationParams = Depends(get_pagination),
    repo: LoanRepository = Depends(get_loan_repository),
):
    return repo.list_loans(status=loan_status, borrower_id=borrower_id, pagination=pagination)


@borrow_router.get("/overdue", response_model=list[Loan])
def overdue_loans(
    identity: Identity = Depends(require_librarian),  # noqa: ARG001
    repo: LoanRepository = Depends(get_loan_repository),
):
    return repo.list_overdue()


@borrow_router.get("/stats", response_model=CirculationStats)
def circulation_stats(
    identity: Identity = Depends(require_librarian),  # noqa: ARG001
    repo: LoanRepository = Depends(get_loan_repository),
):
    return repo.get_circulation_stats()


# --- Error handling ---


def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
    status_code = ERROR_STATUS.get(exc.code, status.HTTP_400_BAD_REQUEST)
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    else:
        logger.info(
            "%s %s rejected (%s): %s", request.method, request.url.path, exc.code, exc.message
        )

    headers = {"WWW-Authenticate": "Bearer"} if exc.code == "unauthorized" else None
    return JSONResponse(
        status_code=status_code,
        content={"error": exc.code, "message": exc.message},
        headers=headers,
    )


def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    messages = [
        f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in exc.errors()
    ]
    logger.warning("%s %s invalid input: %s", request.method, request.url.path, messages)
    return JSONResponse(
        status_code=422,
        content={"error": "invalid_argument", "message": "; ".join(messages)},
    )


# --- Application factory ---


def create_app(
    db_manager: DatabaseManager | None = None,
    authenticator: Authenticator | None = None,
    loan_period_days: int | None = None,
) -> FastAPI:
    """
    Build the REST application.

    Args:
        db_manager: Database to serve; defaults to the process-wide manager
        authenticator: Token resolver; defaults to the configured static tokens
        loan_period_days: Loan period; defaults to the configured one
    """
    config = get_config()

    app = FastAPI(
        title="Library Ledger",
        version=__version__,
        description="Library catalog and lending tracker",
    )

    app.state.db_manager = db_manager or get_db_manager()
    app.state.authenticator = authenticator or StaticTokenAuthenticator.from_config()
    app.state.loan_period_days = loan_period_days or config.loan_period_days

    app.add_exception_handler(LedgerError, ledger_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)

    app.include_router(books_router)
    app.include_router(borrow_router)

    @app.get("/health", tags=["health"])
    def health():
        """Lightweight health check with a database round trip."""
        db_ok = app.state.db_manager.verify_connection()
        return JSONResponse(
            status_code=status.HTTP_200_OK if db_ok else status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "status": "healthy" if db_ok else "unhealthy",
                "database": db_ok,
                "version": __version__,
                "timestamp": datetime.now(UTC).isoformat(),
            },
        )

    return app
