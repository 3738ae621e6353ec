"""
Loan repository implementation for the Library Ledger.

This repository is the loan ledger. It owns:

1. **Borrowing**: open a loan and take one copy off the shelf
2. **Returning**: close a loan and put the copy back
3. **Overdue tracking**: loans past their due date, evaluated at a given instant
4. **Copy accounting**: the rule that a book's ``available`` count always equals
   its ``quantity`` minus its open loans

Both state changes are conditional UPDATEs, so the database decides races:

- borrow: ``available = available - 1 WHERE id = ? AND available > 0``
- return: ``status = 'returned' WHERE id = ? AND status = 'borrowed'``

A row count of zero means another transaction got there first. The partial
unique index on open loans rejects a second open loan for the same borrower
and book even if two borrows interleave.
"""

import enum
import logging
import uuid
from datetime import datetime

import logfire
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from sqlalchemy import and_, case, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..access import Identity, Role
from ..config import get_config
from ..models.book import Book as BookModel
from ..models.loan import Loan as LoanModel
from ..models.loan import LoanStatus, as_naive_utc, due_date_for, overdue_status
from ..observability import record_circulation_event
from .book_repository import BookRepository
from .repository import (
    AlreadyReturnedError,
    BaseRepository,
    DuplicateLoanError,
    ForbiddenError,
    InvalidArgumentError,
    NotFoundError,
    PaginatedResponse,
    PaginationParams,
    UnavailableError,
)
from .schema import Book as BookDB
from .schema import Loan as LoanDB
from .schema import LoanStatusEnum
from .session import safe_commit, safe_query

logger = logging.getLogger(__name__)


class LoanFilter(str, enum.Enum):
    """Status filter for loan listings; ``overdue`` is open and past due."""

    BORROWED = "borrowed"
    RETURNED = "returned"
    OVERDUE = "overdue"


class CirculationStats(BaseModel):
    """Circulation statistics for the librarian dashboard."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    total_loans: int
    open_loans: int
    overdue_loans: int
    returned_loans: int
    total_books: int
    total_copies: int
    copies_on_loan: int
    books_unavailable: int


def new_loan_id() -> str:
    return f"loan_{uuid.uuid4().hex[:12]}"


class LoanRepository(BaseRepository[LoanDB, LoanModel]):
    """
    Repository for the loan ledger.

    Every method runs in the caller's session. Write methods commit on success
    and roll back before raising, so a failed call never leaves a decremented
    counter or a half-closed loan behind.
    """

    def __init__(self, session: Session, loan_period_days: int | None = None):
        super().__init__(session)
        self.book_repo = BookRepository(session)
        self.loan_period_days = loan_period_days or get_config().loan_period_days

    @property
    def model_class(self):
        return LoanDB

    @property
    def response_schema(self):
        return LoanModel

    def _to_response_model(self, db_obj: LoanDB) -> LoanModel:
        return self._loan_to_model(db_obj, as_naive_utc(None))

    def _loan_to_model(self, loan: LoanDB, now: datetime) -> LoanModel:
        """Convert a loan row to its model with the overdue view evaluated at ``now``."""
        status = overdue_status(loan.due_date, loan.return_date, now)
        return LoanModel(
            id=loan.id,
            borrower_id=loan.borrower_id,
            book_id=loan.book_id,
            book_title=loan.book_title,
            book_isbn=loan.book_isbn,
            borrow_date=loan.borrow_date,
            due_date=loan.due_date,
            return_date=loan.return_date,
            status=LoanStatus(loan.status.value),
            is_overdue=status.is_overdue,
            days_overdue=status.days_overdue,
        )

    def _find_open_loan(self, borrower_id: str, book_id: str) -> LoanDB | None:
        query = (
            select(LoanDB)
            .where(
                LoanDB.borrower_id == borrower_id,
                LoanDB.book_id == book_id,
                LoanDB.status == LoanStatusEnum.BORROWED,
            )
            .execution_options(populate_existing=True)
        )
        return safe_query(
            self.session,
            lambda s: s.execute(query).scalar_one_or_none(),
            "Failed to look up open loan",
        )

    def borrow(self, borrower_id: str, book_id: str, now: datetime | None = None) -> LoanModel:
        """
        Check out one copy of a book.

        Checks run in this order: the book exists, the borrower has no open
        loan for it, a copy is available.

        Args:
            borrower_id: Identity of the borrower
            book_id: Book to borrow
            now: Borrow instant; defaults to the current time

        Returns:
            The new open loan

        Raises:
            NotFoundError: If the book does not exist
            DuplicateLoanError: If the borrower already has this book
            UnavailableError: If no copy is available
        """
        now = as_naive_utc(now)

        with logfire.span("ledger.borrow", borrower_id=borrower_id, book_id=book_id):
            book = self.book_repo._get_db_object(book_id)
            if book is None:
                raise NotFoundError(f"Book {book_id} not found")

            if self._find_open_loan(borrower_id, book_id) is not None:
                record_circulation_event("borrow", "duplicate_loan")
                raise DuplicateLoanError(f"{borrower_id} already has an open loan for {book_id}")

            result = self.session.execute(
                update(BookDB)
                .where(BookDB.id == book_id, BookDB.available > 0)
                .values(available=BookDB.available - 1, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                message = f"No copies of '{book.title}' are available"
                self.session.rollback()
                record_circulation_event("borrow", "unavailable")
                raise UnavailableError(message)

            loan = LoanDB(
                id=new_loan_id(),
                borrower_id=borrower_id,
                book_id=book_id,
                book_title=book.title,
                book_isbn=book.isbn,
                borrow_date=now,
                due_date=due_date_for(now, self.loan_period_days),
                status=LoanStatusEnum.BORROWED,
                created_at=now,
                updated_at=now,
            )
            self.session.add(loan)

            try:
                self.session.flush()
            except IntegrityError as e:
                # a concurrent borrow by the same borrower won the open-loan index
                self.session.rollback()
                record_circulation_event("borrow", "duplicate_loan")
                raise DuplicateLoanError(
                    f"{borrower_id} already has an open loan for {book_id}"
                ) from e

            safe_commit(self.session, "borrow book")
            self.session.refresh(loan)

        record_circulation_event("borrow")
        logger.info(
            "Loan %s opened: %s borrowed %s, due %s", loan.id, borrower_id, book_id, loan.due_date
        )
        return self._loan_to_model(loan, now)

    def return_loan(
        self,
        loan_id: str | None = None,
        borrower_id: str | None = None,
        book_id: str | None = None,
        now: datetime | None = None,
        actor: Identity | None = None,
    ) -> LoanModel:
        """
        Close a loan and put the copy back on the shelf.

        The loan is found by ``loan_id``, or as the open loan for
        ``(borrower_id, book_id)``. When ``actor`` is a borrower, only their own
        loans can be returned; librarians may close any loan.

        Raises:
            InvalidArgumentError: If neither a loan ID nor a borrower/book pair is given
            NotFoundError: If no loan matches, or the pair has no open loan
            ForbiddenError: If a borrower tries to return someone else's loan
            AlreadyReturnedError: If the loan is already closed
        """
        now = as_naive_utc(now)

        with logfire.span("ledger.return", loan_id=loan_id, borrower_id=borrower_id, book_id=book_id):
            loan = self._resolve_loan_for_return(loan_id, borrower_id, book_id, actor)

            return_date = max(now, loan.borrow_date)
            closed = self.session.execute(
                update(LoanDB)
                .where(LoanDB.id == loan.id, LoanDB.status == LoanStatusEnum.BORROWED)
                .values(status=LoanStatusEnum.RETURNED, return_date=return_date, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if closed.rowcount == 0:
                message = f"Loan {loan.id} has already been returned"
                self.session.rollback()
                record_circulation_event("return", "already_returned")
                raise AlreadyReturnedError(message)

            if loan.book_id is not None:
                restocked = BookDB.available + 1
                self.session.execute(
                    update(BookDB)
                    .where(BookDB.id == loan.book_id)
                    .values(
                        available=case(
                            (restocked > BookDB.quantity, BookDB.quantity), else_=restocked
                        ),
                        updated_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )

            safe_commit(self.session, "return book")
            self.session.refresh(loan)

        record_circulation_event("return")
        logger.info("Loan %s closed: %s returned %s", loan.id, loan.borrower_id, loan.book_id)
        return self._loan_to_model(loan, now)

    def _resolve_loan_for_return(
        self,
        loan_id: str | None,
        borrower_id: str | None,
        book_id: str | None,
        actor: Identity | None,
    ) -> LoanDB:
        is_librarian = actor is None or actor.role == Role.LIBRARIAN

        if loan_id:
            loan = self._get_db_object(loan_id)
            if loan is None:
                raise NotFoundError(f"Loan {loan_id} not found")
            if not is_librarian and loan.borrower_id != actor.user_id:
                raise ForbiddenError("Borrowers can only return their own loans")
            if loan.status != LoanStatusEnum.BORROWED:
                record_circulation_event("return", "already_returned")
                raise AlreadyReturnedError(f"Loan {loan_id} has already been returned")
            return loan

        if not borrower_id or not book_id:
            raise InvalidArgumentError(
                "Either a loan ID or both a borrower ID and a book ID are required"
            )

        if not is_librarian and borrower_id != actor.user_id:
            raise ForbiddenError("Borrowers can only return their own loans")

        loan = self._find_open_loan(borrower_id, book_id)
        if loan is None:
            raise NotFoundError(f"{borrower_id} has no open loan for book {book_id}")
        return loan

    def get_loan(self, loan_id: str, now: datetime | None = None) -> LoanModel | None:
        """Get a loan by ID with the overdue view evaluated at ``now``."""
        loan = self._get_db_object(loan_id)
        if loan is None:
            return None
        return self._loan_to_model(loan, as_naive_utc(now))

    def list_open_loans_for_borrower(
        self,
        borrower_id: str,
        pagination: PaginationParams | None = None,
        now: datetime | None = None,
    ) -> PaginatedResponse[LoanModel]:
        """
        A borrower's open loans, soonest due first.

        Args:
            borrower_id: Identity of the borrower
            pagination: Pagination parameters
            now: Instant used for the overdue view

        Returns:
            Paginated open loans ordered by (due_date, id)
        """
        now = as_naive_utc(now)
        query = (
            select(LoanDB)
            .where(LoanDB.borrower_id == borrower_id, LoanDB.status == LoanStatusEnum.BORROWED)
            .order_by(LoanDB.due_date.asc(), LoanDB.id.asc())
        )
        return self._paginate_query(query, pagination, lambda loan: self._loan_to_model(loan, now))

    def list_overdue(self, now: datetime | None = None) -> list[LoanModel]:
        """
        Open loans past their due date at ``now``, most overdue first.

        Each loan carries ``days_overdue`` evaluated at the same instant.
        """
        now = as_naive_utc(now)
        query = (
            select(LoanDB)
            .where(LoanDB.status == LoanStatusEnum.BORROWED, LoanDB.due_date < now)
            .order_by(LoanDB.due_date.asc(), LoanDB.id.asc())
            .execution_options(populate_existing=True)
        )
        results = safe_query(
            self.session,
            lambda s: s.execute(query).scalars().all(),
            "Failed to list overdue loans",
        )
        return [self._loan_to_model(loan, now) for loan in results]

    def list_loans(
        self,
        status: LoanFilter | str | None = None,
        borrower_id: str | None = None,
        pagination: PaginationParams | None = None,
        now: datetime | None = None,
    ) -> PaginatedResponse[LoanModel]:
        """
        All loans, newest first (librarian view).

        Args:
            status: ``borrowed``, ``returned`` or ``overdue``; None for all
            borrower_id: Restrict to one borrower
            pagination: Pagination parameters
            now: Instant used for the overdue filter and view

        Raises:
            InvalidArgumentError: If status is not a known filter
        """
        now = as_naive_utc(now)
        query = select(LoanDB)

        if status is not None:
            try:
                status = LoanFilter(status)
            except ValueError as e:
                raise InvalidArgumentError(f"Unknown loan status filter: {status}") from e

            if status == LoanFilter.RETURNED:
                query = query.where(LoanDB.status == LoanStatusEnum.RETURNED)
            else:
                query = query.where(LoanDB.status == LoanStatusEnum.BORROWED)
                if status == LoanFilter.OVERDUE:
                    query = query.where(LoanDB.due_date < now)

        if borrower_id:
            query = query.where(LoanDB.borrower_id == borrower_id)

        query = query.order_by(LoanDB.borrow_date.desc(), LoanDB.id.desc())
        return self._paginate_query(query, pagination, lambda loan: self._loan_to_model(loan, now))

    def adjust_quantity(
        self, book_id: str, new_quantity: int, actor_role: Role | str
    ) -> BookModel:
        """
        Change how many copies of a book the library owns.

        ``available`` becomes ``new_quantity`` minus the open loans.

        Raises:
            ForbiddenError: Unless the actor is a librarian
            InvalidArgumentError: If new_quantity is negative or below the open loan count
            NotFoundError: If the book does not exist
        """
        if actor_role != Role.LIBRARIAN:
            raise ForbiddenError("Only librarians can change book quantities")

        with logfire.span("ledger.adjust_quantity", book_id=book_id, new_quantity=new_quantity):
            return self.book_repo.set_quantity(book_id, new_quantity)

    def count_open_loans(self, book_id: str) -> int:
        return self.book_repo.count_open_loans(book_id)

    def get_circulation_stats(self, now: datetime | None = None) -> CirculationStats:
        """
        Get circulation statistics for the librarian dashboard.

        Returns:
            Loan counts by state and catalog copy totals
        """
        now = as_naive_utc(now)
        is_open = LoanDB.status == LoanStatusEnum.BORROWED

        loan_counts = safe_query(
            self.session,
            lambda s: s.execute(
                select(
                    func.count(LoanDB.id),
                    func.count(case((is_open, 1))),
                    func.count(case((and_(is_open, LoanDB.due_date < now), 1))),
                )
            ).one(),
            "Failed to count loans",
        )

        book_counts = safe_query(
            self.session,
            lambda s: s.execute(
                select(
                    func.count(BookDB.id),
                    func.coalesce(func.sum(BookDB.quantity), 0),
                    func.coalesce(func.sum(BookDB.available), 0),
                    func.count(case((BookDB.available == 0, 1))),
                )
            ).one(),
            "Failed to count books",
        )

        total_loans, open_loans, overdue_loans = loan_counts
        total_books, total_copies, available_copies, books_unavailable = book_counts

        return CirculationStats(
            total_loans=total_loans,
            open_loans=open_loans,
            overdue_loans=overdue_loans,
            returned_loans=total_loans - open_loans,
            total_books=total_books,
            total_copies=total_copies,
            copies_on_loan=total_copies - available_copies,
            books_unavailable=books_unavailable,
        )
