"""
Loan model for the Library Ledger.

A loan is created by a successful borrow and closed by a successful return:

    OPEN (status=borrowed, return_date=None) --return--> CLOSED (status=returned)

There is no way back to OPEN; borrowing the same book again creates a new loan.

Overdue is not a state. ``is_overdue`` and ``days_overdue`` are recomputed from
``(due_date, return_date, now)`` by ``overdue_status`` every time a loan is
read, so every consumer sees the same answer for the same instant.

All timestamps are naive UTC.
"""

import math
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import NamedTuple

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

SECONDS_PER_DAY = 86400


class LoanStatus(str, Enum):
    """Stored status of a loan."""

    BORROWED = "borrowed"
    RETURNED = "returned"


class OverdueStatus(NamedTuple):
    is_overdue: bool
    days_overdue: int


def utc_now() -> datetime:
    """Current time as naive UTC."""
    return datetime.now(UTC).replace(tzinfo=None)


def as_naive_utc(value: datetime | None) -> datetime:
    """Normalize a timestamp to naive UTC; None means now."""
    if value is None:
        return utc_now()
    if value.tzinfo is not None:
        return value.astimezone(UTC).replace(tzinfo=None)
    return value


def due_date_for(borrow_date: datetime, loan_period_days: int = 14) -> datetime:
    return borrow_date + timedelta(days=loan_period_days)


def overdue_status(due_date: datetime, return_date: datetime | None, now: datetime) -> OverdueStatus:
    """
    Compute whether a loan is overdue at ``now``.

    A loan is overdue when it has not been returned and ``now`` is past its due
    date. ``days_overdue`` counts started days, so one second late is one day.

    Args:
        due_date: When the loan is due
        return_date: When it was returned, None while open
        now: The instant to evaluate at

    Returns:
        (is_overdue, days_overdue), days_overdue being 0 when not overdue
    """
    if return_date is not None or now <= due_date:
        return OverdueStatus(False, 0)

    late_seconds = (now - due_date).total_seconds()
    return OverdueStatus(True, math.ceil(late_seconds / SECONDS_PER_DAY))


class Loan(BaseModel):
    """
    A loan of one copy of a book to one borrower.

    ``is_overdue`` and ``days_overdue`` are evaluated at read time; use
    ``at(now)`` to re-evaluate the same record for another instant.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str = Field(
        ...,
        description="Unique loan identifier",
        pattern=r"^loan_[a-f0-9]{8,}$",
        examples=["loan_9c1e0b7a55d2"],
    )

    borrower_id: str = Field(..., description="Identity of the borrower", min_length=1)

    book_id: str | None = Field(
        None,
        description="Borrowed book; None once the book has been removed from the catalog",
    )

    book_title: str = Field(..., description="Title at the time of borrowing")

    book_isbn: str = Field(..., description="ISBN at the time of borrowing")

    borrow_date: datetime

    due_date: datetime

    return_date: datetime | None = None

    status: LoanStatus = LoanStatus.BORROWED

    is_overdue: bool = False

    days_overdue: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def validate_lifecycle(self) -> "Loan":
        if self.due_date <= self.borrow_date:
            raise ValueError("Due date must be after borrow date")

        if self.status == LoanStatus.BORROWED and self.return_date is not None:
            raise ValueError("An open loan cannot have a return date")

        if self.status == LoanStatus.RETURNED:
            if self.return_date is None:
                raise ValueError("A returned loan must have a return date")
            if self.return_date < self.borrow_date:
                raise ValueError("Return date cannot be before borrow date")

        return self

    @property
    def is_open(self) -> bool:
        return self.status == LoanStatus.BORROWED

    @property
    def loan_period_days(self) -> int:
        return (self.due_date - self.borrow_date).days

    def at(self, now: datetime) -> "Loan":
        """Return a copy with the overdue view evaluated at ``now``."""
        status = overdue_status(self.due_date, self.return_date, as_naive_utc(now))
        return self.model_copy(
            update={"is_overdue": status.is_overdue, "days_overdue": status.days_overdue}
        )
