"""
Library Ledger models.

Pydantic models for the two core entities:
- Book: a catalog entry with copy accounting
- Loan: one checkout of one copy, with the overdue view computed on read
"""

from .book import Book, BookBase, normalize_isbn
from .loan import (
    Loan,
    LoanStatus,
    OverdueStatus,
    as_naive_utc,
    due_date_for,
    overdue_status,
    utc_now,
)

__all__ = [
    "Book",
    "BookBase",
    "Loan",
    "LoanStatus",
    "OverdueStatus",
    "as_naive_utc",
    "due_date_for",
    "normalize_isbn",
    "overdue_status",
    "utc_now",
]
