"""
SQLAlchemy database schema for the Library Ledger.

Two tables back the service:

1. ``books``: the catalog, including the per-book ``available`` counter that
   the loan ledger keeps equal to ``quantity`` minus the open loans
2. ``loans``: one row per checkout, never deleted, closed in place on return

The "one open loan per borrower and book" rule is a partial unique index,
so the database itself rejects a second concurrent checkout of the same title.
"""

import enum

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()


class LoanStatusEnum(str, enum.Enum):
    """Database enum for loan status."""

    BORROWED = "borrowed"
    RETURNED = "returned"


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class Book(Base):
    """
    Books table - the library catalog.

    ``available`` is written by the loan ledger only (conditional UPDATEs),
    and by quantity adjustments which recompute it from the open loan count.
    """

    __tablename__ = "books"

    id = Column(String(50), primary_key=True)
    isbn = Column(String(13), nullable=False, unique=True)
    title = Column(String(500), nullable=False, index=True)
    author = Column(String(200), nullable=False, index=True)
    genre = Column(String(100), nullable=True, index=True)
    published_year = Column(Integer, nullable=True)
    description = Column(Text, nullable=True)
    quantity = Column(Integer, nullable=False, default=1)
    available = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime, nullable=False, default=func.now())
    updated_at = Column(DateTime, nullable=False, default=func.now(), onupdate=func.now())

    loans = relationship("Loan", back_populates="book", passive_deletes=True)

    __table_args__ = (
        Index("idx_book_title_author", "title", "author"),
        CheckConstraint("id LIKE 'book_%'", name="check_book_id_format"),
        CheckConstraint("quantity >= 0", name="check_quantity_non_negative"),
        CheckConstraint("available >= 0", name="check_available_non_negative"),
        CheckConstraint("available <= quantity", name="check_available_not_exceed_quantity"),
    )


class Loan(Base):
    """
    Loans table - the ledger of checkouts.

    A loan is OPEN while ``status = 'borrowed'`` and ``return_date`` is NULL,
    and CLOSED once returned. ``book_title`` and ``book_isbn`` are copied from
    the catalog at borrow time so history survives deletion of the book.
    """

    __tablename__ = "loans"

    id = Column(String(50), primary_key=True)
    borrower_id = Column(String(100), nullable=False)
    book_id = Column(String(50), ForeignKey("books.id", ondelete="SET NULL"), nullable=True)
    book_title = Column(String(500), nullable=False)
    book_isbn = Column(String(13), nullable=False)
    borrow_date = Column(DateTime, nullable=False)
    due_date = Column(DateTime, nullable=False)
    return_date = Column(DateTime, nullable=True)
    status = Column(
        Enum(LoanStatusEnum, values_callable=_enum_values, name="loan_status"),
        nullable=False,
        default=LoanStatusEnum.BORROWED,
    )

    created_at = Column(DateTime, nullable=False, default=func.now())
    updated_at = Column(DateTime, nullable=False, default=func.now(), onupdate=func.now())

    book = relationship("Book", back_populates="loans")

    __table_args__ = (
        Index("idx_loan_borrower", "borrower_id"),
        Index("idx_loan_book", "book_id"),
        Index("idx_loan_status_due", "status", "due_date"),
        Index(
            "uq_loan_open_per_borrower_book",
            "borrower_id",
            "book_id",
            unique=True,
            sqlite_where=text("status = 'borrowed'"),
            postgresql_where=text("status = 'borrowed'"),
        ),
        CheckConstraint("id LIKE 'loan_%'", name="check_loan_id_format"),
        CheckConstraint("due_date > borrow_date", name="check_due_after_borrow"),
        CheckConstraint(
            "(status = 'borrowed' AND return_date IS NULL)"
            " OR (status = 'returned' AND return_date IS NOT NULL)",
            name="check_status_matches_return_date",
        ),
    )
