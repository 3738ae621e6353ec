"""
Circulation tools for the Library Ledger MCP server.

Tools are the MCP operations with side effects. Each one here wraps a loan
ledger operation:

1. borrow_book: open a loan for the caller
2. return_book: close a loan (own loans, or any loan for librarians)
3. adjust_quantity: change how many copies a book has (librarians)
4. my_loans: the caller's open loans
5. overdue_loans: every open loan past due (librarians)

Every tool takes an ``access_token``; it is resolved through the same
authenticator the REST API uses. Handlers validate their arguments with a
Pydantic model and always answer with an MCP result dict, using
``isError`` for failures so the server never raises into the transport.
"""

import logging
from typing import Any

from pydantic import BaseModel, Field, ValidationError, model_validator

from ..access import Identity, Role, authenticate, require_role
from ..database.loan_repository import LoanRepository
from ..database.repository import LedgerError, PaginationParams
from ..database.session import get_session
from ..observability import trace_tool

logger = logging.getLogger(__name__)


def _error(text: str, code: str | None = None) -> dict[str, Any]:
    result: dict[str, Any] = {"isError": True, "content": [{"type": "text", "text": text}]}
    if code:
        result["data"] = {"error": code}
    return result


def _success(text: str, data: dict[str, Any]) -> dict[str, Any]:
    return {"content": [{"type": "text", "text": text}], "data": data}


def _loan_line(loan) -> str:
    line = f"- {loan.book_title} (loan {loan.id}), due {loan.due_date:%B %d, %Y}"
    if loan.is_overdue:
        line += f", {loan.days_overdue} day{'s' if loan.days_overdue != 1 else ''} overdue"
    return line


class AuthenticatedInput(BaseModel):
    access_token: str = Field(..., min_length=1, description="Bearer token of the caller")

    def identity(self) -> Identity:
        return authenticate(self.access_token)


# =============================================================================
# BORROW
# =============================================================================


class BorrowBookInput(AuthenticatedInput):
    """Input schema for the borrow_book tool."""

    book_id: str = Field(
        ...,
        description="ID of the book to borrow",
        pattern=r"^book_[a-f0-9]{8,}$",
        examples=["book_3f2c1a9b7d4e"],
    )


@trace_tool("borrow_book")
async def borrow_book_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """
    Handler for the borrow_book tool.

    Borrows one copy for the authenticated caller. Due date follows the
    configured loan period.
    """
    try:
        params = BorrowBookInput.model_validate(arguments)
    except ValidationError as e:
        logger.warning("Invalid borrow parameters: %s", e)
        return _error(f"Invalid borrow parameters: {e}", "invalid_argument")

    try:
        identity = params.identity()
        with get_session() as session:
            loan = LoanRepository(session).borrow(identity.user_id, params.book_id)
    except LedgerError as e:
        logger.info("Borrow failed - %s: %s", e.code, e.message)
        return _error(e.message, e.code)
    except Exception as e:
        logger.exception("Unexpected error in borrow_book tool")
        return _error(f"An unexpected error occurred: {e!s}")

    message = (
        f"Borrowed '{loan.book_title}'. "
        f"Due date: {loan.due_date:%B %d, %Y} ({loan.loan_period_days}-day loan)"
    )
    return _success(message, {"loan": loan.model_dump(mode="json")})


# =============================================================================
# RETURN
# =============================================================================


class ReturnBookInput(AuthenticatedInput):
    """
    Input schema for the return_book tool.

    Give either ``loan_id``, or ``book_id`` to return the caller's own copy.
    Librarians returning a copy on behalf of a borrower add ``borrower_id``.
    """

    loan_id: str | None = Field(
        default=None, description="ID of the loan to close", pattern=r"^loan_[a-f0-9]{8,}$"
    )
    book_id: str | None = Field(default=None, description="ID of the borrowed book")
    borrower_id: str | None = Field(
        default=None, description="Borrower whose copy is returned (librarians only)"
    )

    @model_validator(mode="after")
    def validate_target(self) -> "ReturnBookInput":
        if not self.loan_id and not self.book_id:
            raise ValueError("Either loan_id or book_id is required")
        return self


@trace_tool("return_book")
async def return_book_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Handler for the return_book tool."""
    try:
        params = ReturnBookInput.model_validate(arguments)
    except ValidationError as e:
        logger.warning("Invalid return parameters: %s", e)
        return _error(f"Invalid return parameters: {e}", "invalid_argument")

    try:
        identity = params.identity()
        borrower_id = params.borrower_id or identity.user_id
        with get_session() as session:
            loan = LoanRepository(session).return_loan(
                loan_id=params.loan_id,
                borrower_id=None if params.loan_id else borrower_id,
                book_id=None if params.loan_id else params.book_id,
                actor=identity,
            )
    except LedgerError as e:
        logger.info("Return failed - %s: %s", e.code, e.message)
        return _error(e.message, e.code)
    except Exception as e:
        logger.exception("Unexpected error in return_book tool")
        return _error(f"An unexpected error occurred: {e!s}")

    message = f"Returned '{loan.book_title}' (loan {loan.id})."
    return _success(message, {"loan": loan.model_dump(mode="json")})


# =============================================================================
# QUANTITY
# =============================================================================


class AdjustQuantityInput(AuthenticatedInput):
    """Input schema for the adjust_quantity tool."""

    book_id: str = Field(..., description="ID of the book", pattern=r"^book_[a-f0-9]{8,}$")
    new_quantity: int = Field(..., description="Copies the library now owns", ge=0)


@trace_tool("adjust_quantity")
async def adjust_quantity_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Handler for the adjust_quantity tool; the caller must be a librarian."""
    try:
        params = AdjustQuantityInput.model_validate(arguments)
    except ValidationError as e:
        logger.warning("Invalid quantity parameters: %s", e)
        return _error(f"Invalid quantity parameters: {e}", "invalid_argument")

    try:
        identity = params.identity()
        with get_session() as session:
            book = LoanRepository(session).adjust_quantity(
                params.book_id, params.new_quantity, identity.role
            )
    except LedgerError as e:
        logger.info("Quantity change failed - %s: %s", e.code, e.message)
        return _error(e.message, e.code)
    except Exception as e:
        logger.exception("Unexpected error in adjust_quantity tool")
        return _error(f"An unexpected error occurred: {e!s}")

    message = f"'{book.title}' now has {book.quantity} copies, {book.available} available."
    return _success(message, {"book": book.model_dump(mode="json")})


# =============================================================================
# LISTINGS
# =============================================================================


class MyLoansInput(AuthenticatedInput):
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1, le=100)


@trace_tool("my_loans")
async def my_loans_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Handler for the my_loans tool: the caller's open loans, soonest due first."""
    try:
        params = MyLoansInput.model_validate(arguments)
    except ValidationError as e:
        logger.warning("Invalid my_loans parameters: %s", e)
        return _error(f"Invalid parameters: {e}", "invalid_argument")

    try:
        identity = params.identity()
        with get_session() as session:
            result = LoanRepository(session).list_open_loans_for_borrower(
                identity.user_id,
                PaginationParams(page=params.page, page_size=params.page_size),
            )
    except LedgerError as e:
        logger.info("my_loans failed - %s: %s", e.code, e.message)
        return _error(e.message, e.code)
    except Exception as e:
        logger.exception("Unexpected error in my_loans tool")
        return _error(f"An unexpected error occurred: {e!s}")

    if not result.items:
        message = "You have no books on loan."
    else:
        lines = [_loan_line(loan) for loan in result.items]
        message = f"You have {result.total} book(s) on loan:\n" + "\n".join(lines)

    return _success(message, {"loans": result.model_dump(mode="json")})


class OverdueLoansInput(AuthenticatedInput):
    pass


@trace_tool("overdue_loans")
async def overdue_loans_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Handler for the overdue_loans tool (librarians)."""
    try:
        params = OverdueLoansInput.model_validate(arguments)
    except ValidationError as e:
        logger.warning("Invalid overdue_loans parameters: %s", e)
        return _error(f"Invalid parameters: {e}", "invalid_argument")

    try:
        require_role(params.identity(), Role.LIBRARIAN)
        with get_session() as session:
            loans = LoanRepository(session).list_overdue()
    except LedgerError as e:
        logger.info("overdue_loans failed - %s: %s", e.code, e.message)
        return _error(e.message, e.code)
    except Exception as e:
        logger.exception("Unexpected error in overdue_loans tool")
        return _error(f"An unexpected error occurred: {e!s}")

    if not loans:
        message = "No loans are overdue."
    else:
        lines = [f"{_loan_line(loan)} [{loan.borrower_id}]" for loan in loans]
        message = f"{len(loans)} overdue loan(s):\n" + "\n".join(lines)

    return _success(message, {"loans": [loan.model_dump(mode="json") for loan in loans]})


circulation_tools: list[dict[str, Any]] = [
    {
        "name": "borrow_book",
        "description": (
            "Borrow one copy of a book for the authenticated caller. "
            "Fails if no copy is available or the caller already has this book."
        ),
        "inputSchema": BorrowBookInput.model_json_schema(),
        "handler": borrow_book_handler,
    },
    {
        "name": "return_book",
        "description": (
            "Return a borrowed book by loan ID, or by book ID for the caller's own copy. "
            "Librarians may return any loan."
        ),
        "inputSchema": ReturnBookInput.model_json_schema(),
        "handler": return_book_handler,
    },
    {
        "name": "adjust_quantity",
        "description": "Change how many copies of a book the library owns (librarians only).",
        "inputSchema": AdjustQuantityInput.model_json_schema(),
        "handler": adjust_quantity_handler,
    },
    {
        "name": "my_loans",
        "description": "List the caller's open loans with due dates and overdue status.",
        "inputSchema": MyLoansInput.model_json_schema(),
        "handler": my_loans_handler,
    },
    {
        "name": "overdue_loans",
        "description": "List every overdue loan with days overdue (librarians only).",
        "inputSchema": OverdueLoansInput.model_json_schema(),
        "handler": overdue_loans_handler,
    },
]
