"""Error taxonomy shared by the ledger, the catalog and the access layer.

Every failure the core reports is a ``LedgerError`` subclass with a stable
``code``. Callers (REST handlers, MCP tools) translate the code into their own
wire format; the core never raises a partially-applied change.
"""


class LedgerError(Exception):
    """Base exception for all recoverable library errors."""

    code = "error"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.__class__.__doc__ or self.code)
        self.message = message or self.__class__.__doc__ or self.code


class StorageError(LedgerError):
    """The data store failed to complete the operation."""

    code = "storage_error"


class NotFoundError(LedgerError):
    """The requested entity does not exist."""

    code = "not_found"


class DuplicateError(LedgerError):
    """An entity with the same unique key already exists."""

    code = "duplicate"


class UnavailableError(LedgerError):
    """No copies of the book are available."""

    code = "unavailable"


class DuplicateLoanError(LedgerError):
    """The borrower already holds an open loan for this book."""

    code = "duplicate_loan"


class AlreadyReturnedError(LedgerError):
    """The loan has already been returned."""

    code = "already_returned"


class InvalidArgumentError(LedgerError):
    """The request is well-formed but violates a catalog or ledger rule."""

    code = "invalid_argument"


class UnauthorizedError(LedgerError):
    """No valid identity was presented."""

    code = "unauthorized"


class ForbiddenError(LedgerError):
    """The identity lacks the role required for this operation."""

    code = "forbidden"
