"""Library Ledger MCP resources (read-only catalog access)."""

from .books import book_resources

all_resources = book_resources

__all__ = [
    "all_resources",
    "book_resources",
]
