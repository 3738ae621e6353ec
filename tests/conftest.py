"""Test configuration and fixtures for the Library Ledger.

1. Isolated databases - each test gets its own SQLite file under tmp_path
2. Configuration overrides - a test config with known access tokens
3. Seeded catalog - books created through the repository
4. Global cleanup - config, database manager and authenticator are reset
"""

import os
from collections.abc import Generator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

import pytest
from sqlalchemy.orm import Session

from library_ledger.access import Identity, Role, StaticTokenAuthenticator, set_authenticator
from library_ledger.config import LedgerConfig, reset_config, set_config
from library_ledger.database.book_repository import BookCreateSchema, BookRepository
from library_ledger.database.loan_repository import LoanRepository
from library_ledger.database.session import DatabaseManager, set_db_manager
from library_ledger.models.book import Book

LIBRARIAN_TOKEN = "librarian-token"
ALICE_TOKEN = "alice-token"
BOB_TOKEN = "bob-token"

ACCESS_TOKENS = {
    LIBRARIAN_TOKEN: "librarian:lib-1",
    ALICE_TOKEN: "borrower:alice",
    BOB_TOKEN: "borrower:bob",
}

# Fixed instant for ledger tests, so due dates and overdue counts are exact.
NOW = datetime(2025, 3, 1, 10, 0, 0)


# === Configuration Fixtures ===


@pytest.fixture
def test_db_path(tmp_path: Path) -> Path:
    """Provide a temporary database path for each test."""
    return tmp_path / "test_library.db"


@pytest.fixture
def test_database_url(test_db_path: Path) -> str:
    return f"sqlite:///{test_db_path}"


@pytest.fixture
def test_config(test_db_path: Path) -> LedgerConfig:
    return LedgerConfig(
        service_name="test-library-ledger",
        service_version="0.0.1-test",
        database_path=test_db_path,
        debug=True,
        log_level="DEBUG",
        access_tokens=ACCESS_TOKENS,
    )


@pytest.fixture(autouse=True)
def isolated_globals(test_config: LedgerConfig) -> Generator[None, None, None]:
    """Install the test config and clear every process-wide singleton afterwards."""
    reset_config()
    set_config(test_config)
    set_authenticator(StaticTokenAuthenticator.from_config(ACCESS_TOKENS))

    yield

    set_authenticator(None)
    set_db_manager(None)
    reset_config()


@pytest.fixture
def clean_env() -> Generator[None, None, None]:
    """Provide an environment without LIBRARY_LEDGER_* variables."""
    original_env = os.environ.copy()

    for key in list(os.environ.keys()):
        if key.startswith("LIBRARY_LEDGER_"):
            del os.environ[key]

    yield

    os.environ.clear()
    os.environ.update(original_env)


# === Database Fixtures ===


@pytest.fixture
def db_manager(test_database_url: str) -> Generator[DatabaseManager, None, None]:
    """A database manager on a fresh file-backed SQLite database."""
    manager = DatabaseManager(test_database_url, busy_timeout=10.0)
    manager.init_database()
    set_db_manager(manager)

    yield manager

    manager.close()


@pytest.fixture
def test_db_session(db_manager: DatabaseManager) -> Generator[Session, None, None]:
    """Provide a SQLAlchemy session on the test database."""
    session = db_manager.create_session()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def book_repo(test_db_session: Session) -> BookRepository:
    return BookRepository(test_db_session)


@pytest.fixture
def ledger(test_db_session: Session) -> LoanRepository:
    return LoanRepository(test_db_session, loan_period_days=14)


@pytest.fixture
def mock_get_session(test_db_session, monkeypatch):
    """Make the MCP tool handlers use the test session."""

    @contextmanager
    def _mock_get_session():
        yield test_db_session

    monkeypatch.setattr("library_ledger.tools.circulation.get_session", _mock_get_session)
    return test_db_session


# === Identity Fixtures ===


@pytest.fixture
def librarian() -> Identity:
    return Identity(user_id="lib-1", role=Role.LIBRARIAN)


@pytest.fixture
def alice() -> Identity:
    return Identity(user_id="alice", role=Role.BORROWER)


@pytest.fixture
def bob() -> Identity:
    return Identity(user_id="bob", role=Role.BORROWER)


# === Test Data Fixtures ===


def make_book(
    repo: BookRepository,
    isbn: str,
    title: str,
    quantity: int = 1,
    author: str = "Test Author",
    genre: str | None = "Fiction",
) -> Book:
    return repo.create(
        BookCreateSchema(isbn=isbn, title=title, author=author, genre=genre, quantity=quantity)
    )


@pytest.fixture
def single_copy_book(book_repo: BookRepository) -> Book:
    return make_book(book_repo, "9780000000011", "Single Copy", quantity=1)


@pytest.fixture
def sample_book(book_repo: BookRepository) -> Book:
    return make_book(
        book_repo, "9780743273565", "The Great Gatsby", quantity=3, author="F. Scott Fitzgerald"
    )


@pytest.fixture
def sample_books(book_repo: BookRepository) -> list[Book]:
    """A small catalog spanning genres and availability."""
    return [
        make_book(book_repo, "9780743273565", "The Great Gatsby", 3, "F. Scott Fitzgerald"),
        make_book(book_repo, "9780451524935", "1984", 2, "George Orwell", "Dystopian"),
        make_book(book_repo, "9780441013593", "Dune", 1, "Frank Herbert", "Science Fiction"),
        make_book(book_repo, "0316769487", "The Catcher in the Rye", 0, "J. D. Salinger"),
    ]
