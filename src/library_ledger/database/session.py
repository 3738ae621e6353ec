"""
Database session management for the Library Ledger.

Provides the engine, the session factory and the transactional scope used by
every repository call. Each REST request or MCP tool call opens one short-lived
session; ``session_scope`` commits on success and rolls back on any error so
no partial change is ever visible to other callers.

SQLite specifics:
- Transactions start with ``BEGIN IMMEDIATE`` so concurrent writers queue on
  the database lock (bounded by ``sqlite_busy_timeout``) instead of failing
  with a lock-upgrade deadlock.
- ``:memory:`` databases share one connection through ``StaticPool``.
"""

import logging
from collections.abc import Callable, Generator
from contextlib import contextmanager
from pathlib import Path
from typing import TypeVar

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ..config import get_config
from ..errors import LedgerError, StorageError
from .schema import Base

logger = logging.getLogger(__name__)


class DatabaseManager:
    """
    Manages database connections and sessions.

    The engine and session factory are created lazily on first use and torn
    down by ``close()``.
    """

    def __init__(self, database_url: str | None = None, busy_timeout: float | None = None):
        """
        Set up a manager for one database; nothing connects until first use.

        Args:
            database_url: SQLAlchemy database URL. If None, uses the configured one.
            busy_timeout: Seconds SQLite waits for a lock. If None, uses the configured one.
        """
        config = get_config()

        if database_url is None:
            if config.database_url:
                database_url = config.database_url
            else:
                db_path = config.database_path
                if not db_path.is_absolute():
                    db_path = Path.cwd() / db_path
                db_path.parent.mkdir(exist_ok=True, parents=True)
                database_url = f"sqlite:///{db_path}"
                logger.info("Using SQLite database at: %s", db_path)

        self.database_url = database_url
        self.busy_timeout = busy_timeout if busy_timeout is not None else config.sqlite_busy_timeout
        self._engine: Engine | None = None
        self._session_factory: sessionmaker | None = None

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    @property
    def is_memory(self) -> bool:
        if not self.is_sqlite:
            return False
        return ":memory:" in self.database_url or self.database_url in ("sqlite://", "sqlite:///")

    @property
    def engine(self) -> Engine:
        """Get or create the database engine."""
        if self._engine is None:
            if self.is_sqlite:
                engine_kwargs = {
                    "connect_args": {"check_same_thread": False, "timeout": self.busy_timeout},
                    "echo": False,
                }
                if self.is_memory:
                    engine_kwargs["poolclass"] = StaticPool

                self._engine = create_engine(self.database_url, **engine_kwargs)
                _install_sqlite_listeners(self._engine)
            else:
                self._engine = create_engine(
                    self.database_url,
                    pool_size=10,
                    max_overflow=20,
                    pool_pre_ping=True,
                    echo=False,
                )

            logger.info("Database engine created: %s", self._engine.url)

        return self._engine

    @property
    def session_factory(self) -> sessionmaker:
        """Session factory bound to the engine; sessions keep loaded state after commit."""
        if self._session_factory is None:
            self._session_factory = sessionmaker(
                bind=self.engine,
                autoflush=False,
                expire_on_commit=False,
            )
        return self._session_factory

    def create_session(self) -> Session:
        """Create a new database session; the caller owns closing it."""
        return self.session_factory()

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """
        Run a block in one transaction, committing on success.

        ```python
        with db_manager.session_scope() as session:
            LoanRepository(session).borrow(borrower_id, book_id)
        ```

        Yields:
            Database session

        Raises:
            Whatever the body raised, after rolling back
        """
        session = self.create_session()
        try:
            yield session
            session.commit()
            logger.debug("Database transaction committed successfully")
        except LedgerError as e:
            logger.debug("Transaction rolled back: %s", e)
            session.rollback()
            raise
        except Exception:
            logger.exception("Unexpected error, rolling back transaction")
            session.rollback()
            raise
        finally:
            session.close()

    def init_database(self, drop_existing: bool = False) -> None:
        """
        Create the books and loans tables.

        Args:
            drop_existing: If True, drop all tables before creating
        """
        engine = self.engine

        if drop_existing:
            logger.warning("Dropping all existing tables...")
            Base.metadata.drop_all(bind=engine)

        logger.info("Creating ledger tables...")
        Base.metadata.create_all(bind=engine)
        logger.info("Ledger schema ready")

    def verify_connection(self) -> bool:
        """Return True if a trivial query succeeds; used by the health check."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError:
            logger.exception("Health check query failed")
            return False

    def close(self) -> None:
        """Dispose of the engine and forget the session factory."""
        if self._engine:
            self._engine.dispose()
            logger.info("Database engine disposed")
        self._engine = None
        self._session_factory = None


def _install_sqlite_listeners(engine: Engine) -> None:
    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):  # noqa: ARG001
        # Let SQLAlchemy, not pysqlite, decide when a transaction begins.
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


_db_manager: DatabaseManager | None = None


def get_db_manager(database_url: str | None = None) -> DatabaseManager:
    """
    Return the process-wide database manager, creating it on first call.

    Args:
        database_url: Database URL (only used on first call)
    """
    global _db_manager  # noqa: PLW0603 - process-wide database manager

    if _db_manager is None:
        _db_manager = DatabaseManager(database_url)

    return _db_manager


def set_db_manager(manager: DatabaseManager | None) -> None:
    """Replace the global database manager (application factories, tests)."""
    global _db_manager  # noqa: PLW0603

    _db_manager = manager


def reset_db_manager() -> None:
    """Close and forget the global database manager."""
    global _db_manager  # noqa: PLW0603

    if _db_manager is not None:
        _db_manager.close()
    _db_manager = None


def get_session() -> Session:
    """
    Get a new database session from the global manager.

    Use as ``with get_session() as session:``; repositories commit their own
    writes, and the session is closed on exit.
    """
    return get_db_manager().create_session()


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """Convenience transactional scope on the global database manager."""
    with get_db_manager().session_scope() as session:
        yield session


def safe_commit(session: Session, operation: str) -> None:
    """
    Commit a session, translating driver failures into ``StorageError``.

    Args:
        session: The database session
        operation: Description of the operation (for error messages)
    """
    try:
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        raise StorageError(f"Database operation '{operation}' failed: {e!s}") from e


T = TypeVar("T")


def safe_query(session: Session, query_func: Callable[[Session], T], error_msg: str) -> T:
    """
    Run a read, translating driver failures into ``StorageError``.

    Args:
        session: The database session
        query_func: Function that performs the query
        error_msg: Error message prefix

    Returns:
        Query result
    """
    try:
        return query_func(session)
    except SQLAlchemyError as e:
        logger.exception("Read failed: %s", error_msg)
        raise StorageError(f"{error_msg}: database query failed") from e
