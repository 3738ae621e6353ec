#!/usr/bin/env python3
"""
Initialize the Library Ledger database.

This script:
1. Creates all database tables
2. Optionally loads a sample catalog
3. Verifies the database is ready for the REST API and MCP server

Usage:
    python scripts/init_database.py [--drop-existing] [--sample-data]
"""

import argparse
import logging
import sys

from faker import Faker
from sqlalchemy import inspect

from library_ledger.database import (
    BookCreateSchema,
    BookRepository,
    DatabaseManager,
    get_db_manager,
)

logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

EXPECTED_TABLES = {"books", "loans"}

GENERATED_GENRES = ["Fiction", "Mystery", "Science Fiction", "Biography", "History", "Poetry"]

SAMPLE_BOOKS = [
    {
        "isbn": "9780743273565",
        "title": "The Great Gatsby",
        "author": "F. Scott Fitzgerald",
        "genre": "Fiction",
        "published_year": 1925,
        "description": "A portrait of the Jazz Age in all of its decadence and excess.",
        "quantity": 3,
    },
    {
        "isbn": "9780451524935",
        "title": "1984",
        "author": "George Orwell",
        "genre": "Dystopian",
        "published_year": 1949,
        "quantity": 2,
    },
    {
        "isbn": "9780441013593",
        "title": "Dune",
        "author": "Frank Herbert",
        "genre": "Science Fiction",
        "published_year": 1965,
        "quantity": 2,
    },
    {
        "isbn": "9780061120084",
        "title": "To Kill a Mockingbird",
        "author": "Harper Lee",
        "genre": "Fiction",
        "published_year": 1960,
        "quantity": 1,
    },
    {
        "isbn": "9780134685991",
        "title": "Effective Java",
        "author": "Joshua Bloch",
        "genre": "Programming",
        "published_year": 2018,
        "quantity": 1,
    },
]


def generate_books(count: int, seed: int = 42) -> list[dict]:
    """Generate plausible catalog entries; the same seed gives the same books."""
    fake = Faker()
    fake.seed_instance(seed)

    return [
        {
            "isbn": fake.isbn13(separator=""),
            "title": fake.catch_phrase().title(),
            "author": fake.name(),
            "genre": fake.random_element(GENERATED_GENRES),
            "published_year": fake.random_int(min=1900, max=2024),
            "description": fake.text(max_nb_chars=300),
            "quantity": fake.random_int(min=1, max=5),
        }
        for _ in range(count)
    ]


def load_sample_data(db_manager: DatabaseManager, generated: int = 0) -> int:
    """
    Load a small sample catalog, plus ``generated`` Faker-made books.

    Books whose ISBN is already in the catalog are skipped, so running the
    script twice is harmless.

    Returns:
        Number of books added
    """
    added = 0
    with db_manager.session_scope() as session:
        repo = BookRepository(session)
        for data in SAMPLE_BOOKS + generate_books(generated):
            book = BookCreateSchema(**data)
            if repo.get_by_isbn(book.isbn) is not None:
                logger.info("Skipping %s, already in the catalog", book.title)
                continue
            repo.create(book)
            added += 1

    logger.info("Added %d sample books", added)
    return added


def missing_tables(db_manager: DatabaseManager) -> set[str]:
    return EXPECTED_TABLES - set(inspect(db_manager.engine).get_table_names())


def main(argv: list[str] | None = None) -> None:
    """Main entry point for database initialization."""
    parser = argparse.ArgumentParser(description="Initialize the Library Ledger database")
    parser.add_argument(
        "--drop-existing",
        action="store_true",
        help="Drop existing tables before creating new ones",
    )
    parser.add_argument(
        "--sample-data",
        action="store_true",
        help="Load a sample catalog after creating tables",
    )
    parser.add_argument(
        "--generated",
        type=int,
        default=0,
        metavar="N",
        help="With --sample-data, also generate N random books",
    )
    parser.add_argument(
        "--database-url",
        help="Override default database URL",
    )

    args = parser.parse_args(argv)

    logger.info("Initializing database manager...")
    db_manager = get_db_manager(args.database_url)

    if not db_manager.verify_connection():
        logger.error("Failed to connect to database")
        sys.exit(1)

    try:
        logger.info("Creating database schema...")
        db_manager.init_database(drop_existing=args.drop_existing)

        if args.sample_data:
            logger.info("Loading sample data...")
            load_sample_data(db_manager, args.generated)

        missing = missing_tables(db_manager)
        if missing:
            logger.error("Missing expected tables: %s", ", ".join(sorted(missing)))
            sys.exit(1)

        logger.info("Database initialization complete")

    except Exception:
        logger.exception("Database initialization failed")
        sys.exit(1)
    finally:
        db_manager.close()


if __name__ == "__main__":
    main()
