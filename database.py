import logging
import os
import sqlite3
from contextlib import contextmanager
from typing import Iterator

from dotenv import load_dotenv

from config import settings

# Make sure .env is loaded before DATABASE_FILE is resolved, even when this
# module is imported ahead of config.
load_dotenv()

logger = logging.getLogger(__name__)

# Default database file.
# Priority:
# 1) LIBRARY_DB_FILE (explicit override, also used by the test suite)
# 2) settings.database_file
# Library(db_file=...) may reassign this before the first connection.
DATABASE_FILE = os.environ.get("LIBRARY_DB_FILE") or settings.database_file

# Upper bound used for loans without a return date; matches date.max.
UNBOUNDED_DATE = "9999-12-31"


def get_db_connection() -> sqlite3.Connection:
    """Open a connection to the SQLite database.

    Connections run in autocommit mode; multi-statement writes go through
    :func:`transaction`. Foreign keys are enforced on every connection.
    """
    conn = sqlite3.connect(
        DATABASE_FILE,
        timeout=settings.database_timeout,
        isolation_level=None,
        check_same_thread=False,
    )
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


@contextmanager
def transaction(immediate: bool = True) -> Iterator[sqlite3.Connection]:
    """Run a block inside a single SQLite transaction.

    ``BEGIN IMMEDIATE`` takes the write lock up front, so reads made inside
    the block cannot be invalidated by another writer before the block
    commits.
    """
    conn = get_db_connection()
    try:
        conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
        try:
            yield conn
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        conn.execute("COMMIT")
    finally:
        conn.close()


def create_tables() -> None:
    """Create the tables, indexes and triggers if they do not exist yet."""
    conn = get_db_connection()
    try:
        cursor = conn.cursor()
        # WAL lets readers proceed while a loan write holds the lock
        cursor.execute("PRAGMA journal_mode=WAL;")

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS users (
                id TEXT PRIMARY KEY,
                username TEXT NOT NULL UNIQUE,
                password_hash TEXT NOT NULL,
                role TEXT CHECK (role IN ('SeniorStaff', 'JuniorStaff')),
                created_at TIMESTAMP NOT NULL,
                updated_at TIMESTAMP NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS authors (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                bio TEXT,
                created_at TIMESTAMP NOT NULL,
                updated_at TIMESTAMP NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS books (
                id TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                isbn TEXT NOT NULL CHECK (length(isbn) = 13 AND isbn NOT GLOB '*[^0-9]*'),
                published_date TEXT NOT NULL,
                created_at TIMESTAMP NOT NULL,
                updated_at TIMESTAMP NOT NULL
            )
        """)

        # An author linked to a book cannot be removed (RESTRICT);
        # links disappear together with their book (CASCADE).
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS book_authors (
                book_id TEXT NOT NULL,
                author_id TEXT NOT NULL,
                PRIMARY KEY (book_id, author_id),
                FOREIGN KEY (book_id) REFERENCES books(id) ON DELETE CASCADE,
                FOREIGN KEY (author_id) REFERENCES authors(id) ON DELETE RESTRICT
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS borrowers (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL UNIQUE,
                name TEXT NOT NULL,
                email TEXT NOT NULL,
                phone TEXT NOT NULL,
                created_at TIMESTAMP NOT NULL,
                updated_at TIMESTAMP NOT NULL,
                FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE RESTRICT
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS loans (
                id TEXT PRIMARY KEY,
                book_id TEXT NOT NULL,
                borrower_id TEXT NOT NULL,
                loan_date TEXT NOT NULL,
                return_date TEXT,
                returned_at TIMESTAMP,
                created_at TIMESTAMP NOT NULL,
                updated_at TIMESTAMP NOT NULL,
                CHECK (return_date IS NULL OR return_date >= loan_date),
                FOREIGN KEY (book_id) REFERENCES books(id) ON DELETE CASCADE,
                FOREIGN KEY (borrower_id) REFERENCES borrowers(id) ON DELETE CASCADE
            )
        """)

        cursor.execute("CREATE INDEX IF NOT EXISTS idx_book_authors_author_id ON book_authors(author_id)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_loans_book_id ON loans(book_id, loan_date)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_loans_borrower_id ON loans(borrower_id)")

        # Exclusion constraint: no two loans of one book may have intersecting
        # [loan_date, return_date) intervals. A NULL return_date is unbounded.
        cursor.execute(f"""
            CREATE TRIGGER IF NOT EXISTS loans_no_overlap_insert
            BEFORE INSERT ON loans
            WHEN EXISTS (
                SELECT 1 FROM loans AS l
                WHERE l.book_id = NEW.book_id
                  AND l.loan_date < COALESCE(NEW.return_date, '{UNBOUNDED_DATE}')
                  AND NEW.loan_date < COALESCE(l.return_date, '{UNBOUNDED_DATE}')
            )
            BEGIN
                SELECT RAISE(ABORT, 'loan_overlap');
            END
        """)
        cursor.execute(f"""
            CREATE TRIGGER IF NOT EXISTS loans_no_overlap_update
            BEFORE UPDATE OF book_id, loan_date, return_date ON loans
            WHEN EXISTS (
                SELECT 1 FROM loans AS l
                WHERE l.book_id = NEW.book_id
                  AND l.id <> NEW.id
                  AND l.loan_date < COALESCE(NEW.return_date, '{UNBOUNDED_DATE}')
                  AND NEW.loan_date < COALESCE(l.return_date, '{UNBOUNDED_DATE}')
            )
            BEGIN
                SELECT RAISE(ABORT, 'loan_overlap');
            END
        """)
    finally:
        conn.close()


def initialize_database() -> None:
    """Initialize the database, creating the schema when needed."""
    create_tables()
    logger.debug("Database ready at %s", DATABASE_FILE)
