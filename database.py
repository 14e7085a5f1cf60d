import logging
import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Optional

from dotenv import load_dotenv

from config import settings
from errors import InternalError

# Make sure .env is loaded before LIBRARY_DB_FILE is read.
load_dotenv()

logger = logging.getLogger(__name__)

# Fixed width, so lexical order in SQL equals chronological order.
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"

# SQLite INTEGER is a signed 64-bit value
SQLITE_MAX_INTEGER = 2 ** 63 - 1

SAMPLE_BOOKS = [
    {
        "title": "The Great Gatsby",
        "author": "F. Scott Fitzgerald",
        "isbn": "978-0743273565",
        "category": "Fiction",
        "total_copies": 3,
        "published_year": 1925,
        "description": "A story of the fabulously wealthy Jay Gatsby and his love for the beautiful Daisy Buchanan.",
    },
    {
        "title": "To Kill a Mockingbird",
        "author": "Harper Lee",
        "isbn": "978-0446310789",
        "category": "Fiction",
        "total_copies": 2,
        "published_year": 1960,
        "description": "The story of young Scout Finch and her father Atticus in a racially divided Alabama town.",
    },
    {
        "title": "1984",
        "author": "George Orwell",
        "isbn": "978-0451524935",
        "category": "Science Fiction",
        "total_copies": 4,
        "published_year": 1949,
        "description": "A dystopian novel about totalitarianism and surveillance society.",
    },
]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def from_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.strptime(value, TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)


def get_database_file() -> str:
    """Resolve the database file at call time.

    LIBRARY_DB_FILE wins over the configured default so that tests (and
    callers) can point a fresh service at a different file without reloading
    config.
    """
    return os.environ.get("LIBRARY_DB_FILE") or settings.database_file


def get_db_connection(db_file: Optional[str] = None) -> sqlite3.Connection:
    """Open a connection in autocommit mode; writes go through transaction()."""
    conn = sqlite3.connect(db_file or get_database_file(), timeout=10, isolation_level=None)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA busy_timeout=10000;")
    return conn


@contextmanager
def connection(db_file: Optional[str] = None) -> Iterator[sqlite3.Connection]:
    """Short-lived connection for reads."""
    conn = get_db_connection(db_file)
    try:
        yield conn
    finally:
        conn.close()


@contextmanager
def transaction(db_file: Optional[str] = None) -> Iterator[sqlite3.Connection]:
    """Run a unit of work under BEGIN IMMEDIATE.

    The write lock is taken up front, so a read-check-write sequence inside
    the block cannot interleave with another writer. Any exception rolls the
    whole unit back.
    """
    conn = get_db_connection(db_file)
    try:
        conn.execute("BEGIN IMMEDIATE")
        yield conn
        conn.execute("COMMIT")
    except BaseException as e:
        if conn.in_transaction:
            conn.execute("ROLLBACK")
        if isinstance(e, sqlite3.OperationalError):
            logger.error("Transaction on %s failed: %s", db_file or get_database_file(), e)
            raise InternalError("Storage failure") from e
        raise
    finally:
        conn.close()


def create_tables(db_file: Optional[str] = None) -> None:
    """Creates the required tables if they do not exist in the database."""
    conn = get_db_connection(db_file)
    try:
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS users (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                username TEXT UNIQUE NOT NULL COLLATE NOCASE,
                email TEXT UNIQUE NOT NULL COLLATE NOCASE,
                password_hash TEXT NOT NULL,
                role TEXT NOT NULL DEFAULT 'borrower' CHECK(role IN ('librarian', 'borrower')),
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS books (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                title TEXT NOT NULL,
                author TEXT NOT NULL,
                isbn TEXT UNIQUE NOT NULL,
                category TEXT NOT NULL DEFAULT 'General',
                total_copies INTEGER NOT NULL DEFAULT 1 CHECK(total_copies >= 1),
                available_copies INTEGER NOT NULL DEFAULT 1,
                published_year INTEGER,
                description TEXT,
                created_at TEXT NOT NULL,
                CHECK(available_copies >= 0 AND available_copies <= total_copies)
            );

            CREATE TABLE IF NOT EXISTS borrowings (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL,
                book_id INTEGER NOT NULL,
                borrowed_date TEXT NOT NULL,
                due_date TEXT NOT NULL,
                returned_date TEXT,
                status TEXT NOT NULL DEFAULT 'borrowed' CHECK(status IN ('borrowed', 'returned', 'overdue')),
                FOREIGN KEY (user_id) REFERENCES users (id),
                FOREIGN KEY (book_id) REFERENCES books (id)
            );

            -- At most one open loan per (user, book).
            CREATE UNIQUE INDEX IF NOT EXISTS idx_borrowings_open_loan
                ON borrowings(user_id, book_id) WHERE status = 'borrowed';
            CREATE INDEX IF NOT EXISTS idx_borrowings_user ON borrowings(user_id, borrowed_date);
            CREATE INDEX IF NOT EXISTS idx_borrowings_due ON borrowings(due_date, status);
            CREATE INDEX IF NOT EXISTS idx_books_title ON books(title);
            CREATE INDEX IF NOT EXISTS idx_books_category ON books(category);
        """)
        # Overdue is derived from due_date; rows stored as 'overdue' by older
        # writers are still open loans.
        cursor = conn.execute("UPDATE OR IGNORE borrowings SET status = 'borrowed' WHERE status = 'overdue'")
        if cursor.rowcount > 0:
            logger.info("Reopened %d legacy overdue borrowings", cursor.rowcount)
    finally:
        conn.close()


def seed_default_librarian(db_file: Optional[str] = None) -> bool:
    """Create the bootstrap librarian account on first run."""
    # Imported here, auth pulls in config only but keeps database import-light.
    from auth import hash_password

    username = settings.default_librarian_username
    with connection(db_file) as conn:
        row = conn.execute("SELECT id FROM users WHERE username = ?", (username,)).fetchone()
    if row:
        logger.debug("Default librarian already exists")
        return False

    password_hash = hash_password(settings.default_librarian_password)
    with transaction(db_file) as conn:
        cursor = conn.execute(
            "INSERT OR IGNORE INTO users (username, email, password_hash, role, created_at) "
            "VALUES (?, ?, ?, 'librarian', ?)",
            (username, settings.default_librarian_email, password_hash, to_timestamp(utc_now())),
        )
        created = cursor.rowcount > 0
    if created:
        logger.info("Created default librarian user %r", username)
    return created


def seed_sample_books(db_file: Optional[str] = None) -> int:
    """Insert the sample catalog; existing ISBNs are left alone."""
    now = to_timestamp(utc_now())
    inserted = 0
    with transaction(db_file) as conn:
        for book in SAMPLE_BOOKS:
            cursor = conn.execute(
                "INSERT OR IGNORE INTO books (title, author, isbn, category, total_copies, available_copies, "
                "published_year, description, created_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (book["title"], book["author"], book["isbn"], book["category"], book["total_copies"],
                 book["total_copies"], book["published_year"], book["description"], now),
            )
            inserted += cursor.rowcount
    if inserted:
        logger.info("Seeded %d sample books", inserted)
    return inserted


def initialize_database(db_file: Optional[str] = None, seed_samples: Optional[bool] = None) -> None:
    """Initializes the database, creates tables and seeds bootstrap data."""
    create_tables(db_file)
    seed_default_librarian(db_file)
    if settings.seed_sample_books if seed_samples is None else seed_samples:
        seed_sample_books(db_file)
