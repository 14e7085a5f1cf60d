import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from book import Book
from database import connection, get_database_file, initialize_database, to_timestamp, transaction, utc_now
from errors import Conflict, NotFound, ValidationError
from stores import SQLiteBorrowingLedger, SQLiteCatalogStore
from utils.validators import BookValidator

logger = logging.getLogger(__name__)


class Library:
    """Manages the catalog of books and their copy counts."""

    def __init__(self, db_file: Optional[str] = None, clock: Optional[Callable[[], datetime]] = None) -> None:
        self.db_file = db_file or get_database_file()
        self.clock = clock or utc_now
        initialize_database(self.db_file)  # Ensure DB and tables exist

    # ------------------------- Core operations ------------------------- #
    def add_book(self, book: Book) -> Book:
        """Add a book; every copy starts on the shelf. Duplicate ISBNs are rejected."""
        errors = BookValidator.validate_new(book.to_dict())
        if errors:
            raise ValidationError("Validation failed", errors)

        book.available_copies = book.total_copies
        book.created_at = to_timestamp(self.clock())
        with transaction(self.db_file) as conn:
            book.id = SQLiteCatalogStore(conn).insert(book)
        logger.info("Added book %s (%s) with %d copies", book.id, book.isbn, book.total_copies)
        return book

    def find_book(self, book_id: int) -> Optional[Book]:
        with connection(self.db_file) as conn:
            return SQLiteCatalogStore(conn).get(book_id)

    def get_book(self, book_id: int) -> Book:
        book = self.find_book(book_id)
        if not book:
            raise NotFound("Book not found")
        return book

    def list_books(self, query: Optional[str] = None, category: Optional[str] = None,
                   available_only: bool = False) -> List[Book]:
        """Books ordered by title, optionally narrowed by a search term or category."""
        query = query.strip() if query else None
        with connection(self.db_file) as conn:
            return SQLiteCatalogStore(conn).list(query=query, category=category, available_only=available_only)

    def update_book(self, book_id: int, **changes: Any) -> Book:
        """Update catalog fields of a book.

        Available copies are never set directly: changing ``total_copies``
        shifts them by the same amount, and shrinking below the number of
        copies on loan is refused.
        """
        changes = {name: value for name, value in changes.items() if value is not None}
        if not changes:
            raise ValidationError("Nothing to update. Provide at least one book field.")
        errors = BookValidator.validate_changes(changes)
        if errors:
            raise ValidationError("Validation failed", errors)
        for name in ("title", "author", "isbn", "category"):
            if name in changes:
                changes[name] = changes[name].strip()

        with transaction(self.db_file) as conn:
            catalog = SQLiteCatalogStore(conn)
            if not catalog.get(book_id):
                raise NotFound("Book not found")
            if "total_copies" in changes and not catalog.resize(book_id, changes["total_copies"]):
                raise Conflict("Total copies cannot be lower than the number of copies on loan")
            catalog.update(book_id, changes)
            book = catalog.get(book_id)
        logger.info("Updated book %s: %s", book_id, ", ".join(sorted(changes)))
        return book

    def remove_book(self, book_id: int) -> None:
        """Delete a book.

        Ledger rows for the book are kept, open loans included; they list with
        empty book details and can still be returned.
        """
        with transaction(self.db_file) as conn:
            catalog = SQLiteCatalogStore(conn)
            if not catalog.get(book_id):
                raise NotFound("Book not found")
            on_loan = SQLiteBorrowingLedger(conn).count_open(book_id)
            catalog.delete(book_id)
        if on_loan:
            logger.warning("Deleted book %s with %d copies still on loan", book_id, on_loan)
        else:
            logger.info("Deleted book %s", book_id)

    def get_statistics(self) -> Dict[str, Any]:
        """Get catalog statistics."""
        with connection(self.db_file) as conn:
            return SQLiteCatalogStore(conn).statistics()
