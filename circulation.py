"""Borrowing and returning books.

The catalog's available-copy counter is a cached aggregate of the ledger:
``total_copies - available_copies`` always equals the number of open loans
for the book. Borrow and return keep it that way by changing the counter and
the ledger inside one ``BEGIN IMMEDIATE`` transaction, using a conditional
update for the counter and a partial unique index for the one-open-loan rule.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from borrowing import STATUS_BORROWED, STATUS_RETURNED, Borrowing, due_date_for
from database import connection, get_database_file, initialize_database, transaction, utc_now
from errors import DuplicateBorrow, NoActiveLoan, NotFound, Unavailable, ValidationError
from stores import SQLiteBorrowingLedger, SQLiteCatalogStore, SQLiteMembershipStore
from user import ROLE_BORROWER

logger = logging.getLogger(__name__)


class Circulation:
    """Borrow/return workflow and ledger queries."""

    def __init__(self, db_file: Optional[str] = None, clock: Optional[Callable[[], datetime]] = None) -> None:
        self.db_file = db_file or get_database_file()
        self.clock = clock or utc_now
        initialize_database(self.db_file)

    def borrow(self, user_id: int, book_id: int) -> Borrowing:
        """Lend one copy of a book to a user for the loan period.

        Checks run in order so the most specific error wins: missing book,
        no copies left, user already holds an open loan for the book.
        """
        now = self.clock()
        due = due_date_for(now)
        with transaction(self.db_file) as conn:
            catalog = SQLiteCatalogStore(conn)
            ledger = SQLiteBorrowingLedger(conn)

            book = catalog.get(book_id)
            if not book:
                raise NotFound("Book not found")
            if book.available_copies <= 0:
                raise Unavailable("Book is not available for borrowing")
            if ledger.find_open(user_id, book_id):
                raise DuplicateBorrow("You have already borrowed this book")

            if not catalog.take_copy(book_id):
                raise Unavailable("Book is not available for borrowing")
            borrowing_id = ledger.open_loan(user_id, book_id, now, due)

        logger.info("User %s borrowed book %s (loan %s, due %s)", user_id, book_id, borrowing_id, due.date())
        return Borrowing(
            id=borrowing_id, user_id=user_id, book_id=book_id, borrowed_date=now, due_date=due,
            title=book.title, author=book.author, isbn=book.isbn,
        )

    def return_book(self, user_id: int, book_id: int) -> Borrowing:
        """Close the user's open loan for the book and put the copy back."""
        now = self.clock()
        with transaction(self.db_file) as conn:
            ledger = SQLiteBorrowingLedger(conn)
            borrowing = ledger.find_open(user_id, book_id)
            if not borrowing:
                raise NoActiveLoan("You have not borrowed this book")
            ledger.close(borrowing.id, now)
            # The book may have been resized or removed; the cap keeps the counter valid.
            if not SQLiteCatalogStore(conn).release_copy(book_id):
                logger.warning("Book %s had no copy slot to release for loan %s", book_id, borrowing.id)

        borrowing.status = STATUS_RETURNED
        borrowing.returned_date = now
        logger.info("User %s returned book %s (loan %s)", user_id, book_id, borrowing.id)
        return borrowing

    # ------------------------- Queries ------------------------- #
    def list_user_borrowings(self, user_id: int) -> List[Borrowing]:
        """The user's loans, most recent first, with book title/author/isbn."""
        with connection(self.db_file) as conn:
            return SQLiteBorrowingLedger(conn).for_user(user_id)

    def list_all_borrowings(self, status: Optional[str] = None, overdue: bool = False) -> List[Borrowing]:
        """Every loan, most recent first, with username and book details.

        ``overdue`` narrows to open loans past their due date; combined with a
        status filter both must hold, so ``returned`` yields nothing.
        """
        if status not in (None, STATUS_BORROWED, STATUS_RETURNED):
            raise ValidationError("Invalid status", [{"field": "status", "message": "Use borrowed or returned"}])
        if overdue:
            return [b for b in self.list_overdue() if status is None or b.status == status]
        with connection(self.db_file) as conn:
            return SQLiteBorrowingLedger(conn).all(status=status)

    def list_overdue(self) -> List[Borrowing]:
        with connection(self.db_file) as conn:
            return SQLiteBorrowingLedger(conn).overdue(self.clock())

    def is_overdue(self, borrowing: Borrowing) -> bool:
        return borrowing.is_overdue(self.clock())

    def serialize(self, borrowing: Borrowing) -> Dict[str, Any]:
        """Ledger entry plus the read-time overdue flag and days remaining."""
        return borrowing.to_dict(self.clock())

    def dashboard_stats(self) -> Dict[str, int]:
        now = self.clock()
        with connection(self.db_file) as conn:
            ledger = SQLiteBorrowingLedger(conn)
            return {
                "total_books": SQLiteCatalogStore(conn).count(),
                "total_users": SQLiteMembershipStore(conn).count(role=ROLE_BORROWER),
                "active_borrowings": ledger.count_open(),
                "overdue_books": ledger.count_overdue(now),
            }
