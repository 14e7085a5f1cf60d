from __future__ import annotations

import math
from datetime import datetime, timedelta

from database import from_timestamp

LOAN_PERIOD = timedelta(days=14)

STATUS_BORROWED = "borrowed"
STATUS_RETURNED = "returned"
# Accepted in stored rows for older records and reopened as borrowed on
# startup; overdue is always computed from the due date.
STATUS_OVERDUE = "overdue"


def due_date_for(borrowed_date: datetime) -> datetime:
    return borrowed_date + LOAN_PERIOD


class Borrowing:
    """One ledger entry linking a user to a borrowed book."""

    def __init__(self, id: int | None, user_id: int, book_id: int, borrowed_date: datetime,
                 due_date: datetime, returned_date: datetime | None = None,
                 status: str = STATUS_BORROWED, title: str | None = None, author: str | None = None,
                 isbn: str | None = None, username: str | None = None) -> None:
        self.id = id
        self.user_id = user_id
        self.book_id = book_id
        self.borrowed_date = borrowed_date
        self.due_date = due_date
        self.returned_date = returned_date
        self.status = status
        # Display fields joined in from the catalog and membership stores
        self.title = title
        self.author = author
        self.isbn = isbn
        self.username = username

    @property
    def is_open(self) -> bool:
        return self.status == STATUS_BORROWED

    def is_overdue(self, now: datetime) -> bool:
        """A loan is overdue while it is still out and its due date has passed."""
        return self.is_open and self.due_date < now

    def days_remaining(self, now: datetime) -> int:
        if not self.is_open:
            return 0
        seconds = (self.due_date - now).total_seconds()
        return max(0, math.ceil(seconds / 86400))

    def to_dict(self, now: datetime) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "book_id": self.book_id,
            "borrowed_date": self.borrowed_date,
            "due_date": self.due_date,
            "returned_date": self.returned_date,
            "status": self.status,
            "is_overdue": self.is_overdue(now),
            "days_remaining": self.days_remaining(now),
            "title": self.title,
            "author": self.author,
            "isbn": self.isbn,
            "username": self.username,
        }

    @staticmethod
    def from_row(row) -> "Borrowing":
        keys = row.keys()
        return Borrowing(
            id=row["id"],
            user_id=row["user_id"],
            book_id=row["book_id"],
            borrowed_date=from_timestamp(row["borrowed_date"]),
            due_date=from_timestamp(row["due_date"]),
            returned_date=from_timestamp(row["returned_date"]),
            status=row["status"],
            title=row["title"] if "title" in keys else None,
            author=row["author"] if "author" in keys else None,
            isbn=row["isbn"] if "isbn" in keys else None,
            username=row["username"] if "username" in keys else None,
        )
