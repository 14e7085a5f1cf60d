"""Catalog, membership and ledger stores.

Each store is an abstract capability with one SQLite implementation. The
SQLite stores are bound to a single connection so a service can combine
several of them inside one ``database.transaction()``.
"""

from __future__ import annotations

import sqlite3
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

from book import Book
from borrowing import STATUS_BORROWED, STATUS_RETURNED, Borrowing
from database import SQLITE_MAX_INTEGER, to_timestamp
from errors import Conflict, DuplicateBorrow
from user import User

BOOK_COLUMNS = (
    "id, title, author, isbn, category, total_copies, available_copies, "
    "published_year, description, created_at"
)
UPDATABLE_BOOK_FIELDS = ("title", "author", "isbn", "category", "published_year", "description")


def _storable_id(value: int) -> bool:
    """Ids outside SQLite's INTEGER range cannot name a stored row."""
    return 0 < value <= SQLITE_MAX_INTEGER


class CatalogStore(ABC):
    @abstractmethod
    def insert(self, book: Book) -> int: ...

    @abstractmethod
    def get(self, book_id: int) -> Optional[Book]: ...

    @abstractmethod
    def list(self, query: Optional[str] = None, category: Optional[str] = None,
             available_only: bool = False) -> List[Book]: ...

    @abstractmethod
    def update(self, book_id: int, fields: Dict[str, Any]) -> bool: ...

    @abstractmethod
    def resize(self, book_id: int, total_copies: int) -> bool: ...

    @abstractmethod
    def delete(self, book_id: int) -> bool: ...

    @abstractmethod
    def take_copy(self, book_id: int) -> bool: ...

    @abstractmethod
    def release_copy(self, book_id: int) -> bool: ...

    @abstractmethod
    def count(self) -> int: ...


class MembershipStore(ABC):
    @abstractmethod
    def insert(self, user: User) -> int: ...

    @abstractmethod
    def get(self, user_id: int) -> Optional[User]: ...

    @abstractmethod
    def get_by_username(self, username: str) -> Optional[User]: ...

    @abstractmethod
    def username_taken(self, username: str) -> bool: ...

    @abstractmethod
    def email_taken(self, email: str) -> bool: ...

    @abstractmethod
    def count(self, role: Optional[str] = None) -> int: ...


class BorrowingLedger(ABC):
    @abstractmethod
    def open_loan(self, user_id: int, book_id: int, borrowed_date: datetime, due_date: datetime) -> int: ...

    @abstractmethod
    def find_open(self, user_id: int, book_id: int) -> Optional[Borrowing]: ...

    @abstractmethod
    def close(self, borrowing_id: int, returned_date: datetime) -> bool: ...

    @abstractmethod
    def for_user(self, user_id: int) -> List[Borrowing]: ...

    @abstractmethod
    def all(self, status: Optional[str] = None) -> List[Borrowing]: ...

    @abstractmethod
    def overdue(self, now: datetime) -> List[Borrowing]: ...

    @abstractmethod
    def count_open(self, book_id: Optional[int] = None) -> int: ...

    @abstractmethod
    def count_overdue(self, now: datetime) -> int: ...


# ------------------------- SQLite backend ------------------------- #
class SQLiteCatalogStore(CatalogStore):
    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def insert(self, book: Book) -> int:
        try:
            cursor = self.conn.execute(
                "INSERT INTO books (title, author, isbn, category, total_copies, available_copies, "
                "published_year, description, created_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (book.title, book.author, book.isbn, book.category, book.total_copies, book.available_copies,
                 book.published_year, book.description, book.created_at),
            )
        except sqlite3.IntegrityError as e:
            raise Conflict("Book with this ISBN already exists") from e
        return cursor.lastrowid

    def get(self, book_id: int) -> Optional[Book]:
        if not _storable_id(book_id):
            return None
        row = self.conn.execute(f"SELECT {BOOK_COLUMNS} FROM books WHERE id = ?", (book_id,)).fetchone()
        return Book.from_dict(dict(row)) if row else None

    def list(self, query: Optional[str] = None, category: Optional[str] = None,
             available_only: bool = False) -> List[Book]:
        conditions: List[str] = []
        params: List[Any] = []
        if query:
            like = f"%{query}%"
            conditions.append("(title LIKE ? OR author LIKE ? OR category LIKE ? OR isbn LIKE ?)")
            params.extend([like, like, like, like])
        if category:
            conditions.append("category = ? COLLATE NOCASE")
            params.append(category)
        if available_only:
            conditions.append("available_copies > 0")

        sql = f"SELECT {BOOK_COLUMNS} FROM books"
        if conditions:
            sql += " WHERE " + " AND ".join(conditions)
        sql += " ORDER BY title COLLATE NOCASE, id"
        return [Book.from_dict(dict(row)) for row in self.conn.execute(sql, params).fetchall()]

    def update(self, book_id: int, fields: Dict[str, Any]) -> bool:
        columns = [name for name in UPDATABLE_BOOK_FIELDS if name in fields]
        if not columns:
            return self.get(book_id) is not None
        assignments = ", ".join(f"{name} = ?" for name in columns)
        try:
            cursor = self.conn.execute(
                f"UPDATE books SET {assignments} WHERE id = ?",
                [fields[name] for name in columns] + [book_id],
            )
        except sqlite3.IntegrityError as e:
            raise Conflict("Book with this ISBN already exists") from e
        return cursor.rowcount > 0

    def resize(self, book_id: int, total_copies: int) -> bool:
        """Change the number of owned copies, shifting available copies by the same delta.

        Refuses (returns False) when fewer copies would remain than are on loan.
        """
        cursor = self.conn.execute(
            "UPDATE books SET available_copies = available_copies + (? - total_copies), total_copies = ? "
            "WHERE id = ? AND total_copies - available_copies <= ?",
            (total_copies, total_copies, book_id, total_copies),
        )
        return cursor.rowcount > 0

    def delete(self, book_id: int) -> bool:
        cursor = self.conn.execute("DELETE FROM books WHERE id = ?", (book_id,))
        return cursor.rowcount > 0

    def take_copy(self, book_id: int) -> bool:
        cursor = self.conn.execute(
            "UPDATE books SET available_copies = available_copies - 1 WHERE id = ? AND available_copies > 0",
            (book_id,),
        )
        return cursor.rowcount == 1

    def release_copy(self, book_id: int) -> bool:
        cursor = self.conn.execute(
            "UPDATE books SET available_copies = available_copies + 1 "
            "WHERE id = ? AND available_copies < total_copies",
            (book_id,),
        )
        return cursor.rowcount == 1

    def count(self) -> int:
        return self.conn.execute("SELECT COUNT(*) FROM books").fetchone()[0]

    def statistics(self) -> Dict[str, Any]:
        row = self.conn.execute(
            "SELECT COUNT(*) AS total_books, COALESCE(SUM(total_copies), 0) AS total_copies, "
            "COALESCE(SUM(available_copies), 0) AS available_copies, "
            "COUNT(DISTINCT category) AS categories FROM books"
        ).fetchone()
        return dict(row)


class SQLiteMembershipStore(MembershipStore):
    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def insert(self, user: User) -> int:
        try:
            cursor = self.conn.execute(
                "INSERT INTO users (username, email, password_hash, role, created_at) VALUES (?, ?, ?, ?, ?)",
                (user.username, user.email, user.password_hash, user.role, user.created_at),
            )
        except sqlite3.IntegrityError as e:
            raise Conflict("Username or email already exists") from e
        return cursor.lastrowid

    def _one(self, sql: str, value: Any) -> Optional[User]:
        row = self.conn.execute(
            f"SELECT id, username, email, password_hash, role, created_at FROM users WHERE {sql}", (value,)
        ).fetchone()
        return User.from_dict(dict(row)) if row else None

    def get(self, user_id: int) -> Optional[User]:
        if not _storable_id(user_id):
            return None
        return self._one("id = ?", user_id)

    def get_by_username(self, username: str) -> Optional[User]:
        return self._one("username = ?", username)

    def username_taken(self, username: str) -> bool:
        return self.conn.execute("SELECT 1 FROM users WHERE username = ?", (username,)).fetchone() is not None

    def email_taken(self, email: str) -> bool:
        return self.conn.execute("SELECT 1 FROM users WHERE email = ?", (email,)).fetchone() is not None

    def count(self, role: Optional[str] = None) -> int:
        if role is None:
            return self.conn.execute("SELECT COUNT(*) FROM users").fetchone()[0]
        return self.conn.execute("SELECT COUNT(*) FROM users WHERE role = ?", (role,)).fetchone()[0]


class SQLiteBorrowingLedger(BorrowingLedger):
    # Books may have been deleted since the loan; keep the history row visible.
    _ENRICHED = (
        "SELECT b.*, bk.title, bk.author, bk.isbn, u.username FROM borrowings b "
        "LEFT JOIN books bk ON b.book_id = bk.id "
        "LEFT JOIN users u ON b.user_id = u.id"
    )

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def open_loan(self, user_id: int, book_id: int, borrowed_date: datetime, due_date: datetime) -> int:
        try:
            cursor = self.conn.execute(
                "INSERT INTO borrowings (user_id, book_id, borrowed_date, due_date, status) VALUES (?, ?, ?, ?, ?)",
                (user_id, book_id, to_timestamp(borrowed_date), to_timestamp(due_date), STATUS_BORROWED),
            )
        except sqlite3.IntegrityError as e:
            raise DuplicateBorrow("You have already borrowed this book") from e
        return cursor.lastrowid

    def find_open(self, user_id: int, book_id: int) -> Optional[Borrowing]:
        if not (_storable_id(user_id) and _storable_id(book_id)):
            return None
        row = self.conn.execute(
            "SELECT * FROM borrowings WHERE user_id = ? AND book_id = ? AND status = ?",
            (user_id, book_id, STATUS_BORROWED),
        ).fetchone()
        return Borrowing.from_row(row) if row else None

    def close(self, borrowing_id: int, returned_date: datetime) -> bool:
        cursor = self.conn.execute(
            "UPDATE borrowings SET status = ?, returned_date = ? WHERE id = ? AND status = ?",
            (STATUS_RETURNED, to_timestamp(returned_date), borrowing_id, STATUS_BORROWED),
        )
        return cursor.rowcount == 1

    def for_user(self, user_id: int) -> List[Borrowing]:
        rows = self.conn.execute(
            f"{self._ENRICHED} WHERE b.user_id = ? ORDER BY b.borrowed_date DESC, b.id DESC", (user_id,)
        ).fetchall()
        return [Borrowing.from_row(row) for row in rows]

    def all(self, status: Optional[str] = None) -> List[Borrowing]:
        if status:
            rows = self.conn.execute(
                f"{self._ENRICHED} WHERE b.status = ? ORDER BY b.borrowed_date DESC, b.id DESC", (status,)
            ).fetchall()
        else:
            rows = self.conn.execute(f"{self._ENRICHED} ORDER BY b.borrowed_date DESC, b.id DESC").fetchall()
        return [Borrowing.from_row(row) for row in rows]

    def overdue(self, now: datetime) -> List[Borrowing]:
        rows = self.conn.execute(
            f"{self._ENRICHED} WHERE b.status = ? AND b.due_date < ? ORDER BY b.due_date",
            (STATUS_BORROWED, to_timestamp(now)),
        ).fetchall()
        return [Borrowing.from_row(row) for row in rows]

    def count_open(self, book_id: Optional[int] = None) -> int:
        if book_id is not None and not _storable_id(book_id):
            return 0
        if book_id is None:
            sql, params = "SELECT COUNT(*) FROM borrowings WHERE status = ?", (STATUS_BORROWED,)
        else:
            sql, params = "SELECT COUNT(*) FROM borrowings WHERE status = ? AND book_id = ?", (STATUS_BORROWED, book_id)
        return self.conn.execute(sql, params).fetchone()[0]

    def count_overdue(self, now: datetime) -> int:
        return self.conn.execute(
            "SELECT COUNT(*) FROM borrowings WHERE status = ? AND due_date < ?",
            (STATUS_BORROWED, to_timestamp(now)),
        ).fetchone()[0]
