from __future__ import annotations

DEFAULT_CATEGORY = "General"


class Book:
    """Represents a single catalog entry and its copy accounting."""

    def __init__(self, title: str, author: str, isbn: str, category: str | None = None,
                 total_copies: int = 1, available_copies: int | None = None,
                 published_year: int | None = None, description: str | None = None,
                 id: int | None = None, created_at: str | None = None) -> None:
        self.id = id
        self.title = title.strip()
        self.author = author.strip()
        self.isbn = isbn.strip()
        self.category = (category or "").strip() or DEFAULT_CATEGORY
        self.total_copies = total_copies
        # A new book starts with every copy on the shelf
        self.available_copies = total_copies if available_copies is None else available_copies
        self.published_year = published_year
        self.description = description
        self.created_at = created_at

    @property
    def is_available(self) -> bool:
        return self.available_copies > 0

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.title} by {self.author} (ISBN: {self.isbn})"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "isbn": self.isbn,
            "category": self.category,
            "total_copies": self.total_copies,
            "available_copies": self.available_copies,
            "published_year": self.published_year,
            "description": self.description,
            "created_at": self.created_at,
            "is_available": self.is_available,
        }

    @staticmethod
    def from_dict(data: dict) -> "Book":
        return Book(
            id=data.get("id"),
            title=data["title"],
            author=data["author"],
            isbn=data["isbn"],
            category=data.get("category"),
            total_copies=data.get("total_copies", 1),
            available_copies=data.get("available_copies"),
            published_year=data.get("published_year"),
            description=data.get("description"),
            created_at=data.get("created_at"),
        )
