from __future__ import annotations

ROLE_LIBRARIAN = "librarian"
ROLE_BORROWER = "borrower"


class User:
    """A library member. The password hash never leaves to_dict()."""

    def __init__(self, username: str, email: str, password_hash: str, role: str = ROLE_BORROWER,
                 id: int | None = None, created_at: str | None = None) -> None:
        self.id = id
        self.username = username
        self.email = email
        self.password_hash = password_hash
        self.role = role
        self.created_at = created_at

    @property
    def is_librarian(self) -> bool:
        return self.role == ROLE_LIBRARIAN

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "role": self.role,
            "created_at": self.created_at,
        }

    @staticmethod
    def from_dict(data: dict) -> "User":
        return User(
            id=data.get("id"),
            username=data["username"],
            email=data["email"],
            password_hash=data["password_hash"],
            role=data.get("role", ROLE_BORROWER),
            created_at=data.get("created_at"),
        )
