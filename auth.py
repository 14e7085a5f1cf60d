"""Credentials and authorization.

Passwords are stored as bcrypt hashes. Bearer tokens are HS256 JWTs carrying
``{id, username, role, iat, exp}`` signed with ``JWT_SECRET_KEY`` and valid
for ``TOKEN_EXPIRATION_HOURS`` (24 by default).

A request without a token is ``Unauthorized`` (401); a token that fails
verification or has expired is ``Forbidden`` (403), as is a valid token
whose role does not allow the operation. ``authorize`` is the single
authorization predicate used by every guarded operation.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
import jwt

from config import settings
from errors import Forbidden, Unauthorized
from user import ROLE_LIBRARIAN, User

# bcrypt only looks at the first 72 bytes of a password
BCRYPT_MAX_BYTES = 72


@dataclass(frozen=True)
class Principal:
    """The identity carried by a verified token."""

    id: int
    username: str
    role: str

    @property
    def is_librarian(self) -> bool:
        return self.role == ROLE_LIBRARIAN


# ------------------------- Passwords ------------------------- #
def _password_bytes(password: str) -> bytes:
    return password.encode("utf-8")[:BCRYPT_MAX_BYTES]


def hash_password(password: str, rounds: Optional[int] = None) -> str:
    salt = bcrypt.gensalt(rounds=rounds or settings.bcrypt_rounds)
    return bcrypt.hashpw(_password_bytes(password), salt).decode("ascii")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(_password_bytes(password), password_hash.encode("ascii"))
    except (ValueError, UnicodeEncodeError):
        # Not a bcrypt hash
        return False


# ------------------------- Tokens ------------------------- #
def create_token(user: User, now: Optional[datetime] = None, secret: Optional[str] = None) -> str:
    """Issue a signed bearer token for the user."""
    now = now or datetime.now(timezone.utc)
    claims = {
        "id": user.id,
        "username": user.username,
        "role": user.role,
        "iat": now,
        "exp": now + timedelta(hours=settings.token_expiration_hours),
    }
    return jwt.encode(claims, secret or settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str, secret: Optional[str] = None) -> Principal:
    """Verify signature and expiry and return the principal, or raise Forbidden."""
    try:
        claims = jwt.decode(
            token,
            secret or settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
            options={"require": ["exp", "iat"]},
        )
    except jwt.ExpiredSignatureError:
        raise Forbidden("Token expired")
    except jwt.InvalidTokenError:
        raise Forbidden("Invalid token")

    try:
        return Principal(id=int(claims["id"]), username=str(claims["username"]), role=str(claims["role"]))
    except (KeyError, TypeError, ValueError):
        raise Forbidden("Invalid token")


# ------------------------- Guards ------------------------- #
def authenticated(principal: Optional[Principal]) -> bool:
    return principal is not None


def is_librarian(principal: Optional[Principal]) -> bool:
    return authenticated(principal) and principal.is_librarian


def authorize(principal: Optional[Principal], role: Optional[str] = None) -> Principal:
    """Return the principal if it may proceed, else raise."""
    if not authenticated(principal):
        raise Unauthorized("Access token required")
    if role is not None and principal.role != role:
        raise Forbidden(f"{role.capitalize()} access required")
    return principal
