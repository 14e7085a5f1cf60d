"""Exception hierarchy shared by the services and the HTTP layer.

Every error carries the HTTP status it maps to, so the API only needs one
handler for the whole family.
"""

from typing import Dict, List, Optional


class LibraryError(Exception):
    """Base exception for lending library errors."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(LibraryError, ValueError):
    """Malformed or missing input."""

    status_code = 400

    def __init__(self, message: str, errors: Optional[List[Dict[str, str]]] = None) -> None:
        super().__init__(message)
        self.errors = errors or []


class NotFound(LibraryError, LookupError):
    """Requested book, user or loan does not exist."""

    status_code = 404


class Unauthorized(LibraryError):
    """Missing, malformed or expired credentials."""

    status_code = 401


class Forbidden(LibraryError):
    """Authenticated, but the role does not allow the operation."""

    status_code = 403


class Conflict(LibraryError):
    """The request collides with existing state."""

    status_code = 400


class Unavailable(Conflict):
    """No copies of the book are left to lend."""


class DuplicateBorrow(Conflict):
    """The user already holds an open loan for this book."""


class NoActiveLoan(Conflict):
    """The user has no open loan for this book."""


class InternalError(LibraryError):
    """Unexpected storage failure."""

    status_code = 500
