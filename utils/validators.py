import re
from datetime import datetime
from typing import Any, Dict, List, Optional

from database import SQLITE_MAX_INTEGER

FieldErrors = List[Dict[str, str]]

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MIN_USERNAME_LENGTH = 3
MIN_PASSWORD_LENGTH = 6
MIN_PUBLISHED_YEAR = 1000


def _error(field: str, message: str) -> Dict[str, str]:
    return {"field": field, "message": message}


def _blank(value: Optional[str]) -> bool:
    return value is None or not str(value).strip()


class AccountValidator:
    """Registration rules: username >= 3 chars, valid email, password >= 6 chars."""

    @staticmethod
    def is_valid_email(email: Optional[str]) -> bool:
        if _blank(email):
            return False
        return EMAIL_PATTERN.match(email.strip()) is not None

    @staticmethod
    def validate_registration(username: Optional[str], email: Optional[str], password: Optional[str]) -> FieldErrors:
        errors: FieldErrors = []
        if _blank(username) or len(username.strip()) < MIN_USERNAME_LENGTH:
            errors.append(_error("username", f"Username must be at least {MIN_USERNAME_LENGTH} characters"))
        if not AccountValidator.is_valid_email(email):
            errors.append(_error("email", "Valid email required"))
        if password is None or len(password) < MIN_PASSWORD_LENGTH:
            errors.append(_error("password", f"Password must be at least {MIN_PASSWORD_LENGTH} characters"))
        return errors


class BookValidator:
    """Catalog field rules shared by create and update."""

    REQUIRED_TEXT = {
        "title": "Title is required",
        "author": "Author is required",
        "isbn": "ISBN is required",
    }

    @staticmethod
    def _check_copies(value: Any, errors: FieldErrors) -> None:
        if isinstance(value, bool) or not isinstance(value, int) or value < 1:
            errors.append(_error("totalCopies", "Total copies must be at least 1"))
        elif value > SQLITE_MAX_INTEGER:
            errors.append(_error("totalCopies", "Total copies is too large"))

    @staticmethod
    def _check_year(value: Any, errors: FieldErrors) -> None:
        if value is None:
            return
        current_year = datetime.now().year
        if isinstance(value, bool) or not isinstance(value, int) or not MIN_PUBLISHED_YEAR <= value <= current_year:
            errors.append(_error("publishedYear", f"Published year must be between {MIN_PUBLISHED_YEAR} and {current_year}"))

    @staticmethod
    def validate_new(fields: Dict[str, Any]) -> FieldErrors:
        errors: FieldErrors = []
        for name, message in BookValidator.REQUIRED_TEXT.items():
            if _blank(fields.get(name)):
                errors.append(_error(name, message))
        BookValidator._check_copies(fields.get("total_copies"), errors)
        BookValidator._check_year(fields.get("published_year"), errors)
        return errors

    @staticmethod
    def validate_changes(fields: Dict[str, Any]) -> FieldErrors:
        """Only the fields present are checked; absent means unchanged."""
        errors: FieldErrors = []
        for name, message in BookValidator.REQUIRED_TEXT.items():
            if name in fields and _blank(fields[name]):
                errors.append(_error(name, message))
        if "total_copies" in fields:
            BookValidator._check_copies(fields["total_copies"], errors)
        if "published_year" in fields:
            BookValidator._check_year(fields["published_year"], errors)
        return errors
