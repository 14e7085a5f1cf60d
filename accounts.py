import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from auth import create_token, hash_password, verify_password
from database import connection, get_database_file, initialize_database, to_timestamp, transaction, utc_now
from errors import Conflict, NotFound, Unauthorized, ValidationError
from stores import SQLiteMembershipStore
from user import ROLE_BORROWER, User
from utils.validators import AccountValidator

logger = logging.getLogger(__name__)


class Accounts:
    """Registration, login and user lookup."""

    def __init__(self, db_file: Optional[str] = None, clock: Optional[Callable[[], datetime]] = None) -> None:
        self.db_file = db_file or get_database_file()
        self.clock = clock or utc_now
        initialize_database(self.db_file)

    def register(self, username: str, email: str, password: str) -> User:
        """Create a borrower account. Usernames and emails must be unique."""
        errors = AccountValidator.validate_registration(username, email, password)
        if errors:
            raise ValidationError("Validation failed", errors)

        user = User(
            username=username.strip(),
            email=email.strip(),
            password_hash=hash_password(password),
            role=ROLE_BORROWER,
            created_at=to_timestamp(self.clock()),
        )
        with transaction(self.db_file) as conn:
            members = SQLiteMembershipStore(conn)
            if members.username_taken(user.username) or members.email_taken(user.email):
                raise Conflict("Username or email already exists")
            user.id = members.insert(user)
        logger.info("Registered user %s (%r)", user.id, user.username)
        return user

    def authenticate(self, username: str, password: str) -> User:
        if not username or not password:
            raise ValidationError("Username and password are required")
        with connection(self.db_file) as conn:
            user = SQLiteMembershipStore(conn).get_by_username(username)
        if not user or not verify_password(password, user.password_hash):
            logger.warning("Failed login attempt for %r", username)
            raise Unauthorized("Invalid credentials")
        return user

    def login(self, username: str, password: str) -> Dict[str, Any]:
        """Check credentials and issue a bearer token."""
        user = self.authenticate(username, password)
        # Expiry is checked against wall-clock time when the token comes back
        token = create_token(user)
        logger.info("Login successful for %r", user.username)
        return {
            "token": token,
            "user": {"id": user.id, "username": user.username, "role": user.role},
        }

    def get_user(self, user_id: int) -> User:
        with connection(self.db_file) as conn:
            user = SQLiteMembershipStore(conn).get(user_id)
        if not user:
            raise NotFound("User not found")
        return user
