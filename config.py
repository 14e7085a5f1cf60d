import logging
import os
from dataclasses import dataclass, field
from typing import List, Optional
from dotenv import load_dotenv

load_dotenv()


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


def _env_list(name: str) -> List[str]:
    raw = os.getenv(name, "")
    return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass
class Settings:
    # API settings
    api_host: str = os.getenv("API_HOST", "127.0.0.1")
    api_port: int = int(os.getenv("API_PORT", "5000"))
    api_prefix: str = os.getenv("API_PREFIX", "")

    # Database settings
    database_file: str = os.getenv("LIBRARY_DB_FILE", "library.db")
    seed_sample_books: bool = _env_flag("SEED_SAMPLE_BOOKS", "True")

    # Security settings
    secret_key: str = os.getenv("SECRET_KEY", "your-secret-key-change-this-in-production")
    jwt_secret_key: str = os.getenv("JWT_SECRET_KEY", secret_key)
    jwt_algorithm: str = os.getenv("JWT_ALGORITHM", "HS256")
    token_expiration_hours: int = int(os.getenv("TOKEN_EXPIRATION_HOURS", "24"))
    bcrypt_rounds: int = int(os.getenv("BCRYPT_ROUNDS", "12"))

    # Bootstrap librarian account
    default_librarian_username: str = os.getenv("DEFAULT_LIBRARIAN_USERNAME", "librarian")
    default_librarian_email: str = os.getenv("DEFAULT_LIBRARIAN_EMAIL", "librarian@library.com")
    default_librarian_password: str = os.getenv("DEFAULT_LIBRARIAN_PASSWORD", "librarian123")

    # CORS, explicit allowlist wins over the development defaults
    cors_origins: list = field(default_factory=lambda: _env_list("CORS_ORIGINS") or [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:19006",
    ])

    # API client settings
    client_base_url: str = os.getenv("CLIENT_BASE_URL", "http://127.0.0.1:5000")
    client_timeout: float = float(os.getenv("CLIENT_TIMEOUT", "10"))

    # Application settings
    app_name: str = os.getenv("APP_NAME", "Lending Library")
    app_version: str = os.getenv("APP_VERSION", "1.0.0")
    debug: bool = _env_flag("DEBUG", "False")
    environment: str = os.getenv("ENVIRONMENT", "development")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")


settings = Settings()


def configure_logging(level: Optional[str] = None) -> None:
    """Apply the configured log level to the root logger."""
    if level is None:
        level = "DEBUG" if settings.debug else settings.log_level
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
