import os
from datetime import datetime, timedelta, timezone

import pytest

# Test catalogs start empty and password hashing stays cheap; must run before config is imported.
os.environ.setdefault("SEED_SAMPLE_BOOKS", "false")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

from accounts import Accounts
from book import Book
from circulation import Circulation
from library import Library


class FakeClock:
    """Callable clock that tests can move forward."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def db_file(tmp_path, request, monkeypatch):
    # Unique database file per test; services built without db_file pick it up too
    path = str(tmp_path / f"test_{request.node.name}.db")
    monkeypatch.setenv("LIBRARY_DB_FILE", path)
    return path


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 3, 1, 9, 30, tzinfo=timezone.utc))


@pytest.fixture
def lib(db_file, clock):
    return Library(db_file=db_file, clock=clock)


@pytest.fixture
def circulation(db_file, clock):
    return Circulation(db_file=db_file, clock=clock)


@pytest.fixture
def accounts(db_file, clock):
    return Accounts(db_file=db_file, clock=clock)


@pytest.fixture
def make_book(lib):
    def _make(title="Dune", author="Frank Herbert", isbn="9780441172719", copies=1, **extra):
        return lib.add_book(Book(title=title, author=author, isbn=isbn, total_copies=copies, **extra))
    return _make
