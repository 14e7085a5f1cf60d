import json
from unittest.mock import MagicMock

import pytest
from typer.testing import CliRunner

import main
from circulation import Circulation
from main import app

runner = CliRunner()


@pytest.fixture(autouse=True)
def plain_output(monkeypatch):
    monkeypatch.setenv("LIB_CLI_OUTPUT", "plain")


def test_list_no_books(lib):
    result = runner.invoke(app, ["list"])
    assert result.exit_code == 0
    assert "No books in library." in result.stdout


def test_list_books(lib, make_book):
    make_book(title="Emma", author="Jane Austen", isbn="1", copies=2)
    make_book(title="Dune", isbn="2")

    result = runner.invoke(app, ["list"])
    assert result.exit_code == 0
    lines = result.stdout.strip().splitlines()
    assert lines == ["2. Dune by Frank Herbert [1/1]", "1. Emma by Jane Austen [2/2]"]


def test_list_search(lib, make_book):
    make_book(title="Emma", author="Jane Austen", isbn="1")
    make_book(title="Dune", isbn="2")

    result = runner.invoke(app, ["list", "--search", "austen"])
    assert result.exit_code == 0
    assert "Emma" in result.stdout
    assert "Dune" not in result.stdout


def test_list_json_output(lib, make_book):
    make_book(title="Emma", author="Jane Austen", isbn="1")

    result = runner.invoke(app, ["--output", "json", "list"])
    assert result.exit_code == 0
    [book] = json.loads(result.stdout)
    assert book["title"] == "Emma"
    assert book["availableCopies"] == 1


def test_find_book(lib, make_book):
    book = make_book(category="Science Fiction", copies=3)

    result = runner.invoke(app, ["find", str(book.id)])
    assert result.exit_code == 0
    assert "Book Found" in result.stdout
    assert "Title: Dune" in result.stdout
    assert "Category: Science Fiction" in result.stdout
    assert "Copies: 3/3 available" in result.stdout


def test_find_book_not_found(lib):
    result = runner.invoke(app, ["find", "999"])
    assert result.exit_code == 1
    assert "Book with ID 999 not found." in result.stdout


def test_stats(lib, make_book):
    make_book()

    result = runner.invoke(app, ["stats"])
    assert result.exit_code == 0
    assert "Total Books: 1" in result.stdout
    assert "Total Users: 0" in result.stdout
    assert "Active Borrowings: 0" in result.stdout
    assert "Overdue Books: 0" in result.stdout


def test_stats_json(lib):
    result = runner.invoke(app, ["-o", "json", "stats"])
    assert result.exit_code == 0
    assert json.loads(result.stdout) == {
        "total_books": 0, "total_users": 0, "active_borrowings": 0, "overdue_books": 0,
    }


def test_borrowings_and_overdue(lib, accounts, db_file, make_book):
    reader = accounts.register("reader", "reader@example.com", "secret1")
    book = make_book()
    # Wall clock, same as the CLI
    Circulation(db_file=db_file).borrow(reader.id, book.id)

    result = runner.invoke(app, ["borrowings"])
    assert result.exit_code == 0
    assert "reader - Dune" in result.stdout
    assert "borrowed" in result.stdout

    result = runner.invoke(app, ["overdue"])
    assert result.exit_code == 0
    assert "No overdue books." in result.stdout


def test_borrowings_invalid_status(lib):
    result = runner.invoke(app, ["borrowings", "--status", "lost"])
    assert result.exit_code == 1
    assert "Error: Invalid status" in result.stdout


def test_init_db(db_file):
    result = runner.invoke(app, ["init-db", "--samples"])
    assert result.exit_code == 0
    assert f"Database ready: {db_file}" in result.stdout

    result = runner.invoke(app, ["list"])
    assert "The Great Gatsby" in result.stdout


def test_serve_runs_uvicorn(monkeypatch):
    run_mock = MagicMock()
    monkeypatch.setattr(main.subprocess, "run", run_mock)

    result = runner.invoke(app, ["serve", "--host", "127.0.0.1", "--port", "8123"])

    assert result.exit_code == 0
    assert "Starting API on http://127.0.0.1:8123" in result.stdout
    args = run_mock.call_args.args[0]
    assert args[1:4] == ["-m", "uvicorn", "api:app"]
    assert args[-4:] == ["--host", "127.0.0.1", "--port", "8123"]


def test_find_book_id_beyond_integer_range(lib):
    result = runner.invoke(app, ["find", str(10 ** 20)])
    assert result.exit_code == 1
    assert "not found" in result.stdout
