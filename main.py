import subprocess
import sys
from typing import Optional

import typer
from rich.console import Console

import database
from circulation import Circulation
from config import configure_logging, settings
from errors import LibraryError
from library import Library
from utils.ui_helpers import print_borrowings_result, print_list_result, print_stats_result, set_output_mode

APP_NAME = "Lending Library CLI"

console = Console()


class ServiceManager:
    """Shared Library/Circulation instances, rebuilt when the database file changes."""

    _library: Optional[Library] = None
    _circulation: Optional[Circulation] = None
    _db_file_snapshot: Optional[str] = None

    @classmethod
    def _ensure(cls) -> None:
        current_db = database.get_database_file()
        if cls._library is None or current_db != cls._db_file_snapshot:
            cls._library = Library(current_db)
            cls._circulation = Circulation(current_db)
            cls._db_file_snapshot = current_db

    @classmethod
    def library(cls) -> Library:
        cls._ensure()
        return cls._library

    @classmethod
    def circulation(cls) -> Circulation:
        cls._ensure()
        return cls._circulation


# --- Typer CLI application ---
app = typer.Typer(help=APP_NAME)


@app.callback()
def _global_options(
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="Output format: plain | json | rich (default: plain)",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Global CLI options (output mode, logging)."""
    if output:
        set_output_mode(output)
    configure_logging("DEBUG" if verbose else "WARNING")


@app.command("init-db")
def cli_init_db(
    samples: bool = typer.Option(settings.seed_sample_books, "--samples/--no-samples", help="Seed the sample catalog"),
):
    """Create tables, the default librarian and optionally the sample books."""
    db_file = database.get_database_file()
    database.initialize_database(db_file, seed_samples=samples)
    print(f"Database ready: {db_file}")


@app.command("list")
def cli_list(
    q: Optional[str] = typer.Option(None, "--search", "-s", help="Search title, author, category or ISBN"),
    available: bool = typer.Option(False, "--available", help="Only books with copies on the shelf"),
):
    """List the catalog ordered by title."""
    books = ServiceManager.library().list_books(query=q, available_only=available)
    print_list_result(books)


@app.command("find")
def cli_find(book_id: int):
    """Show one book by id."""
    book = ServiceManager.library().find_book(book_id)
    if not book:
        print(f"Book with ID {book_id} not found.")
        raise typer.Exit(code=1)
    print("Book Found")
    print(f"Title: {book.title}")
    print(f"Author: {book.author}")
    print(f"ISBN: {book.isbn}")
    print(f"Category: {book.category}")
    print(f"Copies: {book.available_copies}/{book.total_copies} available")


@app.command("stats")
def cli_stats():
    """Show dashboard statistics."""
    print_stats_result(ServiceManager.circulation().dashboard_stats())


@app.command("borrowings")
def cli_borrowings(
    status: Optional[str] = typer.Option(None, "--status", help="borrowed | returned"),
):
    """List every loan in the ledger, most recent first."""
    circulation = ServiceManager.circulation()
    try:
        entries = circulation.list_all_borrowings(status=status)
    except LibraryError as e:
        print(f"Error: {e}")
        raise typer.Exit(code=1)
    print_borrowings_result([circulation.serialize(b) for b in entries])


@app.command("overdue")
def cli_overdue():
    """List open loans past their due date."""
    circulation = ServiceManager.circulation()
    entries = circulation.list_overdue()
    print_borrowings_result([circulation.serialize(b) for b in entries], empty_message="No overdue books.")


@app.command("serve")
def cli_serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address"),
    port: Optional[int] = typer.Option(None, "--port", help="Bind port"),
    reload: bool = typer.Option(False, "--reload", help="Restart on code changes"),
):
    """Start the API server with Uvicorn."""
    host = host or settings.api_host
    port = int(port or settings.api_port)
    print(f"Starting API on http://{host}:{port}{settings.api_prefix}")
    args = [
        sys.executable,
        "-m", "uvicorn",
        "api:app",
        "--host", host,
        "--port", str(port),
    ]
    if reload:
        args.append("--reload")
    try:
        subprocess.run(args, check=False)
    except KeyboardInterrupt:
        console.print("[yellow]Server stopped.[/]")


if __name__ == "__main__":
    app()
