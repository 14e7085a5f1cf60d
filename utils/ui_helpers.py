import os
import json
from typing import List, Any, Dict
from rich.console import Console
from rich.table import Table
from rich.panel import Panel

# Environment variable to control CLI output mode
# Allowed values: 'plain' (default), 'json', 'rich'
OUTPUT_MODE_ENV = "LIB_CLI_OUTPUT"

_console = Console()


def set_output_mode(mode: str) -> None:
    mode = (mode or "").lower().strip()
    if mode in {"plain", "json", "rich"}:
        os.environ[OUTPUT_MODE_ENV] = mode


def get_output_mode() -> str:
    return os.environ.get(OUTPUT_MODE_ENV, "plain").lower()


def print_list_result(books: List[Any]) -> None:
    """Print the catalog in the current output mode.
    - plain: '<id>. Title by Author [available/total]' lines, or 'No books in library.'
    - json: JSON array of id, title, author, isbn and copy counts
    - rich: Rich table
    """
    mode = get_output_mode()

    if not books:
        print("No books in library.")
        return

    if mode == "json":
        payload = [
            {
                "id": b.id, "title": b.title, "author": b.author, "isbn": b.isbn,
                "totalCopies": b.total_copies, "availableCopies": b.available_copies,
            }
            for b in books
        ]
        print(json.dumps(payload, ensure_ascii=False))
    elif mode == "rich":
        table = Table(title="📚 Books", show_lines=True, header_style="bold cyan")
        table.add_column("ID", style="magenta", no_wrap=True)
        table.add_column("Title", style="white")
        table.add_column("Author", style="white")
        table.add_column("ISBN", style="dim")
        table.add_column("Available", justify="right")
        for b in books:
            style = "green" if b.available_copies else "red"
            table.add_row(str(b.id), b.title, b.author, b.isbn,
                          f"[{style}]{b.available_copies}/{b.total_copies}[/]")
        _console.print(table)
    else:
        for b in books:
            print(f"{b.id}. {b.title} by {b.author} [{b.available_copies}/{b.total_copies}]")


def print_borrowings_result(borrowings: List[Dict[str, Any]], empty_message: str = "No borrowings.") -> None:
    """Print serialized ledger entries in the current output mode."""
    mode = get_output_mode()

    if not borrowings:
        print(empty_message)
        return

    if mode == "json":
        print(json.dumps(borrowings, ensure_ascii=False, default=str))
    elif mode == "rich":
        table = Table(title="📖 Borrowings", header_style="bold cyan")
        table.add_column("ID", style="magenta", no_wrap=True)
        table.add_column("User")
        table.add_column("Book")
        table.add_column("Due")
        table.add_column("Status")
        for item in borrowings:
            status = "[red]overdue[/]" if item["is_overdue"] else item["status"]
            table.add_row(str(item["id"]), item.get("username") or str(item["user_id"]),
                          item.get("title") or f"#{item['book_id']}", item["due_date"].date().isoformat(), status)
        _console.print(table)
    else:
        for item in borrowings:
            status = "overdue" if item["is_overdue"] else item["status"]
            user = item.get("username") or item["user_id"]
            title = item.get("title") or f"#{item['book_id']}"
            print(f"{item['id']}. {user} - {title} (due {item['due_date'].date().isoformat()}, {status})")


def print_stats_result(stats: Dict[str, Any]) -> None:
    """Print dashboard statistics in the current output mode."""
    mode = get_output_mode()

    if not stats:
        print("No statistics available.")
        return

    labels = {
        "total_books": "Total Books",
        "total_users": "Total Users",
        "active_borrowings": "Active Borrowings",
        "overdue_books": "Overdue Books",
    }

    if mode == "json":
        print(json.dumps({key: stats.get(key, 0) for key in labels}, ensure_ascii=False))
    elif mode == "rich":
        content = "\n".join(f"[bold]{label}:[/] {stats.get(key, 0)}" for key, label in labels.items())
        border = "red" if stats.get("overdue_books") else "blue"
        _console.print(Panel.fit(content, title="📊 Stats", border_style=border))
    else:
        for key, label in labels.items():
            print(f"{label}: {stats.get(key, 0)}")
