"""User-facing output for the command line.

Plain progress and results go to stdout; warnings and errors go to stderr
so scripts can capture the former cleanly.
"""

from typing import Any

from rich.console import Console
from rich.markup import escape as escape_rich_markup

console = Console()
error_console = Console(stderr=True)


def emit_info(message: Any = "") -> None:
    """Print text (taken literally) or any rich renderable such as a Table."""
    if isinstance(message, str):
        message = escape_rich_markup(message)
    console.print(message)


def emit_success(message: str) -> None:
    console.print(f"[green]{escape_rich_markup(message)}[/green]")


def emit_warning(message: str) -> None:
    error_console.print(f"[yellow]warning:[/yellow] {escape_rich_markup(message)}")


def emit_error(message: str) -> None:
    error_console.print(f"[bold red]error:[/bold red] {escape_rich_markup(message)}")
