"""CLI command implementations."""

import typer

from v6sync.core.exceptions import V6SyncError
from v6sync.core.output import console


def handle_error(error: V6SyncError) -> None:
    """Print a V6SyncError with its details and hint, then exit with its code."""
    console.error(error.message)

    if error.details:
        for detail in error.details:
            console.print(f"  [dim]{detail}[/dim]")

    if error.hint:
        console.hint(error.hint)

    raise typer.Exit(error.exit_code)
