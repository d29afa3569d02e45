"""Main CLI entry point using Typer.

Defines the root application; commands live in ``v6sync.commands``.
"""

from typing import Annotated

import typer
from rich.console import Console

from v6sync import __version__
from v6sync.commands.config import app as config_app
from v6sync.commands.run import run as run_command
from v6sync.commands.status import status as status_command


app = typer.Typer(
    name="v6sync",
    help="Keep OCI and firewalld rules in sync with a dynamic IPv6 prefix.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    pretty_exceptions_enable=True,
    pretty_exceptions_show_locals=False,
)

app.command("run")(run_command)
app.command("status")(status_command)
app.add_typer(config_app, name="config")


def version_callback(value: bool) -> None:
    if value:
        Console().print(f"v6sync version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            "-V",
            callback=version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
) -> None:
    """v6sync - IPv6 prefix reconciliation.

    Discovers the prefix advertised by the home router and makes sure the
    OCI security rule and every managed firewalld ipset allow exactly it.

    [bold]Examples:[/bold]
        v6sync config init
        v6sync run --dry-run
        v6sync run
        v6sync status
    """


if __name__ == "__main__":
    app()
