"""Console output using Rich.

Every message kind has a tag, the verbosity it needs and a stream.
Warnings, errors and hints go to stderr so that ``--json`` output on
stdout stays machine readable, and they are shown even in quiet mode.

Host workers share the global console. Rich serialises writes, so lines
from different hosts never interleave mid-line.
"""

from enum import IntEnum
from typing import Any, NamedTuple

from rich import box
from rich.console import Console as RichConsole
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table


class Verbosity(IntEnum):
    """Output verbosity levels."""
    QUIET = 0    # Errors only
    NORMAL = 1   # Standard output
    VERBOSE = 2  # Additional details
    DEBUG = 3    # Everything


class MessageKind(NamedTuple):
    tag: str
    verbosity: Verbosity
    stderr: bool = False


INFO = MessageKind("[blue][INFO][/blue]", Verbosity.NORMAL)
OK = MessageKind("[green][OK][/green]", Verbosity.NORMAL)
STEP = MessageKind("[blue]->[/blue]", Verbosity.NORMAL)
DRY_RUN = MessageKind("[blue][DRY-RUN][/blue] Would:", Verbosity.NORMAL)
DEBUG = MessageKind("[cyan][DEBUG][/cyan]", Verbosity.DEBUG)
WARN = MessageKind("[yellow][WARN][/yellow]", Verbosity.QUIET, stderr=True)
ERROR = MessageKind("[red][ERROR][/red]", Verbosity.QUIET, stderr=True)
HINT = MessageKind("[cyan]Hint:[/cyan]", Verbosity.QUIET, stderr=True)


class Console:
    """Verbosity-aware pair of Rich consoles (stdout and stderr)."""

    def __init__(self) -> None:
        self.verbosity = Verbosity.NORMAL
        self.dry_run = False
        self._build(no_color=False)

    def _build(self, no_color: bool) -> None:
        self._out = RichConsole(highlight=False, no_color=no_color)
        self._err = RichConsole(stderr=True, highlight=False, no_color=no_color)

    def configure(
        self,
        verbosity: int = Verbosity.NORMAL,
        dry_run: bool = False,
        no_color: bool = False,
    ) -> None:
        """Apply the flags of the current invocation."""
        self.verbosity = Verbosity(max(Verbosity.QUIET, min(verbosity, Verbosity.DEBUG)))
        self.dry_run = dry_run
        self._build(no_color)

    def _emit(self, kind: MessageKind, message: str) -> None:
        if self.verbosity < kind.verbosity:
            return
        stream = self._err if kind.stderr else self._out
        stream.print(f"{kind.tag} {message}")

    def info(self, message: str) -> None:
        self._emit(INFO, message)

    def success(self, message: str) -> None:
        self._emit(OK, message)

    def step(self, message: str) -> None:
        self._emit(STEP, message)

    def warn(self, message: str) -> None:
        self._emit(WARN, message)

    def error(self, message: str) -> None:
        self._emit(ERROR, message)

    def hint(self, message: str) -> None:
        self._emit(HINT, message)

    def debug(self, message: str) -> None:
        self._emit(DEBUG, message)

    def dry_run_msg(self, message: str) -> None:
        """Describe a skipped write; silent outside dry-run mode."""
        if self.dry_run:
            self._emit(DRY_RUN, message)

    def verbose(self, message: str) -> None:
        """Dimmed detail line, shown from -v upwards."""
        if self.verbosity >= Verbosity.VERBOSE:
            self._out.print(f"[dim]{message}[/dim]")

    def print(self, message: Any = "", **kwargs: Any) -> None:
        self._out.print(message, **kwargs)

    def print_json(self, document: str) -> None:
        """Print a JSON document without markup processing."""
        self._out.print_json(document)

    def table(self, title: str, columns: list[str], rows: list[list[str]]) -> None:
        table = Table(title=title, box=box.ROUNDED)
        for column in columns:
            table.add_column(column)
        for row in rows:
            table.add_row(*row)
        self._out.print(table)

    def yaml(self, text: str, title: str = "Configuration") -> None:
        syntax = Syntax(text, "yaml", theme="monokai", line_numbers=False)
        self._out.print(Panel(syntax, title=title, border_style="cyan"))

    def summary(self, title: str, items: dict[str, Any]) -> None:
        """Key/value panel; booleans render as Yes/No."""
        lines = []
        for key, value in items.items():
            if isinstance(value, bool):
                value = "[green]Yes[/green]" if value else "[red]No[/red]"
            lines.append(f"[bold]{key}:[/bold] {value}")
        self._out.print(Panel("\n".join(lines), title=title, border_style="blue"))

    def outcome_panel(self, title: str, success: bool, items: dict[str, Any]) -> None:
        """Key/value panel titled and bordered by overall success."""
        verdict, colour = ("SUCCESS", "green") if success else ("FAILED", "red")
        body = "\n".join(f"[bold]{key}:[/bold] {value}" for key, value in items.items())
        self._out.print(Panel(body, title=f"{title} - [{colour}]{verdict}[/{colour}]", border_style=colour))


# Global console instance
console = Console()
