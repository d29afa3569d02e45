"""Execution context for commands.

One ExecutionContext is built per CLI invocation. It carries the flags
that change how a pass behaves (dry run, verbosity) plus the lazily
loaded configuration, and is handed to the executor, every target
adapter and the reconciliation controller.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from v6sync.core.config import DEFAULT_CONFIG_PATH, SyncConfig
from v6sync.core.output import Console, Verbosity, console


@dataclass
class ExecutionContext:
    """Flags and shared services for one invocation.

    Attributes:
        dry_run: Read every target but write nothing
        verbosity: Output verbosity level (0-3)
        no_color: Disable colored output
        config_path: Configuration file to load
        overrides: Settings given on the command line; they win over the
            file and the environment
    """

    dry_run: bool = False
    verbosity: int = Verbosity.NORMAL
    no_color: bool = False

    config_path: Path = field(default_factory=lambda: DEFAULT_CONFIG_PATH)
    overrides: dict[str, Any] = field(default_factory=dict)

    _config: Optional[SyncConfig] = field(default=None, repr=False)
    _console: Console = field(default_factory=lambda: console, repr=False)

    def __post_init__(self) -> None:
        self._console.configure(self.verbosity, self.dry_run, self.no_color)

    @property
    def config(self) -> SyncConfig:
        """Settings from file and environment, command line applied last.

        Loaded on first access so commands that never need settings (such
        as ``config example``) do not fail on a broken file.
        """
        if self._config is None:
            settings = SyncConfig.load_or_default(self.config_path)
            self._config = settings.with_overrides(self.overrides) if self.overrides else settings
        return self._config

    @property
    def console(self) -> Console:
        return self._console

    @property
    def is_verbose(self) -> bool:
        return self.verbosity >= Verbosity.VERBOSE

    @property
    def is_quiet(self) -> bool:
        return self.verbosity == Verbosity.QUIET


def create_context(
    dry_run: bool = False,
    verbose: int = 0,
    quiet: bool = False,
    no_color: bool = False,
    config: Optional[Path] = None,
    overrides: Optional[dict[str, Any]] = None,
) -> ExecutionContext:
    """Build the context for a command from its CLI options.

    ``--quiet`` beats any number of ``-v``. Overrides left at None (option
    not given) are dropped so the configured value stands.
    """
    verbosity = Verbosity.QUIET if quiet else min(Verbosity.NORMAL + verbose, Verbosity.DEBUG)
    given = {key: value for key, value in (overrides or {}).items() if value is not None}

    return ExecutionContext(
        dry_run=dry_run,
        verbosity=verbosity,
        no_color=no_color,
        config_path=config or DEFAULT_CONFIG_PATH,
        overrides=given,
    )
