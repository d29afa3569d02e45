"""Configuration commands.

    v6sync config init       # write a commented file (mode 600)
    v6sync config validate   # check a file before the timer uses it
    v6sync config show       # effective settings, env overrides applied
    v6sync config example    # print the commented template
"""

from pathlib import Path
from typing import Annotated, Optional

import typer

from v6sync.commands import handle_error
from v6sync.core.audit import AuditEventType, AuditLogger, AuditResult
from v6sync.core.config import (
    DEFAULT_CONFIG_PATH,
    SyncConfig,
    get_example_config,
    init_config,
)
from v6sync.core.context import create_context
from v6sync.core.exceptions import V6SyncError


app = typer.Typer(
    name="config",
    help="Configuration management.",
    no_args_is_help=True,
)


ConfigPath = Annotated[
    Optional[Path],
    typer.Option(
        "--config",
        "-c",
        help=f"Configuration file. Default: {DEFAULT_CONFIG_PATH}",
        dir_okay=False,
    ),
]

Verbose = Annotated[
    int,
    typer.Option("--verbose", "-v", count=True, help="Increase verbosity (-v, -vv)."),
]

NoColor = Annotated[
    bool,
    typer.Option("--no-color", help="Disable colored output."),
]


@app.command("show")
def show(config: ConfigPath = None, verbose: Verbose = 0, no_color: NoColor = False) -> None:
    """Show the effective configuration.

    Values come from the file with V6SYNC_* environment variables applied
    on top.
    """
    ctx = create_context(verbose=verbose, no_color=no_color, config=config)

    try:
        settings = ctx.config
    except V6SyncError as e:
        handle_error(e)

    source = ctx.config_path if ctx.config_path.exists() else f"{ctx.config_path} (missing, defaults shown)"
    ctx.console.print(f"\n[bold]Configuration file:[/bold] {source}\n")
    ctx.console.yaml(settings.to_yaml())
    ctx.console.summary("Targets", {
        "Router": settings.router,
        "Security list": settings.security_list_id or "(not set)",
        "Rule": settings.rule_description,
        "Hosts": ", ".join(settings.host_refs) or "(none)",
        "Strict": settings.strict,
    })


@app.command("init")
def init(
    config: ConfigPath = None,
    force: Annotated[
        bool,
        typer.Option("--force", "-f", help="Replace an existing file."),
    ] = False,
    no_color: NoColor = False,
) -> None:
    """Write a commented configuration file readable by root only."""
    ctx = create_context(no_color=no_color, config=config)
    path = ctx.config_path

    try:
        init_config(path, force=force)
        settings = SyncConfig.load_or_default(path)
    except V6SyncError as e:
        handle_error(e)

    AuditLogger.from_config(settings.audit).record(
        AuditEventType.CONFIG_INIT,
        AuditResult.SUCCESS,
        target=str(path),
        kind="config",
        details={"force": force},
    )
    ctx.console.success(f"Configuration file created: {path}")
    ctx.console.info("Set security_list_id, then run: v6sync run --dry-run")


@app.command("validate")
def validate(config: ConfigPath = None, verbose: Verbose = 0, no_color: NoColor = False) -> None:
    """Check that a configuration file is complete enough for a pass.

    The file must exist, parse as YAML and pass validation, and it must
    name a security list. Missing hosts and loose file permissions are
    reported as warnings.
    """
    ctx = create_context(verbose=verbose, no_color=no_color, config=config)
    path = ctx.config_path

    try:
        settings = SyncConfig.load(path)
        settings.require_runnable()
    except V6SyncError as e:
        handle_error(e)

    ctx.console.success(f"Configuration is valid: {path}")
    if ctx.is_verbose:
        ctx.console.yaml(settings.to_yaml())

    if not settings.host_refs:
        ctx.console.warn("No host targets: manage_local is false and hosts is empty")
    mode = path.stat().st_mode & 0o777
    if mode & 0o077:
        ctx.console.warn(f"Configuration file mode is {mode:o}; expected 600")


@app.command("example")
def example(no_color: NoColor = False) -> None:
    """Print the commented example configuration."""
    ctx = create_context(no_color=no_color)
    ctx.console.print(get_example_config(), markup=False)
