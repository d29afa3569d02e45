"""Status command.

Read-only health report: SELinux mode, local firewalld and timer state,
the currently advertised prefix and whether each target holds it.
"""

import json
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.markup import escape

from v6sync.commands import handle_error
from v6sync.core import (
    V6SyncError,
    ExecutionError,
    ExecutionContext,
    CommandExecutor,
    create_context,
)
from v6sync.services.reconcile import StatusReport, build_reconciler


TIMER_UNITS = ("v6sync.service", "v6sync.timer")


def status(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Print the status report as JSON"),
    ] = False,
    verbose: Annotated[
        int,
        typer.Option("--verbose", "-v", count=True, help="Increase verbosity"),
    ] = 0,
    no_color: Annotated[
        bool,
        typer.Option("--no-color", help="Disable colored output"),
    ] = False,
    config: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", help="Path to configuration file", dir_okay=False),
    ] = None,
) -> None:
    """Show whether every target holds the advertised prefix.

    Nothing is changed. Exit status is 0 when all targets are in sync
    and 1 otherwise.
    """
    ctx = create_context(verbose=verbose, quiet=json_output, no_color=no_color, config=config)

    try:
        settings = ctx.config
        settings.require_runnable()
        reconciler = build_reconciler(ctx, settings)
        report = reconciler.inspect()
        selinux_mode = reconciler.monitor.mode() if reconciler.monitor else "unknown"
    except V6SyncError as e:
        handle_error(e)

    if json_output:
        ctx.console.print_json(json.dumps({
            "prefix": str(report.prefix) if report.prefix else None,
            "prefix_error": report.prefix_error,
            "selinux": selinux_mode,
            "in_sync": report.all_in_sync,
            "targets": [
                {
                    "target": t.target,
                    "kind": t.kind,
                    "current": t.current,
                    "in_sync": t.in_sync,
                    "error": t.error,
                }
                for t in report.targets
            ],
        }))
    else:
        _show_services(ctx, selinux_mode)
        render_status(ctx, report)

    raise typer.Exit(0 if report.all_in_sync else 1)


def _show_services(ctx: ExecutionContext, selinux_mode: str) -> None:
    """Report SELinux mode, firewalld and the timer units."""
    if selinux_mode == "Enforcing":
        ctx.console.warn(f"SELinux mode: [yellow]{selinux_mode}[/yellow]")
    else:
        ctx.console.info(f"SELinux mode: {selinux_mode}")

    executor = CommandExecutor(ctx)
    firewalld = _unit_check(ctx, executor, "is-active", "firewalld")
    if firewalld:
        ctx.console.success("firewalld service is active")
    elif firewalld is not None:
        ctx.console.warn("firewalld service is inactive. Run 'systemctl status firewalld' to investigate")

    for unit in TIMER_UNITS:
        enabled = _unit_check(ctx, executor, "is-enabled", unit)
        if enabled is None:
            continue
        if not enabled:
            ctx.console.verbose(f"Unit {unit} is not enabled")
            continue
        active = _unit_check(ctx, executor, "is-active", unit)
        if active:
            ctx.console.success(f"Unit [cyan]{unit}[/cyan] is enabled and active")
        elif active is not None:
            ctx.console.warn(f"Unit [cyan]{unit}[/cyan] is enabled but not active")


def _unit_check(ctx: ExecutionContext, executor: CommandExecutor, action: str, unit: str) -> Optional[bool]:
    """Answer a systemctl query; None when systemctl itself failed."""
    try:
        return executor.systemctl(action, unit, check=False).success
    except ExecutionError as e:
        ctx.console.warn(f"Cannot query {unit}: {e.message}")
        return None


def render_status(ctx: ExecutionContext, report: StatusReport) -> None:
    """Print the prefix and the per-target table."""
    if report.prefix:
        ctx.console.info(f"Advertised prefix: [green]{report.prefix}[/green]")
    else:
        ctx.console.error(f"Prefix discovery failed: {escape(report.prefix_error or 'unknown')}")

    rows = []
    for target in report.targets:
        if target.error:
            state = "[red]error[/red]"
        elif target.in_sync is None:
            state = "[dim]unknown[/dim]"
        elif target.in_sync:
            state = "[green]in sync[/green]"
        else:
            state = "[yellow]stale[/yellow]"
        rows.append([
            escape(target.target),
            state,
            escape(target.error or target.current or "-"),
        ])

    ctx.console.print()
    ctx.console.table("Targets", ["Target", "State", "Current"], rows)
