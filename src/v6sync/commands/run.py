"""Reconciliation pass command.

Runs one pass: discover the router prefix, then bring the OCI rule and
every managed ipset in line with it. Safe to call repeatedly; targets that
already hold the prefix are left untouched. Usually invoked by a systemd
timer:

    v6sync run --quiet
"""

import sys
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.markup import escape

from v6sync.commands import handle_error
from v6sync.core import (
    V6SyncError,
    ExecutionContext,
    create_context,
    AuditLogger,
)
from v6sync.core.safety import lock_path_for, require_commands, require_root, single_instance
from v6sync.services.reconcile import ReconciliationReport, TargetAction, build_reconciler


ACTION_STYLES = {
    TargetAction.NOOP: "dim",
    TargetAction.UPDATED: "green",
    TargetAction.FAILED: "red",
}


def run(
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", "-n", help="Read every target but change nothing"),
    ] = False,
    strict: Annotated[
        Optional[bool],
        typer.Option(
            "--strict/--no-strict",
            help="Abort host updates when the cloud update fails (default from config)",
        ),
    ] = None,
    hosts: Annotated[
        Optional[list[str]],
        typer.Option("--host", "-H", help="Remote host to manage (repeatable, replaces config list)"),
    ] = None,
    local: Annotated[
        Optional[bool],
        typer.Option("--local/--no-local", help="Manage this machine's ipset (default from config)"),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Print the pass report as JSON"),
    ] = False,
    verbose: Annotated[
        int,
        typer.Option("--verbose", "-v", count=True, help="Increase verbosity"),
    ] = 0,
    quiet: Annotated[
        bool,
        typer.Option("--quiet", "-q", help="Suppress non-error output"),
    ] = False,
    no_color: Annotated[
        bool,
        typer.Option("--no-color", help="Disable colored output"),
    ] = False,
    config: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", help="Path to configuration file", dir_okay=False),
    ] = None,
) -> None:
    """Run one reconciliation pass.

    Discovers the prefix advertised by the router and updates the OCI
    security rule and the firewalld ipsets that do not hold it yet.

    Exit status is 0 when the pass succeeded and 1 when it did not.

    [bold]Examples:[/bold]
        v6sync run                    # Reconcile everything
        v6sync run --dry-run          # Show what would change
        v6sync run --no-strict        # Update hosts even if OCI fails
        v6sync run -H m1 -H root@m2   # Manage these remote hosts
    """
    ctx = create_context(
        dry_run=dry_run,
        verbose=verbose,
        quiet=quiet or json_output,
        no_color=no_color,
        config=config,
        overrides={
            "strict": strict,
            "manage_local": local,
            "hosts": tuple(hosts) if hosts else None,
        },
    )

    try:
        settings = ctx.config
        settings.require_runnable()
        if not ctx.dry_run:
            require_root()
        require_commands(["ssh"])

        audit = AuditLogger.from_config(settings.audit)
        audit.session_start("run", sys.argv[1:])

        reconciler = build_reconciler(ctx, settings, audit)
        with single_instance(lock_path_for(settings.lock_file, ctx.dry_run)):
            report = reconciler.run_pass()

        if not ctx.dry_run and reconciler.monitor is not None:
            reconciler.monitor.restore_contexts([ctx.config_path, settings.audit.log_path])

    except V6SyncError as e:
        handle_error(e)

    if json_output:
        ctx.console.print_json(report.to_json())
    elif not ctx.is_quiet:
        render_report(ctx, report)

    exit_code = 0 if report.success else 1
    audit.session_end(exit_code)
    raise typer.Exit(exit_code)


def render_report(ctx: ExecutionContext, report: ReconciliationReport) -> None:
    """Print the per-target table and the pass summary."""
    rows = []
    for outcome in report.outcomes:
        style = ACTION_STYLES[outcome.action]
        action = outcome.action.value
        if outcome.dry_run and outcome.action == TargetAction.UPDATED:
            action = "would update"
        note = outcome.error or ""
        if outcome.error_kind and outcome.error_kind != "aborted":
            note = f"[{outcome.error_kind}] {note}"
        if outcome.remediated:
            note = f"{note} (remediated)".strip()
        rows.append([
            escape(outcome.target),
            f"[{style}]{action}[/{style}]",
            escape(outcome.previous_value or "-"),
            escape(note),
        ])

    ctx.console.print()
    ctx.console.table(
        "Reconciliation pass",
        ["Target", "Action", "Previous", "Notes"],
        rows,
    )

    failed = [o for o in report.outcomes if o.failed]
    updated = [o for o in report.outcomes if o.action == TargetAction.UPDATED]
    details = {
        "Prefix": str(report.prefix) if report.prefix else "(not discovered)",
        "Mode": "strict" if report.strict else "permissive",
        "Updated": len(updated),
        "Failed": len(failed),
    }
    if report.abort_reason:
        details["Aborted"] = escape(report.abort_reason)
    if report.dry_run:
        details["Dry run"] = "no changes were made"

    ctx.console.outcome_panel("v6sync run", report.success, details)
