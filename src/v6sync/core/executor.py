"""Bounded local command execution.

Every process v6sync starts (ssh, firewall-cmd, systemctl, SELinux
tools) goes through CommandExecutor. Each call:

- is classified by the caller as read-only or mutating; in dry-run mode
  mutating commands are only printed while reads still run
- gets a timeout, so a hung ssh session cannot stall a pass
- has its output captured and stripped
"""

import os
import shlex
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from v6sync.core.context import ExecutionContext
from v6sync.core.exceptions import ExecutionError


DEFAULT_TIMEOUT = 60

# systemctl verbs that only query unit state
SYSTEMCTL_QUERIES = frozenset({"is-active", "is-enabled", "is-failed", "status"})


@dataclass
class CommandResult:
    """Exit status and captured output of one process."""
    command: list[str]
    return_code: int
    stdout: str
    stderr: str

    @property
    def success(self) -> bool:
        return self.return_code == 0

    @property
    def output(self) -> str:
        """Both streams joined, stdout first (like ``2>&1``)."""
        return "\n".join(part for part in (self.stdout, self.stderr) if part)


class CommandExecutor:
    """Runs commands for one execution context."""

    def __init__(self, ctx: ExecutionContext) -> None:
        self.ctx = ctx

    def run(
        self,
        command: list[str],
        *,
        description: Optional[str] = None,
        check: bool = True,
        readonly: bool = False,
        input: Optional[str] = None,
        timeout: Optional[int] = DEFAULT_TIMEOUT,
        env: Optional[dict[str, str]] = None,
        cwd: Optional[Path] = None,
    ) -> CommandResult:
        """Run ``command`` and capture its output.

        Args:
            command: argv list; never passed through a shell
            description: Shown as a step line before the command runs
            check: Raise on non-zero exit
            readonly: The command only inspects state (runs in dry-run)
            input: Text written to stdin
            timeout: Seconds before the process is killed
            env: Variables added to the inherited environment
            cwd: Working directory

        Raises:
            ExecutionError: On timeout, missing binary, or non-zero exit
                when ``check`` is set
        """
        shown = shlex.join(command)
        if description:
            self.ctx.console.step(description)
        self.ctx.console.debug(f"Running: {shown}")

        if self.ctx.dry_run and not readonly:
            self.ctx.console.dry_run_msg(f"Run: {shown}")
            return CommandResult(command, 0, "", "")

        completed = self._spawn(command, shown, description, input, timeout, env, cwd)
        result = CommandResult(
            command,
            completed.returncode,
            completed.stdout.strip(),
            completed.stderr.strip(),
        )

        if check and not result.success:
            raise ExecutionError(
                f"Command failed: {description or shown}",
                command=shown,
                return_code=result.return_code,
                stderr=result.stderr,
            )
        return result

    @staticmethod
    def _spawn(command, shown, description, input, timeout, env, cwd) -> subprocess.CompletedProcess:
        merged_env = {**os.environ, **env} if env else None
        try:
            return subprocess.run(
                command,
                capture_output=True,
                text=True,
                input=input,
                timeout=timeout,
                env=merged_env,
                cwd=cwd,
            )
        except subprocess.TimeoutExpired:
            raise ExecutionError(
                f"Command timed out after {timeout}s: {description or shown}",
                command=shown,
                timed_out=True,
            )
        except FileNotFoundError as e:
            raise ExecutionError(
                f"Command not found: {command[0]}",
                command=shown,
                hint=f"Install {command[0]} or check PATH",
            ) from e

    def systemctl(
        self,
        action: str,
        unit: str,
        *,
        description: Optional[str] = None,
        check: bool = True,
    ) -> CommandResult:
        """Run ``systemctl <action> <unit>``.

        Query verbs run quietly and count as read-only, so their exit
        status alone answers the question.
        """
        if action in SYSTEMCTL_QUERIES:
            argv = ["systemctl", action, "--quiet", unit]
        else:
            argv = ["systemctl", action, unit]
        return self.run(
            argv,
            description=description,
            check=check,
            readonly=action in SYSTEMCTL_QUERIES,
        )
