"""SELinux denial diagnostics and remediation.

When a target update fails, recent AVC denials that mention the tools we
drive are pulled from the audit log. They are shown to the operator and,
when enabled, handed to a remediation strategy that builds and installs a
local policy module. None of this decides whether a target is updated;
it only explains failures and may make a retry succeed.
"""

import shutil
import tempfile
from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import Iterable, Iterator, Optional

from v6sync.core.context import ExecutionContext
from v6sync.core.exceptions import ExecutionError
from v6sync.core.executor import CommandExecutor


MAX_EVIDENCE_LINES = 20
POLICY_MODULE_NAME = "v6sync-local"


class Remediation(str, Enum):
    """Outcome of a remediation attempt."""
    REMEDIATED = "remediated"
    UNREMEDIATED = "unremediated"


class Remediator(ABC):
    """A way of turning denial evidence into a policy fix."""

    @abstractmethod
    def available(self) -> bool:
        """Whether this strategy can run on this machine."""

    @abstractmethod
    def remediate(self, evidence: list[str]) -> bool:
        """Try to fix the denials. Returns True on success."""


class NullRemediator(Remediator):
    """Never remediates; used when remediation is disabled."""

    def available(self) -> bool:
        return False

    def remediate(self, evidence: list[str]) -> bool:
        return False


class Audit2AllowRemediator(Remediator):
    """Builds a module with ``audit2allow -M`` and loads it with ``semodule -i``."""

    def __init__(
        self,
        ctx: ExecutionContext,
        executor: CommandExecutor,
        module_name: str = POLICY_MODULE_NAME,
    ) -> None:
        self.ctx = ctx
        self.executor = executor
        self.module_name = module_name

    def available(self) -> bool:
        return all(shutil.which(cmd) for cmd in ("audit2allow", "semodule"))

    def remediate(self, evidence: list[str]) -> bool:
        with tempfile.TemporaryDirectory(prefix="v6sync-selinux-") as workdir:
            try:
                self.executor.run(
                    ["audit2allow", "-M", self.module_name],
                    input="\n".join(evidence) + "\n",
                    cwd=Path(workdir),
                    description=f"Building SELinux module {self.module_name}",
                )
                self.executor.run(
                    ["semodule", "-i", str(Path(workdir) / f"{self.module_name}.pp")],
                    description=f"Installing SELinux module {self.module_name}",
                )
            except ExecutionError as e:
                self.ctx.console.warn(f"SELinux remediation failed: {e.message}")
                return False
        return True


class PolicyDenialMonitor:
    """Reads AVC denials and coordinates remediation."""

    def __init__(
        self,
        ctx: ExecutionContext,
        executor: CommandExecutor,
        remediator: Optional[Remediator] = None,
    ) -> None:
        self.ctx = ctx
        self.executor = executor
        self.remediator = remediator or NullRemediator()

    def mode(self) -> str:
        """SELinux mode as reported by getenforce, or 'unknown'."""
        if shutil.which("getenforce") is None:
            return "unknown"
        try:
            result = self.executor.run(["getenforce"], readonly=True, check=False)
        except ExecutionError:
            return "unknown"
        return result.stdout or "unknown"

    def _recent_denials(self) -> list[str]:
        if shutil.which("ausearch") is None:
            self.ctx.console.debug("ausearch not found; skipping denial scan")
            return []
        try:
            result = self.executor.run(
                ["ausearch", "-m", "AVC", "-ts", "recent"],
                readonly=True,
                check=False,
            )
        except ExecutionError as e:
            self.ctx.console.debug(f"ausearch failed: {e.message}")
            return []
        # ausearch exits 1 when there are no matches
        return result.stdout.splitlines() if result.success else []

    def scan(self, keywords: Iterable[str]) -> Iterator[str]:
        """Yield recent denial lines mentioning any keyword, newest first.

        The audit log is only read once the iterator is consumed.
        """
        keywords = tuple(keywords)
        found = 0
        for line in reversed(self._recent_denials()):
            if "denied" not in line:
                continue
            if keywords and not any(k in line for k in keywords):
                continue
            yield line
            found += 1
            if found >= MAX_EVIDENCE_LINES:
                return

    def attempt_remediation(self, evidence: list[str]) -> Remediation:
        """Hand evidence to the remediation strategy.

        Failure is reported as a warning and never raised.
        """
        if not evidence:
            return Remediation.UNREMEDIATED

        if not self.remediator.available():
            self.ctx.console.warn(
                "SELinux denials detected. Consider:\n"
                f"  ausearch -m AVC -ts recent | audit2allow -M {POLICY_MODULE_NAME}\n"
                f"  semodule -i {POLICY_MODULE_NAME}.pp"
            )
            return Remediation.UNREMEDIATED

        if self.ctx.dry_run:
            self.ctx.console.dry_run_msg("install an SELinux policy module for the denials")
            return Remediation.UNREMEDIATED

        if self.remediator.remediate(evidence):
            self.ctx.console.success("Installed SELinux policy module for recent denials")
            return Remediation.REMEDIATED
        return Remediation.UNREMEDIATED

    def restore_contexts(self, paths: Iterable[Path]) -> None:
        """Relabel managed files; problems are only warned about."""
        targets = [str(p) for p in paths if p.exists()]
        if not targets or shutil.which("restorecon") is None:
            return
        try:
            self.executor.run(
                ["restorecon", "-F", *targets],
                description="Refreshing SELinux contexts for managed files",
            )
        except ExecutionError:
            self.ctx.console.warn(
                "restorecon reported issues; review SELinux policy if problems persist"
            )
