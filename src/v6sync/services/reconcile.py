"""Reconciliation controller.

One pass:

1. Discover the router prefix. Failure aborts the pass before any write.
2. Cloud rule: read, decide, write if different.
3. Host ipsets: read, decide, write if different, one worker per host.
4. Build a report listing every target's outcome.

In strict mode the cloud rule is handled first and an unrecovered cloud
failure aborts the pass before any host is touched. In permissive mode the
cloud rule is handled alongside the hosts and its failure is only recorded.
Host failures never affect other hosts.

Writes are skipped in dry-run mode, but the outcome still records the
action that would have been taken.
"""

import json
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from v6sync.core.audit import AuditEventType, AuditLogger, AuditResult
from v6sync.core.config import SyncConfig
from v6sync.core.context import ExecutionContext
from v6sync.core.exceptions import (
    CloudError,
    CloudFailure,
    DiscoveryError,
    ExecutionError,
    HostError,
    HostFailure,
    TargetError,
    V6SyncError,
)
from v6sync.core.executor import CommandExecutor
from v6sync.core.validation import NetworkPrefix
from v6sync.services.cloud import CloudSecurityRule
from v6sync.services.firewalld import build_host_target, payload_environment
from v6sync.services.prefix import PrefixSource
from v6sync.services.selinux import Audit2AllowRemediator, PolicyDenialMonitor, Remediation
from v6sync.services.ssh import SSHChannel
from v6sync.services.targets import ReconciliationTarget, TargetState


def as_target_error(target: ReconciliationTarget, error: V6SyncError) -> TargetError:
    """Give an error that escaped a target adapter a failure kind.

    Cloud errors become ``api-failure``. On hosts a timed-out command means
    the host did not answer (``unreachable``); anything else means a tool
    could not be used (``missing-capability``).
    """
    if target.kind == "cloud":
        return CloudError(error.message, CloudFailure.API_FAILURE, hint=error.hint, details=error.details)
    if isinstance(error, ExecutionError) and error.timed_out:
        kind = HostFailure.UNREACHABLE
    else:
        kind = HostFailure.MISSING_CAPABILITY
    return HostError(error.message, kind, hint=error.hint, details=error.details)


class TargetAction(str, Enum):
    """What a pass did (or, in dry-run, would do) to a target."""
    NOOP = "no-op"
    UPDATED = "updated"
    FAILED = "failed"


@dataclass
class PassOutcome:
    """Result for one target."""
    target: str
    kind: str
    action: TargetAction
    new_value: Optional[str] = None
    previous_value: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    remediation_attempted: bool = False
    remediated: bool = False
    dry_run: bool = False

    @property
    def failed(self) -> bool:
        return self.action == TargetAction.FAILED

    @property
    def partial(self) -> bool:
        """Staged but not enforced (firewalld reload failed)."""
        return self.error_kind == "reload-failed"

    def to_dict(self) -> dict[str, Any]:
        return {
            "target": self.target,
            "kind": self.kind,
            "action": self.action.value,
            "previous": self.previous_value,
            "new": self.new_value,
            "error": self.error,
            "error_kind": self.error_kind,
            "remediation_attempted": self.remediation_attempted,
            "remediated": self.remediated,
            "dry_run": self.dry_run,
        }


@dataclass
class ReconciliationReport:
    """Aggregated result of one pass."""
    prefix: Optional[NetworkPrefix]
    cloud: PassOutcome
    hosts: list[PassOutcome] = field(default_factory=list)
    strict: bool = True
    host_failures_fatal: bool = False
    dry_run: bool = False
    abort_reason: Optional[str] = None

    @property
    def aborted(self) -> bool:
        return self.abort_reason is not None

    @property
    def outcomes(self) -> list[PassOutcome]:
        return [self.cloud, *self.hosts]

    @property
    def failed_hosts(self) -> list[PassOutcome]:
        return [o for o in self.hosts if o.failed]

    @property
    def success(self) -> bool:
        if self.aborted or self.cloud.failed:
            return False
        if self.host_failures_fatal and self.failed_hosts:
            return False
        return True

    def to_dict(self) -> dict[str, Any]:
        return {
            "prefix": str(self.prefix) if self.prefix else None,
            "success": self.success,
            "dry_run": self.dry_run,
            "strict": self.strict,
            "aborted": self.aborted,
            "abort_reason": self.abort_reason,
            "cloud": self.cloud.to_dict(),
            "hosts": [o.to_dict() for o in self.hosts],
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)


@dataclass
class TargetStatus:
    """Read-only view of one target for status reporting."""
    target: str
    kind: str
    current: Optional[str] = None
    in_sync: Optional[bool] = None
    error: Optional[str] = None


@dataclass
class StatusReport:
    """Result of an inspection: discovery and reads only."""
    prefix: Optional[NetworkPrefix]
    prefix_error: Optional[str]
    targets: list[TargetStatus]

    @property
    def all_in_sync(self) -> bool:
        return self.prefix is not None and all(t.in_sync for t in self.targets)


class Reconciler:
    """Runs reconciliation passes over one cloud rule and N host ipsets."""

    def __init__(
        self,
        ctx: ExecutionContext,
        config: SyncConfig,
        prefix_source: PrefixSource,
        cloud: ReconciliationTarget,
        hosts: list[ReconciliationTarget],
        monitor: Optional[PolicyDenialMonitor] = None,
        audit: Optional[AuditLogger] = None,
    ) -> None:
        self.ctx = ctx
        self.config = config
        self.prefix_source = prefix_source
        self.cloud = cloud
        self.hosts = hosts
        self.monitor = monitor
        self.audit = audit or AuditLogger(enabled=False)

    # =========================================================================
    # Pass
    # =========================================================================

    def run_pass(self) -> ReconciliationReport:
        """Run one reconciliation pass.

        Never raises for target failures; they are in the report.
        """
        with self.audit.pass_scope():
            self.audit.record(
                AuditEventType.PASS_START,
                AuditResult.DRY_RUN if self.ctx.dry_run else AuditResult.SUCCESS,
                details={
                    "strict": self.config.strict,
                    "targets": [t.identity for t in [self.cloud, *self.hosts]],
                },
            )
            report = self._run_pass()
            self.audit.record(
                AuditEventType.PASS_END if not report.aborted else AuditEventType.PASS_ABORTED,
                AuditResult.SUCCESS if report.success else AuditResult.FAILURE,
                message=report.abort_reason,
                details={"prefix": str(report.prefix) if report.prefix else None},
            )
        return report

    def _run_pass(self) -> ReconciliationReport:
        try:
            prefix = self.prefix_source.discover()
        except DiscoveryError as e:
            self.ctx.console.error(e.message)
            self.audit.record(
                AuditEventType.PREFIX_FAILED,
                AuditResult.FAILURE,
                target=self.prefix_source.router,
                error=f"{e.kind.value}: {e.message}",
            )
            reason = f"prefix discovery failed ({e.kind.value}): {e.message}"
            return self._report(
                None,
                self._aborted(self.cloud, reason),
                [self._aborted(h, reason) for h in self.hosts],
                abort_reason=reason,
            )

        self.audit.record(
            AuditEventType.PREFIX_DISCOVERED,
            AuditResult.SUCCESS,
            target=self.prefix_source.router,
            details={"prefix": str(prefix)},
        )

        workers = max(1, len(self.hosts) + (0 if self.config.strict else 1))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="v6sync") as pool:
            if self.config.strict:
                cloud = self._reconcile(self.cloud, prefix)
                if cloud.failed:
                    reason = f"cloud update failed in strict mode: {cloud.error}"
                    self.ctx.console.error("Aborting host updates: cloud update failed (strict mode)")
                    return self._report(
                        prefix,
                        cloud,
                        [self._aborted(h, reason) for h in self.hosts],
                        abort_reason=reason,
                    )
                host_futures = [pool.submit(self._reconcile, h, prefix) for h in self.hosts]
            else:
                cloud_future = pool.submit(self._reconcile, self.cloud, prefix)
                host_futures = [pool.submit(self._reconcile, h, prefix) for h in self.hosts]
                cloud = cloud_future.result()

            hosts = [f.result() for f in host_futures]

        return self._report(prefix, cloud, hosts)

    def _report(
        self,
        prefix: Optional[NetworkPrefix],
        cloud: PassOutcome,
        hosts: list[PassOutcome],
        abort_reason: Optional[str] = None,
    ) -> ReconciliationReport:
        return ReconciliationReport(
            prefix=prefix,
            cloud=cloud,
            hosts=hosts,
            strict=self.config.strict,
            host_failures_fatal=self.config.host_failures_fatal,
            dry_run=self.ctx.dry_run,
            abort_reason=abort_reason,
        )

    def _aborted(self, target: ReconciliationTarget, reason: str) -> PassOutcome:
        """Outcome for a target that was never attempted."""
        return PassOutcome(
            target=target.identity,
            kind=target.kind,
            action=TargetAction.FAILED,
            error=f"not attempted: {reason}",
            error_kind="aborted",
            dry_run=self.ctx.dry_run,
        )

    # =========================================================================
    # Per-target read / decide / write
    # =========================================================================

    def _reconcile(self, target: ReconciliationTarget, prefix: NetworkPrefix) -> PassOutcome:
        """Reconcile one target, retrying once if a policy fix was installed."""
        outcome = PassOutcome(
            target=target.identity,
            kind=target.kind,
            action=TargetAction.NOOP,
            new_value=str(prefix),
            dry_run=self.ctx.dry_run,
        )

        try:
            self._guarded_attempt(target, outcome, prefix)
        except TargetError as e:
            self.ctx.console.error(f"{target.identity}: {e.message}")
            if not self._remediate(outcome):
                return self._fail(target, outcome, e)

            self.ctx.console.step(f"Retrying {target.identity} after remediation")
            try:
                self._guarded_attempt(target, outcome, prefix)
            except TargetError as retry_error:
                self.ctx.console.error(f"{target.identity}: {retry_error.message}")
                return self._fail(target, outcome, retry_error)

        if outcome.action == TargetAction.NOOP:
            result = AuditResult.NOOP
        elif self.ctx.dry_run:
            result = AuditResult.DRY_RUN
        else:
            result = AuditResult.SUCCESS
        self._audit_target(target, result, outcome)
        return outcome

    def _guarded_attempt(
        self,
        target: ReconciliationTarget,
        outcome: PassOutcome,
        prefix: NetworkPrefix,
    ) -> None:
        """Run one attempt; adapter errors without a failure kind get one."""
        try:
            self._attempt(target, outcome, prefix)
        except TargetError:
            raise
        except V6SyncError as e:
            raise as_target_error(target, e) from e

    def _attempt(
        self,
        target: ReconciliationTarget,
        outcome: PassOutcome,
        prefix: NetworkPrefix,
    ) -> None:
        """Read, decide and (unless dry-run) write.

        Raises:
            TargetError: From the target's read or write
        """
        state = target.read_current()
        outcome.previous_value = state.describe()

        if state.in_sync(prefix):
            outcome.action = TargetAction.NOOP
            self.ctx.console.success(f"{target.identity} already holds {prefix}")
            return

        outcome.action = TargetAction.UPDATED
        self.ctx.console.info(
            f"{target.identity} needs update: {outcome.previous_value or '(empty)'} -> {prefix}"
        )
        if self.ctx.dry_run:
            self.ctx.console.dry_run_msg(f"update {target.identity} to {prefix}")
            return

        target.write(prefix)

    def _remediate(self, outcome: PassOutcome) -> bool:
        """Look for policy denials and try to fix them.

        Returns:
            True if a remediation was installed
        """
        if self.monitor is None:
            return False

        evidence = list(self.monitor.scan(self.config.denial_keywords))
        if not evidence:
            return False

        self.ctx.console.warn("Recent SELinux denials detected:\n" + "\n".join(evidence))
        self.audit.record(
            AuditEventType.POLICY_DENIAL,
            AuditResult.FAILURE,
            target=outcome.target,
            details={"evidence": evidence},
        )

        if not self.config.policy_remediation:
            return False

        outcome.remediation_attempted = True
        result = self.monitor.attempt_remediation(evidence)
        outcome.remediated = result == Remediation.REMEDIATED
        self.audit.record(
            AuditEventType.POLICY_REMEDIATION,
            AuditResult.SUCCESS if outcome.remediated else AuditResult.FAILURE,
            target=outcome.target,
        )
        return outcome.remediated

    def _fail(
        self,
        target: ReconciliationTarget,
        outcome: PassOutcome,
        error: TargetError,
    ) -> PassOutcome:
        outcome.action = TargetAction.FAILED
        outcome.error = error.message
        outcome.error_kind = error.kind.value

        if isinstance(error, HostError):
            self.ctx.console.warn(f"Skipping {target.identity}; other targets continue")
        for detail in error.details:
            self.ctx.console.verbose(f"  {detail}")
        if error.hint:
            self.ctx.console.hint(error.hint)

        self._audit_target(
            target,
            AuditResult.PARTIAL if outcome.partial else AuditResult.FAILURE,
            outcome,
        )
        return outcome

    def _audit_target(
        self,
        target: ReconciliationTarget,
        result: AuditResult,
        outcome: PassOutcome,
    ) -> None:
        event_type = (
            AuditEventType.CLOUD_RULE_UPDATE
            if target.kind == "cloud"
            else AuditEventType.HOST_IPSET_UPDATE
        )
        self.audit.record(
            event_type,
            result,
            kind=target.kind,
            target=target.identity,
            details={"previous": outcome.previous_value, "new": outcome.new_value},
            error=outcome.error,
        )

    # =========================================================================
    # Inspection
    # =========================================================================

    def inspect(self) -> StatusReport:
        """Discover the prefix and read every target without writing.

        Reads still happen when discovery fails so the operator sees what
        each target currently holds.
        """
        prefix: Optional[NetworkPrefix] = None
        prefix_error: Optional[str] = None
        try:
            prefix = self.prefix_source.discover()
        except DiscoveryError as e:
            prefix_error = f"{e.kind.value}: {e.message}"

        targets = [self.cloud, *self.hosts]
        with ThreadPoolExecutor(max_workers=len(targets), thread_name_prefix="v6sync") as pool:
            statuses = list(pool.map(lambda t: self._inspect_target(t, prefix), targets))

        return StatusReport(prefix=prefix, prefix_error=prefix_error, targets=statuses)

    def _inspect_target(
        self,
        target: ReconciliationTarget,
        prefix: Optional[NetworkPrefix],
    ) -> TargetStatus:
        status = TargetStatus(target=target.identity, kind=target.kind)
        try:
            state: TargetState = target.read_current()
        except V6SyncError as e:
            error = e if isinstance(e, TargetError) else as_target_error(target, e)
            status.error = f"{error.kind.value}: {error.message}"
            return status

        status.current = state.describe()
        if not state.complete:
            status.current = f"{status.current or '(empty)'} [incomplete]"
        if prefix is not None:
            status.in_sync = state.in_sync(prefix)
        return status


def build_reconciler(
    ctx: ExecutionContext,
    config: Optional[SyncConfig] = None,
    audit: Optional[AuditLogger] = None,
) -> Reconciler:
    """Wire up a reconciler from configuration."""
    config = config or ctx.config
    executor = CommandExecutor(ctx)
    channel = SSHChannel(
        ctx,
        executor,
        connect_timeout=config.connect_timeout,
        command_timeout=config.command_timeout,
    )

    prefix_source = PrefixSource(
        ctx,
        channel,
        config.router,
        config.resolved_discovery_command,
        expected_length=config.prefix_length,
    )
    cloud = CloudSecurityRule(
        ctx,
        config.security_list_id,
        config.rule_description,
        oci_config=config.oci,
    )

    env = payload_environment()
    hosts = [
        build_host_target(ctx, executor, channel, host, config.ipset_name, config.firewall_zone, env=env)
        for host in config.host_refs
    ]

    remediator = Audit2AllowRemediator(ctx, executor) if config.policy_remediation else None
    monitor = PolicyDenialMonitor(ctx, executor, remediator)

    return Reconciler(ctx, config, prefix_source, cloud, hosts, monitor=monitor, audit=audit)
