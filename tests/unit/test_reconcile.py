"""Unit tests for the reconciliation controller."""

import json
from unittest.mock import MagicMock

import pytest

from conftest import FakePrefixSource, FakeTarget
from v6sync.core.audit import AuditLogger
from v6sync.core.config import SyncConfig
from v6sync.core.exceptions import (
    CloudError,
    CloudFailure,
    DiscoveryError,
    DiscoveryFailure,
    ExecutionError,
    HostError,
    HostFailure,
)
from v6sync.services.reconcile import Reconciler, TargetAction
from v6sync.services.selinux import Remediation


NEW = "2001:db8:cccc::/64"
OLD = "2001:db8:aaaa::/64"


def make_reconciler(ctx, cloud, hosts, source=None, monitor=None, audit=None, **settings):
    config = SyncConfig(security_list_id="ocid1.x", audit={"enabled": False}, **settings)
    return Reconciler(
        ctx,
        config,
        source or FakePrefixSource(NEW),
        cloud,
        hosts,
        monitor=monitor,
        audit=audit,
    )


def cloud_target(values=(OLD,), **kwargs):
    return FakeTarget("oci:rule", values, kind="cloud", **kwargs)


class TestRunPass:
    """Tests for Reconciler.run_pass."""

    def test_all_in_sync_is_noop(self, ctx):
        cloud = cloud_target((NEW,))
        hosts = [FakeTarget("local:home6", (NEW,)), FakeTarget("m1:home6", (NEW,))]

        report = make_reconciler(ctx, cloud, hosts).run_pass()

        assert report.success
        assert [o.action for o in report.outcomes] == [TargetAction.NOOP] * 3
        assert cloud.writes == []
        assert all(h.writes == [] for h in hosts)

    def test_updates_stale_targets(self, ctx):
        cloud = cloud_target()
        hosts = [FakeTarget("local:home6", (NEW,)), FakeTarget("m1:home6", (OLD,))]

        report = make_reconciler(ctx, cloud, hosts).run_pass()

        assert report.success
        assert str(report.prefix) == NEW
        assert report.cloud.action == TargetAction.UPDATED
        assert report.cloud.previous_value == OLD
        assert report.cloud.new_value == NEW
        assert [o.action for o in report.hosts] == [TargetAction.NOOP, TargetAction.UPDATED]
        assert [str(p) for p in hosts[1].writes] == [NEW]

    def test_incomplete_target_is_written(self, ctx):
        """An ipset holding the prefix but missing its rule still gets a write."""
        host = FakeTarget("local:home6", (NEW,), complete=False)
        report = make_reconciler(ctx, cloud_target((NEW,)), [host]).run_pass()
        assert report.hosts[0].action == TargetAction.UPDATED
        assert len(host.writes) == 1

    def test_host_order_preserved(self, ctx):
        hosts = [FakeTarget(f"m{i}:home6") for i in range(8)]
        report = make_reconciler(ctx, cloud_target(), hosts).run_pass()
        assert [o.target for o in report.hosts] == [f"m{i}:home6" for i in range(8)]

    def test_discovery_failure_aborts_without_io(self, ctx):
        source = FakePrefixSource(error=DiscoveryError("wrong", DiscoveryFailure.WRONG_LENGTH))
        cloud = cloud_target()
        hosts = [FakeTarget("local:home6"), FakeTarget("m1:home6")]

        report = make_reconciler(ctx, cloud, hosts, source=source).run_pass()

        assert not report.success
        assert report.aborted
        assert "wrong-length" in report.abort_reason
        assert report.prefix is None
        assert [o.action for o in report.outcomes] == [TargetAction.FAILED] * 3
        assert all(o.error_kind == "aborted" for o in report.outcomes)
        assert cloud.reads == 0 and cloud.writes == []
        assert all(h.reads == 0 and h.writes == [] for h in hosts)

    def test_strict_cloud_failure_skips_hosts(self, ctx):
        cloud = cloud_target(read_error=CloudError("dup", CloudFailure.AMBIGUOUS_MATCH))
        hosts = [FakeTarget("local:home6", (OLD,)), FakeTarget("m1:home6", (OLD,))]

        report = make_reconciler(ctx, cloud, hosts, strict=True).run_pass()

        assert not report.success
        assert report.aborted
        assert report.cloud.error_kind == "ambiguous-match"
        assert all(o.failed and o.error_kind == "aborted" for o in report.hosts)
        assert all(h.reads == 0 and h.writes == [] for h in hosts)

    def test_permissive_cloud_failure_updates_hosts(self, ctx):
        cloud = cloud_target(write_error=CloudError("api", CloudFailure.API_FAILURE))
        hosts = [FakeTarget("local:home6", (OLD,)), FakeTarget("m1:home6", (OLD,))]

        report = make_reconciler(ctx, cloud, hosts, strict=False).run_pass()

        assert not report.success
        assert not report.aborted
        assert report.cloud.failed
        assert report.cloud.error_kind == "api-failure"
        assert [o.action for o in report.hosts] == [TargetAction.UPDATED] * 2

    def test_host_failure_is_isolated(self, ctx):
        hosts = [
            FakeTarget("m1:home6", (OLD,), read_error=HostError("down", HostFailure.UNREACHABLE)),
            FakeTarget("m2:home6", (OLD,)),
        ]

        report = make_reconciler(ctx, cloud_target(), hosts).run_pass()

        assert report.success
        assert report.hosts[0].failed
        assert report.hosts[0].error_kind == "unreachable"
        assert report.hosts[1].action == TargetAction.UPDATED
        assert report.cloud.action == TargetAction.UPDATED

    def test_command_error_on_host_is_isolated(self, ctx):
        hosts = [
            FakeTarget("local:home6", (OLD,), read_error=ExecutionError("Command not found: systemctl")),
            FakeTarget("m1:home6", (OLD,)),
        ]

        report = make_reconciler(ctx, cloud_target(), hosts).run_pass()

        assert report.success
        assert report.hosts[0].failed
        assert report.hosts[0].error_kind == "missing-capability"
        assert report.hosts[1].action == TargetAction.UPDATED

    def test_command_timeout_on_host_is_unreachable(self, ctx):
        error = ExecutionError("Command timed out after 60s", timed_out=True)
        hosts = [FakeTarget("m1:home6", (OLD,), write_error=error), FakeTarget("m2:home6", (OLD,))]

        report = make_reconciler(ctx, cloud_target(), hosts).run_pass()

        assert report.hosts[0].error_kind == "unreachable"
        assert report.hosts[1].action == TargetAction.UPDATED

    @pytest.mark.parametrize("strict", [True, False])
    def test_command_error_on_cloud(self, ctx, strict):
        cloud = cloud_target(read_error=ExecutionError("Command failed: oci"))
        hosts = [FakeTarget("m1:home6", (OLD,))]

        report = make_reconciler(ctx, cloud, hosts, strict=strict).run_pass()

        assert not report.success
        assert report.cloud.error_kind == "api-failure"
        assert len(report.outcomes) == 2
        assert report.aborted == strict

    def test_host_failures_fatal(self, ctx):
        hosts = [FakeTarget("m1:home6", read_error=HostError("down", HostFailure.UNREACHABLE))]
        report = make_reconciler(ctx, cloud_target(), hosts, host_failures_fatal=True).run_pass()
        assert not report.success
        assert not report.aborted

    def test_reload_failed_is_partial(self, ctx):
        host = FakeTarget("m1:home6", write_error=HostError("reload", HostFailure.RELOAD_FAILED))
        report = make_reconciler(ctx, cloud_target(), [host]).run_pass()
        assert report.hosts[0].failed
        assert report.hosts[0].partial

    def test_dry_run_writes_nothing(self, dry_ctx):
        cloud = cloud_target()
        hosts = [FakeTarget("local:home6", (NEW,)), FakeTarget("m1:home6", (OLD,))]

        report = make_reconciler(dry_ctx, cloud, hosts).run_pass()

        assert report.dry_run
        assert report.success
        assert cloud.writes == []
        assert all(h.writes == [] for h in hosts)
        assert cloud.reads == 1
        assert report.cloud.action == TargetAction.UPDATED
        assert report.cloud.dry_run
        assert report.hosts[0].action == TargetAction.NOOP

    def test_no_hosts(self, ctx):
        report = make_reconciler(ctx, cloud_target(), []).run_pass()
        assert report.success
        assert report.hosts == []


class TestRemediation:
    """Tests for the denial monitor hook."""

    def make_monitor(self, evidence=("type=AVC avc: denied firewall-cmd",), result=Remediation.REMEDIATED):
        monitor = MagicMock()
        monitor.scan.return_value = list(evidence)
        monitor.attempt_remediation.return_value = result
        return monitor

    def test_retry_after_remediation(self, ctx):
        host = FakeTarget(
            "local:home6",
            (OLD,),
            write_error=HostError("denied", HostFailure.WRITE_FAILURE),
            fail_once=True,
        )
        monitor = self.make_monitor()

        report = make_reconciler(
            ctx, cloud_target(), [host], monitor=monitor, policy_remediation=True
        ).run_pass()

        outcome = report.hosts[0]
        assert outcome.action == TargetAction.UPDATED
        assert outcome.remediation_attempted
        assert outcome.remediated
        assert [str(p) for p in host.writes] == [NEW]
        assert host.reads == 2

    def test_retry_only_once(self, ctx):
        host = FakeTarget("local:home6", write_error=HostError("denied", HostFailure.WRITE_FAILURE))
        monitor = self.make_monitor()

        report = make_reconciler(
            ctx, cloud_target(), [host], monitor=monitor, policy_remediation=True
        ).run_pass()

        assert report.hosts[0].failed
        assert host.reads == 2
        assert monitor.attempt_remediation.call_count == 1

    def test_remediation_disabled_only_reports(self, ctx):
        host = FakeTarget("local:home6", write_error=HostError("denied", HostFailure.WRITE_FAILURE))
        monitor = self.make_monitor()

        report = make_reconciler(
            ctx, cloud_target(), [host], monitor=monitor, policy_remediation=False
        ).run_pass()

        assert report.hosts[0].failed
        assert not report.hosts[0].remediation_attempted
        monitor.scan.assert_called_once()
        monitor.attempt_remediation.assert_not_called()

    def test_no_evidence_no_remediation(self, ctx):
        host = FakeTarget("local:home6", write_error=HostError("x", HostFailure.WRITE_FAILURE))
        monitor = self.make_monitor(evidence=())

        report = make_reconciler(
            ctx, cloud_target(), [host], monitor=monitor, policy_remediation=True
        ).run_pass()

        assert report.hosts[0].failed
        monitor.attempt_remediation.assert_not_called()

    def test_unremediated_failure(self, ctx):
        host = FakeTarget("local:home6", write_error=HostError("x", HostFailure.WRITE_FAILURE))
        monitor = self.make_monitor(result=Remediation.UNREMEDIATED)

        report = make_reconciler(
            ctx, cloud_target(), [host], monitor=monitor, policy_remediation=True
        ).run_pass()

        assert report.hosts[0].failed
        assert report.hosts[0].remediation_attempted
        assert not report.hosts[0].remediated
        assert host.reads == 1

    def test_monitor_not_consulted_on_success(self, ctx):
        monitor = self.make_monitor()
        make_reconciler(ctx, cloud_target(), [FakeTarget("m1:home6")], monitor=monitor).run_pass()
        monitor.scan.assert_not_called()


class TestReport:
    """Tests for report serialisation."""

    def test_to_json(self, ctx):
        hosts = [FakeTarget("m1:home6", read_error=HostError("down", HostFailure.UNREACHABLE))]
        report = make_reconciler(ctx, cloud_target(), hosts).run_pass()

        data = json.loads(report.to_json())

        assert data["prefix"] == NEW
        assert data["success"] is True
        assert data["cloud"]["action"] == "updated"
        assert data["cloud"]["previous"] == OLD
        assert data["hosts"][0]["action"] == "failed"
        assert data["hosts"][0]["error_kind"] == "unreachable"


class TestAudit:
    """Tests for audit events written during a pass."""

    def test_events(self, ctx, tmp_path):
        log_path = tmp_path / "audit.log"
        audit = AuditLogger(log_path=log_path)
        hosts = [
            FakeTarget("m1:home6", (NEW,)),
            FakeTarget("m2:home6", read_error=HostError("down", HostFailure.UNREACHABLE)),
        ]

        make_reconciler(ctx, cloud_target(), hosts, audit=audit).run_pass()

        events = [json.loads(line) for line in log_path.read_text().splitlines()]
        types = [e["event"] for e in events]
        assert types[0] == "pass.start"
        assert types[1] == "prefix.discovered"
        assert types[-1] == "pass.end"
        results = {e["target"]: e["result"] for e in events if e["target"]}
        assert results["oci:rule"] == "success"
        assert results["m1:home6"] == "noop"
        assert results["m2:home6"] == "failure"
        assert len({e["pass_id"] for e in events}) == 1

    def test_abort_event(self, ctx, tmp_path):
        log_path = tmp_path / "audit.log"
        source = FakePrefixSource(error=DiscoveryError("x", DiscoveryFailure.UNREACHABLE))

        make_reconciler(ctx, cloud_target(), [], source=source, audit=AuditLogger(log_path=log_path)).run_pass()

        types = [json.loads(line)["event"] for line in log_path.read_text().splitlines()]
        assert "prefix.failed" in types
        assert types[-1] == "pass.aborted"


class TestInspect:
    """Tests for Reconciler.inspect."""

    def test_status(self, ctx):
        hosts = [
            FakeTarget("local:home6", (NEW,)),
            FakeTarget("m1:home6", (OLD,)),
            FakeTarget("m2:home6", read_error=HostError("down", HostFailure.UNREACHABLE)),
        ]
        cloud = cloud_target((NEW,))

        status = make_reconciler(ctx, cloud, hosts).inspect()

        assert str(status.prefix) == NEW
        assert [t.in_sync for t in status.targets] == [True, True, False, None]
        assert status.targets[3].error.startswith("unreachable")
        assert not status.all_in_sync
        assert cloud.writes == [] and all(h.writes == [] for h in hosts)

    def test_command_error_reported(self, ctx):
        hosts = [FakeTarget("m1:home6", read_error=ExecutionError("Command not found: firewall-cmd"))]

        status = make_reconciler(ctx, cloud_target((NEW,)), hosts).inspect()

        assert status.targets[1].error == "missing-capability: Command not found: firewall-cmd"
        assert status.targets[1].in_sync is None

    def test_all_in_sync(self, ctx):
        status = make_reconciler(ctx, cloud_target((NEW,)), [FakeTarget("m1:home6", (NEW,))]).inspect()
        assert status.all_in_sync

    def test_discovery_failure_still_reads(self, ctx):
        source = FakePrefixSource(error=DiscoveryError("x", DiscoveryFailure.UNREACHABLE))
        host = FakeTarget("m1:home6", (OLD,))

        status = make_reconciler(ctx, cloud_target(), [host], source=source).inspect()

        assert status.prefix is None
        assert status.prefix_error.startswith("unreachable")
        assert host.reads == 1
        assert status.targets[1].current == OLD
        assert status.targets[1].in_sync is None
        assert not status.all_in_sync

    def test_incomplete_marked(self, ctx):
        host = FakeTarget("m1:home6", (), complete=False)
        status = make_reconciler(ctx, cloud_target((NEW,)), [host]).inspect()
        assert status.targets[1].current == "(empty) [incomplete]"
