"""Shared fakes for v6sync tests."""

import shlex
from typing import Iterable, Optional

import pytest
from oci.core.models import IngressSecurityRule
from oci.exceptions import ServiceError

from v6sync.core.config import SyncConfig
from v6sync.core.context import ExecutionContext
from v6sync.core.exceptions import DiscoveryError, ExecutionError, V6SyncError
from v6sync.core.executor import CommandResult
from v6sync.core.validation import NetworkPrefix
from v6sync.services.firewalld import EXIT_MISSING_CAPABILITY, EXIT_RELOAD_FAILED, rich_rule
from v6sync.services.targets import ReconciliationTarget, TargetState


LIST_ID = "ocid1.securitylist.oc1..test"
RULE = "ALLOW_HOME_NETWORK@NET28"


class FakeTarget(ReconciliationTarget):
    """In-memory target that records every write."""

    def __init__(
        self,
        identity: str,
        values: Iterable[str] = (),
        kind: str = "host",
        complete: bool = True,
        read_error: Optional[V6SyncError] = None,
        write_error: Optional[V6SyncError] = None,
        fail_once: bool = False,
    ) -> None:
        self._identity = identity
        self.kind = kind
        self.values = set(values)
        self.complete = complete
        self.read_error = read_error
        self.write_error = write_error
        self.fail_once = fail_once
        self.reads = 0
        self.writes: list[NetworkPrefix] = []

    @property
    def identity(self) -> str:
        return self._identity

    def read_current(self) -> TargetState:
        self.reads += 1
        if self.read_error:
            raise self.read_error
        return TargetState(values=frozenset(self.values), complete=self.complete)

    def write(self, prefix: NetworkPrefix) -> None:
        if self.write_error:
            error = self.write_error
            if self.fail_once:
                self.write_error = None
            raise error
        self.writes.append(prefix)
        self.values = {str(prefix)}
        self.complete = True


class FakePrefixSource:
    """Prefix source returning a fixed prefix or raising."""

    router = "root@router"

    def __init__(self, prefix: Optional[str] = None, error: Optional[DiscoveryError] = None) -> None:
        self.prefix = NetworkPrefix.parse(prefix) if prefix else None
        self.error = error
        self.calls = 0

    def discover(self) -> NetworkPrefix:
        self.calls += 1
        if self.error:
            raise self.error
        return self.prefix


class FakeResponse:
    def __init__(self, data) -> None:
        self.data = data


class FakeSecurityList:
    def __init__(self, rules: list) -> None:
        self.ingress_security_rules = rules


class FakeVirtualNetworkClient:
    """Stands in for oci.core.VirtualNetworkClient."""

    def __init__(self, rules: list, fail_get: bool = False, fail_update: bool = False) -> None:
        self.rules = rules
        self.fail_get = fail_get
        self.fail_update = fail_update
        self.get_calls = 0
        self.updates: list = []

    def get_security_list(self, list_id: str) -> FakeResponse:
        self.get_calls += 1
        if self.fail_get:
            raise ServiceError(500, "InternalError", {}, "Internal server error")
        return FakeResponse(FakeSecurityList(list(self.rules)))

    def update_security_list(self, list_id: str, details) -> FakeResponse:
        if self.fail_update:
            raise ServiceError(409, "Conflict", {}, "The security list was modified")
        self.updates.append(details.ingress_security_rules)
        self.rules = list(details.ingress_security_rules)
        return FakeResponse(FakeSecurityList(self.rules))


def make_rule(description: str, source: str, protocol: str = "all") -> IngressSecurityRule:
    return IngressSecurityRule(
        description=description,
        source=source,
        source_type="CIDR_BLOCK",
        protocol=protocol,
    )


class FakeFirewalld:
    """Executor double that emulates the firewall-cmd permanent config."""

    def __init__(
        self,
        active: bool = True,
        ipsets: Optional[dict] = None,
        rules: Optional[set] = None,
        fail_reload: bool = False,
        fail_on: Optional[str] = None,
        can_start: bool = True,
        systemctl_hangs: bool = False,
    ) -> None:
        self.active = active
        self.ipsets = {name: list(entries) for name, entries in (ipsets or {}).items()}
        self.rules = set(rules or ())
        self.fail_reload = fail_reload
        self.fail_on = fail_on
        self.can_start = can_start
        self.systemctl_hangs = systemctl_hangs
        self.calls: list[list[str]] = []
        self.reloads = 0

    def systemctl(self, action, service, *, description=None, check=True):
        command = ["systemctl", action, service]
        self.calls.append(command)
        if self.systemctl_hangs:
            raise ExecutionError(f"Command timed out after 60s: {' '.join(command)}", timed_out=True)
        rc = 0
        if action == "is-active":
            rc = 0 if self.active else 3
        elif action == "start":
            rc = 0 if self.can_start else 1
            self.active = self.can_start
        if check and rc != 0:
            raise ExecutionError(f"Command failed: {' '.join(command)}", return_code=rc)
        return CommandResult(command, rc, "", "")

    def run(self, command, *, description=None, check=True, readonly=False, **kwargs):
        self.calls.append(command)
        rc, out = self._handle(command[1:])
        if check and rc != 0:
            raise ExecutionError(f"Command failed: {' '.join(command)}", return_code=rc)
        return CommandResult(command, rc, out, "")

    def _handle(self, args):
        opts = dict(a.split("=", 1) if "=" in a else (a, "") for a in args)
        if self.fail_on and any(a.startswith(self.fail_on) for a in args):
            return 1, ""
        if "--get-ipsets" in opts:
            return 0, " ".join(self.ipsets)
        if "--new-ipset" in opts:
            self.ipsets[opts["--new-ipset"]] = []
            return 0, "success"
        if "--query-rich-rule" in opts:
            return (0, "yes") if (opts["--zone"], opts["--query-rich-rule"]) in self.rules else (1, "no")
        if "--add-rich-rule" in opts:
            self.rules.add((opts["--zone"], opts["--add-rich-rule"]))
            return 0, "success"
        if "--get-entries" in opts:
            return 0, "\n".join(self.ipsets[opts["--ipset"]])
        if "--remove-entry" in opts:
            self.ipsets[opts["--ipset"]].remove(opts["--remove-entry"])
            return 0, "success"
        if "--add-entry" in opts:
            self.ipsets[opts["--ipset"]].append(opts["--add-entry"])
            return 0, "success"
        if "--reload" in opts:
            self.reloads += 1
            return (1, "") if self.fail_reload else (0, "success")
        return 0, ""

    def writes(self):
        return [c for c in self.calls if any(
            a.startswith(("--new-ipset", "--add-rich-rule", "--remove-entry", "--add-entry"))
            for a in c
        )]

    def probe(self, set_name: str, zone: str) -> tuple[int, str]:
        """What the probe payload prints on this host."""
        if not self.active:
            return EXIT_MISSING_CAPABILITY, ""
        if set_name not in self.ipsets:
            return 0, "ipset=absent"
        present = (zone, rich_rule(set_name)) in self.rules
        lines = ["ipset=present", f"rule={'present' if present else 'absent'}"]
        lines += [f"entry={entry}" for entry in self.ipsets[set_name]]
        return 0, "\n".join(lines)

    def reconcile(self, set_name: str, zone: str, prefix: str) -> tuple[int, str]:
        """Apply what the reconcile payload does on this host."""
        if not self.active:
            return EXIT_MISSING_CAPABILITY, ""
        self.calls.append(["payload", set_name, zone, prefix])
        self.ipsets.setdefault(set_name, [])
        self.rules.add((zone, rich_rule(set_name)))
        self.ipsets[set_name] = [prefix]
        self.reloads += 1
        if self.fail_reload:
            return EXIT_RELOAD_FAILED, ""
        return 0, ""


class FakeNetwork:
    """Executor double for ssh: a router plus remote firewalld hosts.

    Probe and reconcile payloads are recognised by their script id and
    applied to the matching FakeFirewalld.
    """

    def __init__(self, router: str, router_output: str, hosts: Optional[dict] = None) -> None:
        self.router = router
        self.router_output = router_output
        self.hosts = hosts or {}
        self.unreachable: set[str] = set()
        self.commands: list[tuple[str, str]] = []

    def run(self, command, *, input=None, readonly=False, check=True, **kwargs) -> CommandResult:
        host, remote = command[-2], command[-1]
        self.commands.append((host, remote))

        if host in self.unreachable:
            return CommandResult(command, 255, "", f"ssh: connect to host {host} port 22: No route to host")
        if host == self.router:
            return CommandResult(command, 0, self.router_output, "")

        args = shlex.split(remote)[3:]
        firewall = self.hosts[host]
        if "ipset_probe" in (input or ""):
            rc, out = firewall.probe(*args)
        else:
            rc, out = firewall.reconcile(*args)
        return CommandResult(command, rc, out, "")

    def payload_writes(self, host: str) -> list:
        return [c for c in self.hosts[host].calls if c[0] == "payload"]


@pytest.fixture
def config() -> SyncConfig:
    return SyncConfig(
        security_list_id=LIST_ID,
        rule_description=RULE,
        hosts=("m1", "m2"),
        audit={"enabled": False},
    )


@pytest.fixture
def ctx(config: SyncConfig) -> ExecutionContext:
    return ExecutionContext(verbosity=0, _config=config)


@pytest.fixture
def dry_ctx(config: SyncConfig) -> ExecutionContext:
    return ExecutionContext(dry_run=True, verbosity=0, _config=config)
