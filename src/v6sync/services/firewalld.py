"""firewalld ipset targets.

Each managed host has an ipset (``hash:net``, inet6) holding exactly the
current prefix, and a rich rule in the configured zone accepting traffic
from that ipset. The rule never changes; only the ipset membership does.

The local host is driven with individual ``firewall-cmd`` calls. Remote
hosts receive a rendered bash payload over SSH that performs the same
steps in a single session.
"""

import shutil
from dataclasses import dataclass
from typing import Optional

from jinja2 import Environment, PackageLoader, StrictUndefined, select_autoescape

from v6sync.core.context import ExecutionContext
from v6sync.core.exceptions import ExecutionError, HostError, HostFailure
from v6sync.core.executor import CommandExecutor, CommandResult
from v6sync.core.validation import LOCAL_HOST, NetworkPrefix, normalize_prefix
from v6sync.services.ssh import SSHChannel
from v6sync.services.targets import ReconciliationTarget, TargetState


IPSET_TYPE = "hash:net"
IPSET_FAMILY = "inet6"

# Exit codes used by the remote payloads
EXIT_MISSING_CAPABILITY = 10
EXIT_WRITE_FAILURE = 11
EXIT_RELOAD_FAILED = 12

PAYLOAD_VERSION = 1


def rich_rule(set_name: str) -> str:
    """The zone rule that accepts traffic from the ipset."""
    return f'rule family="ipv6" source ipset="{set_name}" accept'


@dataclass(frozen=True)
class EntryPlan:
    """Changes that turn an ipset's entries into exactly one prefix."""
    remove: tuple[str, ...]
    add: Optional[str]

    @property
    def empty(self) -> bool:
        return not self.remove and self.add is None


def plan_entry_changes(existing: list[str], prefix: NetworkPrefix) -> EntryPlan:
    """Compute the entry diff for an ipset.

    Every entry other than ``prefix`` is removed so stale prefixes do not
    pile up after repeated changes; ``prefix`` is added if absent.
    """
    target = str(prefix)
    remove = tuple(entry for entry in existing if entry != target)
    add = None if target in existing else target
    return EntryPlan(remove=remove, add=add)


def parse_probe_output(output: str) -> TargetState:
    """Parse the ``key=value`` lines printed by the probe payload."""
    ipset_present = False
    rule_present = False
    entries: set[str] = set()

    for line in output.splitlines():
        key, _, value = line.strip().partition("=")
        if key == "ipset":
            ipset_present = value == "present"
        elif key == "rule":
            rule_present = value == "present"
        elif key == "entry" and value:
            entries.add(normalize_prefix(value))

    return TargetState(
        values=frozenset(entries),
        complete=ipset_present and rule_present,
    )


@dataclass(frozen=True)
class RemotePayload:
    """A versioned script plus the arguments it runs with."""
    script_id: str
    args: tuple[str, ...]
    version: int = PAYLOAD_VERSION

    @property
    def template_name(self) -> str:
        return f"remote/{self.script_id}.sh.j2"

    def render(self, env: Environment) -> str:
        """Render the script body. Arguments are not part of the body."""
        return env.get_template(self.template_name).render(
            script_id=self.script_id,
            version=self.version,
            ipset_type=IPSET_TYPE,
            ipset_family=IPSET_FAMILY,
            exit_missing_capability=EXIT_MISSING_CAPABILITY,
            exit_write_failure=EXIT_WRITE_FAILURE,
            exit_reload_failed=EXIT_RELOAD_FAILED,
        )


def probe_payload(set_name: str, zone: str) -> RemotePayload:
    return RemotePayload("ipset_probe", (set_name, zone))


def reconcile_payload(set_name: str, zone: str, prefix: NetworkPrefix) -> RemotePayload:
    return RemotePayload("ipset_reconcile", (set_name, zone, str(prefix)))


def payload_environment() -> Environment:
    """Jinja2 environment for the remote payload templates."""
    return Environment(
        loader=PackageLoader("v6sync", "templates"),
        autoescape=select_autoescape(),
        undefined=StrictUndefined,
        keep_trailing_newline=True,
    )


class FirewalldIpset(ReconciliationTarget):
    """Base for local and remote ipset targets."""

    kind = "host"

    def __init__(self, ctx: ExecutionContext, host: str, set_name: str, zone: str) -> None:
        self.ctx = ctx
        self.host = host
        self.set_name = set_name
        self.zone = zone

    @property
    def identity(self) -> str:
        return f"{self.host}:{self.set_name}"


class LocalFirewalld(FirewalldIpset):
    """The ipset on the machine running v6sync."""

    def __init__(
        self,
        ctx: ExecutionContext,
        executor: CommandExecutor,
        set_name: str,
        zone: str,
    ) -> None:
        super().__init__(ctx, LOCAL_HOST, set_name, zone)
        self.executor = executor

    def _firewall_cmd(
        self,
        *args: str,
        readonly: bool = False,
        check: bool = True,
        description: Optional[str] = None,
    ) -> CommandResult:
        return self.executor.run(
            ["firewall-cmd", *args],
            readonly=readonly,
            check=check,
            description=description,
        )

    def _require_firewall_cmd(self) -> None:
        if shutil.which("firewall-cmd") is None:
            raise HostError(
                "firewall-cmd is not installed",
                HostFailure.MISSING_CAPABILITY,
                hint="Install firewalld",
            )

    def is_running(self) -> bool:
        """Check whether the firewalld service is active.

        Raises:
            HostError: ``missing-capability`` if systemctl cannot answer
        """
        try:
            return self.executor.systemctl("is-active", "firewalld", check=False).success
        except ExecutionError as e:
            raise HostError(
                "Cannot query the firewalld service",
                HostFailure.MISSING_CAPABILITY,
                hint="Check that systemd is responsive: systemctl is-system-running",
                details=[e.message, *e.details],
            ) from e

    def ensure_running(self) -> None:
        """Start firewalld if it is inactive.

        Raises:
            HostError: ``missing-capability`` if firewalld cannot be started
        """
        self._require_firewall_cmd()
        if self.is_running():
            return

        self.ctx.console.warn("firewalld is not running; attempting to start")
        try:
            self.executor.systemctl("start", "firewalld")
        except ExecutionError as e:
            raise HostError(
                "Failed to start firewalld",
                HostFailure.MISSING_CAPABILITY,
                hint="Run 'systemctl status firewalld' to investigate",
                details=e.details,
            ) from e
        self.ctx.console.success("Started firewalld service")

    def _has_ipset(self) -> bool:
        result = self._firewall_cmd("--permanent", "--get-ipsets", readonly=True)
        return self.set_name in result.stdout.split()

    def _has_rule(self) -> bool:
        return self._firewall_cmd(
            "--permanent",
            f"--zone={self.zone}",
            f"--query-rich-rule={rich_rule(self.set_name)}",
            readonly=True,
            check=False,
        ).success

    def _entries(self) -> list[str]:
        result = self._firewall_cmd(
            "--permanent", f"--ipset={self.set_name}", "--get-entries",
            readonly=True,
        )
        return result.stdout.split()

    def read_current(self) -> TargetState:
        """Read ipset existence, rule presence and entries.

        An inactive firewalld reads as an incomplete, empty state so the
        write step gets the chance to start it.

        Raises:
            HostError: ``missing-capability`` if firewall-cmd is unusable
        """
        self._require_firewall_cmd()
        if not self.is_running():
            self.ctx.console.warn("firewalld is inactive")
            return TargetState(values=frozenset(), complete=False)

        try:
            if not self._has_ipset():
                return TargetState(values=frozenset(), complete=False)
            rule_present = self._has_rule()
            entries = self._entries()
        except ExecutionError as e:
            raise HostError(
                f"Cannot read ipset {self.set_name} on {self.host}",
                HostFailure.MISSING_CAPABILITY,
                details=e.details,
            ) from e

        return TargetState(
            values=frozenset(normalize_prefix(e) for e in entries),
            complete=rule_present,
        )

    def write(self, prefix: NetworkPrefix) -> None:
        """Create the ipset and rule if needed, set entries, then reload.

        Raises:
            HostError: ``missing-capability`` if firewalld is unavailable,
                ``write-failure`` if a permanent change fails,
                ``reload-failed`` if the changes were staged but not applied
        """
        self.ensure_running()
        self.ctx.console.step(
            f"Synchronising local ipset [magenta]{self.set_name}[/magenta] "
            f"in zone [cyan]{self.zone}[/cyan]"
        )

        try:
            if not self._has_ipset():
                self.ctx.console.warn(f"ipset {self.set_name} missing; creating")
                self._firewall_cmd(
                    "--permanent",
                    f"--new-ipset={self.set_name}",
                    f"--type={IPSET_TYPE}",
                    f"--family={IPSET_FAMILY}",
                )

            if not self._has_rule():
                self.ctx.console.info(f"Adding rich rule to zone {self.zone}")
                self._firewall_cmd(
                    "--permanent",
                    f"--zone={self.zone}",
                    f"--add-rich-rule={rich_rule(self.set_name)}",
                )

            plan = plan_entry_changes(self._entries(), prefix)
            for entry in plan.remove:
                self.ctx.console.verbose(f"Removing stale entry {entry}")
                self._firewall_cmd("--permanent", f"--ipset={self.set_name}", f"--remove-entry={entry}")
            if plan.add:
                self._firewall_cmd("--permanent", f"--ipset={self.set_name}", f"--add-entry={plan.add}")
        except ExecutionError as e:
            raise HostError(
                f"Failed to update ipset {self.set_name} on {self.host}",
                HostFailure.WRITE_FAILURE,
                details=e.details,
            ) from e

        try:
            self._firewall_cmd("--reload")
        except ExecutionError as e:
            raise HostError(
                "firewalld reload failed; new entries are saved but not active",
                HostFailure.RELOAD_FAILED,
                details=e.details,
            ) from e

        self.ctx.console.success("firewalld configuration reloaded")


class RemoteFirewalld(FirewalldIpset):
    """The ipset on a remote host, managed through SSH payloads."""

    def __init__(
        self,
        ctx: ExecutionContext,
        channel: SSHChannel,
        host: str,
        set_name: str,
        zone: str,
        env: Optional[Environment] = None,
    ) -> None:
        super().__init__(ctx, host, set_name, zone)
        self.channel = channel
        self.env = env or payload_environment()

    def _ship(self, payload: RemotePayload, *, readonly: bool) -> CommandResult:
        """Run a payload on the host and map failures to HostError."""
        try:
            result = self.channel.run_script(
                self.host,
                payload.render(self.env),
                list(payload.args),
                readonly=readonly,
            )
        except ExecutionError as e:
            raise HostError(
                f"Host {self.host} did not answer in time",
                HostFailure.UNREACHABLE,
                details=e.details,
            ) from e

        if result.success:
            return result

        details = [f"Exit code: {result.return_code}"]
        if result.stderr:
            details.append(result.stderr)

        if self.channel.connect_failed(result):
            raise HostError(
                f"Host {self.host} is unreachable",
                HostFailure.UNREACHABLE,
                hint="Check SSH key access (BatchMode) to the host",
                details=details,
            )
        if result.return_code == EXIT_MISSING_CAPABILITY:
            raise HostError(
                f"Host {self.host} lacks a running firewalld",
                HostFailure.MISSING_CAPABILITY,
                details=details,
            )
        if result.return_code == EXIT_RELOAD_FAILED:
            raise HostError(
                f"firewalld reload failed on {self.host}; new entries are saved but not active",
                HostFailure.RELOAD_FAILED,
                details=details,
            )
        raise HostError(
            f"Failed to update ipset {self.set_name} on {self.host}",
            HostFailure.WRITE_FAILURE,
            details=details,
        )

    def read_current(self) -> TargetState:
        """Probe the remote ipset in one SSH session.

        Raises:
            HostError: If the host is unreachable or lacks firewalld
        """
        self.ctx.console.verbose(f"Probing ipset {self.set_name} on {self.host}")
        result = self._ship(probe_payload(self.set_name, self.zone), readonly=True)
        return parse_probe_output(result.stdout)

    def write(self, prefix: NetworkPrefix) -> None:
        """Reconcile the remote ipset to ``prefix`` in one SSH session.

        Raises:
            HostError: Mapped from the payload's exit status
        """
        self.ctx.console.step(f"Pushing prefix to [magenta]{self.host}[/magenta]")
        self._ship(reconcile_payload(self.set_name, self.zone, prefix), readonly=False)
        self.ctx.console.success(f"Updated [magenta]{self.host}[/magenta]")


def build_host_target(
    ctx: ExecutionContext,
    executor: CommandExecutor,
    channel: SSHChannel,
    host: str,
    set_name: str,
    zone: str,
    env: Optional[Environment] = None,
) -> FirewalldIpset:
    """Create the local or remote target for a host reference."""
    if host == LOCAL_HOST:
        return LocalFirewalld(ctx, executor, set_name, zone)
    return RemoteFirewalld(ctx, channel, host, set_name, zone, env=env)
