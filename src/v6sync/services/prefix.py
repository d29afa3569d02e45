"""Router prefix discovery.

Asks the upstream router which IPv6 prefix it currently advertises by
running a read-only command (``rdisc6 -1 <iface>`` by default) over SSH,
then extracts and validates the prefix from free-form output.
"""

import re
from typing import Optional

from v6sync.core.context import ExecutionContext
from v6sync.core.exceptions import (
    DiscoveryError,
    DiscoveryFailure,
    ExecutionError,
    ValidationError,
)
from v6sync.core.validation import NetworkPrefix
from v6sync.services.ssh import SSHChannel


# rdisc6 prints e.g. " Prefix                   : 2001:db8:1234::/64"
KEYWORD_PATTERN = re.compile(r"\bPrefix\b\s*:?\s*([0-9A-Fa-f:]+/\d{1,3})")
FALLBACK_PATTERN = re.compile(r"(?:[0-9a-f]{0,4}:){2,}[0-9a-f]{0,4}/[0-9]+", re.IGNORECASE)


def extract_prefix(output: str) -> Optional[str]:
    """Find the first prefix-shaped token in command output.

    Tries a ``Prefix``-anchored match first and falls back to the first
    IPv6-literal-with-length anywhere in the text.

    Returns:
        The raw token, or None if nothing looks like a prefix
    """
    match = KEYWORD_PATTERN.search(output)
    if match:
        return match.group(1)

    match = FALLBACK_PATTERN.search(output)
    if match:
        return match.group(0)

    return None


def parse_prefix(output: str, expected_length: int) -> NetworkPrefix:
    """Extract and validate the prefix from router output.

    Raises:
        DiscoveryError: ``unparseable`` if no valid token is found,
            ``wrong-length`` if its length is not ``expected_length``
    """
    token = extract_prefix(output)
    if token is None:
        raise DiscoveryError(
            "Could not parse an IPv6 prefix from router output",
            DiscoveryFailure.UNPARSEABLE,
            details=output.splitlines()[-10:],
        )

    try:
        prefix = NetworkPrefix.parse(token)
    except ValidationError as e:
        raise DiscoveryError(
            f"Router output contains an invalid prefix: {token}",
            DiscoveryFailure.UNPARSEABLE,
            details=[e.message],
        ) from e

    if prefix.length != expected_length:
        raise DiscoveryError(
            f"Discovered prefix {prefix} is not a /{expected_length} network",
            DiscoveryFailure.WRONG_LENGTH,
            hint="Check prefix_length in the configuration",
        )

    return prefix


class PrefixSource:
    """Discovers the advertised prefix from the router."""

    def __init__(
        self,
        ctx: ExecutionContext,
        channel: SSHChannel,
        router: str,
        command: str,
        expected_length: int = 64,
    ) -> None:
        self.ctx = ctx
        self.channel = channel
        self.router = router
        self.command = command
        self.expected_length = expected_length

    def discover(self) -> NetworkPrefix:
        """Query the router and return the validated prefix.

        Raises:
            DiscoveryError: If the router is unreachable, the output cannot be
                parsed, or the prefix has the wrong length
        """
        self.ctx.console.step(
            f"Querying IPv6 prefix from [magenta]{self.router}[/magenta] "
            f"using [cyan]{self.command}[/cyan]"
        )

        try:
            result = self.channel.run(self.router, self.command, readonly=True)
        except ExecutionError as e:
            raise DiscoveryError(
                f"Router {self.router} did not answer in time",
                DiscoveryFailure.UNREACHABLE,
                details=e.details,
            ) from e

        if not result.success:
            raise DiscoveryError(
                f"Failed to query router {self.router}",
                DiscoveryFailure.UNREACHABLE,
                hint="Check SSH key access (BatchMode) and the discovery command",
                details=[f"Exit code: {result.return_code}", result.output],
            )

        prefix = parse_prefix(result.output, self.expected_length)
        self.ctx.console.success(f"Discovered prefix: [green]{prefix}[/green]")
        return prefix
