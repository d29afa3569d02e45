"""OCI security list target.

Keeps the ``source`` of one ingress rule in sync with the discovered
prefix. The rule is identified by its description label, never by its
position, and every other rule in the list is sent back unchanged.

The update call replaces the whole ingress rule collection. Edits to other
rules made between our re-fetch and the update are lost only if they race
inside that window; edits to the same rule are last-writer-wins.
"""

import copy
from pathlib import Path
from typing import Any, Optional

from v6sync.core.config import OciConfig
from v6sync.core.context import ExecutionContext
from v6sync.core.exceptions import CloudError, CloudFailure
from v6sync.core.validation import NetworkPrefix, normalize_prefix
from v6sync.services.targets import ReconciliationTarget, TargetState


CIDR_BLOCK = "CIDR_BLOCK"


def find_rule(rules: list[Any], description: str, list_id: str) -> int:
    """Return the index of the single rule with ``description``.

    Raises:
        CloudError: ``not-found`` for no match, ``ambiguous-match`` for several
    """
    matches = [i for i, rule in enumerate(rules) if rule.description == description]

    if not matches:
        raise CloudError(
            f"Rule '{description}' was not found in security list {list_id}",
            CloudFailure.NOT_FOUND,
            hint="Create the rule in the OCI console or fix rule_description",
        )

    if len(matches) > 1:
        raise CloudError(
            f"{len(matches)} rules are labelled '{description}' in security list {list_id}",
            CloudFailure.AMBIGUOUS_MATCH,
            hint="Give the managed rule a unique description",
        )

    return matches[0]


def sdk_errors() -> tuple[type[Exception], ...]:
    """Exceptions the OCI SDK raises for failed or unreachable calls."""
    from oci import exceptions

    return (
        exceptions.ServiceError,
        exceptions.ClientError,
        exceptions.RequestException,
        exceptions.ConnectTimeout,
    )


class CloudSecurityRule(ReconciliationTarget):
    """One ingress rule in an OCI security list."""

    kind = "cloud"

    def __init__(
        self,
        ctx: ExecutionContext,
        list_id: str,
        description: str,
        *,
        oci_config: Optional[OciConfig] = None,
        client: Any = None,
    ) -> None:
        """Initialize the target.

        Args:
            ctx: Execution context
            list_id: Security list OCID
            description: Description label of the managed rule
            oci_config: SDK authentication settings
            client: Pre-built VirtualNetworkClient (skips SDK setup)
        """
        self.ctx = ctx
        self.list_id = list_id
        self.description = description
        self.oci_config = oci_config or OciConfig()
        self._client = client

    @property
    def identity(self) -> str:
        return f"oci:{self.description}"

    @property
    def client(self) -> Any:
        """Lazy-initialize the OCI VirtualNetwork client."""
        if self._client is None:
            import oci
            from oci.exceptions import ClientError

            try:
                config = oci.config.from_file(
                    file_location=str(Path(self.oci_config.config_file).expanduser()),
                    profile_name=self.oci_config.profile,
                )
                self._client = oci.core.VirtualNetworkClient(
                    config,
                    timeout=(10, self.oci_config.timeout),
                )
            except (ClientError, OSError, ValueError) as e:
                raise CloudError(
                    "Cannot initialise the OCI client",
                    CloudFailure.API_FAILURE,
                    hint=f"Check {self.oci_config.config_file} (profile {self.oci_config.profile})",
                    details=[str(e)],
                ) from e
        return self._client

    def _fetch_rules(self) -> list[Any]:
        try:
            response = self.client.get_security_list(self.list_id)
        except CloudError:
            raise
        except sdk_errors() as e:
            raise CloudError(
                f"Failed to obtain security list {self.list_id}",
                CloudFailure.API_FAILURE,
                details=[str(e)],
            ) from e
        return list(response.data.ingress_security_rules or [])

    def read_current(self) -> TargetState:
        """Read the managed rule's source.

        Raises:
            CloudError: If the list cannot be fetched or the rule is not unique
        """
        self.ctx.console.step(f"Fetching OCI rule [magenta]{self.description}[/magenta]")
        rules = self._fetch_rules()
        rule = rules[find_rule(rules, self.description, self.list_id)]
        source = rule.source or ""
        self.ctx.console.verbose(f"OCI currently allows {source or '(nothing)'}")
        return TargetState(values=frozenset({normalize_prefix(source)}) if source else frozenset())

    def write(self, prefix: NetworkPrefix) -> None:
        """Point the managed rule at ``prefix``.

        The collection is fetched again right before the update so the write
        is based on the freshest copy of the other rules.

        Raises:
            CloudError: If the list cannot be fetched/updated or the rule is
                no longer unique
        """
        from oci.core.models import UpdateSecurityListDetails

        rules = self._fetch_rules()
        index = find_rule(rules, self.description, self.list_id)

        updated = copy.copy(rules[index])
        updated.source = str(prefix)
        updated.source_type = CIDR_BLOCK
        rules[index] = updated

        try:
            self.client.update_security_list(
                self.list_id,
                UpdateSecurityListDetails(ingress_security_rules=rules),
            )
        except sdk_errors() as e:
            raise CloudError(
                f"OCI update of security list {self.list_id} failed",
                CloudFailure.API_FAILURE,
                details=[str(e)],
            ) from e

        self.ctx.console.success(f"Updated OCI rule to [green]{prefix}[/green]")
