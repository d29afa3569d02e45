"""Input validation utilities.

Provides validation for:
- IPv6 network prefixes (the value every target converges on)
- SSH host identities (``host`` or ``user@host``)
- firewalld object names (ipsets, zones)

All validators return the validated value or raise ValidationError.
"""

import ipaddress
import re
from dataclasses import dataclass

from v6sync.core.exceptions import ValidationError


# firewalld accepts letters, digits, '_', '-', '.' and '/' in object names;
# '/' is excluded here since names end up in file names on the host.
OBJECT_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]*$")
MAX_OBJECT_NAME_LENGTH = 32

# user@host, host, or user@[v6-literal]
HOST_REF_PATTERN = re.compile(
    r"^(?:[A-Za-z_][A-Za-z0-9_.-]*@)?(?:[A-Za-z0-9][A-Za-z0-9.-]*|\[[0-9A-Fa-f:.]+\])$"
)

LOCAL_HOST = "local"


@dataclass(frozen=True, order=True)
class NetworkPrefix:
    """An IPv6 network together with its prefix length.

    Values are normalised on construction (compressed notation, host bits
    cleared), so two prefixes are equal exactly when their CIDR strings are.
    """
    network: ipaddress.IPv6Network

    @classmethod
    def parse(cls, value: str) -> "NetworkPrefix":
        """Parse ``addr/len`` into a prefix.

        Raises:
            ValidationError: If the value is not an IPv6 network with an
                explicit length
        """
        value = value.strip()
        if "/" not in value:
            raise ValidationError(
                f"Prefix has no length: {value}",
                hint="Use CIDR notation like 2001:db8:1234::/64",
            )

        try:
            network = ipaddress.ip_network(value, strict=False)
        except ValueError as e:
            raise ValidationError(
                f"Invalid IPv6 prefix: {value}",
                hint="Use CIDR notation like 2001:db8:1234::/64",
                details=[str(e)],
            ) from e

        if not isinstance(network, ipaddress.IPv6Network):
            raise ValidationError(f"Not an IPv6 prefix: {value}")

        return cls(network)

    @property
    def length(self) -> int:
        return self.network.prefixlen

    def __str__(self) -> str:
        return self.network.with_prefixlen


def normalize_prefix(value: str) -> str:
    """Normalise a prefix string for comparison.

    Values that are not IPv6 networks (e.g. an IPv4 CIDR left in a cloud
    rule) are returned stripped but otherwise untouched, so they still
    compare unequal to any discovered prefix.
    """
    try:
        return str(NetworkPrefix.parse(value))
    except ValidationError:
        return value.strip()


def validate_prefix_length(value: int) -> int:
    """Validate an IPv6 prefix length (1-128)."""
    if not 1 <= value <= 128:
        raise ValidationError(
            f"Invalid prefix length: {value}",
            hint="IPv6 prefix lengths are between 1 and 128",
        )
    return value


def validate_host_ref(value: str) -> str:
    """Validate an SSH host identity.

    ``local`` is reserved for the machine running v6sync.

    Raises:
        ValidationError: If the value could be parsed as an ssh option or
            contains characters not valid in a host name
    """
    value = value.strip()
    if value == LOCAL_HOST:
        return value

    if not value or value.startswith("-") or not HOST_REF_PATTERN.match(value):
        raise ValidationError(
            f"Invalid host: '{value}'",
            hint="Use a host name or user@host",
        )
    return value


def validate_object_name(value: str, object_type: str = "name") -> str:
    """Validate a firewalld ipset or zone name.

    Raises:
        ValidationError: If the name is empty, too long or has invalid characters
    """
    if not value:
        raise ValidationError(f"Empty {object_type}")

    if len(value) > MAX_OBJECT_NAME_LENGTH:
        raise ValidationError(
            f"{object_type.capitalize()} too long: {len(value)} characters "
            f"(max {MAX_OBJECT_NAME_LENGTH})"
        )

    if not OBJECT_NAME_PATTERN.match(value):
        raise ValidationError(
            f"Invalid {object_type}: '{value}'",
            hint="Use letters, digits, '_', '-' and '.'",
        )
    return value
