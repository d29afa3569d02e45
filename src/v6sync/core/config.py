"""Configuration management using Pydantic.

Provides:
- A typed, immutable configuration model with validation
- YAML file loading with defaults
- Environment variable overrides (``V6SYNC_*``)
- Configuration initialization with owner-only permissions

The loaded :class:`SyncConfig` is built once per invocation and passed to
every component; nothing reads module-level settings at run time.
"""

import os
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from v6sync.core.exceptions import ConfigurationError, ValidationError
from v6sync.core.validation import (
    validate_host_ref,
    validate_object_name,
    validate_prefix_length,
)


# Default configuration paths
DEFAULT_CONFIG_PATH = Path("/etc/v6sync/config.yaml")
DEFAULT_AUDIT_LOG_PATH = Path("/var/log/v6sync/audit.log")
DEFAULT_LOCK_FILE = Path("/run/v6sync.lock")
DEFAULT_OCI_CONFIG_FILE = Path("~/.oci/config")

DEFAULT_RULE_DESCRIPTION = "ALLOW_HOME_NETWORK@NET28"
DEFAULT_ROUTER = "root@msm"
DEFAULT_ROUTER_INTERFACE = "wlan0"
DEFAULT_DISCOVERY_TEMPLATE = "rdisc6 -1 {interface}"
DEFAULT_DENIAL_KEYWORDS = ("firewall-cmd", "firewalld", "ssh", "oci", "v6sync")


def _validated(func, value, *args):
    """Run a v6sync validator inside a pydantic validator."""
    try:
        return func(value, *args)
    except ValidationError as e:
        raise ValueError(e.message) from e


class OciConfig(BaseModel):
    """OCI SDK authentication settings."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    config_file: Path = DEFAULT_OCI_CONFIG_FILE
    profile: str = "DEFAULT"
    timeout: int = 30


class AuditConfig(BaseModel):
    """Audit trail settings."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    enabled: bool = True
    log_path: Path = DEFAULT_AUDIT_LOG_PATH


class SyncConfig(BaseModel):
    """Root configuration model.

    Loaded from /etc/v6sync/config.yaml. Frozen: use ``model_copy(update=...)``
    to derive a variant (e.g. for CLI overrides).
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    # Cloud target
    security_list_id: str = ""
    rule_description: str = DEFAULT_RULE_DESCRIPTION

    # Prefix discovery
    router: str = DEFAULT_ROUTER
    router_interface: str = DEFAULT_ROUTER_INTERFACE
    discovery_command: Optional[str] = None
    prefix_length: int = 64

    # Host targets
    ipset_name: str = "home6"
    firewall_zone: str = "public"
    manage_local: bool = True
    hosts: tuple[str, ...] = ()

    # Failure policy
    strict: bool = True
    host_failures_fatal: bool = False
    policy_remediation: bool = False
    denial_keywords: tuple[str, ...] = DEFAULT_DENIAL_KEYWORDS

    # Timeouts (seconds)
    connect_timeout: int = 10
    command_timeout: int = 60

    lock_file: Path = DEFAULT_LOCK_FILE

    oci: OciConfig = Field(default_factory=OciConfig)
    audit: AuditConfig = Field(default_factory=AuditConfig)

    @field_validator("router")
    @classmethod
    def validate_router(cls, v: str) -> str:
        v = _validated(validate_host_ref, v)
        if v == "local":
            raise ValueError("router must be a remote host")
        return v

    @field_validator("hosts")
    @classmethod
    def validate_hosts(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        hosts = tuple(_validated(validate_host_ref, h) for h in v if h.strip())
        if len(set(hosts)) != len(hosts):
            raise ValueError("hosts contains duplicates")
        if "local" in hosts:
            raise ValueError("use manage_local instead of listing 'local' in hosts")
        return hosts

    @field_validator("ipset_name")
    @classmethod
    def validate_ipset_name(cls, v: str) -> str:
        return _validated(validate_object_name, v, "ipset name")

    @field_validator("firewall_zone")
    @classmethod
    def validate_zone(cls, v: str) -> str:
        return _validated(validate_object_name, v, "zone name")

    @field_validator("prefix_length")
    @classmethod
    def validate_length(cls, v: int) -> int:
        return _validated(validate_prefix_length, v)

    @field_validator("connect_timeout", "command_timeout")
    @classmethod
    def validate_timeout(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("timeouts must be positive")
        return v

    @field_validator("rule_description")
    @classmethod
    def validate_description(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("rule_description must not be empty")
        return v

    @property
    def resolved_discovery_command(self) -> str:
        """Discovery command with the interface placeholder filled in."""
        template = self.discovery_command or DEFAULT_DISCOVERY_TEMPLATE
        return template.replace("{interface}", self.router_interface)

    @property
    def host_refs(self) -> list[str]:
        """All host targets in reconciliation order."""
        refs = ["local"] if self.manage_local else []
        return refs + list(self.hosts)

    def require_runnable(self) -> None:
        """Check settings needed for a pass that no default can provide.

        Raises:
            ConfigurationError: If the security list id is missing
        """
        if not self.security_list_id:
            raise ConfigurationError(
                "security_list_id is not configured",
                hint="Set it in the config file or via V6SYNC_SECURITY_LIST_ID",
            )

    @classmethod
    def load(cls, path: Path) -> "SyncConfig":
        """Load configuration from a YAML file and apply env overrides.

        Raises:
            ConfigurationError: If file not found or invalid
        """
        if not path.exists():
            raise ConfigurationError(
                f"Configuration file not found: {path}",
                hint="Create it with: v6sync config init",
            )

        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(
                f"Invalid YAML in configuration file: {path}",
                details=[str(e)],
            ) from e
        except PermissionError:
            raise ConfigurationError(
                f"Cannot read configuration file: {path}",
                hint="Check file permissions or run with sudo",
            )

        if not isinstance(data, dict):
            raise ConfigurationError(f"Configuration must be a mapping: {path}")

        return cls.from_mapping(data)

    @classmethod
    def load_or_default(cls, path: Optional[Path] = None) -> "SyncConfig":
        """Load configuration, falling back to defaults if the file is absent."""
        if path is None:
            path = DEFAULT_CONFIG_PATH

        if path.exists():
            return cls.load(path)
        return cls.from_mapping({})

    @classmethod
    def from_mapping(cls, data: dict[str, Any]) -> "SyncConfig":
        """Build a config from file data with environment overrides applied.

        Raises:
            ConfigurationError: If any value fails validation
        """
        overrides = EnvOverrides().as_update()
        merged = {**data, **overrides}
        if "oci" in overrides:
            merged["oci"] = {**(data.get("oci") or {}), **overrides["oci"]}
        try:
            return cls(**merged)
        except (PydanticValidationError, TypeError) as e:
            raise ConfigurationError(
                f"Invalid configuration: {e}",
                details=[str(e)],
            ) from e

    def with_overrides(self, overrides: dict[str, Any]) -> "SyncConfig":
        """Return a copy with command-line values applied on top.

        Raises:
            ConfigurationError: If an override fails validation
        """
        try:
            return type(self)(**{**self.model_dump(), **overrides})
        except (PydanticValidationError, TypeError) as e:
            raise ConfigurationError(
                f"Invalid command-line option: {e}",
                details=[str(e)],
            ) from e

    def to_yaml(self) -> str:
        """Convert configuration to YAML string."""
        data = self.model_dump(mode="json", exclude_none=True)
        return yaml.dump(data, default_flow_style=False, sort_keys=False)


class EnvOverrides(BaseSettings):
    """Environment overrides for scalar settings.

    Useful for timers and containers where editing the config file is
    awkward, e.g. ``V6SYNC_SECURITY_LIST_ID=ocid1.securitylist...``.
    """

    model_config = SettingsConfigDict(env_prefix="V6SYNC_", extra="ignore")

    security_list_id: Optional[str] = None
    rule_description: Optional[str] = None
    router: Optional[str] = None
    strict: Optional[bool] = None
    oci_profile: Optional[str] = None

    def as_update(self) -> dict[str, Any]:
        """Return only the overrides that are set, shaped like file data."""
        update = self.model_dump(exclude_none=True, exclude={"oci_profile"})
        if self.oci_profile:
            update["oci"] = {"profile": self.oci_profile}
        return update


def get_example_config() -> str:
    """Generate example configuration file content."""
    return f"""# v6sync configuration
# Keep this file readable by root only: it names cloud resources.

# OCI security list holding the rule to keep in sync
security_list_id: ""  # ocid1.securitylist.oc1...
rule_description: "{DEFAULT_RULE_DESCRIPTION}"

# Router queried over SSH for the advertised prefix
router: {DEFAULT_ROUTER}
router_interface: {DEFAULT_ROUTER_INTERFACE}
# discovery_command: "{DEFAULT_DISCOVERY_TEMPLATE}"
prefix_length: 64

# firewalld ipset and zone on every managed host
ipset_name: home6
firewall_zone: public
manage_local: true
hosts: []  # e.g. [m1, root@m2]

# Failure policy
strict: true               # abort host updates when the cloud update fails
host_failures_fatal: false # failed hosts make the pass fail
policy_remediation: false  # try audit2allow/semodule on SELinux denials

connect_timeout: 10
command_timeout: 60

oci:
  config_file: ~/.oci/config
  profile: DEFAULT

audit:
  enabled: true
  log_path: {DEFAULT_AUDIT_LOG_PATH}
"""


def init_config(path: Path, force: bool = False) -> None:
    """Initialize a new configuration file with mode 0600.

    Raises:
        ConfigurationError: If file exists and force is False, or the file
            cannot be written
    """
    if path.exists() and not force:
        raise ConfigurationError(
            f"Configuration file already exists: {path}",
            hint="Use --force to overwrite",
        )

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w") as f:
            f.write(get_example_config())
        # O_CREAT mode does not apply to an existing file
        os.chmod(path, 0o600)
    except PermissionError as e:
        raise ConfigurationError(
            f"Cannot write configuration file: {path}",
            hint="Run with sudo or choose another path with --config",
            details=[str(e)],
        ) from e
    except OSError as e:
        raise ConfigurationError(
            f"Cannot write configuration file: {path}",
            details=[str(e)],
        ) from e
