"""Core framework components for v6sync."""

from v6sync.core.exceptions import (
    V6SyncError,
    ConfigurationError,
    ValidationError,
    LockError,
    ExecutionError,
    PrerequisiteError,
    DiscoveryError,
    DiscoveryFailure,
    CloudError,
    CloudFailure,
    HostError,
    HostFailure,
)

from v6sync.core.context import ExecutionContext, create_context
from v6sync.core.output import console, Console, Verbosity
from v6sync.core.config import SyncConfig
from v6sync.core.validation import NetworkPrefix
from v6sync.core.audit import (
    AuditLogger,
    AuditEventType,
    AuditResult,
)
from v6sync.core.executor import CommandExecutor, CommandResult

__all__ = [
    # Exceptions
    "V6SyncError",
    "ConfigurationError",
    "ValidationError",
    "LockError",
    "ExecutionError",
    "PrerequisiteError",
    "DiscoveryError",
    "DiscoveryFailure",
    "CloudError",
    "CloudFailure",
    "HostError",
    "HostFailure",
    # Context
    "ExecutionContext",
    "create_context",
    # Output
    "console",
    "Console",
    "Verbosity",
    # Config
    "SyncConfig",
    "NetworkPrefix",
    # Audit
    "AuditLogger",
    "AuditEventType",
    "AuditResult",
    # Executor
    "CommandExecutor",
    "CommandResult",
]
