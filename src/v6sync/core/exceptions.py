"""Exceptions raised by v6sync.

Every error has a message, an optional hint and detail lines, and the
exit code the CLI returns for it. Target adapters raise errors that also
carry a failure ``kind``, so the reconciliation controller can record
why a target failed without parsing messages.
"""

from enum import Enum
from typing import Optional


class V6SyncError(Exception):
    """Base class for v6sync errors.

    Attributes:
        message: What went wrong
        hint: What the operator can do about it
        details: Extra lines shown under the message
        exit_code: Process exit status when the error reaches the CLI
    """

    exit_code: int = 1

    def __init__(
        self,
        message: str,
        *,
        hint: Optional[str] = None,
        details: Optional[list[str]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.hint = hint
        self.details = details or []

    def __str__(self) -> str:
        return self.message


class ConfigurationError(V6SyncError):
    """Configuration file or settings errors.

    Raised when:
    - Config file unreadable
    - Invalid YAML syntax
    - Missing required configuration values
    - Invalid configuration values
    """
    exit_code = 2


class ValidationError(V6SyncError):
    """Input validation errors.

    Raised when:
    - Invalid IPv6 prefix notation
    - Invalid host identity
    - Invalid ipset or zone name
    """
    exit_code = 3


class LockError(V6SyncError):
    """Another reconciliation pass holds the single-instance lock."""
    exit_code = 4


class ExecutionError(V6SyncError):
    """Command execution failures.

    Raised when:
    - Shell command returns non-zero exit code
    - Shell command times out
    """
    exit_code = 5

    def __init__(
        self,
        message: str,
        *,
        command: Optional[str] = None,
        return_code: Optional[int] = None,
        stderr: Optional[str] = None,
        timed_out: bool = False,
        hint: Optional[str] = None,
        details: Optional[list[str]] = None,
    ) -> None:
        if not details:
            details = []
        if return_code is not None:
            details.append(f"Exit code: {return_code}")
        if stderr:
            details.append(f"Error output: {stderr}")
        super().__init__(message, hint=hint, details=details)
        self.command = command
        self.return_code = return_code
        self.stderr = stderr
        self.timed_out = timed_out


class PrerequisiteError(V6SyncError):
    """Missing prerequisites.

    Raised when:
    - Required command not found
    - Insufficient permissions
    """
    exit_code = 6


# Target errors


class DiscoveryFailure(str, Enum):
    """Why the router prefix could not be discovered."""
    UNREACHABLE = "unreachable"
    UNPARSEABLE = "unparseable"
    WRONG_LENGTH = "wrong-length"


class CloudFailure(str, Enum):
    """Why the cloud security rule could not be read or written."""
    NOT_FOUND = "not-found"
    AMBIGUOUS_MATCH = "ambiguous-match"
    API_FAILURE = "api-failure"


class HostFailure(str, Enum):
    """Why a host firewall could not be read or written."""
    UNREACHABLE = "unreachable"
    MISSING_CAPABILITY = "missing-capability"
    WRITE_FAILURE = "write-failure"
    RELOAD_FAILED = "reload-failed"


class TargetError(V6SyncError):
    """Base for errors that carry a failure kind."""

    def __init__(
        self,
        message: str,
        kind: Enum,
        *,
        hint: Optional[str] = None,
        details: Optional[list[str]] = None,
    ) -> None:
        super().__init__(message, hint=hint, details=details)
        self.kind = kind


class DiscoveryError(TargetError):
    """Prefix discovery failed; the whole pass must abort."""
    exit_code = 10

    def __init__(self, message: str, kind: DiscoveryFailure, **kwargs) -> None:
        super().__init__(message, kind, **kwargs)


class CloudError(TargetError):
    """OCI security list read or update failed."""
    exit_code = 11

    def __init__(self, message: str, kind: CloudFailure, **kwargs) -> None:
        super().__init__(message, kind, **kwargs)


class HostError(TargetError):
    """firewalld read or update failed on one host.

    ``reload-failed`` means the permanent configuration was written but is
    not enforced yet.
    """
    exit_code = 12

    def __init__(self, message: str, kind: HostFailure, **kwargs) -> None:
        super().__init__(message, kind, **kwargs)
