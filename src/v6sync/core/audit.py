"""Audit trail for reconciliation passes.

Every pass appends JSON lines to the audit log: one when it starts, one
for the discovered prefix, one per target and one when it ends. Lines of
the same pass share a ``pass_id``; lines of the same process share a
``session_id``. The file is rotated by size.

Example line::

    {"time": "2024-05-01T06:00:02+00:00", "event": "host.ipset_update",
     "result": "success", "target": "m1:home6", "kind": "host",
     "details": {"previous": "2001:db8:aaaa::/64", "new": "2001:db8:cccc::/64"}, ...}
"""

import json
import logging
import os
import socket
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from enum import Enum
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Generator, Optional

from v6sync.core.config import DEFAULT_AUDIT_LOG_PATH, AuditConfig
from v6sync.core.output import console


MAX_LOG_BYTES = 5 * 1024 * 1024
BACKUP_COUNT = 5


class AuditEventType(str, Enum):
    """Types of auditable events."""
    SESSION_START = "session.start"
    SESSION_END = "session.end"

    PASS_START = "pass.start"
    PASS_END = "pass.end"
    PASS_ABORTED = "pass.aborted"

    PREFIX_DISCOVERED = "prefix.discovered"
    PREFIX_FAILED = "prefix.failed"

    CLOUD_RULE_UPDATE = "cloud.rule_update"
    HOST_IPSET_UPDATE = "host.ipset_update"

    POLICY_DENIAL = "policy.denial"
    POLICY_REMEDIATION = "policy.remediation"

    CONFIG_INIT = "config.init"


class AuditResult(str, Enum):
    """Result of an audited step."""
    SUCCESS = "success"
    FAILURE = "failure"
    NOOP = "noop"
    DRY_RUN = "dry_run"
    PARTIAL = "partial"


class JsonLinesFormatter(logging.Formatter):
    """Render the event mapping attached to a record as one JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        return json.dumps(record.audit, default=str)


class AuditLogger:
    """Writes audit events for one v6sync process.

    A disabled logger accepts every call and writes nothing. If the log
    file cannot be opened the logger disables itself; auditing never makes
    a pass fail.
    """

    def __init__(
        self,
        log_path: Optional[Path] = None,
        enabled: bool = True,
        max_bytes: int = MAX_LOG_BYTES,
        backup_count: int = BACKUP_COUNT,
    ) -> None:
        self.log_path = Path(log_path or DEFAULT_AUDIT_LOG_PATH)
        self.enabled = enabled
        self.max_bytes = max_bytes
        self.backup_count = backup_count

        self.session_id = uuid.uuid4().hex[:12]
        self.pass_id: Optional[str] = None
        self._hostname = socket.gethostname()
        self._logger: Optional[logging.Logger] = None

    @classmethod
    def from_config(cls, config: AuditConfig) -> "AuditLogger":
        return cls(log_path=config.log_path, enabled=config.enabled)

    def _open(self) -> Optional[logging.Logger]:
        if self._logger is not None:
            return self._logger

        try:
            self.log_path.parent.mkdir(mode=0o750, parents=True, exist_ok=True)
            # The handler opens with the process umask; create the file private
            if not self.log_path.exists():
                os.close(os.open(self.log_path, os.O_WRONLY | os.O_CREAT, 0o640))
            handler = RotatingFileHandler(
                self.log_path,
                maxBytes=self.max_bytes,
                backupCount=self.backup_count,
                encoding="utf-8",
            )
        except OSError as e:
            console.debug(f"Audit log disabled: {e}")
            self.enabled = False
            return None

        handler.setFormatter(JsonLinesFormatter())
        # Not registered with logging's manager, so the root logger never sees it
        logger = logging.Logger("v6sync.audit", logging.INFO)
        logger.addHandler(handler)
        self._logger = logger
        return logger

    def close(self) -> None:
        if self._logger is None:
            return
        for handler in list(self._logger.handlers):
            handler.close()
            self._logger.removeHandler(handler)
        self._logger = None

    def record(
        self,
        event: AuditEventType,
        result: AuditResult,
        *,
        target: Optional[str] = None,
        kind: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
        message: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        """Append one event to the audit log."""
        if not self.enabled:
            return
        logger = self._open()
        if logger is None:
            return

        entry = {
            "time": datetime.now(timezone.utc).isoformat(),
            "event": event.value,
            "result": result.value,
            "session_id": self.session_id,
            "pass_id": self.pass_id,
            "machine": self._hostname,
            "uid": os.getuid(),
            "target": target,
            "kind": kind,
            "details": details or {},
            "message": message,
            "error": error,
        }
        logger.info(event.value, extra={"audit": entry})

    @contextmanager
    def pass_scope(self) -> Generator[str, None, None]:
        """Tag every event recorded inside the block with a new pass id.

        Host workers record from other threads while the block is open, so
        the id lives on the logger rather than in thread-local state.
        """
        self.pass_id = f"pass_{uuid.uuid4().hex[:8]}"
        try:
            yield self.pass_id
        finally:
            self.pass_id = None

    def session_start(self, command: str, args: list[str]) -> None:
        self.record(
            AuditEventType.SESSION_START,
            AuditResult.SUCCESS,
            details={"command": command, "args": args},
        )

    def session_end(self, exit_code: int) -> None:
        self.record(
            AuditEventType.SESSION_END,
            AuditResult.SUCCESS if exit_code == 0 else AuditResult.FAILURE,
            details={"exit_code": exit_code},
        )
