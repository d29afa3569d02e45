"""Pre-flight safety checks.

Provides:
- Root privilege check
- Required command detection
- Single-instance lock so two passes never overlap (per-user for
  unprivileged dry runs)
"""

import fcntl
import os
import shutil
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

from v6sync.core.exceptions import LockError, PrerequisiteError


def require_root() -> None:
    """Raise PrerequisiteError unless running as root."""
    if os.geteuid() != 0:
        raise PrerequisiteError(
            "This operation requires root privileges",
            hint="Run with: sudo v6sync ...",
        )


def require_commands(commands: list[str]) -> None:
    """Check that every command is on PATH.

    Raises:
        PrerequisiteError: Listing every missing command
    """
    missing = [cmd for cmd in commands if shutil.which(cmd) is None]
    if missing:
        raise PrerequisiteError(
            f"Missing required commands: {', '.join(missing)}",
            hint="Install them with your package manager",
        )


def lock_path_for(configured: Path, dry_run: bool) -> Path:
    """Pick the lock file for this process.

    A non-root dry run cannot create the system lock. It writes nothing,
    so a per-user lock that keeps concurrent dry runs apart is enough.
    """
    if dry_run and os.geteuid() != 0:
        return Path(tempfile.gettempdir()) / f"v6sync-{os.getuid()}.lock"
    return configured


@contextmanager
def single_instance(lock_path: Path) -> Generator[None, None, None]:
    """Hold an exclusive, non-blocking lock for the duration of a pass.

    Raises:
        LockError: If another process holds the lock
    """
    try:
        lock_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(lock_path, os.O_RDWR | os.O_CREAT, 0o600)
    except OSError as e:
        raise LockError(
            f"Cannot open lock file: {lock_path}",
            details=[str(e)],
        ) from e

    try:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError as e:
            raise LockError(
                "Another v6sync pass is already running",
                hint=f"Wait for it to finish (lock: {lock_path})",
            ) from e

        os.ftruncate(fd, 0)
        os.write(fd, f"{os.getpid()}\n".encode())
        try:
            yield
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
    finally:
        os.close(fd)
