"""Single-instance guard so only one lifecycle loop runs on the appliance.

The lock is keyed on the daemon's own executable: every invocation of the same
entry point contends for an flock on that file. A second invocation does not
queue or retry; the CLI turns a failed acquire into exit status 99.
"""

from __future__ import annotations

import fcntl
import os
import sys
from pathlib import Path

__all__ = [
    "InstanceLock",
    "get_self_path",
]


def get_self_path() -> Path:
    """Get the resolved path of the running executable.

    Returns:
        Path of the entry-point script (sys.argv[0]), or of the interpreter if unavailable
    """
    argv0 = sys.argv[0] if sys.argv and sys.argv[0] else sys.executable
    return Path(argv0).resolve()


class InstanceLock:
    """Exclusive flock held for the lifetime of the process.

    Uses fcntl.flock() for atomic acquisition with automatic release on process
    exit (normal, crash, or kill), so a stale lock can never survive its holder.
    The file is opened read-only: locking the executable must never modify it.
    """

    def __init__(self, lock_path: Path) -> None:
        """Initialize lock with path.

        Args:
            lock_path: File to lock, normally the daemon's own executable
        """
        self._lock_path = lock_path
        self._lock_fd: int | None = None

    @property
    def path(self) -> Path:
        return self._lock_path

    def acquire(self) -> bool:
        """Acquire exclusive lock non-blocking.

        Returns:
            True if lock acquired, False if already held by another process

        Raises:
            OSError: If the lock file cannot be opened (e.g. argv[0] is not a real file)
        """
        if self._lock_fd is not None:
            return True
        self._lock_fd = os.open(self._lock_path, os.O_RDONLY)
        try:
            fcntl.flock(self._lock_fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            return True
        except BlockingIOError:
            os.close(self._lock_fd)
            self._lock_fd = None
            return False

    def release(self) -> None:
        """Release the lock.

        Safe to call multiple times. Does nothing if lock not held.
        """
        if self._lock_fd is not None:
            fcntl.flock(self._lock_fd, fcntl.LOCK_UN)
            os.close(self._lock_fd)
            self._lock_fd = None
