"""
Exclusive lock on the artifact cache directory

Held for the whole fetch+apply span. The lock file records the holder's
PID so a waiting process can tell who it is waiting for.
"""

import fcntl
import logging
import os
import time
from pathlib import Path
from typing import Callable, Optional

from .errors import PreconditionFailed

logger = logging.getLogger(__name__)

LOCK_NAME = "lock"


class CacheLock:
    """flock()-based lock on <cache_dir>/lock."""

    def __init__(self, cache_dir: Path):
        self.path = Path(cache_dir) / LOCK_NAME
        self.lock_fd = None
        self.locked = False

    def acquire(self, timeout: float = 0,
                wait_callback: Callable[[int], None] = None):
        """Acquire the lock.

        Args:
            timeout: Seconds to wait for a busy lock (0: fail immediately)
            wait_callback: Called with the holder PID while waiting

        Raises:
            PreconditionFailed: lock directory unusable or lock held elsewhere
        """
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.lock_fd = open(self.path, 'a+')
        except OSError as e:
            raise PreconditionFailed(f"Unable to lock the download directory {self.path.parent}: {e}",
                                     detail=str(self.path))

        deadline = time.monotonic() + timeout
        while True:
            try:
                fcntl.flock(self.lock_fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                break
            except BlockingIOError:
                holder_pid = self.holder_pid()
                if time.monotonic() >= deadline:
                    self._close()
                    holder = f" (held by PID {holder_pid})" if holder_pid else ""
                    raise PreconditionFailed(
                        f"Unable to lock the download directory {self.path.parent}{holder}",
                        detail=str(self.path))
                if wait_callback and holder_pid:
                    wait_callback(holder_pid)
                time.sleep(0.5)

        self.lock_fd.seek(0)
        self.lock_fd.truncate(0)
        self.lock_fd.write(str(os.getpid()))
        self.lock_fd.flush()
        self.locked = True
        logger.debug(f"Locked {self.path}")

    def release(self):
        """Release the lock; safe to call when not held."""
        if self.lock_fd is None:
            return
        if self.locked:
            try:
                fcntl.flock(self.lock_fd, fcntl.LOCK_UN)
            except OSError as e:
                logger.debug(f"Unlocking {self.path} failed: {e}")
            logger.debug(f"Unlocked {self.path}")
        self._close()

    def _close(self):
        if self.lock_fd is not None:
            self.lock_fd.close()
        self.lock_fd = None
        self.locked = False

    def holder_pid(self) -> Optional[int]:
        """PID written by the current holder, if readable."""
        try:
            return int(self.path.read_text().strip())
        except (OSError, ValueError):
            return None

    def __enter__(self):
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()
        return False
