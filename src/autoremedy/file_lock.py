"""Cross-process write lock for shared state files.

Uses platform-appropriate primitives (msvcrt on Windows, fcntl elsewhere).
Unlike a try-once lock, ``acquire`` polls until the lock is free or the
timeout expires, so concurrent pipeline invocations queue up behind each
other instead of failing.
"""

import logging
import os
import platform
import time
from pathlib import Path
from typing import Optional, Union

logger = logging.getLogger(__name__)


class FileLock:
    """Exclusive advisory lock held on ``lock_path``.

    Example:
        >>> with FileLock("data/repair-memory.json.lock", timeout=10):
        ...     # Serialized writer region
        ...     pass
    """

    def __init__(
        self,
        lock_path: Union[str, Path],
        timeout: float = 30.0,
        poll_interval: float = 0.05,
    ):
        """Initialize file lock.

        Args:
            lock_path: Path to the lock file
            timeout: Seconds to wait for the lock before giving up
            poll_interval: Seconds between attempts
        """
        self.lock_path = str(lock_path)
        self.timeout = timeout
        self.poll_interval = poll_interval
        self._lock_fd: Optional[int] = None

    @property
    def is_locked(self) -> bool:
        return self._lock_fd is not None

    def _try_lock(self, fd: int) -> bool:
        if platform.system() == "Windows":
            import msvcrt

            try:
                msvcrt.locking(fd, msvcrt.LK_NBLCK, 1)
            except OSError:
                return False
        else:
            import fcntl

            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            except OSError:
                return False
        return True

    def acquire(self):
        """Acquire the lock, waiting up to ``timeout`` seconds.

        Raises:
            TimeoutError: If the lock is still held elsewhere after ``timeout``
            RuntimeError: If the lock file cannot be opened
        """
        if self._lock_fd is not None:
            return

        Path(self.lock_path).parent.mkdir(parents=True, exist_ok=True)
        deadline = time.monotonic() + self.timeout

        while True:
            try:
                fd = os.open(self.lock_path, os.O_CREAT | os.O_WRONLY)
            except OSError as e:
                logger.error(f"Failed to open lock file {self.lock_path}: {e}")
                raise RuntimeError(f"Failed to open lock file: {e}") from e

            if self._try_lock(fd):
                self._lock_fd = fd
                return

            os.close(fd)
            if time.monotonic() >= deadline:
                raise TimeoutError(
                    f"Timed out after {self.timeout}s waiting for lock {self.lock_path}"
                )
            time.sleep(self.poll_interval)

    def release(self):
        """Release the lock. Safe to call when the lock is not held.

        The lock file itself is left in place; unlinking it would let a
        waiter lock a stale inode while a newcomer locks a fresh one.
        """
        if self._lock_fd is None:
            return

        try:
            if platform.system() == "Windows":
                import msvcrt

                try:
                    msvcrt.locking(self._lock_fd, msvcrt.LK_UNLCK, 1)
                except OSError:
                    pass  # Lock may already be released
            else:
                import fcntl

                fcntl.flock(self._lock_fd, fcntl.LOCK_UN)
        except OSError as e:
            logger.warning(f"Error releasing file lock {self.lock_path}: {e}")
        finally:
            os.close(self._lock_fd)
            self._lock_fd = None

    def __enter__(self):
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
        return False
