"""
Cross-process file-based lock for ringmaster_client.

Claiming the producer entry or a consumer slot in a ring header is a
read-check-write sequence; two processes attaching at the same moment
could otherwise both claim the same slot.  This module provides the
advisory lock (``fcntl`` on POSIX, ``msvcrt`` on Windows) that
serialises those claims per ring.
"""

import os
import sys
import time
import tempfile
import logging
from contextlib import contextmanager
from .exceptions import RingError, RingTimeout

logger = logging.getLogger("ringclient.sync")

_IS_WINDOWS = sys.platform == "win32"

if not _IS_WINDOWS:
    import fcntl
else:
    import msvcrt


def _lock_path(name: str) -> str:
    """Return the absolute path of the lock file for *name*."""
    safe = name.replace("/", "_").replace("\\", "_").replace(":", "_")
    return os.path.join(tempfile.gettempdir(), f"ringclient_{safe}.lock")


class FileLock:
    """Cross-process advisory lock backed by an OS lock file.

    Usage::

        with FileLock("/dev/shm/events"):
            slot = claim_consumer_slot(segment, os.getpid())

    Args:
        name:    Name identifying this lock; the ring path is used so
                 every process attaching the same ring shares it.
        timeout: Default acquire timeout in seconds. ``None`` keeps
                 spinning indefinitely.
    """

    def __init__(self, name: str, timeout: float | None = None):
        self._path = _lock_path(name)
        self._timeout = timeout
        self._fd: int | None = None

    def acquire(self, timeout: float | None = None) -> None:
        """Acquire the lock, blocking until *timeout* seconds have passed.

        Raises:
            RingTimeout: If the lock could not be acquired in time.
            RingError: If the lock file cannot be opened.
        """
        deadline = None
        if timeout is None:
            timeout = self._timeout
        if timeout is not None:
            deadline = time.monotonic() + timeout

        try:
            self._fd = os.open(self._path, os.O_RDWR | os.O_CREAT)
        except OSError as exc:
            raise RingError(f"Cannot open lock file '{self._path}': {exc}") from exc

        while True:
            try:
                if _IS_WINDOWS:
                    msvcrt.locking(self._fd, msvcrt.LK_NBLCK, 1)
                else:
                    fcntl.flock(self._fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                return
            except OSError:
                pass  # held by another process

            if deadline is not None and time.monotonic() >= deadline:
                os.close(self._fd)
                self._fd = None
                raise RingTimeout(
                    f"Could not acquire lock '{self._path}' within "
                    f"{timeout:.3f}s"
                )
            time.sleep(0.000_050)

    def release(self) -> None:
        """Release the lock."""
        if self._fd is None:
            return
        try:
            if _IS_WINDOWS:
                msvcrt.locking(self._fd, msvcrt.LK_UNLCK, 1)
            else:
                fcntl.flock(self._fd, fcntl.LOCK_UN)
        finally:
            os.close(self._fd)
            self._fd = None

    def __enter__(self) -> "FileLock":
        self.acquire()
        return self

    def __exit__(self, *_) -> None:
        self.release()


@contextmanager
def ring_lock(path: str, timeout: float | None = 5.0):
    """Hold the claim lock of the ring stored at *path* around a block.

    Example::

        with ring_lock("/dev/shm/events"):
            claim_producer(segment, os.getpid())
    """
    lock = FileLock(os.path.abspath(path), timeout=timeout)
    lock.acquire(timeout=timeout)
    try:
        yield lock
    finally:
        lock.release()
