"""
Miscellaneous utilities for ringmaster_client.
"""

import os
import sys
import time
import tempfile
import logging

logger = logging.getLogger("ringclient.utils")


# ── Platform detection ────────────────────────────────────────────────────────

def is_linux() -> bool:
    return sys.platform == "linux"


def default_ring_directory() -> str:
    """Return the directory ring buffer files normally live in.

    ``/dev/shm`` on Linux (memory backed), the temp directory elsewhere.
    """
    if is_linux():
        return "/dev/shm"
    return tempfile.gettempdir()


# ── Ring name helpers ─────────────────────────────────────────────────────────

def ring_name_from_path(path: str) -> str:
    """Return the ring name the RingMaster knows a ring by.

    The RingMaster identifies rings by file name only, so the directory
    component is stripped::

        ring_name_from_path("/dev/shm/events")   # "events"
    """
    name = os.path.basename(os.fspath(path).rstrip(os.sep))
    if not name:
        raise ValueError(f"Ring path {path!r} has no file name component")
    return name


# ── Polling helpers ───────────────────────────────────────────────────────────

def poll_until(
    check_fn,
    timeout: float | None,
    poll_interval: float = 0.000_050,
):
    """Spin-call *check_fn()* until it returns a result or
    *timeout* expires.

    *check_fn* is always called at least once, so ``timeout=0`` is a
    single non-blocking attempt.

    Args:
        check_fn:      Callable returning the result, or ``None``/``False``
                       while there is nothing yet.
        timeout:       Seconds. ``None`` = block indefinitely.
        poll_interval: Sleep time between retries (seconds).

    Returns:
        The first result of *check_fn*, or ``None`` on timeout.
    """
    deadline = (time.monotonic() + timeout) if timeout is not None else None

    while True:
        result = check_fn()
        if result is not None and result is not False:
            return result

        if deadline is not None and time.monotonic() >= deadline:
            return None

        time.sleep(poll_interval)
