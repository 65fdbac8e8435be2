"""
Ring buffer file lifecycle management for ringmaster_client.

This module owns the low-level create / attach / close / remove
operations for ring buffer files and defines the binary layout that
producers and consumers share.  A ring lives in a regular file
(normally under ``/dev/shm``) that every attached process maps with
``mmap``.

Header layout (128 bytes, little-endian int64 values):
    Index  Offset  Field
    0      0       MAGIC  -- b"RINGBUF1" as a little-endian int64
    1      8       VERSION
    2      16      DATA_SIZE      -- bytes in the data area
    3      24      MAX_CONSUMERS  -- entries in the consumer table
    4      32      PRODUCER_PID   -- 0 when no producer is attached
    5      40      PUT_COUNT      -- total bytes ever written
    6-15   48-127  RESERVED (zeros)

Consumer table at byte offset 128: MAX_CONSUMERS entries of two int64
values, ``PID`` (0 = free slot) and ``GET_COUNT`` (total bytes that
consumer has read).

Data area follows the consumer table.  PUT_COUNT and GET_COUNT are
monotonic byte counters; the position in the data area is the counter
modulo DATA_SIZE.
"""

import os
import mmap
import time
import logging
import numpy as np
from .exceptions import RingError

logger = logging.getLogger("ringclient.core")

# ── Constants ────────────────────────────────────────────────────────────────

MAGIC: int = int.from_bytes(b"RINGBUF1", "little")
VERSION: int = 1
HEADER_SIZE: int = 128  # bytes
CONSUMER_ENTRY_SIZE: int = 16  # pid + get count

DEFAULT_DATA_SIZE: int = 8 * 1024 * 1024
DEFAULT_MAX_CONSUMERS: int = 100

# Header field indices in the int64 array
_IDX_MAGIC = 0
_IDX_VERSION = 1
_IDX_DATA_SIZE = 2
_IDX_MAX_CONSUMERS = 3
_IDX_PRODUCER_PID = 4
_IDX_PUT_COUNT = 5

# Consumer table column indices
_COL_PID = 0
_COL_GET_COUNT = 1


# ── Size helpers ──────────────────────────────────────────────────────────────

def data_offset(max_consumers: int) -> int:
    """Return the byte offset of the data area."""
    return HEADER_SIZE + max_consumers * CONSUMER_ENTRY_SIZE


def ring_size(data_size: int, max_consumers: int) -> int:
    """Return the total file size in bytes for the given geometry.

    Args:
        data_size:     Bytes in the circular data area.
        max_consumers: Number of consumer slots.

    Returns:
        Total size in bytes.
    """
    return data_offset(max_consumers) + data_size


# ── Mapped ring file ─────────────────────────────────────────────────────────

class RingSegment:
    """An open memory mapping of one ring buffer file.

    Created by :func:`create_ring` or :func:`attach_ring`; the caller
    owns it and must call :func:`close_ring` when done.
    """

    def __init__(self, path: str, buf: mmap.mmap):
        self.path = path
        self.name = os.path.basename(path)
        self.buf = buf

    @property
    def closed(self) -> bool:
        return self.buf.closed

    def __repr__(self) -> str:
        return f"RingSegment(path={self.path!r}, closed={self.closed})"


def _map_file(path: str, size: int | None = None) -> mmap.mmap:
    fd = os.open(path, os.O_RDWR | (os.O_CREAT if size is not None else 0), 0o666)
    try:
        if size is not None:
            os.ftruncate(fd, size)
        return mmap.mmap(fd, 0)
    finally:
        os.close(fd)


# ── Header helpers ────────────────────────────────────────────────────────────

def _make_header_array(segment: RingSegment) -> np.ndarray:
    """Return a numpy int64 view of the 128-byte header region.

    Reads and writes to individual int64 elements are atomic on all
    64-bit platforms (single-instruction store/load).
    """
    return np.ndarray((16,), dtype="<i8", buffer=segment.buf, offset=0)


def _init_header(segment: RingSegment, data_size: int, max_consumers: int) -> None:
    """Write the initial header into a freshly created ring."""
    hdr = _make_header_array(segment)
    hdr[:] = 0
    hdr[_IDX_VERSION] = VERSION
    hdr[_IDX_DATA_SIZE] = data_size
    hdr[_IDX_MAX_CONSUMERS] = max_consumers
    get_consumer_table(segment)[:] = 0
    # Magic last, so a concurrent attach never sees a half-built header.
    hdr[_IDX_MAGIC] = MAGIC
    logger.debug(
        "Header initialised: data_size=%d max_consumers=%d total=%d",
        data_size,
        max_consumers,
        ring_size(data_size, max_consumers),
    )


def _validate_header(segment: RingSegment) -> None:
    """Raise :class:`~ringmaster_client.exceptions.RingError` if the
    file does not look like a ring buffer of this format."""
    if len(segment.buf) < HEADER_SIZE:
        raise RingError(f"'{segment.path}' is too small to be a ring buffer")
    magic, version, data_size, max_consumers = (
        int(value) for value in _make_header_array(segment)[:4]
    )
    if magic != MAGIC:
        raise RingError(
            f"'{segment.path}' has invalid magic "
            f"0x{magic & 0xFFFFFFFFFFFFFFFF:016X} "
            f"(expected 0x{MAGIC:016X}). Is it a ring buffer?"
        )
    if version != VERSION:
        raise RingError(
            f"'{segment.path}' has version {version} but this "
            f"library expects version {VERSION}."
        )
    expected = ring_size(data_size, max_consumers)
    if len(segment.buf) < expected:
        raise RingError(
            f"'{segment.path}' is {len(segment.buf)} bytes but its header "
            f"describes {expected} bytes"
        )


# ── Public API ────────────────────────────────────────────────────────────────

def create_ring(
    path: str,
    data_size: int = DEFAULT_DATA_SIZE,
    max_consumers: int = DEFAULT_MAX_CONSUMERS,
    *,
    replace: bool = False,
) -> RingSegment:
    """Create a new ring buffer file and initialise its header.

    Args:
        path:          File to create, e.g. ``/dev/shm/events``.
        data_size:     Bytes in the circular data area.
        max_consumers: Number of consumer slots.
        replace:       If ``True`` an existing file at *path* is
                       removed first; otherwise it is an error.

    Returns:
        An open :class:`RingSegment`.

    Raises:
        RingError: If the file exists (and *replace* is false) or the
            OS refuses to create it.

    Example::

        seg = create_ring("/dev/shm/events", data_size=4 * 1024 * 1024)
    """
    if data_size <= 0:
        raise ValueError(f"data_size must be > 0, got {data_size}")
    if max_consumers <= 0:
        raise ValueError(f"max_consumers must be > 0, got {max_consumers}")

    if os.path.exists(path):
        if not replace:
            raise RingError(f"Ring buffer '{path}' already exists")
        remove_ring(path)

    size = ring_size(data_size, max_consumers)
    try:
        segment = RingSegment(path, _map_file(path, size))
    except OSError as exc:
        raise RingError(
            f"Failed to create ring buffer '{path}' ({size} bytes): {exc}"
        ) from exc

    _init_header(segment, data_size, max_consumers)
    logger.info("Created ring buffer '%s' (%d bytes)", path, size)
    return segment


def attach_ring(
    path: str,
    timeout: float = 0.0,
    poll_interval: float = 0.005,
) -> RingSegment:
    """Map an existing ring buffer file.

    Retries until the file exists and its header is valid or *timeout*
    seconds have elapsed.  One attempt is always made.

    Args:
        path:          Ring buffer file.
        timeout:       Seconds to wait for the ring to appear.
        poll_interval: Seconds between retries.

    Returns:
        An open :class:`RingSegment`.

    Raises:
        RingError: If the ring does not appear in time or its header is
            invalid.

    Example::

        seg = attach_ring("/dev/shm/events")
    """
    deadline = time.monotonic() + timeout
    last_exc: Exception | None = None

    while True:
        try:
            segment = RingSegment(path, _map_file(path))
        except (FileNotFoundError, ValueError) as exc:
            # ValueError: mmap of an empty file still being created.
            last_exc = exc
        except OSError as exc:
            raise RingError(f"Cannot map ring buffer '{path}': {exc}") from exc
        else:
            try:
                _validate_header(segment)
            except RingError:
                close_ring(segment)
                raise
            logger.info("Attached to ring buffer '%s'", path)
            return segment

        if time.monotonic() >= deadline:
            break
        time.sleep(poll_interval)

    raise RingError(
        f"Ring buffer '{path}' does not exist or is not ready "
        f"(waited {timeout:.1f}s, last error: {last_exc})"
    )


def close_ring(segment: RingSegment) -> None:
    """Unmap a ring buffer.  Safe to call more than once.

    Example::

        close_ring(seg)
    """
    if segment.closed:
        return
    try:
        segment.buf.close()
        logger.debug("Closed ring buffer '%s'", segment.path)
    except BufferError as exc:
        logger.warning("Error closing ring buffer '%s': %s", segment.path, exc)


def remove_ring(path: str) -> bool:
    """Delete a ring buffer file if it exists.

    Processes that still have it mapped keep their mapping until they
    close it.

    Returns:
        ``True`` if the file existed and was removed, ``False`` if it
        was not found.
    """
    try:
        os.unlink(path)
        logger.info("Removed ring buffer '%s'", path)
        return True
    except FileNotFoundError:
        return False
    except OSError as exc:
        logger.warning("Could not remove '%s': %s", path, exc)
        return False


def is_ring(path: str) -> bool:
    """Return ``True`` if *path* is a file carrying a valid ring header."""
    try:
        with open(path, "rb") as fp:
            head = fp.read(16)
    except OSError:
        return False
    if len(head) < 16:
        return False
    magic, version = np.frombuffer(head, dtype="<i8")
    return int(magic) == MAGIC and int(version) == VERSION


def list_rings(directory: str) -> list[str]:
    """List the ring buffer names (file names) in *directory*.

    Returns an empty list if the directory cannot be read.
    """
    try:
        entries = sorted(os.listdir(directory))
    except OSError as exc:
        logger.warning("Could not list %s: %s", directory, exc)
        return []
    return [
        entry
        for entry in entries
        if os.path.isfile(os.path.join(directory, entry))
        and is_ring(os.path.join(directory, entry))
    ]


# ── Convenience accessors used by buffer.py and ring.py ──────────────────────

def get_header(segment: RingSegment) -> np.ndarray:
    """Return the live numpy int64 view of the header.

    Callers may read/write individual fields directly::

        hdr = get_header(seg)
        put = int(hdr[IDX_PUT_COUNT])
    """
    return _make_header_array(segment)


def get_consumer_table(segment: RingSegment) -> np.ndarray:
    """Return the live ``(max_consumers, 2)`` int64 view of the consumer
    table.  Column 0 is the owner pid, column 1 the get counter."""
    max_consumers = int(_make_header_array(segment)[_IDX_MAX_CONSUMERS])
    return np.ndarray(
        (max_consumers, 2), dtype="<i8", buffer=segment.buf, offset=HEADER_SIZE
    )


# Re-export field indices so other modules don't need to know the magic
# numbers.
IDX_DATA_SIZE = _IDX_DATA_SIZE
IDX_MAX_CONSUMERS = _IDX_MAX_CONSUMERS
IDX_PRODUCER_PID = _IDX_PRODUCER_PID
IDX_PUT_COUNT = _IDX_PUT_COUNT
COL_PID = _COL_PID
COL_GET_COUNT = _COL_GET_COUNT
