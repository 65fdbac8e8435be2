"""
Byte-stream ring buffer operations for ringmaster_client.

This module contains the hot-path read/write functions called up to a
thousand times per second per consumer.  No Python-level locks are used
here; correctness relies on numpy ``int64`` element reads and writes
being single machine instructions on 64-bit platforms, and on each
counter having exactly one writer:

    PUT_COUNT        -- written only by the producer.
    GET_COUNT[slot]  -- written only by the consumer owning *slot*.

Data is copied in before PUT_COUNT is advanced (the commit step), so a
consumer never sees bytes that are not fully written.  The producer
never writes past the slowest attached consumer, which is the ring's
only flow control.
"""

import logging
import numpy as np

from .core import (
    RingSegment,
    IDX_DATA_SIZE,
    IDX_MAX_CONSUMERS,
    IDX_PRODUCER_PID,
    IDX_PUT_COUNT,
    COL_PID,
    COL_GET_COUNT,
    data_offset,
    get_header,
    get_consumer_table,
)

logger = logging.getLogger("ringclient.buffer")


# ── Low-level data area I/O ───────────────────────────────────────────────────

def _copy_in(segment: RingSegment, counter: int, data: memoryview) -> None:
    """Copy *data* into the data area starting at byte counter *counter*,
    wrapping at the end.  Does NOT advance any counter."""
    hdr = get_header(segment)
    data_size = int(hdr[IDX_DATA_SIZE])
    base = data_offset(int(hdr[IDX_MAX_CONSUMERS]))
    pos = counter % data_size
    first = min(len(data), data_size - pos)
    segment.buf[base + pos : base + pos + first] = data[:first]
    rest = len(data) - first
    if rest:
        segment.buf[base : base + rest] = data[first:]


def _copy_out(segment: RingSegment, counter: int, dest: memoryview) -> None:
    """Fill *dest* from the data area starting at byte counter *counter*."""
    hdr = get_header(segment)
    data_size = int(hdr[IDX_DATA_SIZE])
    base = data_offset(int(hdr[IDX_MAX_CONSUMERS]))
    pos = counter % data_size
    first = min(len(dest), data_size - pos)
    dest[:first] = segment.buf[base + pos : base + pos + first]
    rest = len(dest) - first
    if rest:
        dest[first:] = segment.buf[base : base + rest]


# ── Slot bookkeeping ──────────────────────────────────────────────────────────

def claim_producer(segment: RingSegment, pid: int) -> bool:
    """Record *pid* as the ring's producer.

    The caller must hold the ring's claim lock.

    Returns:
        ``True`` on success, ``False`` if another producer is attached.
    """
    hdr = get_header(segment)
    if int(hdr[IDX_PRODUCER_PID]) != 0:
        return False
    hdr[IDX_PRODUCER_PID] = np.int64(pid)
    return True


def release_producer(segment: RingSegment, pid: int) -> None:
    """Clear the producer entry if it still belongs to *pid*."""
    hdr = get_header(segment)
    if int(hdr[IDX_PRODUCER_PID]) == pid:
        hdr[IDX_PRODUCER_PID] = np.int64(0)


def claim_consumer_slot(segment: RingSegment, pid: int) -> int | None:
    """Claim the lowest free consumer slot for *pid*.

    The new consumer starts at the current PUT_COUNT, so it only sees
    data written after it attached.  The caller must hold the ring's
    claim lock.

    Returns:
        The slot index, or ``None`` if every slot is in use.
    """
    hdr = get_header(segment)
    table = get_consumer_table(segment)
    for slot in range(table.shape[0]):
        if int(table[slot, COL_PID]) == 0:
            table[slot, COL_GET_COUNT] = hdr[IDX_PUT_COUNT]
            table[slot, COL_PID] = np.int64(pid)
            return slot
    return None


def release_consumer_slot(segment: RingSegment, slot: int, pid: int) -> None:
    """Free *slot* if it still belongs to *pid*."""
    table = get_consumer_table(segment)
    if int(table[slot, COL_PID]) == pid:
        table[slot, COL_PID] = np.int64(0)


def slot_owner(segment: RingSegment, slot: int) -> int:
    """Return the pid that owns consumer *slot* (0 if free)."""
    return int(get_consumer_table(segment)[slot, COL_PID])


# ── Producer (write) side ─────────────────────────────────────────────────────

def free_space(segment: RingSegment) -> int:
    """Return how many bytes the producer can write without overrunning
    the slowest attached consumer."""
    hdr = get_header(segment)
    data_size = int(hdr[IDX_DATA_SIZE])
    put = int(hdr[IDX_PUT_COUNT])
    table = get_consumer_table(segment)
    active = table[table[:, COL_PID] != 0]
    if len(active) == 0:
        return data_size
    backlog = put - int(active[:, COL_GET_COUNT].min())
    return max(data_size - backlog, 0)


def write_bytes(segment: RingSegment, data) -> int:
    """Write as much of *data* as fits into the ring without blocking.

    Algorithm:
        1. Compute the free space behind the slowest consumer.
        2. Copy up to that many bytes in at PUT_COUNT, wrapping.
        3. Advance PUT_COUNT by the number copied -- the *commit* step.

    Args:
        segment: Open ring buffer.
        data:    Bytes-like object.

    Returns:
        Number of bytes written (0 when the ring is full).

    Example::

        sent = write_bytes(seg, b"hello world")
    """
    view = memoryview(data).cast("B")
    count = min(len(view), free_space(segment))
    if count == 0:
        return 0

    hdr = get_header(segment)
    put = int(hdr[IDX_PUT_COUNT])
    _copy_in(segment, put, view[:count])

    # Commit: advance PUT_COUNT after the data is in place.
    hdr[IDX_PUT_COUNT] = np.int64(put + count)
    logger.debug("Wrote %d bytes (put→%d)", count, put + count)
    return count


# ── Consumer (read) side ──────────────────────────────────────────────────────

def available(segment: RingSegment, slot: int) -> int:
    """Return the number of unread bytes for consumer *slot*."""
    put = int(get_header(segment)[IDX_PUT_COUNT])
    get = int(get_consumer_table(segment)[slot, COL_GET_COUNT])
    return put - get


def read_bytes(segment: RingSegment, slot: int, dest) -> int:
    """Non-blocking read of up to ``len(dest)`` bytes for consumer *slot*.

    Args:
        segment: Open ring buffer.
        slot:    The caller's consumer slot.
        dest:    Writable bytes-like object (e.g. a ``bytearray``).

    Returns:
        Number of bytes copied into the front of *dest* (0 if empty).

    Example::

        buf = bytearray(65536)
        n = read_bytes(seg, slot, buf)
        chunk = buf[:n]
    """
    view = memoryview(dest).cast("B")
    count = min(len(view), available(segment, slot))
    if count <= 0:
        return 0

    table = get_consumer_table(segment)
    get = int(table[slot, COL_GET_COUNT])
    _copy_out(segment, get, view[:count])
    table[slot, COL_GET_COUNT] = np.int64(get + count)

    logger.debug("Slot %d read %d bytes (get→%d)", slot, count, get + count)
    return count


# ── Stats helper ──────────────────────────────────────────────────────────────

def get_stats(segment: RingSegment) -> dict:
    """Return a snapshot of the ring buffer usage.

    Returns a dict with keys:
    ``name``, ``data_size``, ``max_consumers``, ``producer_pid``,
    ``put_count``, ``free_space`` and ``consumers`` (a list of
    ``{"slot", "pid", "get_count", "backlog"}`` for attached consumers).

    Example::

        stats = get_stats(seg)
        print(f"Free: {stats['free_space']} / {stats['data_size']}")
    """
    hdr = get_header(segment)
    put = int(hdr[IDX_PUT_COUNT])
    table = get_consumer_table(segment)
    consumers = [
        {
            "slot": slot,
            "pid": int(table[slot, COL_PID]),
            "get_count": int(table[slot, COL_GET_COUNT]),
            "backlog": put - int(table[slot, COL_GET_COUNT]),
        }
        for slot in range(table.shape[0])
        if int(table[slot, COL_PID]) != 0
    ]
    return {
        "name": segment.name,
        "data_size": int(hdr[IDX_DATA_SIZE]),
        "max_consumers": int(hdr[IDX_MAX_CONSUMERS]),
        "producer_pid": int(hdr[IDX_PRODUCER_PID]),
        "put_count": put,
        "free_space": free_space(segment),
        "consumers": consumers,
    }
