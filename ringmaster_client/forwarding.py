"""
Forwarding a consumer's ring data to a byte sink.

The loop polls the ring with a short timeout into one reusable 1 MiB
buffer and writes exactly the bytes each poll returned before polling
again.  A poll timeout just means the ring was idle; any other ring
error ends the loop for good.

Usage::

    import sys
    from ringmaster_client.forwarding import forward

    forward(consumer, sys.stdout.buffer)   # returns only via an exception
"""

import logging
import threading
from typing import Protocol

from .exceptions import ForwardingFatalError, RingTimeout

logger = logging.getLogger("ringclient.forwarding")

MAX_CHUNK_SIZE = 1024 * 1024
POLL_TIMEOUT = 0.001  # seconds


class PollableChannel(Protocol):
    """The consumer side of a ring: ``poll`` returns the byte count
    copied into *buffer* or raises ``RingTimeout``."""

    def poll(self, buffer, timeout: float | None = None) -> int:
        ...


class ByteSink(Protocol):
    def write(self, data) -> int | None:
        ...


def _write_all(sink: ByteSink, data: memoryview) -> None:
    """Write every byte of *data* to *sink*, then flush it."""
    while data:
        try:
            written = sink.write(data)
        except Exception as exc:
            raise ForwardingFatalError(f"Failed to write to the sink: {exc}") from exc
        if not written:
            raise ForwardingFatalError(
                f"Sink accepted no bytes ({written!r}) of a {len(data)} byte write"
            )
        data = data[written:]

    flush = getattr(sink, "flush", None)
    if flush is not None:
        try:
            flush()
        except Exception as exc:
            raise ForwardingFatalError(f"Failed to flush the sink: {exc}") from exc


def forward(
    channel: PollableChannel,
    sink: ByteSink,
    *,
    timeout: float = POLL_TIMEOUT,
    chunk_size: int = MAX_CHUNK_SIZE,
    stop: threading.Event | None = None,
) -> int:
    """Copy everything arriving on *channel* to *sink* until something
    breaks.

    Args:
        channel:    Attached consumer (anything with a ``poll`` method).
        sink:       Binary writable, e.g. ``sys.stdout.buffer``.
        timeout:    Seconds each poll may wait for data.
        chunk_size: Size of the reusable poll buffer; caps the bytes
                    taken per poll.
        stop:       Optional event; when set, the loop returns after the
                    current poll.

    Returns:
        Total bytes forwarded, only when *stop* was set.

    Raises:
        ForwardingFatalError: The ring reported an error other than a
            timeout, returned an impossible byte count, or the sink
            failed.  Bytes from earlier polls have all been written;
            nothing from the failing poll is.
    """
    if chunk_size <= 0:
        raise ValueError(f"chunk_size must be > 0, got {chunk_size}")

    buffer = bytearray(chunk_size)
    view = memoryview(buffer)
    total = 0

    while stop is None or not stop.is_set():
        try:
            count = channel.poll(buffer, timeout)
        except RingTimeout:
            continue
        except Exception as exc:
            raise ForwardingFatalError(f"Error reading from ring buffer: {exc}") from exc

        if not 0 <= count <= chunk_size:
            raise ForwardingFatalError(
                f"Ring poll returned {count} bytes for a {chunk_size} byte buffer"
            )
        if count:
            _write_all(sink, view[:count])
            total += count

    logger.debug("Forwarding stopped after %d bytes", total)
    return total
