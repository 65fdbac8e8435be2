"""
Producer and consumer handles on a ring buffer.

One producer streams bytes into a ring; up to ``MAX_CONSUMERS``
consumers each read the whole stream through their own slot.  A slot
is claimed when the consumer attaches and is what the RingMaster is
told about when the consumer registers.

Usage::

    # Process A -- producer
    from ringmaster_client.ring import RingProducer

    with RingProducer("/dev/shm/events") as prod:
        prod.put(b"some bytes")

    # Process B -- consumer
    from ringmaster_client.ring import RingConsumer
    from ringmaster_client.exceptions import RingTimeout

    with RingConsumer("/dev/shm/events") as cons:
        buf = bytearray(1024 * 1024)
        try:
            n = cons.poll(buf, timeout=0.001)
        except RingTimeout:
            n = 0
"""

import os
import atexit
import logging

from .core import RingSegment, attach_ring, close_ring
from .buffer import (
    claim_producer,
    release_producer,
    claim_consumer_slot,
    release_consumer_slot,
    slot_owner,
    write_bytes,
    read_bytes,
    available,
    free_space,
    get_stats,
)
from .roles import Producer, Consumer
from .sync import ring_lock
from .utils import poll_until, ring_name_from_path
from .exceptions import RingError, RingTimeout, RingClosedError, RingSlotLostError

logger = logging.getLogger("ringclient.ring")


class _RingHandle:
    """State shared by producer and consumer handles.  Subclasses
    provide ``detach``."""

    def __init__(self, path: str, pid: int | None, timeout_connect: float):
        self._path = os.fspath(path)
        self._name = ring_name_from_path(self._path)
        self._pid = os.getpid() if pid is None else pid
        self._segment: RingSegment | None = attach_ring(
            self._path, timeout=timeout_connect
        )

    @property
    def path(self) -> str:
        return self._path

    @property
    def name(self) -> str:
        """Ring name as the RingMaster knows it (file name only)."""
        return self._name

    @property
    def pid(self) -> int:
        return self._pid

    @property
    def closed(self) -> bool:
        return self._segment is None

    def stats(self) -> dict:
        """Return a snapshot of the ring's usage (see
        :func:`~ringmaster_client.buffer.get_stats`)."""
        return get_stats(self._require_open())

    def _require_open(self) -> RingSegment:
        if self._segment is None:
            raise RingClosedError(f"Ring '{self._name}' is detached")
        return self._segment

    def _atexit_close(self) -> None:
        if self._segment is not None:
            self.detach()

    def __enter__(self):
        return self

    def __exit__(self, *_) -> None:
        self.detach()


class RingProducer(_RingHandle):
    """Writes a byte stream into a ring buffer.

    Only one producer may be attached to a ring at a time.

    Args:
        path:            Ring buffer file (e.g. ``/dev/shm/events``).
        pid:             Process id recorded as the producer; defaults
                         to :func:`os.getpid`.
        timeout_connect: Seconds to wait for the ring file to appear.

    Raises:
        RingError: The ring is missing or invalid, or already has a
            producer.

    Example::

        prod = RingProducer("/dev/shm/events")
        prod.put(payload)
        prod.detach()
    """

    def __init__(
        self,
        path: str,
        *,
        pid: int | None = None,
        timeout_connect: float = 0.0,
    ):
        super().__init__(path, pid, timeout_connect)
        try:
            with ring_lock(self._path):
                claimed = claim_producer(self._segment, self._pid)
        except RingError:
            close_ring(self._segment)
            self._segment = None
            raise
        if not claimed:
            owner = get_stats(self._segment)["producer_pid"]
            close_ring(self._segment)
            self._segment = None
            raise RingError(
                f"Ring '{self._name}' already has a producer (pid {owner})"
            )
        self.role = Producer()
        atexit.register(self._atexit_close)
        logger.info("Producer attached to ring '%s' (pid %d)", self._name, self._pid)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def put(self, data, timeout: float | None = None) -> int:
        """Write all of *data* into the ring, in order.

        Waits for consumers to make room whenever the ring is full.
        Data larger than the ring is written in pieces as space frees up.

        Args:
            data:    Bytes-like object.
            timeout: Seconds to wait for space each time the ring is
                     full. ``None`` = wait indefinitely.

        Returns:
            Number of bytes written (always ``len(data)``).

        Raises:
            RingTimeout: No space appeared within *timeout*.
            RingClosedError: The producer was detached.
        """
        segment = self._require_open()
        view = memoryview(data).cast("B")
        written = 0
        while written < len(view):
            if poll_until(lambda: free_space(segment) or None, timeout=timeout) is None:
                raise RingTimeout(
                    f"Ring '{self._name}' stayed full for {timeout:.3f}s; "
                    f"{written} of {len(view)} bytes written"
                )
            written += write_bytes(segment, view[written:])
        return written

    def detach(self) -> None:
        """Release the producer entry and unmap the ring."""
        if self._segment is None:
            return
        release_producer(self._segment, self._pid)
        close_ring(self._segment)
        self._segment = None
        atexit.unregister(self._atexit_close)
        logger.info("Producer detached from ring '%s'", self._name)

    def __repr__(self) -> str:
        return f"RingProducer(name={self._name!r}, pid={self._pid})"


class RingConsumer(_RingHandle):
    """Reads the byte stream of a ring buffer through a private slot.

    A new consumer starts at the ring's current write position; bytes
    written before it attached are not delivered.

    Args:
        path:            Ring buffer file (e.g. ``/dev/shm/events``).
        pid:             Process id recorded in the slot; defaults to
                         :func:`os.getpid`.
        timeout_connect: Seconds to wait for the ring file to appear.

    Raises:
        RingError: The ring is missing or invalid, or has no free slot.

    Example::

        with RingConsumer("/dev/shm/events") as cons:
            print(cons.slot)
    """

    def __init__(
        self,
        path: str,
        *,
        pid: int | None = None,
        timeout_connect: float = 0.0,
    ):
        super().__init__(path, pid, timeout_connect)
        try:
            with ring_lock(self._path):
                slot = claim_consumer_slot(self._segment, self._pid)
        except RingError:
            close_ring(self._segment)
            self._segment = None
            raise
        if slot is None:
            close_ring(self._segment)
            self._segment = None
            raise RingError(f"Ring '{self._name}' has no free consumer slot")
        self._slot: int = slot
        self.role = Consumer(slot)
        atexit.register(self._atexit_close)
        logger.info(
            "Consumer attached to ring '%s' at slot %d (pid %d)",
            self._name,
            slot,
            self._pid,
        )

    @property
    def slot(self) -> int:
        return self._slot

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def poll(self, buffer, timeout: float | None = None) -> int:
        """Wait for new data and copy what is available into *buffer*.

        Args:
            buffer:  Writable bytes-like object; at most ``len(buffer)``
                     bytes are copied to its front.
            timeout: Seconds to wait. ``None`` = block indefinitely,
                     ``0`` = single non-blocking attempt.

        Returns:
            Number of bytes copied (``> 0``; ``0`` only for an empty
            *buffer*).

        Raises:
            RingTimeout: No data arrived within *timeout*.
            RingClosedError: The consumer was detached.
            RingSlotLostError: The slot no longer belongs to this
                consumer.

        Example::

            n = cons.poll(buf, timeout=0.001)
            sink.write(buf[:n])
        """
        segment = self._require_open()
        if len(buffer) == 0:
            return 0
        result = poll_until(lambda: self._try_read(segment, buffer), timeout=timeout)
        if result is None:
            raise RingTimeout(f"No data in ring '{self._name}' within {timeout}s")
        return result

    def backlog(self) -> int:
        """Return the number of bytes waiting for this consumer."""
        return available(self._require_open(), self._slot)

    def detach(self) -> None:
        """Free the consumer slot and unmap the ring."""
        if self._segment is None:
            return
        release_consumer_slot(self._segment, self._slot, self._pid)
        close_ring(self._segment)
        self._segment = None
        atexit.unregister(self._atexit_close)
        logger.info("Consumer slot %d detached from ring '%s'", self._slot, self._name)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _try_read(self, segment: RingSegment, buffer) -> int | None:
        owner = slot_owner(segment, self._slot)
        if owner != self._pid:
            raise RingSlotLostError(
                f"Slot {self._slot} of ring '{self._name}' now belongs to "
                f"pid {owner}, not {self._pid}"
            )
        count = read_bytes(segment, self._slot, buffer)
        return count or None

    def __repr__(self) -> str:
        return (
            f"RingConsumer(name={self._name!r}, slot={self._slot}, "
            f"pid={self._pid})"
        )


def attach(path: str, kind: str, **kwargs) -> RingProducer | RingConsumer:
    """Attach to the ring at *path* as ``"producer"`` or ``"consumer"``.

    The returned handle's ``role`` is :class:`~ringmaster_client.roles.Producer`
    or :class:`~ringmaster_client.roles.Consumer` with the assigned slot.

    Example::

        cons = attach("/dev/shm/events", "consumer")
        cons.role    # Consumer(slot=0)
    """
    if kind == "producer":
        return RingProducer(path, **kwargs)
    if kind == "consumer":
        return RingConsumer(path, **kwargs)
    raise ValueError(f"kind must be 'producer' or 'consumer', got {kind!r}")
