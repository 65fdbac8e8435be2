"""
Registered ring buffer clients.

:func:`attach_consumer` and :func:`attach_producer` run the whole
sequence a client needs before it may touch a ring:

    1. ask the port manager where the RingMaster listens,
    2. attach to the ring (a consumer is given its slot here),
    3. register the role with the RingMaster and keep the lease.

Each stage runs only if the previous one succeeded and nothing is
retried.  The returned :class:`RingClient` owns both the ring handle
and the lease and releases them together.

Usage::

    import sys
    from ringmaster_client import attach_consumer

    with attach_consumer("/dev/shm/events", port=30000) as client:
        client.stream_to(sys.stdout.buffer)
"""

import os
import logging

from .discovery import (
    DEFAULT_PORT,
    REGISTRAR_SERVICE,
    PortManagerClient,
    ServiceDirectory,
    resolve_registrar,
)
from .registration import OK_REPLY, RegistrationClient, RegistrationLease
from .ring import RingConsumer, RingProducer, attach
from .roles import Consumer, Role
from .forwarding import MAX_CHUNK_SIZE, POLL_TIMEOUT, forward
from .exceptions import RingAttachError, RingError

logger = logging.getLogger("ringclient.client")


class RingClient:
    """A ring handle together with the registration that covers it.

    Closing the client detaches from the ring first and then closes the
    lease, so the RingMaster learns of the departure as soon as the ring
    slot is given up.
    """

    def __init__(self, ring: RingProducer | RingConsumer, lease: RegistrationLease):
        self._ring = ring
        self._lease = lease

    @property
    def ring(self) -> RingProducer | RingConsumer:
        return self._ring

    @property
    def lease(self) -> RegistrationLease:
        return self._lease

    @property
    def role(self) -> Role:
        return self._ring.role

    @property
    def name(self) -> str:
        return self._ring.name

    def stream_to(
        self,
        sink,
        *,
        timeout: float = POLL_TIMEOUT,
        chunk_size: int = MAX_CHUNK_SIZE,
        stop=None,
    ) -> int:
        """Forward the ring's data to *sink* (consumers only).

        See :func:`~ringmaster_client.forwarding.forward`.
        """
        if not isinstance(self.role, Consumer):
            raise TypeError(f"stream_to needs a consumer, this client is {self.role!r}")
        return forward(self._ring, sink, timeout=timeout, chunk_size=chunk_size, stop=stop)

    def close(self) -> None:
        try:
            self._ring.detach()
        finally:
            self._lease.close()

    def __enter__(self) -> "RingClient":
        return self

    def __exit__(self, *_) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"RingClient(ring={self._ring!r}, lease={self._lease!r})"


def _attach_registered(
    path: str,
    kind: str,
    *,
    port: int,
    host: str,
    service: str,
    directory: ServiceDirectory | None,
    pid: int | None,
    timeout: float,
    ok_reply: str,
) -> RingClient:
    if directory is None:
        directory = PortManagerClient(port=port, host=host, timeout=timeout)
    endpoint = resolve_registrar(directory, service)

    if pid is None:
        pid = os.getpid()
    try:
        ring = attach(path, kind, pid=pid)
    except (RingError, OSError, ValueError) as exc:
        raise RingAttachError(f"Failed to attach ring buffer {path}: {exc}") from exc

    try:
        lease = RegistrationClient(endpoint, timeout=timeout, ok_reply=ok_reply).register(
            ring.name, ring.role, pid
        )
    except BaseException:
        try:
            ring.detach()
        except Exception as exc:
            logger.warning(
                "Failed to detach ring '%s' after registration failure: %s",
                ring.name,
                exc,
            )
        raise
    logger.info("Attached to ring '%s' as %r", ring.name, ring.role)
    return RingClient(ring, lease)


def attach_consumer(
    path: str,
    port: int = DEFAULT_PORT,
    *,
    host: str = "localhost",
    service: str = REGISTRAR_SERVICE,
    directory: ServiceDirectory | None = None,
    pid: int | None = None,
    timeout: float = 5.0,
    ok_reply: str = OK_REPLY,
) -> RingClient:
    """Attach to the ring at *path* as a registered consumer.

    Args:
        path:      Ring buffer file; the RingMaster is told its file
                   name only.
        port:      Port manager listen port.
        host:      Port manager host.
        service:   Name the RingMaster is advertised under.
        directory: Service directory to use instead of a
                   :class:`PortManagerClient` on *host*:*port*.
        pid:       Process id to claim the slot and register with.
        timeout:   Seconds for each network connect / reply.
        ok_reply:  RingMaster success token.

    Raises:
        DiscoveryError, NoRegistrar: The RingMaster could not be located.
        RingAttachError: The ring could not be attached.
        RegistrarUnreachable, TransportError, RegistrationRejected:
            Registration failed; the ring has been detached again.
    """
    return _attach_registered(
        path,
        "consumer",
        port=port,
        host=host,
        service=service,
        directory=directory,
        pid=pid,
        timeout=timeout,
        ok_reply=ok_reply,
    )


def attach_producer(
    path: str,
    port: int = DEFAULT_PORT,
    *,
    host: str = "localhost",
    service: str = REGISTRAR_SERVICE,
    directory: ServiceDirectory | None = None,
    pid: int | None = None,
    timeout: float = 5.0,
    ok_reply: str = OK_REPLY,
) -> RingClient:
    """Attach to the ring at *path* as its registered producer.

    Arguments and errors are as for :func:`attach_consumer`.
    """
    return _attach_registered(
        path,
        "producer",
        port=port,
        host=host,
        service=service,
        directory=directory,
        pid=pid,
        timeout=timeout,
        ok_reply=ok_reply,
    )
