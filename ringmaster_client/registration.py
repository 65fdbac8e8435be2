"""
Registering a ring buffer client with the RingMaster.

The RingMaster tracks which processes are attached to which rings.  A
client tells it about itself with a single request line on a fresh TCP
connection and reads a single reply line::

    CONNECT <ring> producer <pid>\\n
    CONNECT <ring> consumer.<slot> <pid>\\n

The reply is ``OK`` on success; anything else is a rejection.  After a
successful exchange the connection carries no more traffic but must stay
open: it *is* the registration.  When it closes (explicitly, or because
the process died) the RingMaster releases whatever the client held.

Usage::

    from ringmaster_client.registration import RegistrationClient

    client = RegistrationClient(endpoint)
    with client.register("events", consumer.role) as lease:
        stream_forever()
"""

import os
import socket
import atexit
import logging

from .discovery import Endpoint
from .roles import Role, role_token
from .exceptions import RegistrarUnreachable, TransportError, RegistrationRejected

logger = logging.getLogger("ringclient.registration")

OK_REPLY = "OK"

_DEFAULT_TIMEOUT = 5.0


def format_request(ring: str, role: Role, pid: int) -> str:
    """Return the CONNECT request for *role* on *ring* (without the
    terminating newline).

    Example::

        format_request("events", Consumer(3), 1234)
        # "CONNECT events consumer.3 1234"
    """
    if not ring or any(ch.isspace() for ch in ring):
        raise ValueError(f"Invalid ring name {ring!r}")
    return f"CONNECT {ring} {role_token(role)} {pid}"


def parse_reply(line: str, ok_reply: str = OK_REPLY) -> None:
    """Classify a RingMaster reply line.

    Surrounding whitespace (including the newline) is ignored; the
    comparison itself is case-sensitive.

    Raises:
        RegistrationRejected: The reply is anything but *ok_reply*;
            ``detail`` holds the reply line without its terminator.
    """
    if line.strip() != ok_reply:
        raise RegistrationRejected(line.rstrip("\r\n"))


class RegistrationLease:
    """The open connection that keeps a client registered.

    Nothing is sent or received on it after the handshake.  Closing it
    tells the RingMaster the client is gone.  A lease is never reused:
    once closed, register again to get a new one.

    Example::

        lease = client.register("events", Producer())
        try:
            produce()
        finally:
            lease.close()
    """

    def __init__(self, sock: socket.socket, endpoint: Endpoint, ring: str, role: Role):
        self._sock: socket.socket | None = sock
        self.endpoint = endpoint
        self.ring = ring
        self.role = role
        atexit.register(self._atexit_close)

    @property
    def closed(self) -> bool:
        return self._sock is None

    def fileno(self) -> int:
        """Return the socket's file descriptor (-1 once closed)."""
        return -1 if self._sock is None else self._sock.fileno()

    def close(self) -> None:
        """Close the connection, ending the registration."""
        if self._sock is None:
            return
        sock, self._sock = self._sock, None
        sock.close()
        atexit.unregister(self._atexit_close)
        logger.info(
            "Registration of %s on ring '%s' released", role_token(self.role), self.ring
        )

    def __enter__(self) -> "RegistrationLease":
        return self

    def __exit__(self, *_) -> None:
        self.close()

    def _atexit_close(self) -> None:
        if self._sock is not None:
            self.close()

    def __repr__(self) -> str:
        return (
            f"RegistrationLease(endpoint={self.endpoint}, ring={self.ring!r}, "
            f"role={role_token(self.role)!r}, closed={self.closed})"
        )


class RegistrationClient:
    """Performs the one-shot CONNECT handshake with a RingMaster.

    Args:
        endpoint: Where the RingMaster listens (see
                  :func:`~ringmaster_client.discovery.resolve_registrar`).
        timeout:  Seconds allowed for connecting and for the reply.
        ok_reply: Reply token that means success.

    Example::

        client = RegistrationClient(Endpoint("localhost", 41234))
        lease = client.register("events", Consumer(0))
    """

    def __init__(
        self,
        endpoint: Endpoint,
        *,
        timeout: float = _DEFAULT_TIMEOUT,
        ok_reply: str = OK_REPLY,
    ):
        self._endpoint = endpoint
        self._timeout = timeout
        self._ok_reply = ok_reply

    @property
    def endpoint(self) -> Endpoint:
        return self._endpoint

    def register(self, ring: str, role: Role, pid: int | None = None) -> RegistrationLease:
        """Register this process as *role* on *ring*.

        Args:
            ring: Ring name (file name only, no directory).
            role: :class:`~ringmaster_client.roles.Producer` or
                  :class:`~ringmaster_client.roles.Consumer`.
            pid:  Process id to report; defaults to :func:`os.getpid`.

        Returns:
            The :class:`RegistrationLease`; keep it open for as long as
            the client should stay registered.

        Raises:
            RegistrarUnreachable: The connection could not be opened.
            TransportError: Sending the request or reading the reply
                failed.
            RegistrationRejected: The RingMaster refused.
        """
        if pid is None:
            pid = os.getpid()
        request = format_request(ring, role, pid)

        try:
            sock = socket.create_connection(
                (self._endpoint.host, self._endpoint.port), timeout=self._timeout
            )
        except OSError as exc:
            raise RegistrarUnreachable(
                f"Cannot connect to the RingMaster at {self._endpoint}: {exc}"
            ) from exc

        try:
            reply = self._exchange(sock, request)
            parse_reply(reply, self._ok_reply)
        except BaseException:
            sock.close()
            raise

        sock.settimeout(None)
        logger.info("Registered: %s", request)
        return RegistrationLease(sock, self._endpoint, ring, role)

    def _exchange(self, sock: socket.socket, request: str) -> str:
        try:
            with sock.makefile("rwb") as stream:
                stream.write(request.encode("utf-8") + b"\n")
                stream.flush()
                raw = stream.readline()
        except OSError as exc:
            raise TransportError(
                f"Registration exchange with {self._endpoint} failed: {exc}"
            ) from exc
        if not raw:
            raise TransportError(
                f"RingMaster at {self._endpoint} closed the connection without replying"
            )
        return raw.decode("utf-8", errors="replace")

    def __repr__(self) -> str:
        return f"RegistrationClient(endpoint={self._endpoint})"


def register(
    endpoint: Endpoint,
    ring: str,
    role: Role,
    pid: int | None = None,
    *,
    timeout: float = _DEFAULT_TIMEOUT,
    ok_reply: str = OK_REPLY,
) -> RegistrationLease:
    """Convenience: ``RegistrationClient(endpoint, ...).register(ring, role, pid)``."""
    return RegistrationClient(endpoint, timeout=timeout, ok_reply=ok_reply).register(
        ring, role, pid
    )
