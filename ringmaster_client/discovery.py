"""
Locating the RingMaster through the local port manager.

The port manager is a directory service listening on a well-known
local port (30000 by default) that maps service names to the TCP ports
their servers were given.  The RingMaster advertises itself there under
the name ``RingMaster``.

Port manager line protocol (client → server, server → client)::

    LIST\\n
    OK <n>\\n
    <port> <service> <user>\\n      (n times)

Any first line other than ``OK <n>`` is an error reported by the port
manager.

Usage::

    from ringmaster_client.discovery import PortManagerClient, resolve_registrar

    directory = PortManagerClient(port=30000)
    endpoint = resolve_registrar(directory)   # Endpoint(host="localhost", port=...)
"""

import socket
import logging
from dataclasses import dataclass
from typing import Protocol

from .exceptions import DiscoveryError, NoRegistrar

logger = logging.getLogger("ringclient.discovery")

DEFAULT_PORT = 30000
REGISTRAR_SERVICE = "RingMaster"

_DEFAULT_HOST = "localhost"
_DEFAULT_TIMEOUT = 5.0
_MAX_LINE = 4096


@dataclass(frozen=True)
class Endpoint:
    """Network location of a server."""

    host: str
    port: int

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"


@dataclass(frozen=True)
class ServiceEntry:
    """One line of a port manager listing."""

    port: int
    service: str
    user: str


class ServiceDirectory(Protocol):
    """Anything that can look up the endpoints of a named service."""

    def find_by_service(self, name: str) -> list[Endpoint]:
        ...


def _check_port(port: int) -> int:
    if not 0 < port <= 0xFFFF:
        raise ValueError(f"Port must be in 1..65535, got {port}")
    return port


def parse_listing(lines: list[str]) -> list[ServiceEntry]:
    """Parse the ``<port> <service> <user>`` lines of a LIST reply.

    Raises:
        DiscoveryError: A line is malformed.
    """
    entries = []
    for line in lines:
        fields = line.split()
        if len(fields) < 2:
            raise DiscoveryError(f"Malformed port manager entry: {line!r}")
        try:
            port = int(fields[0])
        except ValueError as exc:
            raise DiscoveryError(f"Malformed port in entry: {line!r}") from exc
        user = fields[2] if len(fields) > 2 else ""
        entries.append(ServiceEntry(port=port, service=fields[1], user=user))
    return entries


class PortManagerClient:
    """Client for the local port manager.

    Each query opens a fresh connection, sends one request and reads
    the complete reply.

    Args:
        port:    Port manager listen port.
        host:    Port manager host; only the local host makes sense.
        timeout: Seconds allowed for connecting and for each read.

    Example::

        pm = PortManagerClient(port=30000)
        for ep in pm.find_by_service("RingMaster"):
            print(ep)
    """

    def __init__(
        self,
        port: int = DEFAULT_PORT,
        host: str = _DEFAULT_HOST,
        timeout: float = _DEFAULT_TIMEOUT,
    ):
        self._port = _check_port(port)
        self._host = host
        self._timeout = timeout

    @property
    def endpoint(self) -> Endpoint:
        return Endpoint(self._host, self._port)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def list_services(self) -> list[ServiceEntry]:
        """Return every service the port manager knows about, in the
        order it lists them.

        Raises:
            DiscoveryError: The port manager is unreachable, the
                exchange failed, or the reply is malformed.
        """
        try:
            sock = socket.create_connection(
                (self._host, self._port), timeout=self._timeout
            )
        except OSError as exc:
            raise DiscoveryError(
                f"Cannot reach the port manager at {self.endpoint}: {exc}"
            ) from exc

        with sock:
            try:
                with sock.makefile("rwb") as stream:
                    stream.write(b"LIST\n")
                    stream.flush()
                    status = self._read_line(stream)
                    count = self._parse_status(status)
                    lines = [self._read_line(stream) for _ in range(count)]
            except OSError as exc:
                raise DiscoveryError(
                    f"Port manager exchange with {self.endpoint} failed: {exc}"
                ) from exc

        entries = parse_listing(lines)
        logger.debug("Port manager at %s lists %d services", self.endpoint, len(entries))
        return entries

    def find_by_service(self, name: str) -> list[Endpoint]:
        """Return the endpoints advertised under *name*.

        An empty list means the service is not registered; it is not an
        error at this level.
        """
        if not name:
            raise ValueError("Service name must not be empty")
        return [
            Endpoint(self._host, entry.port)
            for entry in self.list_services()
            if entry.service == name
        ]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _read_line(self, stream) -> str:
        raw = stream.readline(_MAX_LINE)
        if not raw:
            raise DiscoveryError(
                f"Port manager at {self.endpoint} closed the connection mid-reply"
            )
        return raw.decode("utf-8", errors="replace").rstrip("\r\n")

    def _parse_status(self, status: str) -> int:
        fields = status.split()
        if len(fields) != 2 or fields[0] != "OK":
            raise DiscoveryError(f"Port manager LIST failed: {status!r}")
        try:
            count = int(fields[1])
        except ValueError as exc:
            raise DiscoveryError(f"Bad LIST count in {status!r}") from exc
        if count < 0:
            raise DiscoveryError(f"Bad LIST count in {status!r}")
        return count

    def __repr__(self) -> str:
        return f"PortManagerClient(host={self._host!r}, port={self._port})"


def resolve_registrar(
    directory: ServiceDirectory,
    service: str = REGISTRAR_SERVICE,
) -> Endpoint:
    """Return the endpoint of the RingMaster.

    When several endpoints are advertised the first one listed is used;
    there is no load balancing or health check.

    Raises:
        NoRegistrar: The directory answered but lists no such service.
        DiscoveryError: The directory could not be queried.
    """
    try:
        endpoints = directory.find_by_service(service)
    except DiscoveryError:
        raise
    except OSError as exc:
        raise DiscoveryError(f"Service lookup of {service!r} failed: {exc}") from exc

    if not endpoints:
        raise NoRegistrar(f"No {service!r} service is registered with the port manager")
    endpoint = endpoints[0]
    logger.info("Resolved %s at %s", service, endpoint)
    return endpoint
