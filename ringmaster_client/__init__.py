"""
ringmaster_client — Registered clients for shared-memory ring buffers
====================================================================

Attach to a ring buffer as its producer or as one of its consumers and
register with the RingMaster, which tracks who is attached to which ring
and cleans up after clients that disappear.

Quick start::

    import sys
    from ringmaster_client import attach_consumer

    # Locate the RingMaster via the port manager on port 30000, claim a
    # consumer slot, register it, then copy the ring to stdout forever.
    with attach_consumer("/dev/shm/events", port=30000) as client:
        client.stream_to(sys.stdout.buffer)

    # Producer side
    from ringmaster_client import attach_producer

    with attach_producer("/dev/shm/events") as client:
        client.ring.put(b"event data")
"""

__version__ = "1.0.0"

from .client import RingClient, attach_consumer, attach_producer
from .config import ClientConfig
from .discovery import Endpoint, PortManagerClient, resolve_registrar
from .registration import (
    RegistrationClient,
    RegistrationLease,
    format_request,
    parse_reply,
    register,
)
from .forwarding import forward
from .ring import RingConsumer, RingProducer, attach
from .roles import Consumer, Producer, Role, role_token
from .core import create_ring, remove_ring, list_rings
from .exceptions import (
    RingClientError,
    DiscoveryError,
    NoRegistrar,
    RingAttachError,
    RegistrarUnreachable,
    TransportError,
    RegistrationRejected,
    ForwardingFatalError,
    RingError,
    RingTimeout,
    RingClosedError,
    RingSlotLostError,
)

__all__ = [
    # Client
    "RingClient",
    "attach_consumer",
    "attach_producer",
    "ClientConfig",
    # Protocol pieces
    "Endpoint",
    "PortManagerClient",
    "resolve_registrar",
    "RegistrationClient",
    "RegistrationLease",
    "format_request",
    "parse_reply",
    "register",
    "forward",
    # Ring buffer
    "RingConsumer",
    "RingProducer",
    "attach",
    "create_ring",
    "remove_ring",
    "list_rings",
    # Roles
    "Consumer",
    "Producer",
    "Role",
    "role_token",
    # Exceptions
    "RingClientError",
    "DiscoveryError",
    "NoRegistrar",
    "RingAttachError",
    "RegistrarUnreachable",
    "TransportError",
    "RegistrationRejected",
    "ForwardingFatalError",
    "RingError",
    "RingTimeout",
    "RingClosedError",
    "RingSlotLostError",
]
