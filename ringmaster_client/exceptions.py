"""
Exceptions for the ringmaster_client library.

Two families live here:

* ``RingClientError`` and its subclasses form the flat error taxonomy
  seen by callers of the client.  Each subclass names the stage that
  failed (discovery, ring attach, registration, forwarding) through its
  ``kind`` attribute.
* ``RingError`` and its subclasses are raised by the ring buffer
  channel itself.  ``RingTimeout`` is not a failure: it just means no
  data arrived before the deadline.
"""


class RingClientError(Exception):
    """Base exception for all client-side failures."""

    kind = "client"


class DiscoveryError(RingClientError):
    """Raised when the port manager cannot be reached or its reply
    cannot be understood.

    Example::

        try:
            endpoint = resolve_registrar(PortManagerClient(port=30000))
        except DiscoveryError as e:
            print(f"Port manager trouble: {e}")
    """

    kind = "discovery"


class NoRegistrar(RingClientError):
    """Raised when the port manager answered but no RingMaster is
    advertised."""

    kind = "no-registrar"


class RingAttachError(RingClientError):
    """Raised when the ring buffer could not be attached as producer or
    consumer."""

    kind = "ring-attach"


class RegistrarUnreachable(RingClientError):
    """Raised when the connection to the RingMaster cannot be opened."""

    kind = "registrar-unreachable"


class TransportError(RingClientError):
    """Raised when sending the request or reading the reply fails after
    the connection to the RingMaster was opened."""

    kind = "transport"


class RegistrationRejected(RingClientError):
    """Raised when the RingMaster replies with anything but ``OK``.

    The full reply line is kept in :attr:`detail`.

    Example::

        try:
            lease = register(endpoint, "events", Consumer(3))
        except RegistrationRejected as e:
            print(f"RingMaster said: {e.detail}")
    """

    kind = "registration-rejected"

    def __init__(self, detail: str):
        super().__init__(f"RingMaster rejected the registration: {detail}")
        self.detail = detail


class ForwardingFatalError(RingClientError):
    """Raised when the forwarding loop stops because of a ring or sink
    error other than a poll timeout."""

    kind = "forwarding"


# ── Ring buffer channel errors ────────────────────────────────────────────────

class RingError(Exception):
    """Base exception for ring buffer channel errors.

    Attach failures (missing file, bad header, no free consumer slot,
    producer already present) are raised as plain ``RingError``.
    """


class RingTimeout(RingError):
    """Raised when a timed get or put could not make progress before its
    deadline.

    Example::

        try:
            n = consumer.poll(buf, timeout=0.001)
        except RingTimeout:
            pass   # nothing new yet
    """


class RingClosedError(RingError):
    """Raised when a detached producer or consumer handle is used."""


class RingSlotLostError(RingError):
    """Raised when a consumer's slot no longer belongs to it, e.g. after
    the RingMaster reclaimed it."""
