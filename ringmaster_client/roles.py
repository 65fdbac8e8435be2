"""
Client roles on a ring buffer.

A client is either the ring's producer or one of its consumers.  A
consumer's slot is assigned when it attaches to the ring and is echoed
to the RingMaster when registering::

    role = consumer.role          # Consumer(slot=3)
    role_token(role)              # "consumer.3"
    role_token(Producer())        # "producer"
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class Producer:
    """The single writer of a ring."""


@dataclass(frozen=True)
class Consumer:
    """A reader of a ring, identified by its slot index."""

    slot: int

    def __post_init__(self):
        if self.slot < 0:
            raise ValueError(f"Consumer slot must be >= 0, got {self.slot}")


Role = Producer | Consumer


def role_token(role: Role) -> str:
    """Return the token naming *role* in a RingMaster request."""
    if isinstance(role, Producer):
        return "producer"
    if isinstance(role, Consumer):
        return f"consumer.{role.slot}"
    raise TypeError(f"Not a ring role: {role!r}")
