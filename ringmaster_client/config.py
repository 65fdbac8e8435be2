"""
Configuration for a ring buffer client process.
"""

import os
from dataclasses import dataclass

from .discovery import DEFAULT_PORT, REGISTRAR_SERVICE
from .forwarding import POLL_TIMEOUT
from .utils import default_ring_directory


@dataclass
class ClientConfig:
    """Everything needed to attach to a ring and register with the
    RingMaster.

    Args:
        ring:            Ring buffer file name inside *directory*.
        directory:       Directory holding the ring buffer files; must
                         exist.
        port:            Port manager listen port (not the RingMaster's).
        comment:         Free text describing where the data goes; for
                         display only, never sent to the RingMaster.
        host:            Port manager host.
        service:         Name the RingMaster is advertised under.
        poll_timeout:    Seconds each ring poll may wait.
        connect_timeout: Seconds allowed for each TCP connect and reply.

    Example::

        config = ClientConfig(ring="events")
        config.ring_path    # "/dev/shm/events" on Linux
    """

    ring: str
    directory: str = default_ring_directory()
    port: int = DEFAULT_PORT
    comment: str = ""
    host: str = "localhost"
    service: str = REGISTRAR_SERVICE
    poll_timeout: float = POLL_TIMEOUT
    connect_timeout: float = 5.0

    def __post_init__(self) -> None:
        if not self.ring:
            raise ValueError("A ring name is required")
        if os.sep in self.ring:
            raise ValueError(f"Ring name {self.ring!r} must not contain a path separator")
        if not os.path.isdir(self.directory):
            raise ValueError(f"{self.directory} must be a readable directory")
        if not 0 < self.port <= 0xFFFF:
            raise ValueError(f"The port number {self.port} must be an unsigned 16-bit integer")
        if self.poll_timeout < 0:
            raise ValueError(f"poll_timeout must be >= 0, got {self.poll_timeout}")

    @property
    def ring_path(self) -> str:
        return os.path.join(self.directory, self.ring)
