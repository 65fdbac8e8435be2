"""
Shared test fixtures and helpers for ringmaster_client tests.
"""

import socket
import socketserver
import threading
import time
import multiprocessing as mp

import pytest

from ringmaster_client.core import create_ring, close_ring, remove_ring

RING_NAME = "events"
RING_DATA_SIZE = 64 * 1024
RING_MAX_CONSUMERS = 4


def pytest_configure(config):
    config.addinivalue_line(
        "markers", "multiprocess: test spawns child processes"
    )


def wait_for(fn, timeout=5.0, interval=0.01):
    """Poll fn() until it returns truthy or timeout expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        result = fn()
        if result:
            return result
        time.sleep(interval)
    return None


def run_in_process(fn, *args, timeout=10.0):
    """Run *fn* in a spawned child process; return (exitcode, error).

    Returns exitcode=0 on success.
    """
    ctx = mp.get_context("spawn")
    p = ctx.Process(target=fn, args=args, daemon=True)
    p.start()
    p.join(timeout=timeout)
    if p.is_alive():
        p.terminate()
        p.join(1)
        return -1, "timeout"
    return p.exitcode, None


def unused_port() -> int:
    """Return a local TCP port nothing is listening on."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


# ── Fake servers ──────────────────────────────────────────────────────────────

class _TCPServer(socketserver.ThreadingTCPServer):
    daemon_threads = True
    allow_reuse_address = True
    block_on_close = False


class FakeServer:
    """Threaded line-protocol server on an ephemeral loopback port."""

    handler_class = None

    def __init__(self):
        self.requests: list[str] = []
        self._server = _TCPServer(("127.0.0.1", 0), self.handler_class)
        self._server.owner = self
        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)

    @property
    def port(self) -> int:
        return self._server.server_address[1]

    def start(self) -> "FakeServer":
        self._thread.start()
        return self

    def stop(self) -> None:
        self._server.shutdown()
        self._server.server_close()


class _PortManagerHandler(socketserver.StreamRequestHandler):
    def handle(self):
        owner = self.server.owner
        line = self.rfile.readline().decode().rstrip("\n")
        owner.requests.append(line)
        if owner.raw_reply is not None:
            self.wfile.write(owner.raw_reply)
            return
        reply = f"OK {len(owner.services)}\n"
        for port, service, user in owner.services:
            reply += f"{port} {service} {user}\n"
        self.wfile.write(reply.encode())


class FakePortManager(FakeServer):
    """Answers ``LIST`` with ``services`` (or with ``raw_reply`` bytes)."""

    handler_class = _PortManagerHandler

    def __init__(self, services=None, raw_reply: bytes | None = None):
        super().__init__()
        self.services = list(services or [])
        self.raw_reply = raw_reply


class _RingMasterHandler(socketserver.StreamRequestHandler):
    def handle(self):
        owner = self.server.owner
        line = self.rfile.readline().decode().rstrip("\n")
        owner.requests.append(line)
        if owner.reply is None:
            return  # hang up without replying
        self.wfile.write(owner.reply)
        # Hold the connection until the client lets go of it.
        while self.request.recv(1024):
            owner.unexpected_traffic = True
        owner.disconnected.set()


class FakeRingMaster(FakeServer):
    """Records CONNECT requests, replies with ``reply`` and notes when
    the client closes its lease."""

    handler_class = _RingMasterHandler

    def __init__(self, reply: bytes | None = b"OK\n"):
        super().__init__()
        self.reply = reply
        self.disconnected = threading.Event()
        self.unexpected_traffic = False


# ── Fixtures ──────────────────────────────────────────────────────────────────

@pytest.fixture()
def ring_path(tmp_path):
    """Path of a freshly created (and unmapped) ring buffer file."""
    path = str(tmp_path / RING_NAME)
    close_ring(create_ring(path, RING_DATA_SIZE, RING_MAX_CONSUMERS))
    yield path
    remove_ring(path)


@pytest.fixture()
def ringmaster():
    server = FakeRingMaster().start()
    yield server
    server.stop()


@pytest.fixture()
def portmanager(ringmaster):
    """Port manager advertising the fake RingMaster (after an unrelated
    service, so filtering is exercised)."""
    server = FakePortManager(
        services=[
            (unused_port(), "StateManager", "daq"),
            (ringmaster.port, "RingMaster", "daq"),
        ]
    ).start()
    yield server
    server.stop()
