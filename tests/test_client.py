"""
Tests for ringmaster_client.client — discover, attach, register.
"""

import io
import os
import tempfile
import threading
import pytest

from ringmaster_client import attach_consumer, attach_producer
from ringmaster_client.core import attach_ring, close_ring, get_consumer_table
from ringmaster_client.discovery import Endpoint
from ringmaster_client.ring import RingConsumer, RingProducer
from ringmaster_client.roles import Consumer, Producer
from ringmaster_client.exceptions import (
    DiscoveryError,
    ForwardingFatalError,
    NoRegistrar,
    RegistrarUnreachable,
    RegistrationRejected,
    RingAttachError,
    RingError,
    RingSlotLostError,
)

from conftest import FakePortManager, FakeRingMaster, unused_port, wait_for


def _attach(path, portmanager, **kwargs):
    return attach_consumer(path, portmanager.port, host="127.0.0.1", timeout=2.0, **kwargs)


def _consumer_pids(path):
    seg = attach_ring(path)
    try:
        return [int(pid) for pid in get_consumer_table(seg)[:, 0] if pid]
    finally:
        close_ring(seg)


# ── Success ───────────────────────────────────────────────────────────────────

def test_consumer_registers_slot(ring_path, portmanager, ringmaster):
    with _attach(ring_path, portmanager, pid=4321) as client:
        assert client.role == Consumer(0)
        assert client.name == "events"
        assert portmanager.requests == ["LIST"]
        assert ringmaster.requests == ["CONNECT events consumer.0 4321"]
        assert _consumer_pids(ring_path) == [4321]

    assert client.ring.closed
    assert client.lease.closed
    assert ringmaster.disconnected.wait(2.0)
    assert _consumer_pids(ring_path) == []


def test_second_consumer_gets_next_slot(ring_path, portmanager, ringmaster):
    with _attach(ring_path, portmanager) as first:
        with _attach(ring_path, portmanager) as second:
            assert first.role == Consumer(0)
            assert second.role == Consumer(1)
    pid = os.getpid()
    assert ringmaster.requests == [
        f"CONNECT events consumer.0 {pid}",
        f"CONNECT events consumer.1 {pid}",
    ]


def test_producer_registers(ring_path, portmanager, ringmaster):
    with attach_producer(
        ring_path, portmanager.port, host="127.0.0.1", pid=77, timeout=2.0
    ) as client:
        assert client.role == Producer()
        assert client.ring.stats()["producer_pid"] == 77
    assert ringmaster.requests == ["CONNECT events producer 77"]


def test_injected_directory(ring_path, ringmaster):
    class OneEntry:
        def find_by_service(self, name):
            assert name == "RingMaster"
            return [Endpoint("127.0.0.1", ringmaster.port)]

    with attach_consumer(ring_path, directory=OneEntry(), pid=5) as client:
        assert client.role == Consumer(0)
    assert ringmaster.requests == ["CONNECT events consumer.0 5"]


# ── Failures at each stage ────────────────────────────────────────────────────

def test_port_manager_unreachable(ring_path, ringmaster):
    with pytest.raises(DiscoveryError) as info:
        attach_consumer(ring_path, unused_port(), host="127.0.0.1", timeout=1.0)
    assert info.value.kind == "discovery"
    assert ringmaster.requests == []
    assert _consumer_pids(ring_path) == []


def test_no_registrar_listed(ring_path, ringmaster):
    server = FakePortManager(services=[(unused_port(), "StateManager", "daq")]).start()
    try:
        with pytest.raises(NoRegistrar):
            _attach(ring_path, server)
    finally:
        server.stop()
    assert ringmaster.requests == []
    assert _consumer_pids(ring_path) == []


def test_missing_ring(tmp_path, portmanager, ringmaster):
    with pytest.raises(RingAttachError) as info:
        _attach(str(tmp_path / "absent"), portmanager)
    assert info.value.kind == "ring-attach"
    assert ringmaster.requests == []


def test_rejection_detaches_ring(ring_path):
    ringmaster = FakeRingMaster(reply=b"ERROR not allowed\n").start()
    server = FakePortManager(services=[(ringmaster.port, "RingMaster", "daq")]).start()
    try:
        with pytest.raises(RegistrationRejected) as info:
            _attach(ring_path, server)
    finally:
        server.stop()
        ringmaster.stop()
    assert info.value.detail == "ERROR not allowed"
    assert _consumer_pids(ring_path) == []


def test_registrar_unreachable_detaches_producer(ring_path):
    server = FakePortManager(services=[(unused_port(), "RingMaster", "daq")]).start()
    try:
        with pytest.raises(RegistrarUnreachable):
            attach_producer(ring_path, server.port, host="127.0.0.1", timeout=1.0)
    finally:
        server.stop()
    with RingProducer(ring_path) as prod:
        assert not prod.closed


# ── Streaming ─────────────────────────────────────────────────────────────────

def test_stream_to_needs_consumer(ring_path, portmanager):
    with attach_producer(ring_path, portmanager.port, host="127.0.0.1", timeout=2.0) as client:
        with pytest.raises(TypeError):
            client.stream_to(io.BytesIO())


def test_stream_to_until_stopped(ring_path, portmanager):
    sink = io.BytesIO()
    stop = threading.Event()

    with _attach(ring_path, portmanager) as client:
        worker = threading.Thread(
            target=client.stream_to, args=(sink,), kwargs={"stop": stop}, daemon=True
        )
        worker.start()
        with RingProducer(ring_path) as prod:
            prod.put(b"first ")
            prod.put(b"second")
        wait_for(lambda: sink.getvalue() == b"first second")
        stop.set()
        worker.join(timeout=2.0)

    assert not worker.is_alive()
    assert sink.getvalue() == b"first second"


def test_lost_slot_ends_streaming(ring_path, portmanager):
    with _attach(ring_path, portmanager) as client:
        seg = attach_ring(ring_path)
        table = get_consumer_table(seg)
        table[client.role.slot, 0] = 0
        del table
        close_ring(seg)

        with pytest.raises(ForwardingFatalError) as info:
            client.stream_to(io.BytesIO())
        assert isinstance(info.value.__cause__, RingSlotLostError)


# ── Cleanup paths ─────────────────────────────────────────────────────────────

def test_unusable_lock_directory_is_attach_error(
    ring_path, tmp_path, portmanager, ringmaster, monkeypatch
):
    monkeypatch.setattr(tempfile, "tempdir", str(tmp_path / "gone"))
    with pytest.raises(RingAttachError):
        _attach(ring_path, portmanager)
    monkeypatch.undo()
    assert ringmaster.requests == []
    assert _consumer_pids(ring_path) == []


def test_close_releases_lease_when_detach_fails(
    ring_path, portmanager, ringmaster, monkeypatch
):
    client = _attach(ring_path, portmanager)
    real_detach = client.ring.detach

    def broken_detach():
        raise RingError("unmap failed")

    monkeypatch.setattr(client.ring, "detach", broken_detach)
    with pytest.raises(RingError, match="unmap failed"):
        client.close()
    assert client.lease.closed
    assert ringmaster.disconnected.wait(2.0)
    real_detach()


def test_registration_error_survives_failed_detach(ring_path, monkeypatch):
    def broken_detach(self):
        raise RingError("unmap failed")

    monkeypatch.setattr(RingConsumer, "detach", broken_detach)
    ringmaster = FakeRingMaster(reply=b"ERROR not allowed\n").start()
    server = FakePortManager(services=[(ringmaster.port, "RingMaster", "daq")]).start()
    try:
        with pytest.raises(RegistrationRejected) as info:
            _attach(ring_path, server)
    finally:
        server.stop()
        ringmaster.stop()
    assert info.value.detail == "ERROR not allowed"
