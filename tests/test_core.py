"""
Tests for ringmaster_client.core — ring buffer file lifecycle.
"""

import os
import pytest

from ringmaster_client.core import (
    create_ring,
    attach_ring,
    close_ring,
    remove_ring,
    list_rings,
    is_ring,
    get_header,
    get_consumer_table,
    ring_size,
    data_offset,
    MAGIC,
    VERSION,
    HEADER_SIZE,
    CONSUMER_ENTRY_SIZE,
    IDX_DATA_SIZE,
    IDX_MAX_CONSUMERS,
    IDX_PRODUCER_PID,
    IDX_PUT_COUNT,
)
from ringmaster_client.exceptions import RingError


# ── Helpers ───────────────────────────────────────────────────────────────────

_DATA_SIZE = 1024
_MAX_CONSUMERS = 4


@pytest.fixture()
def path(tmp_path):
    return str(tmp_path / "core_ring")


# ── Tests ─────────────────────────────────────────────────────────────────────

def test_ring_size():
    size = ring_size(_DATA_SIZE, _MAX_CONSUMERS)
    assert size == HEADER_SIZE + _MAX_CONSUMERS * CONSUMER_ENTRY_SIZE + _DATA_SIZE
    assert data_offset(_MAX_CONSUMERS) == size - _DATA_SIZE


def test_create_and_header(path):
    seg = create_ring(path, _DATA_SIZE, _MAX_CONSUMERS)
    try:
        hdr = get_header(seg)
        assert hdr[0] == MAGIC
        assert hdr[1] == VERSION
        assert int(hdr[IDX_DATA_SIZE]) == _DATA_SIZE
        assert int(hdr[IDX_MAX_CONSUMERS]) == _MAX_CONSUMERS
        assert int(hdr[IDX_PRODUCER_PID]) == 0
        assert int(hdr[IDX_PUT_COUNT]) == 0
        assert get_consumer_table(seg).shape == (_MAX_CONSUMERS, 2)
        assert not get_consumer_table(seg).any()
        del hdr
    finally:
        close_ring(seg)
    assert os.path.getsize(path) == ring_size(_DATA_SIZE, _MAX_CONSUMERS)


def test_create_existing_raises(path):
    close_ring(create_ring(path, _DATA_SIZE, _MAX_CONSUMERS))
    with pytest.raises(RingError):
        create_ring(path, _DATA_SIZE, _MAX_CONSUMERS)


def test_create_replace(path):
    close_ring(create_ring(path, _DATA_SIZE, _MAX_CONSUMERS))
    seg = create_ring(path, 2 * _DATA_SIZE, _MAX_CONSUMERS, replace=True)
    try:
        assert int(get_header(seg)[IDX_DATA_SIZE]) == 2 * _DATA_SIZE
    finally:
        close_ring(seg)


def test_create_rejects_bad_geometry(path):
    with pytest.raises(ValueError):
        create_ring(path, 0, _MAX_CONSUMERS)
    with pytest.raises(ValueError):
        create_ring(path, _DATA_SIZE, 0)


def test_attach_after_create(path):
    creator = create_ring(path, _DATA_SIZE, _MAX_CONSUMERS)
    try:
        client = attach_ring(path)
        try:
            assert client.name == "core_ring"
            assert client.path == path
        finally:
            close_ring(client)
    finally:
        close_ring(creator)


def test_attach_nonexistent_raises(path):
    with pytest.raises(RingError):
        attach_ring(path, timeout=0.05)


def test_attach_not_a_ring_raises(path):
    with open(path, "wb") as fp:
        fp.write(b"\x00" * 4096)
    with pytest.raises(RingError, match="invalid magic"):
        attach_ring(path)


def test_attach_truncated_ring_raises(path):
    close_ring(create_ring(path, _DATA_SIZE, _MAX_CONSUMERS))
    os.truncate(path, HEADER_SIZE + 8)
    with pytest.raises(RingError):
        attach_ring(path)


def test_header_writes_are_visible_across_mappings(path):
    seg_w = create_ring(path, _DATA_SIZE, _MAX_CONSUMERS)
    seg_r = attach_ring(path)
    try:
        hdr_w = get_header(seg_w)
        hdr_w[IDX_PUT_COUNT] = 5
        hdr_r = get_header(seg_r)
        assert int(hdr_r[IDX_PUT_COUNT]) == 5
        del hdr_w, hdr_r
    finally:
        close_ring(seg_r)
        close_ring(seg_w)


def test_close_twice_is_harmless(path):
    seg = create_ring(path, _DATA_SIZE, _MAX_CONSUMERS)
    close_ring(seg)
    close_ring(seg)
    assert seg.closed


def test_remove_ring(path):
    close_ring(create_ring(path, _DATA_SIZE, _MAX_CONSUMERS))
    assert remove_ring(path) is True
    assert remove_ring(path) is False
    with pytest.raises(RingError):
        attach_ring(path)


def test_list_rings(tmp_path):
    for name in ("beta", "alpha"):
        close_ring(create_ring(str(tmp_path / name), _DATA_SIZE, _MAX_CONSUMERS))
    (tmp_path / "notes.txt").write_text("not a ring")
    (tmp_path / "subdir").mkdir()

    assert list_rings(str(tmp_path)) == ["alpha", "beta"]
    assert is_ring(str(tmp_path / "alpha"))
    assert not is_ring(str(tmp_path / "notes.txt"))


def test_list_rings_missing_directory(tmp_path):
    assert list_rings(str(tmp_path / "nowhere")) == []
