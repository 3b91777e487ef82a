"""Arena allocator tests."""

from __future__ import annotations

import numpy as np
import pytest

from arena import ALIGNMENT, Arena, OutOfMemory, align


def test_align_rounds_up_to_boundary():
    assert align(0) == 0
    assert align(1) == ALIGNMENT
    assert align(8) == 8
    assert align(9) == 16


def test_allocations_are_aligned_and_monotonic():
    arena = Arena(bytearray(256))
    offsets = [arena.allocate(n) for n in (3, 8, 13, 1)]

    assert offsets == [0, 8, 16, 32]
    assert all(offset % ALIGNMENT == 0 for offset in offsets)
    assert arena.used == 40
    assert arena.remaining == 216


def test_overrun_raises_before_cursor_moves():
    arena = Arena(bytearray(64))
    arena.allocate(60)

    with pytest.raises(OutOfMemory) as excinfo:
        arena.allocate(1)

    assert excinfo.value.requested == 1
    assert excinfo.value.available == 0
    assert arena.used == 64


def test_capacity_limits_usable_region():
    buffer = bytearray(128)
    arena = Arena(buffer, capacity=32)

    with pytest.raises(OutOfMemory):
        arena.array(5)
    assert arena.array(4).size == 4

    with pytest.raises(ValueError):
        Arena(buffer, capacity=129)


def test_read_only_buffer_rejected():
    with pytest.raises(ValueError):
        Arena(bytes(16))


def test_negative_allocation_rejected():
    with pytest.raises(ValueError):
        Arena(bytearray(16)).allocate(-1)


def test_arrays_alias_the_backing_buffer():
    buffer = bytearray(64)
    arena = Arena(buffer)
    first = arena.array(2)
    second = arena.array(3)
    first[:] = [1.5, -2.0]
    second[:] = 7.0

    raw = np.frombuffer(buffer, dtype=np.float64, offset=arena.skip, count=5)
    assert raw[:5].tolist() == [1.5, -2.0, 7.0, 7.0, 7.0]
    assert not np.shares_memory(first, second)


def test_scratch_reuses_the_same_region():
    arena = Arena(bytearray(128))
    arena.array(1)
    used = arena.used

    a = arena.scratch(4)
    b = arena.scratch(4)
    assert arena.used == used
    assert np.shares_memory(a, b)

    committed = arena.array(1)
    assert np.shares_memory(committed, a)
    assert not np.shares_memory(committed, arena.scratch(4))

    with pytest.raises(OutOfMemory):
        arena.scratch(64)


def test_pending_then_commit_keeps_prefix():
    arena = Arena(bytearray(64))
    pending = arena.pending()
    assert pending.size == 8

    pending[:3] = [1.0, 2.0, 3.0]
    offset = arena.commit(3)

    assert offset == 0
    assert arena.used == 24
    assert arena.pending().size == 5


def test_record_fields_write_through():
    dtype = np.dtype([("value", np.float64), ("count", np.int64)])
    buffer = bytearray(32)
    arena = Arena(buffer)
    record = arena.record(dtype)
    record["value"] = 2.5
    record["count"] = 7

    assert arena.used == 16
    stored = np.frombuffer(buffer, dtype=dtype, count=1, offset=arena.skip)[0]
    assert stored["value"] == 2.5
    assert stored["count"] == 7


def test_reset_rewinds_cursor():
    arena = Arena(bytearray(32))
    arena.allocate(20)
    arena.reset()
    assert arena.used == 0
    assert arena.allocate(8) == 0


def _address(array: np.ndarray) -> int:
    return array.__array_interface__["data"][0]


def test_unaligned_buffer_start_is_skipped():
    backing = bytearray(256)
    buffer = memoryview(backing)[3:]
    base = _address(np.frombuffer(buffer, dtype=np.uint8))
    arena = Arena(buffer)

    assert arena.skip == -base % ALIGNMENT
    assert arena.capacity == 253 - arena.skip
    for length in (1, 3, 2):
        array = arena.array(length)
        assert _address(array) % ALIGNMENT == 0
        assert array.flags.aligned
    assert _address(arena.scratch(2)) % ALIGNMENT == 0


def test_capacity_counts_skipped_bytes():
    buffer = memoryview(bytearray(64))[1:]
    arena = Arena(buffer, capacity=40)
    assert arena.capacity == 40 - arena.skip
    with pytest.raises(OutOfMemory):
        arena.array(5)
