import numpy as np
import pytest

from bamvarqc.positions import PositionCounts, grown_capacity


def test_grown_capacity_doubles_or_jumps():
    assert grown_capacity(4, 3) == 4
    assert grown_capacity(4, 4) == 4
    assert grown_capacity(4, 5) == 8
    assert grown_capacity(4, 20) == 20


def test_reserve_never_shrinks_and_keeps_counts():
    pc = PositionCounts(4)
    pc.increment(2, 5)
    pc.reserve(5)
    assert pc.capacity == 8
    pc.reserve(3)
    assert pc.capacity == 8
    assert pc[2] == 5


def test_increment_past_capacity_grows():
    pc = PositionCounts(2)
    pc.increment(9)
    assert pc.capacity == 10
    assert pc[9] == 1
    assert pc.total() == 1


def test_increment_range():
    pc = PositionCounts(3)
    pc.increment_range(1, 5)
    assert list(pc.values(6)) == [0, 1, 1, 1, 1, 0]
    with pytest.raises(IndexError):
        pc.increment_range(-1, 2)


def test_reads_beyond_capacity_are_zero():
    pc = PositionCounts(3)
    assert pc[100] == 0
    assert not pc.any()
    with pytest.raises(IndexError):
        pc[-1]


def test_values_pad_and_truncate():
    pc = PositionCounts(4)
    pc.increment(0)
    pc.increment(3)
    assert list(pc.values(2)) == [1, 0]
    assert list(pc.values(6)) == [1, 0, 0, 1, 0, 0]
    # copies, not views
    pc.values()[0] = 99
    assert pc[0] == 1


def test_set_values_clears_tail():
    pc = PositionCounts(5)
    pc.increment_range(0, 5)
    pc.set_values(np.array([7, 8], dtype=np.int64))
    assert list(pc.values()) == [7, 8, 0, 0, 0]


def test_capacity_must_be_positive():
    with pytest.raises(ValueError):
        PositionCounts(0)
