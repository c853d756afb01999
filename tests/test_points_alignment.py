import pytest

from meshstaking.points_alignment import PointsAlignment


def test_default_alignment_leaves_points_unchanged():
    assert PointsAlignment().align(1000) == 1000


def test_increase_reduces_points():
    alignment = PointsAlignment()
    alignment.stake_increased(2, 10)
    assert alignment.align(100) == 80


def test_decrease_adds_points():
    alignment = PointsAlignment()
    alignment.stake_decreased(3, 5)
    assert alignment.align(0) == 15


def test_increase_then_decrease_cancels_out():
    alignment = PointsAlignment()
    alignment.stake_increased(300, 1_000_000_000)
    alignment.stake_decreased(300, 1_000_000_000)
    assert alignment == PointsAlignment()
    assert alignment.align(12345) == 12345


def test_points_gained_before_stake_are_removed():
    alignment = PointsAlignment()
    alignment.stake_increased(200, 7)
    assert alignment.align(200 * 7) == 0


def test_negative_result_raises():
    alignment = PointsAlignment()
    alignment.stake_increased(10, 10)
    with pytest.raises(OverflowError):
        alignment.align(50)