"""Tests for the convergence window."""

import pytest

from active_contours.geometry import SlidingWindow


def test_window_keeps_last_values():
    window = SlidingWindow(3)
    for value in (1.0, 2.0, 3.0, 4.0):
        window.push(value)

    assert len(window) == 3
    assert window.is_full
    assert list(window.values) == [2.0, 3.0, 4.0]
    assert window.mean() == pytest.approx(3.0)
    assert window.variance() == pytest.approx(2.0 / 3.0)


def test_converged_only_when_full_and_stable():
    window = SlidingWindow(4)
    for _ in range(3):
        window.push(100.0)
    assert not window.is_converged(0.01)

    window.push(100.0)
    assert window.is_converged(0.01)

    window.push(150.0)
    assert not window.is_converged(0.01)


def test_coefficient_of_variation_undefined_for_zero_mean():
    window = SlidingWindow(2)
    assert window.coefficient_of_variation() is None
    window.push(0.0)
    window.push(0.0)
    assert window.coefficient_of_variation() is None
    assert not window.is_converged(1.0)


def test_clear_and_invalid_size():
    window = SlidingWindow(2)
    window.push(1.0)
    window.clear()
    assert len(window) == 0

    with pytest.raises(ValueError):
        SlidingWindow(0)
