"""Tests for self-intersection detection and polygon division."""

import numpy as np
import pytest

from active_contours.geometry import BoundaryConfig, Polygon, TopologyStatus
from active_contours.topology import (
    SplitDecision,
    check_loop_or_division,
    find_self_intersection,
    polygon_area,
    split_arcs
)

from .conftest import densify


@pytest.fixture
def figure_eight():
    """Two diamonds (areas 2 and 2.1) whose tips nearly touch at the origin."""
    return np.array([
        [0.0, 0.0], [1.0, 1.0], [2.0, 0.0], [1.0, -1.0],
        [0.1, 0.0], [-1.0, 1.0], [-2.0, 0.0], [-1.0, -1.0]
    ])


def test_dumbbell_splits_into_two_lobes(dumbbell):
    config = BoundaryConfig(resolution=1.0, min_area=10.0)
    polygon = Polygon.from_outline(dumbbell, config)
    n_before = polygon.n_points
    assert n_before == 88

    result = polygon.resample()

    assert result.status is TopologyStatus.SPLIT
    assert result.parent is polygon
    assert len(result.children) == 2
    assert sum(child.n_points for child in result.children) == n_before
    for child in result.children:
        assert child.dimension(2) > 10.0
        assert child.config is config
        assert child.window is not polygon.window
        assert len(child.window) == 0


def test_dumbbell_cut_location(dumbbell):
    report = check_loop_or_division(dumbbell, 1.0, 10.0)

    assert report.decision is SplitDecision.SPLIT
    assert report.cut == (15, 63)
    np.testing.assert_allclose(report.points[15], [10.0, 4.8])
    np.testing.assert_allclose(report.points[63], [10.0, 5.2])


@pytest.mark.parametrize("min_area, decision", [
    (1.0, SplitDecision.SPLIT),
    (2.05, SplitDecision.KEEP_SECOND),
    (10.0, SplitDecision.VANISH),
])
def test_area_decision_table(figure_eight, min_area, decision):
    report = check_loop_or_division(figure_eight, 0.5, min_area)

    assert report.cut == (0, 4)
    assert report.decision is decision
    assert polygon_area(report.first) == pytest.approx(2.0)
    assert polygon_area(report.second) == pytest.approx(2.1)


def test_small_second_loop_is_discarded():
    points = np.array([
        [0.0, 0.0], [1.0, 1.0], [2.1, 0.0], [1.0, -1.0],
        [-0.1, 0.0], [-1.0, 1.0], [-2.0, 0.0], [-1.0, -1.0]
    ])
    report = check_loop_or_division(points, 0.5, 2.0)

    assert report.decision is SplitDecision.KEEP_FIRST
    assert polygon_area(report.first) == pytest.approx(2.1)


def test_spike_is_removed_as_noise(square_10):
    outline = densify(square_10, 1.0)
    # ... (4, 0), (5, 0), spike (5, 3), (5.3, 0), (6, 0) ...
    outline = np.insert(outline, 6, [[5.0, 3.0], [5.3, 0.0]], axis=0)

    remaining, cut = find_self_intersection(outline, 1.0)

    assert cut is None
    assert len(remaining) == len(outline) - 1
    assert not np.any(np.all(np.isclose(remaining, [5.0, 3.0]), axis=1))


def test_no_intersection_leaves_points(square_10):
    outline = densify(square_10, 1.0)
    report = check_loop_or_division(outline, 1.0, 10.0)

    assert report.decision is SplitDecision.NONE
    assert report.cut is None
    np.testing.assert_array_equal(report.points, outline)


def test_split_arcs_partition_points():
    points = np.arange(20, dtype=np.float64).reshape(10, 2)
    first, second = split_arcs(points, 2, 6)

    assert len(first) + len(second) == 10
    np.testing.assert_array_equal(first, points[2:6])
    np.testing.assert_array_equal(second[:4], points[6:])
    np.testing.assert_array_equal(second[4:], points[:2])


def test_polygon_area_needs_three_points():
    assert polygon_area(np.array([[0.0, 0.0], [1.0, 1.0]])) == 0.0
