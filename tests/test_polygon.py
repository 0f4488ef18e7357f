"""Tests for the 2D polygon boundary."""

import numpy as np
import pytest

from active_contours.errors import ShapeSourceError, UnsupportedDimensionError
from active_contours.geometry import BoundaryConfig, Polygon, TopologyStatus

from .conftest import densify


def test_unit_square_resample_keeps_four_unit_edges(unit_square):
    config = BoundaryConfig(resolution=1.0, min_area=0.5, min_factor=0.7, max_factor=1.4)
    square = Polygon.from_outline(unit_square, config)

    result = square.resample(0.7, 1.4)

    assert result.status is TopologyStatus.UNCHANGED
    assert result.replacements == [square]
    assert square.n_points == 4
    np.testing.assert_allclose(square.edge_lengths(), 1.0, atol=1e-9)
    assert square.dimension(2) == pytest.approx(1.0)
    assert square.dimension(1) == pytest.approx(4.0)
    assert square.dimension(0) == 4
    assert square.area == square.dimension(2)
    assert square.perimeter == square.dimension(1)


def test_resample_splits_long_edges_into_range():
    config = BoundaryConfig(resolution=1.0, min_area=1.0)
    rectangle = Polygon.from_rectangle((0, 0), (20, 12), config)

    rectangle.resample(0.7, 1.4)

    lengths = rectangle.edge_lengths()
    assert rectangle.n_points == 64
    assert lengths.min() >= 0.7 - 1e-9
    assert lengths.max() <= 1.4 + 1e-9
    assert rectangle.dimension(2) == pytest.approx(240.0)


def test_resample_collapses_short_edges(square_10):
    outline = densify(square_10, 1.0)
    outline = np.insert(outline, 4, [3.3, 0.0], axis=0)
    config = BoundaryConfig(resolution=1.0, min_area=1.0)
    polygon = Polygon.from_outline(outline, config)
    assert polygon.n_points == 41

    polygon.resample()

    assert polygon.n_points == 40
    assert polygon.edge_lengths().min() >= 0.6


def test_area_is_invariant_to_starting_point(dumbbell):
    config = BoundaryConfig(resolution=1.0)
    reference = Polygon.from_outline(dumbbell, config).dimension(2)
    for shift in (1, 17, 50):
        rolled = Polygon.from_outline(np.roll(dumbbell, shift, axis=0), config)
        assert rolled.dimension(2) == pytest.approx(reference)
    reversed_polygon = Polygon.from_outline(dumbbell[::-1], config)
    assert reversed_polygon.dimension(2) == pytest.approx(reference)
    assert reference > 0


def test_small_polygon_vanishes():
    config = BoundaryConfig(resolution=1.0, min_area=10.0)
    small = Polygon.from_rectangle((0, 0), (2, 2), config)

    result = small.resample()

    assert result.status is TopologyStatus.VANISHED
    assert result.changed
    assert result.replacements == []


def test_unsupported_dimension_raises(unit_square):
    square = Polygon.from_outline(unit_square, BoundaryConfig())
    with pytest.raises(UnsupportedDimensionError):
        square.dimension(3)
    with pytest.raises(ValueError):
        square.dimension(-1)


def test_normals_point_outward_for_both_orientations(square_10):
    config = BoundaryConfig()
    for outline in (square_10, square_10[::-1]):
        polygon = Polygon.from_outline(outline, config)
        center = polygon.mass_center()
        radial = polygon.points - center
        assert np.all(np.einsum('ij,ij->i', polygon.normals, radial) > 0)
        np.testing.assert_allclose(np.linalg.norm(polygon.normals, axis=1), 1.0)


def test_penetration_depth(square_10):
    square = Polygon.from_outline(square_10, BoundaryConfig())

    assert square.penetration_depth(np.array([5.0, 5.0, 0.0])) == pytest.approx(5.0)
    assert square.penetration_depth(np.array([2.0, 5.0, 0.0])) == pytest.approx(2.0)
    assert square.penetration_depth(np.array([12.0, 5.0, 0.0])) == 0.0
    assert square.contains_point(np.array([9.0, 5.0, 0.0]))
    assert not square.contains_point(np.array([-1.0, 5.0, 0.0]))


def test_bounding_sphere_is_cached_until_move(square_10):
    square = Polygon.from_outline(square_10, BoundaryConfig())
    sphere = square.bounding_sphere()
    np.testing.assert_allclose(sphere.center, [5.0, 5.0, 0.0])
    assert sphere.radius == pytest.approx(np.sqrt(50.0))
    assert square.bounding_sphere() is sphere

    square.add_driving_force(np.tile([0.05, 0.0, 0.0], (4, 1)))
    square.move()
    assert square.bounding_sphere() is not sphere
    assert square.mass_center()[0] == pytest.approx(5.05)


def test_to_mask_fills_interior():
    square = Polygon.from_outline([[2, 2], [6, 2], [6, 6], [2, 6]], BoundaryConfig())
    mask = square.to_mask((10, 10))

    assert mask.dtype == bool
    assert mask.sum() == 25
    assert mask[4, 4]
    assert not mask[0, 0]


def test_clone_shares_config_with_fresh_window(square_10):
    config = BoundaryConfig()
    square = Polygon.from_outline(square_10, config)
    square.window.push(1.0)

    copy = square.clone()

    assert copy.config is config
    assert len(copy.window) == 0
    np.testing.assert_array_equal(copy.points, square.points)
    copy.add_driving_force(np.ones((4, 3)) * 0.01)
    copy.move()
    assert not np.array_equal(copy.points, square.points)


@pytest.mark.parametrize("outline", [None, [[0, 0], [1, 1]], [[0, 0], [0, 0], [0, 0], [0, 0]], [1, 2, 3]])
def test_malformed_outlines_are_rejected(outline):
    with pytest.raises(ShapeSourceError):
        Polygon.from_outline(outline, BoundaryConfig())


def test_closing_point_is_dropped(unit_square):
    closed = np.vstack([unit_square, unit_square[:1]])
    polygon = Polygon.from_outline(closed, BoundaryConfig())
    assert polygon.n_points == 4


def test_ellipse_outline():
    config = BoundaryConfig(resolution=2.0)
    ellipse = Polygon.from_ellipse((50, 50), (20, 12), config)

    assert ellipse.dimension(2) == pytest.approx(np.pi * 20 * 12, rel=0.02)
    ellipse.resample()
    lengths = ellipse.edge_lengths()
    assert lengths.min() >= 2.0 * 0.6 - 1e-9
    assert lengths.max() <= 2.0 * 1.4 + 1e-9


def test_invalid_resample_factors(unit_square):
    square = Polygon.from_outline(unit_square, BoundaryConfig(min_area=0.5))
    with pytest.raises(ValueError):
        square.resample(0.8, 1.4)
    with pytest.raises(ValueError):
        BoundaryConfig(min_factor=1.2, max_factor=1.4)
