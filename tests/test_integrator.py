"""Tests for bounded-displacement integration."""

import numpy as np
import pytest

from active_contours.forces import cap_displacement, integrate
from active_contours.geometry import BoundaryConfig, Polygon


def test_cap_displacement():
    forces = np.array([[100.0, 0.0, 0.0], [0.01, 0.0, 0.0], [np.nan, 1.0, 0.0], [0.0, -3.0, 4.0]])
    capped = cap_displacement(forces, 0.1)

    np.testing.assert_allclose(capped[0], [0.1, 0.0, 0.0])
    np.testing.assert_allclose(capped[1], [0.01, 0.0, 0.0])
    np.testing.assert_allclose(capped[2], 0.0)
    np.testing.assert_allclose(capped[3], [0.0, -0.06, 0.08])


def test_integrate_resets_buffers():
    positions = np.zeros((3, 3))
    driving = np.ones((3, 3))
    feedback = np.ones((3, 3))

    displacements = integrate(positions, driving, feedback, np.array([0, 2]), max_displacement=10.0)

    np.testing.assert_allclose(positions[[0, 2]], 2.0)
    np.testing.assert_allclose(positions[1], 0.0)
    np.testing.assert_allclose(driving[[0, 2]], 0.0)
    np.testing.assert_allclose(feedback[[0, 2]], 0.0)
    np.testing.assert_allclose(driving[1], 1.0)
    assert displacements.shape == (2, 3)


def test_integrate_driving_mask():
    positions = np.zeros((2, 3))
    driving = np.array([[1.0, 0.0, 0.0], [1.0, 0.0, 0.0]])
    feedback = np.array([[0.0, 1.0, 0.0], [0.0, 1.0, 0.0]])

    integrate(positions, driving, feedback, np.array([0, 1]), 10.0, driving_mask=[True, False])

    np.testing.assert_allclose(positions, [[1.0, 1.0, 0.0], [0.0, 1.0, 0.0]])


def test_polygon_move_is_capped(square_10):
    config = BoundaryConfig(resolution=2.0, max_displacement_factor=0.1)
    polygon = Polygon.from_outline(square_10, config)
    before = polygon.points

    polygon.add_driving_force(np.full((4, 3), 1e12) * [1, -1, 0])
    polygon.compute_internal_forces(5.0)
    displacements = polygon.move()

    assert np.all(np.linalg.norm(polygon.points - before, axis=1) <= 0.2 + 1e-12)
    np.testing.assert_allclose(np.linalg.norm(displacements, axis=1), 0.2)
    np.testing.assert_allclose(polygon.driving_forces, 0.0)
    np.testing.assert_allclose(polygon.feedback_forces, 0.0)
    assert len(polygon.window) == 1
    assert polygon.window.values[0] == pytest.approx(polygon.dimension(1))


def test_polygon_move_respects_field(square_10):
    polygon = Polygon.from_outline(square_10, BoundaryConfig())
    field = np.zeros((20, 20), dtype=bool)
    field[:5, :5] = True

    polygon.add_driving_force(np.tile([0.05, 0.0, 0.0], (4, 1)))
    polygon.move(field=field)

    start = np.column_stack([square_10, np.zeros(4)])
    moved = np.linalg.norm(polygon.points - start, axis=1) > 0
    assert moved.tolist() == [True, False, False, False]
