"""Shared fixtures: canonical shapes used across the test modules."""

import numpy as np
import pytest

from active_contours.geometry import BoundaryConfig, Surface


def densify(corners, spacing=1.0):
    """Insert points along each side of a closed outline, ceil(length / spacing) segments per side."""
    corners = np.asarray(corners, dtype=np.float64)
    points = []
    for start, end in zip(corners, np.roll(corners, -1, axis=0)):
        segments = int(np.ceil(np.linalg.norm(end - start) / spacing))
        for k in range(segments):
            points.append(start + (end - start) * k / segments)
    return np.array(points)


@pytest.fixture
def unit_square():
    return np.array([[0.0, 0.0], [1.0, 0.0], [1.0, 1.0], [0.0, 1.0]])


@pytest.fixture
def square_10():
    return np.array([[0.0, 0.0], [10.0, 0.0], [10.0, 10.0], [0.0, 10.0]])


@pytest.fixture
def dumbbell():
    """Two 10x10 lobes joined by a neck 0.4 wide, sampled every ~1 unit (88 points)."""
    corners = [
        (0, 0), (10, 0), (10, 4.8), (14, 4.8), (14, 0), (24, 0),
        (24, 10), (14, 10), (14, 5.2), (10, 5.2), (10, 10), (0, 10)
    ]
    return densify(corners, 1.0)


def octahedron_mesh(radius=1.0, center=(0.0, 0.0, 0.0)):
    vertices = np.array([
        [radius, 0, 0], [-radius, 0, 0],
        [0, radius, 0], [0, -radius, 0],
        [0, 0, radius], [0, 0, -radius]
    ], dtype=np.float64) + np.asarray(center, dtype=np.float64)
    faces = np.array([
        [0, 2, 4], [2, 1, 4], [1, 3, 4], [3, 0, 4],
        [2, 0, 5], [1, 2, 5], [3, 1, 5], [0, 3, 5]
    ])
    return vertices, faces


@pytest.fixture
def octahedron():
    """Octahedron of radius 2 whose edges (2.83) already fit resolution 2.5."""
    vertices, faces = octahedron_mesh(2.0)
    return Surface.from_mesh(vertices, faces, BoundaryConfig(resolution=2.5, min_area=1.0))
