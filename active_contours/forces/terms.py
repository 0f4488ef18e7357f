"""
Force kernels shared by the polygon and surface boundaries.

Every kernel is a pure function of point/normal arrays and returns the force
(or scale factor) to apply; the boundaries own the buffers and decide where
the result is accumulated.
"""

from typing import Tuple

import numpy as np

from .sampling import sample_at, sample_gradient


def polygon_laplacian(points: np.ndarray, weight: float) -> np.ndarray:
    """
    Internal (smoothing) force of a closed polyline.

    ``weight * (prev + next - 2 * curr)`` at every point, indices wrapping.

    Args:
        points: Ordered cyclic points (N, 3)
        weight: Term weight

    Returns:
        forces: (N, 3)
    """
    points = np.asarray(points, dtype=np.float64)
    return weight * (np.roll(points, 1, axis=0) + np.roll(points, -1, axis=0) - 2.0 * points)


def edge_force(field: np.ndarray, coords: np.ndarray, weight: float, dim: int) -> np.ndarray:
    """Image-edge attraction: ``weight * gradient(point)``."""
    return weight * sample_gradient(field, coords, dim)


def region_magnitude(
    values: np.ndarray,
    weight: float,
    resolution: float,
    c_in: float,
    c_out: float,
    sensitivity: float = 1.0
) -> np.ndarray:
    """
    Chan-Vese style region competition magnitude.

    ``weight * resolution * (s * (val - c_out)^2 - (val - c_in)^2 / s)``.
    Positive values push the point outward. A sensitivity of 0 is read as 1;
    lower than 1 suits high SNR images and vice-versa.

    Args:
        values: Image samples at the points (N,)
        weight: Term weight
        resolution: Boundary resolution
        c_in: Mean intensity inside the boundary
        c_out: Mean intensity outside the boundary
        sensitivity: Balance between inside and outside terms

    Returns:
        magnitudes: (N,)
    """
    if sensitivity == 0:
        sensitivity = 1.0
    values = np.asarray(values, dtype=np.float64)
    in_diff = values - c_in
    out_diff = values - c_out
    magnitudes = weight * resolution * (
        sensitivity * out_diff * out_diff - in_diff * in_diff / sensitivity
    )
    magnitudes[~np.isfinite(magnitudes)] = 0.0
    return magnitudes


def region_force(
    image: np.ndarray,
    coords: np.ndarray,
    normals: np.ndarray,
    weight: float,
    resolution: float,
    c_in: float,
    c_out: float,
    sensitivity: float = 1.0
) -> np.ndarray:
    """
    Region force along the outward normals.

    Points where sampling fails (outside the image, non-finite coordinates)
    contribute nothing; the other points are unaffected.
    """
    values = sample_at(image, coords)
    magnitudes = region_magnitude(values, weight, resolution, c_in, c_out, sensitivity)
    forces = magnitudes[:, None] * np.asarray(normals, dtype=np.float64)
    forces[~np.isfinite(forces)] = 0.0
    return forces


def feedback_force(
    coords: np.ndarray,
    normals: np.ndarray,
    target,
    gain: float = 2.0
) -> Tuple[np.ndarray, int]:
    """
    Collision response against another boundary.

    Only points closer to the target's centre than its bounding radius are
    tested; a point found inside the target at depth ``d`` is pushed back by
    ``-gain * d`` along its own outward normal.

    Args:
        coords: Points of the moving boundary (N, 3)
        normals: Their outward unit normals (N, 3)
        target: Any boundary exposing ``bounding_sphere()`` and ``penetration_depth()``
        gain: Force per unit of penetration depth

    Returns:
        (forces, tests): forces (N, 3) and the number of containment tests run
    """
    coords = np.asarray(coords, dtype=np.float64)
    forces = np.zeros_like(coords)
    sphere = target.bounding_sphere()

    distances = np.linalg.norm(coords - sphere.center, axis=1)
    candidates = np.flatnonzero(distances < sphere.radius)

    for index in candidates:
        depth = target.penetration_depth(coords[index], sphere.center)
        if depth > 0:
            forces[index] = -gain * depth * normals[index]

    return forces, int(candidates.size)


def balloon_force(normals: np.ndarray, weight: float) -> np.ndarray:
    """Uniform inflation (weight > 0) or deflation (weight < 0) along the normals."""
    return weight * np.asarray(normals, dtype=np.float64)


def volume_constraint_scale(
    driving: np.ndarray,
    normals: np.ndarray,
    volume: float,
    target_volume: float
) -> np.ndarray:
    """
    Per-point damping factor that keeps a surface close to a target volume.

    Where the driving force would move the volume further from the target
    (growing while too large, shrinking while too small), the force is
    divided by ``1 + |target - volume|``; elsewhere the factor is 1.
    """
    volume_diff = target_volume - volume
    normal_component = np.einsum('ij,ij->i', driving, normals)
    scale = np.ones(len(driving), dtype=np.float64)
    scale[normal_component * volume_diff < 0] = 1.0 / (1.0 + abs(volume_diff))
    return scale


def axis_constraint_scale(normals: np.ndarray, axis: np.ndarray, weight: float) -> np.ndarray:
    """
    Per-point damping factor ``max(|normal . axis|, 1 - weight)``.

    ``axis`` is normalised here; a null axis leaves forces untouched.
    """
    axis = np.asarray(axis, dtype=np.float64)
    length = np.linalg.norm(axis)
    if length == 0:
        return np.ones(len(normals), dtype=np.float64)
    colinearity = np.abs(np.asarray(normals, dtype=np.float64) @ (axis / length))
    return np.maximum(colinearity, 1.0 - weight)
