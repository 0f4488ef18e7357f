"""
Image sampling at real-valued coordinates.

Points are stored as (x, y, z) while images are indexed (row, column) in 2D
and (slice, row, column) in 3D, so coordinates are reversed before being
handed to ``scipy.ndimage.map_coordinates``. Anything outside the image, or
any non-finite coordinate, samples as zero.
"""

import numpy as np
from scipy import ndimage


def sample_at(image: np.ndarray, coords: np.ndarray) -> np.ndarray:
    """
    Linearly interpolate ``image`` at many points.

    Bilinear for a 2D image, trilinear for a 3D image. Only the first
    ``image.ndim`` columns of ``coords`` are used.

    Args:
        image: Scalar image, shape (H, W) or (D, H, W)
        coords: Point coordinates in (x, y[, z]) order, shape (N, >= image.ndim)

    Returns:
        values: Interpolated values, shape (N,). Zero outside the image.
    """
    image = np.asarray(image, dtype=np.float64)
    coords = np.atleast_2d(np.asarray(coords, dtype=np.float64))
    n = coords.shape[0]
    values = np.zeros(n, dtype=np.float64)
    if n == 0:
        return values

    if coords.shape[1] < image.ndim:
        raise ValueError(
            f"Coordinates have {coords.shape[1]} components, "
            f"image has {image.ndim} dimensions"
        )

    # (x, y, z) -> (z, y, x)
    idx = coords[:, :image.ndim][:, ::-1].T
    upper = (np.asarray(image.shape, dtype=np.float64) - 1)[:, None]

    with np.errstate(invalid='ignore'):
        inside = np.all(np.isfinite(idx), axis=0)
        inside &= np.all((idx >= 0) & (idx <= upper), axis=0)

    if inside.any():
        values[inside] = ndimage.map_coordinates(
            image, idx[:, inside], order=1, mode='nearest'
        )

    values[~np.isfinite(values)] = 0.0
    return values


def sample_bilinear(image: np.ndarray, x: float, y: float) -> float:
    """Bilinear sample of a 2D image at (x, y); 0 outside the image."""
    return float(sample_at(image, np.array([[x, y]]))[0])


def sample_trilinear(image: np.ndarray, x: float, y: float, z: float) -> float:
    """Trilinear sample of a 3D image at (x, y, z); 0 outside the image."""
    return float(sample_at(image, np.array([[x, y, z]]))[0])


def sample_gradient(field: np.ndarray, coords: np.ndarray, dim: int) -> np.ndarray:
    """
    Sample a gradient vector at each point.

    Two field layouts are accepted:

    - precomputed components, shape (dim, *image_shape), ordered (gx, gy[, gz]);
      each component is interpolated directly.
    - a scalar edge map, shape image_shape; the gradient is estimated by
      central differences over half a pixel around each point.

    Args:
        field: Gradient components or scalar edge map
        coords: Point coordinates (N, 3)
        dim: Spatial dimension of the boundary (2 or 3)

    Returns:
        gradients: Array (N, 3), zero-padded beyond ``dim``
    """
    field = np.asarray(field, dtype=np.float64)
    coords = np.atleast_2d(np.asarray(coords, dtype=np.float64))
    gradients = np.zeros((coords.shape[0], 3), dtype=np.float64)

    if field.ndim == dim + 1:
        if field.shape[0] != dim:
            raise ValueError(
                f"Gradient field must have {dim} components, got {field.shape[0]}"
            )
        for axis in range(dim):
            gradients[:, axis] = sample_at(field[axis], coords)
    elif field.ndim == dim:
        for axis in range(dim):
            offset = np.zeros(3)
            offset[axis] = 0.5
            gradients[:, axis] = (
                sample_at(field, coords + offset) - sample_at(field, coords - offset)
            )
    else:
        raise ValueError(
            f"Edge field of shape {field.shape} does not match a {dim}D boundary"
        )
    return gradients
