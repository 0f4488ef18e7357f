"""
Preparation of the image fields consumed by the force terms.
"""

from typing import Dict, Sequence, Tuple

import numpy as np
from scipy import ndimage


def compute_gradient_field(image: np.ndarray, sigma: float = 1.0) -> np.ndarray:
    """
    Edge-attraction field of a 2D or 3D scalar image.

    The Gaussian gradient magnitude is large on edges; its own gradient
    therefore points toward the nearest edge, which is what the edge force
    follows.

    Args:
        image: Scalar image (H, W) or (D, H, W)
        sigma: Gaussian scale in pixels

    Returns:
        field: Components (ndim, *image.shape) ordered (gx, gy[, gz])

    Raises:
        ValueError: If image is not 2D or 3D, or sigma is negative
    """
    image = np.asarray(image, dtype=np.float64)
    if image.ndim not in (2, 3):
        raise ValueError(f"Image must be 2D or 3D, got shape {image.shape}")
    if sigma < 0:
        raise ValueError(f"sigma must be >= 0, got {sigma}")

    if sigma > 0:
        edges = ndimage.gaussian_gradient_magnitude(image, sigma)
    else:
        edges = np.sqrt(sum(g ** 2 for g in np.gradient(image)))

    # np.gradient returns one array per axis: (z,) y, x -> reverse to x, y (, z)
    components = np.gradient(edges)
    return np.stack(components[::-1])


def normalize_image(image: np.ndarray) -> np.ndarray:
    """Rescale intensities to [0, 1] (constant images map to 0)."""
    image = np.asarray(image, dtype=np.float64)
    lo, hi = float(image.min()), float(image.max())
    if hi - lo <= 0:
        return np.zeros_like(image)
    return (image - lo) / (hi - lo)


def compute_region_means(
    image: np.ndarray,
    boundaries: Sequence
) -> Tuple[Dict[int, float], float]:
    """
    Mean intensities inside each boundary and outside all of them.

    Args:
        image: Scalar image (H, W) or (D, H, W)
        boundaries: Boundaries exposing ``to_mask(shape)``

    Returns:
        (c_in, c_out): ``c_in`` maps ``id(boundary)`` to its inside mean;
        ``c_out`` is the mean over pixels outside every boundary
        (0 when no such pixel exists)
    """
    image = np.asarray(image, dtype=np.float64)
    union = np.zeros(image.shape, dtype=bool)
    c_in = {}

    for boundary in boundaries:
        mask = boundary.to_mask(image.shape)
        union |= mask
        c_in[id(boundary)] = float(image[mask].mean()) if mask.any() else 0.0

    outside = ~union
    c_out = float(image[outside].mean()) if outside.any() else 0.0
    return c_in, c_out
