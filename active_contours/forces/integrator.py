"""
Bounded-displacement time integration.

One step adds ``driving + feedback`` to every active point, never moving a
point further than the configured cap, then clears both force buffers.
"""

from typing import Optional

import numpy as np


def cap_displacement(forces: np.ndarray, max_displacement: float) -> np.ndarray:
    """
    Rescale every vector longer than ``max_displacement`` down to that length.

    Non-finite vectors are dropped (treated as zero).

    Args:
        forces: Displacement vectors (N, 3)
        max_displacement: Cap (> 0)

    Returns:
        capped: New array (N, 3)
    """
    forces = np.array(forces, dtype=np.float64)
    forces[~np.all(np.isfinite(forces), axis=1)] = 0.0
    lengths = np.linalg.norm(forces, axis=1)
    too_long = lengths > max_displacement
    forces[too_long] *= (max_displacement / lengths[too_long])[:, None]
    return forces


def integrate(
    positions: np.ndarray,
    driving: np.ndarray,
    feedback: np.ndarray,
    indices: np.ndarray,
    max_displacement: float,
    time_step: float = 1.0,
    driving_mask: Optional[np.ndarray] = None
) -> np.ndarray:
    """
    Move the points at ``indices`` in place and reset their force buffers.

    Args:
        positions: Point storage (capacity, 3), updated in place
        driving: Driving-force buffer, same shape, zeroed at ``indices``
        feedback: Feedback-force buffer, same shape, zeroed at ``indices``
        indices: Active rows of the storage arrays
        max_displacement: Per-step displacement cap
        time_step: Factor applied to the summed force before capping
        driving_mask: Optional boolean (len(indices),); where False only the
            feedback force is applied

    Returns:
        displacements: Applied displacements (len(indices), 3)
    """
    drive = driving[indices]
    if driving_mask is not None:
        drive = np.where(np.asarray(driving_mask, dtype=bool)[:, None], drive, 0.0)

    total = (drive + feedback[indices]) * time_step
    displacements = cap_displacement(total, max_displacement)

    positions[indices] += displacements
    driving[indices] = 0.0
    feedback[indices] = 0.0
    return displacements
