"""
Self-intersection detection for closed polylines.

A polyline folding onto itself (two non-neighbouring points closer than the
resolution) is cut into two arcs at the intersection. Depending on the
areas of the arcs, the cut is a genuine division (two viable boundaries),
a loop to discard (one arc too small), or the disappearance of the whole
boundary (both arcs too small).
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

import numpy as np
from scipy.spatial.distance import cdist


# ============================================================================
# Enums / Results
# ============================================================================

class SplitDecision(Enum):
    """What to do with a boundary after the self-intersection scan."""
    NONE = "none"
    SPLIT = "split"
    KEEP_FIRST = "keep_first"
    KEEP_SECOND = "keep_second"
    VANISH = "vanish"


@dataclass
class IntersectionReport:
    """
    Result of :func:`check_loop_or_division`.

    Attributes:
        decision: Outcome of the area decision table
        points: Points of the polyline after noise removal (the input may
            have lost isolated points even when decision is NONE)
        cut: Indices (i, j) of the intersecting pair, or None
        first: Arc points[i:j], when a cut was made
        second: Arc points[j:] + points[:i], when a cut was made
    """
    decision: SplitDecision
    points: np.ndarray
    cut: Optional[Tuple[int, int]] = None
    first: Optional[np.ndarray] = None
    second: Optional[np.ndarray] = None


# ============================================================================
# Helpers
# ============================================================================

def polygon_area(points: np.ndarray) -> float:
    """
    Unsigned shoelace area of a closed polyline (x, y columns only).

    Returns 0 for fewer than 3 points.
    """
    return abs(signed_polygon_area(points))


def signed_polygon_area(points: np.ndarray) -> float:
    """Shoelace area, positive when (x, y) run counter-clockwise in a y-up frame."""
    points = np.asarray(points, dtype=np.float64)
    if len(points) < 3:
        return 0.0
    x = points[:, 0]
    y = points[:, 1]
    return 0.5 * float(np.dot(x, np.roll(y, -1)) - np.dot(y, np.roll(x, -1)))


def find_self_intersection(
    points: np.ndarray,
    min_spacing: float
) -> Tuple[np.ndarray, Optional[Tuple[int, int]]]:
    """
    Scan all pairs at cyclic index distance >= 2 for proximity below ``min_spacing``.

    Pairs are visited in row-major order. A close pair two indices apart is
    noise: the single point between them is removed and the scan restarts.
    The first close pair at least three indices apart (both ways round) is
    returned.

    Args:
        points: Ordered cyclic points (N, 3)
        min_spacing: Proximity threshold

    Returns:
        (points, cut): Remaining points and the (i, j) pair with i < j, or None
    """
    points = np.array(points, dtype=np.float64)

    while len(points) > 3:
        n = len(points)
        distances = cdist(points, points)
        i_idx, j_idx = np.triu_indices(n, k=2)
        forward = j_idx - i_idx
        cyclic = np.minimum(forward, n - forward)

        close = (cyclic >= 2) & (distances[i_idx, j_idx] < min_spacing)
        if not close.any():
            return points, None

        first = int(np.flatnonzero(close)[0])
        i, j = int(i_idx[first]), int(j_idx[first])

        if forward[first] == 2:
            points = np.delete(points, i + 1, axis=0)
        elif n - forward[first] == 2:
            points = np.delete(points, (j + 1) % n, axis=0)
        else:
            return points, (i, j)

    return points, None


def split_arcs(points: np.ndarray, i: int, j: int) -> Tuple[np.ndarray, np.ndarray]:
    """
    Cut a cyclic polyline at i < j.

    Returns:
        (first, second): points[i:j] and points[j:] followed by points[:i]
    """
    points = np.asarray(points)
    first = points[i:j].copy()
    second = np.concatenate([points[j:], points[:i]], axis=0)
    return first, second


# ============================================================================
# Main Entry Point
# ============================================================================

def check_loop_or_division(
    points: np.ndarray,
    min_spacing: float,
    min_area: float
) -> IntersectionReport:
    """
    Decide whether a closed polyline loops onto itself or divides.

    Decision table on the areas of the two arcs:

    ========== ========== ============
    first      second     decision
    ========== ========== ============
    > min      > min      SPLIT
    > min      <= min     KEEP_FIRST
    <= min     > min      KEEP_SECOND
    <= min     <= min     VANISH
    ========== ========== ============

    Args:
        points: Ordered cyclic points (N, 3)
        min_spacing: Proximity threshold (the resolution)
        min_area: Area threshold of a viable boundary

    Returns:
        IntersectionReport
    """
    remaining, cut = find_self_intersection(points, min_spacing)
    if cut is None:
        return IntersectionReport(decision=SplitDecision.NONE, points=remaining)

    first, second = split_arcs(remaining, *cut)
    first_area = polygon_area(first)
    second_area = polygon_area(second)

    if first_area > min_area:
        decision = SplitDecision.SPLIT if second_area > min_area else SplitDecision.KEEP_FIRST
    else:
        decision = SplitDecision.KEEP_SECOND if second_area > min_area else SplitDecision.VANISH

    return IntersectionReport(
        decision=decision,
        points=remaining,
        cut=cut,
        first=first,
        second=second
    )
