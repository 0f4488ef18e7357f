"""
Mask tracer: binary raster -> ordered closed polyline.

Every grid cell is cut into two triangles along its anti-diagonal::

    a---b---
    |../|../
    |./.|./.
    |/..|/..
    c---d---

Each triangle whose corners disagree emits one short edge joining the
midpoints of its two "crossing" sides (6 cases per triangle, 12 per cell).
Edges are oriented so that the object is always on the same side, then
stitched end to end into arcs.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np

from ..errors import ShapeSourceError
from ..geometry.boundary import BoundaryConfig, TopologyStatus, validate_resample_factors
from ..geometry.convergence import SlidingWindow
from ..geometry.polygon import Polygon

logger = logging.getLogger(__name__)

STITCH_EPSILON = 1e-5


# ============================================================================
# Configuration
# ============================================================================

@dataclass
class TracerConfig:
    """
    Configuration for mask tracing.

    Attributes:
        resolution: Target spacing of the traced polygon
        grid: Cell size in pixels
        thinning_threshold: Points are halved while twice the current spacing
            is below resolution * thinning_threshold
        min_factor: Resample factor applied after thinning
        max_factor: Resample factor applied after thinning
    """
    resolution: float = 1.0
    grid: int = 1
    thinning_threshold: float = 0.7
    min_factor: float = 0.7
    max_factor: float = 1.4

    def __post_init__(self):
        """Validate configuration parameters."""
        if self.resolution <= 0:
            raise ValueError(f"resolution must be > 0, got {self.resolution}")
        if self.grid < 1:
            raise ValueError(f"grid must be >= 1, got {self.grid}")
        if not 0 < self.thinning_threshold <= 1:
            raise ValueError(f"thinning_threshold must be in (0, 1], got {self.thinning_threshold}")
        validate_resample_factors(self.min_factor, self.max_factor)


# ============================================================================
# Arc stitching
# ============================================================================

class _Arc:
    """Growing open polyline; head is points[0], tail is points[-1]."""

    def __init__(self, head: Tuple[float, float], tail: Tuple[float, float]):
        self.points = [head, tail]

    @property
    def head(self):
        return self.points[0]

    @property
    def tail(self):
        return self.points[-1]


def _close(p, q) -> bool:
    return abs(p[0] - q[0]) <= STITCH_EPSILON and abs(p[1] - q[1]) <= STITCH_EPSILON


def _add_edge(arcs: List[_Arc], start: Tuple[float, float], end: Tuple[float, float]):
    """
    Attach the oriented edge start -> end to the arcs.

    If ``end`` meets the head of an arc the edge is prepended to it; if
    ``start`` meets the tail of an arc the edge is appended to it; when both
    happen the two arcs are merged.
    """
    before = after = None
    for index, arc in enumerate(arcs):
        if _close(end, arc.head):
            before = index
        elif _close(start, arc.tail):
            after = index

    if after is not None:
        if before is not None:
            arcs[before].points[:0] = arcs[after].points
            del arcs[after]
        else:
            arcs[after].points.append(end)
    elif before is not None:
        arcs[before].points.insert(0, start)
    else:
        arcs.append(_Arc(start, end))


# ============================================================================
# Tracer
# ============================================================================

class MaskTracer:
    """
    Extract closed polylines from a binary mask.

    Example:
        >>> mask = np.zeros((5, 5), dtype=bool)
        >>> mask[1:4, 1:4] = True
        >>> arcs = MaskTracer(TracerConfig()).trace_all(mask)
        >>> len(arcs)
        1
    """

    def __init__(self, config: Optional[TracerConfig] = None):
        self.config = config or TracerConfig()

    def _cell_edges(self, mask: np.ndarray):
        """Yield oriented (start, end) edges in (x, y) pixel coordinates."""
        g = self.config.grid
        h = 0.5 * g
        height, width = mask.shape

        for j in range(0, height, g):
            for i in range(0, width, g):
                a = bool(mask[j, i])
                b = i + g < width and bool(mask[j, i + g])
                c = j + g < height and bool(mask[j + g, i])
                d = i + g < width and j + g < height and bool(mask[j + g, i + g])

                # upper-left triangle (a, b, c)
                if a != b:
                    if b == c:
                        if not a:
                            yield (i, j + h), (i + h, j)
                        else:
                            yield (i + h, j), (i, j + h)
                    else:
                        if not a:
                            yield (i + h, j + h), (i + h, j)
                        else:
                            yield (i + h, j), (i + h, j + h)
                elif a != c:
                    if not a:
                        yield (i, j + h), (i + h, j + h)
                    else:
                        yield (i + h, j + h), (i, j + h)

                # lower-right triangle (b, c, d)
                if c != d:
                    if b == c:
                        if not c:
                            yield (i + h, j + g), (i + g, j + h)
                        else:
                            yield (i + g, j + h), (i + h, j + g)
                    else:
                        if not c:
                            yield (i + h, j + g), (i + h, j + h)
                        else:
                            yield (i + h, j + h), (i + h, j + g)
                elif b != c:
                    if not b:
                        yield (i + h, j + h), (i + g, j + h)
                    else:
                        yield (i + g, j + h), (i + h, j + h)

    def trace_all(self, mask: np.ndarray, origin: Tuple[float, float] = (0, 0)) -> List[np.ndarray]:
        """
        Trace every arc of the mask.

        The outermost rows and columns are cleared first so that objects
        touching the raster edge still give closed arcs.

        Args:
            mask: Boolean raster (H, W), indexed [y, x]
            origin: (x, y) offset added to every point

        Returns:
            arcs: List of (N, 2) point arrays, largest first, without a
            repeated closing point

        Raises:
            ShapeSourceError: If the mask is not 2D
        """
        if mask is None:
            raise ShapeSourceError("No mask given")
        mask = np.array(mask, dtype=bool)
        if mask.ndim != 2:
            raise ShapeSourceError(f"Mask must be 2D, got shape {mask.shape}")

        mask[0, :] = False
        mask[-1, :] = False
        mask[:, 0] = False
        mask[:, -1] = False

        arcs: List[_Arc] = []
        for start, end in self._cell_edges(mask):
            _add_edge(arcs, start, end)

        result = []
        for arc in arcs:
            points = np.array(arc.points, dtype=np.float64)
            if len(points) > 1 and _close(points[0], points[-1]):
                points = points[:-1]
            result.append(points + np.asarray(origin, dtype=np.float64))

        result.sort(key=len, reverse=True)
        logger.debug("[MaskTracer] %d arcs traced from a %s mask", len(result), mask.shape)
        return result

    def thin(self, points: np.ndarray) -> np.ndarray:
        """
        Halve the point count until the spacing approaches the resolution.

        Traced points are half a cell apart; every other point is dropped
        while twice the current spacing is below
        ``resolution * thinning_threshold``.
        """
        spacing_doubled = float(self.config.grid)
        target = self.config.resolution * self.config.thinning_threshold
        while spacing_doubled < target and len(points) >= 8:
            points = points[1::2]
            spacing_doubled *= 2
        return points

    def trace(
        self,
        mask: np.ndarray,
        boundary_config: BoundaryConfig,
        origin: Tuple[float, float] = (0, 0),
        window: Optional[SlidingWindow] = None
    ) -> Polygon:
        """
        Trace the largest arc of the mask into a resampled polygon.

        Args:
            mask: Boolean raster (H, W)
            boundary_config: Configuration of the created polygon
            origin: (x, y) offset of the mask's top-left pixel
            window: Convergence window (fresh one if None)

        Returns:
            Polygon: If the first resample splits it, its largest part

        Raises:
            ShapeSourceError: If nothing can be traced, or the traced
                region is below boundary_config.min_area
        """
        arcs = self.trace_all(mask, origin)
        if not arcs:
            raise ShapeSourceError("Mask has no foreground away from its border")
        if len(arcs) > 1:
            logger.info("[MaskTracer] %d arcs found, keeping the largest (%d points)", len(arcs), len(arcs[0]))

        polygon = Polygon.from_outline(self.thin(arcs[0]), boundary_config, window)
        result = polygon.resample(self.config.min_factor, self.config.max_factor)

        if result.status is TopologyStatus.VANISHED:
            raise ShapeSourceError(
                f"Traced region is smaller than min_area={boundary_config.min_area}"
            )
        if result.status is TopologyStatus.SPLIT:
            polygon = max(result.children, key=lambda child: child.dimension(2))
        return polygon


def trace_mask(
    mask: np.ndarray,
    boundary_config: BoundaryConfig,
    origin: Tuple[float, float] = (0, 0),
    config: Optional[TracerConfig] = None
) -> Polygon:
    """
    Factory-style helper: trace ``mask`` with a tracer matching the boundary resolution.

    Args:
        mask: Boolean raster (H, W)
        boundary_config: Configuration of the created polygon
        origin: (x, y) offset of the mask's top-left pixel
        config: Tracer configuration (default: resolution of boundary_config)

    Returns:
        Polygon
    """
    if config is None:
        config = TracerConfig(resolution=boundary_config.resolution)
    return MaskTracer(config).trace(mask, boundary_config, origin=origin)
