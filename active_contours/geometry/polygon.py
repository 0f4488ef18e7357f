"""
Closed 2D polygon boundary.

Points are kept as an (N, 3) array with z = 0, ordered around the contour.
Resampling keeps neighbouring points between ``rho * min_factor`` and
``rho * max_factor`` apart, after a self-intersection check that may split
the polygon into two or make it vanish.
"""

import logging
from typing import Optional, Sequence, Tuple

import cv2
import numpy as np

from ..errors import ShapeSourceError, UnsupportedDimensionError
from ..forces.terms import polygon_laplacian
from ..topology.detector import (
    SplitDecision,
    check_loop_or_division,
    polygon_area,
    signed_polygon_area
)
from .boundary import (
    BaseBoundary,
    BoundaryConfig,
    TopologyResult,
    TopologyStatus
)
from .convergence import SlidingWindow

logger = logging.getLogger(__name__)

MAX_RESAMPLE_PASSES = 1000
"""Safety cap on the pass-until-stable resampling loop."""

RAY_LENGTH_FACTOR = 10.0
"""Length of the containment ray, in multiples of the bounding radius."""


class Polygon(BaseBoundary):
    """
    Deformable closed polyline.

    Example:
        >>> config = BoundaryConfig(resolution=1.0, min_area=0.5)
        >>> square = Polygon.from_outline([[0, 0], [1, 0], [1, 1], [0, 1]], config)
        >>> result = square.resample(0.7, 1.4)
        >>> result.status, square.n_points, square.dimension(2)
        (<TopologyStatus.UNCHANGED: 'unchanged'>, 4, 1.0)
    """

    dim = 2
    feedback_gain = 2.0

    def __init__(
        self,
        config: BoundaryConfig,
        points: Optional[np.ndarray] = None,
        window: Optional[SlidingWindow] = None
    ):
        """
        Args:
            config: Shared boundary configuration
            points: Ordered points (N, 2) or (N, 3); copied
            window: Convergence window (fresh one if None)
        """
        super().__init__(config, window)
        if points is not None:
            self._set_points(points)

    def _set_points(self, points):
        points = np.asarray(points, dtype=np.float64)
        if points.ndim != 2 or points.shape[1] not in (2, 3):
            raise ShapeSourceError(f"Outline must be an (N, 2) or (N, 3) array, got shape {points.shape}")
        if points.shape[1] == 2:
            points = np.column_stack([points, np.zeros(len(points))])
        else:
            points = points.copy()
            points[:, 2] = 0.0
        self._allocate(points)

    # ------------------------------------------------------------------
    # Shape sources
    # ------------------------------------------------------------------

    @classmethod
    def from_outline(
        cls,
        outline: Optional[Sequence],
        config: BoundaryConfig,
        window: Optional[SlidingWindow] = None
    ) -> 'Polygon':
        """
        Seed a polygon from an already flattened outline.

        Repeated consecutive points, including a closing point equal to the
        first one, are dropped.

        Args:
            outline: Ordered points (N, 2) or (N, 3)
            config: Boundary configuration
            window: Convergence window (fresh one if None)

        Raises:
            ShapeSourceError: If the outline is missing, malformed, or has
                fewer than 3 distinct points
        """
        if outline is None:
            raise ShapeSourceError("No outline given")
        try:
            points = np.asarray(outline, dtype=np.float64)
        except (TypeError, ValueError) as e:
            raise ShapeSourceError(f"Outline cannot be read as coordinates: {e}") from e
        if points.ndim != 2 or points.shape[1] not in (2, 3):
            raise ShapeSourceError(f"Outline must be an (N, 2) or (N, 3) array, got shape {points.shape}")
        if not np.all(np.isfinite(points)):
            raise ShapeSourceError("Outline contains non-finite coordinates")

        keep = np.linalg.norm(points - np.roll(points, 1, axis=0), axis=1) > 1e-12
        points = points[keep] if keep.any() else points[:1]
        if len(points) < 3:
            raise ShapeSourceError(f"Outline needs at least 3 distinct points, got {len(points)}")

        return cls(config, points, window)

    @classmethod
    def from_ellipse(
        cls,
        center: Tuple[float, float],
        radii: Tuple[float, float],
        config: BoundaryConfig,
        window: Optional[SlidingWindow] = None
    ) -> 'Polygon':
        """Ellipse outline sampled at roughly the configured resolution."""
        rx, ry = float(radii[0]), float(radii[1])
        if rx <= 0 or ry <= 0:
            raise ShapeSourceError(f"Ellipse radii must be positive, got {radii}")
        perimeter = 2 * np.pi * np.sqrt((rx * rx + ry * ry) / 2)
        n = max(8, int(np.ceil(perimeter / config.resolution)))
        theta = np.linspace(0, 2 * np.pi, n, endpoint=False)
        outline = np.column_stack([center[0] + rx * np.cos(theta), center[1] + ry * np.sin(theta)])
        return cls.from_outline(outline, config, window)

    @classmethod
    def from_rectangle(
        cls,
        origin: Tuple[float, float],
        size: Tuple[float, float],
        config: BoundaryConfig,
        window: Optional[SlidingWindow] = None
    ) -> 'Polygon':
        """Rectangle outline (its four corners); resampling densifies it."""
        x, y = float(origin[0]), float(origin[1])
        w, h = float(size[0]), float(size[1])
        if w <= 0 or h <= 0:
            raise ShapeSourceError(f"Rectangle size must be positive, got {size}")
        return cls.from_outline([[x, y], [x + w, y], [x + w, y + h], [x, y + h]], config, window)

    @classmethod
    def from_mask(
        cls,
        mask: np.ndarray,
        config: BoundaryConfig,
        origin: Tuple[int, int] = (0, 0),
        window: Optional[SlidingWindow] = None
    ) -> 'Polygon':
        """
        Trace a binary mask into a polygon (see :class:`MaskTracer`).

        Args:
            mask: Boolean raster (H, W)
            config: Boundary configuration; its resolution drives the tracing
            origin: (x, y) offset of the mask's top-left pixel
            window: Convergence window (fresh one if None)
        """
        from ..tracing.mask_tracer import MaskTracer, TracerConfig

        tracer = MaskTracer(TracerConfig(resolution=config.resolution))
        return tracer.trace(mask, config, origin=origin, window=window)

    def clone(self) -> 'Polygon':
        return Polygon(self.config, self._positions, window=self._new_window())

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    def _active_indices(self) -> np.ndarray:
        return np.arange(len(self._positions))

    def _update_normals(self):
        n = len(self._positions)
        if n < 3:
            self._normals = np.zeros((n, 3))
            return
        tangents = np.roll(self._positions, -1, axis=0) - np.roll(self._positions, 1, axis=0)
        normals = np.column_stack([tangents[:, 1], -tangents[:, 0], np.zeros(n)])
        lengths = np.linalg.norm(normals, axis=1)
        nonzero = lengths > 0
        normals[nonzero] /= lengths[nonzero][:, None]
        # (dy, -dx) is outward for a positively oriented contour
        if signed_polygon_area(self._positions) < 0:
            normals = -normals
        self._normals = normals

    # ------------------------------------------------------------------
    # Shape measures
    # ------------------------------------------------------------------

    def dimension(self, order: int) -> float:
        """
        Args:
            order: 0 = number of points, 1 = perimeter, 2 = enclosed area

        Raises:
            UnsupportedDimensionError: For any other order
        """
        if order not in (0, 1, 2):
            raise UnsupportedDimensionError(order)

        n = len(self._positions)
        if n <= 1:
            return 0.0
        if order == 0:
            return float(n)
        if order == 1:
            edges = np.roll(self._positions, -1, axis=0) - self._positions
            return float(np.linalg.norm(edges, axis=1).sum())
        return polygon_area(self._positions)

    @property
    def perimeter(self) -> float:
        return self.dimension(1)

    @property
    def area(self) -> float:
        return self.dimension(2)

    @property
    def convergence_measure(self) -> float:
        return self.dimension(1)

    def edge_lengths(self) -> np.ndarray:
        """Length of every cyclic edge (i, i + 1)."""
        return np.linalg.norm(np.roll(self._positions, -1, axis=0) - self._positions, axis=1)

    def penetration_depth(self, point: np.ndarray, center: Optional[np.ndarray] = None) -> float:
        """
        Jordan-curve test of ``point`` against this polygon.

        A segment starting at ``point`` and leaving away from ``center`` far
        beyond the polygon is intersected with every edge; an odd number of
        crossings means the point is inside.

        Returns:
            The smallest distance from the point to the line of a crossed
            edge when inside, 0.0 otherwise
        """
        n = len(self._positions)
        if n < 3:
            return 0.0

        sphere = self.bounding_sphere()
        p = np.asarray(point, dtype=np.float64)[:2]
        c = sphere.center[:2] if center is None else np.asarray(center, dtype=np.float64)[:2]

        direction = p - c
        norm = np.linalg.norm(direction)
        direction = np.array([1.0, 0.0]) if norm == 0 else direction / norm
        far = RAY_LENGTH_FACTOR * (sphere.radius + np.linalg.norm(p - sphere.center[:2])) + 1.0
        q = p + far * direction

        a = self._positions[:, :2]
        b = np.roll(a, -1, axis=0)
        r = q - p
        s = b - a

        side_a = _cross(r, a - p)
        side_b = _cross(r, b - p)
        side_p = _cross(s, p - a)
        side_q = _cross(s, q - a)

        hits = ((side_a > 0) != (side_b > 0)) & (side_p * side_q <= 0)
        if int(hits.sum()) % 2 == 0:
            return 0.0

        lengths = np.linalg.norm(s[hits], axis=1)
        valid = lengths > 0
        if not valid.any():
            return 0.0
        return float((np.abs(side_p[hits][valid]) / lengths[valid]).min())

    def to_mask(self, shape: Tuple[int, ...]) -> np.ndarray:
        """
        Rasterise the enclosed region.

        Args:
            shape: Image shape (H, W)

        Returns:
            mask: Boolean array (H, W)
        """
        if len(shape) != 2:
            raise ValueError(f"Polygon masks are 2D, got shape {shape}")
        mask = np.zeros(shape, dtype=np.uint8)
        if len(self._positions) >= 3:
            contour = np.round(self._positions[:, :2]).astype(np.int32).reshape(-1, 1, 2)
            cv2.fillPoly(mask, [contour], 1)
        return mask.astype(bool)

    # ------------------------------------------------------------------
    # Topology / resampling
    # ------------------------------------------------------------------

    def check_topology(self) -> Optional[TopologyResult]:
        """
        Run the self-intersection check, applying its side effects.

        Returns:
            A SPLIT or VANISHED result, or None when the polygon stays one
            piece (possibly after losing noise points or a small loop)
        """
        report = check_loop_or_division(
            self._positions, self.config.resolution, self.config.min_area
        )

        if report.decision is SplitDecision.NONE:
            if len(report.points) != len(self._positions):
                self._allocate(report.points)
            return None

        if report.decision is SplitDecision.VANISH:
            logger.info("[Polygon] Both parts of a self-intersection are too small, %r vanishes", self)
            return TopologyResult(status=TopologyStatus.VANISHED, parent=self)

        if report.decision is SplitDecision.SPLIT:
            self._allocate(report.points)
            children = [
                Polygon(self.config, report.first, window=self._new_window()),
                Polygon(self.config, report.second, window=self._new_window())
            ]
            logger.info(
                "[Polygon] Division at %s: %d + %d points",
                report.cut, children[0].n_points, children[1].n_points
            )
            return TopologyResult(status=TopologyStatus.SPLIT, parent=self, children=children)

        kept = report.first if report.decision is SplitDecision.KEEP_FIRST else report.second
        logger.debug("[Polygon] Loop removed at %s", report.cut)
        self._allocate(kept)
        return None

    def resample(
        self,
        min_factor: Optional[float] = None,
        max_factor: Optional[float] = None
    ) -> TopologyResult:
        """
        Collapse short edges and split long ones until every edge fits.

        An edge shorter than ``rho * min_factor`` is replaced by its
        midpoint; an edge longer than ``rho * max_factor`` gets its midpoint
        inserted. Refinement stops early once fewer than 4 points remain.

        Args:
            min_factor: Defaults to config.min_factor
            max_factor: Defaults to config.max_factor

        Returns:
            TopologyResult: VANISHED when the area is below config.min_area,
            the self-intersection outcome when it splits or vanishes,
            UNCHANGED otherwise (points may have been resampled)

        Raises:
            ValueError: If the factors could make the loop oscillate
        """
        min_factor, max_factor = self._factors(min_factor, max_factor)

        if self.dimension(2) < self.config.min_area:
            logger.info("[Polygon] Area below %.3g, %r vanishes", self.config.min_area, self)
            return TopologyResult(status=TopologyStatus.VANISHED, parent=self)

        result = self.check_topology()
        if result is not None:
            return result

        min_length = self.config.resolution * min_factor
        max_length = self.config.resolution * max_factor

        points = [p for p in self._positions.copy()]
        changed = True
        passes = 0

        while changed and len(points) >= 4:
            changed = False
            passes += 1
            if passes > MAX_RESAMPLE_PASSES:
                logger.warning("[Polygon] Resampling did not stabilise after %d passes", MAX_RESAMPLE_PASSES)
                break

            i = 0
            while i < len(points):
                n = len(points)
                if n < 4:
                    break
                j = (i + 1) % n
                distance = np.linalg.norm(points[i] - points[j])

                if distance < min_length:
                    points[j] = (points[i] + points[j]) * 0.5
                    del points[i]
                    changed = True
                elif distance > max_length:
                    points.insert(i + 1, (points[i] + points[j]) * 0.5)
                    changed = True
                    i += 2
                else:
                    i += 1

        self._allocate(np.array(points))
        logger.debug("[Polygon] Resampled to %d points in %d passes", len(points), passes)
        return TopologyResult(status=TopologyStatus.UNCHANGED, parent=self)

    # ------------------------------------------------------------------
    # Forces
    # ------------------------------------------------------------------

    def compute_internal_forces(self, weight: float):
        """Accumulate ``weight * (prev + next - 2 * curr)`` at every point."""
        if len(self._positions) < 3:
            return
        self._driving += polygon_laplacian(self._positions, weight)

    def max_displacement(self, time_step: float = 1.0) -> float:
        return self.config.resolution * self.config.max_displacement_factor


def _cross(u: np.ndarray, v: np.ndarray) -> np.ndarray:
    """z-component of the cross product of 2D vectors (broadcasting)."""
    return u[..., 0] * v[..., 1] - u[..., 1] * v[..., 0]
