"""
Shared contract of the deformable boundaries.

A boundary is an ordered set of points (a closed polygon in 2D, a closed
triangulated surface in 3D) carrying per-point driving forces, feedback
forces and outward normals. Concrete variants store their points in
``(capacity, 3)`` arrays and expose the rows in use through
``_active_indices()``; everything that only needs those arrays (edge,
region and feedback terms, integration, bounding sphere) is implemented
here on top of the kernels in :mod:`active_contours.forces`.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

import numpy as np

from ..forces.integrator import integrate
from ..forces.terms import edge_force, feedback_force, region_force
from .convergence import SlidingWindow

logger = logging.getLogger(__name__)


# ============================================================================
# Configuration
# ============================================================================

@dataclass
class BoundaryConfig:
    """
    Parameters shared by a boundary and every boundary derived from it.

    Attributes:
        resolution: Target spacing between neighbouring points (rho)
        min_area: Area (2D) or volume (3D) below which a boundary vanishes
        window_size: Capacity of the convergence window
        min_factor: Edges shorter than resolution * min_factor are collapsed
        max_factor: Edges longer than resolution * max_factor are split
        max_displacement_factor: Per-step displacement cap of a polygon, as a
            fraction of the resolution
    """
    resolution: float = 1.0
    min_area: float = 10.0
    window_size: int = 50
    min_factor: float = 0.6
    max_factor: float = 1.4
    max_displacement_factor: float = 0.1

    def __post_init__(self):
        """Validate configuration parameters."""
        if self.resolution <= 0:
            raise ValueError(f"resolution must be > 0, got {self.resolution}")
        if self.min_area < 0:
            raise ValueError(f"min_area must be >= 0, got {self.min_area}")
        if self.window_size < 1:
            raise ValueError(f"window_size must be >= 1, got {self.window_size}")
        if self.max_displacement_factor <= 0:
            raise ValueError(
                f"max_displacement_factor must be > 0, got {self.max_displacement_factor}"
            )
        validate_resample_factors(self.min_factor, self.max_factor)


def validate_resample_factors(min_factor: float, max_factor: float):
    """
    Check that resampling with these factors cannot oscillate.

    Raises:
        ValueError: Unless min_factor < 1 < max_factor and 2 * min_factor <= max_factor
    """
    if not (0 < min_factor < 1 < max_factor):
        raise ValueError(
            f"Resample factors must verify 0 < min < 1 < max, "
            f"got min={min_factor}, max={max_factor}"
        )
    if 2 * min_factor > max_factor:
        raise ValueError(
            f"Resample factors must verify 2 * min <= max, "
            f"got min={min_factor}, max={max_factor}"
        )


# ============================================================================
# Results
# ============================================================================

@dataclass
class BoundingSphere:
    """Centroid of the points and the largest distance from it to a point."""
    center: np.ndarray
    radius: float


class TopologyStatus(Enum):
    """Outcome of a topology check."""
    UNCHANGED = "unchanged"
    SPLIT = "split"
    VANISHED = "vanished"


@dataclass
class TopologyResult:
    """
    Outcome of :meth:`BaseBoundary.resample`.

    UNCHANGED may still come with a mutated parent (noise points removed,
    or a small loop cut off). On SPLIT the caller must replace ``parent`` by
    ``children``; on VANISHED it must drop ``parent``.
    """
    status: TopologyStatus
    parent: 'BaseBoundary'
    children: List['BaseBoundary'] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return self.status is not TopologyStatus.UNCHANGED

    @property
    def replacements(self) -> List['BaseBoundary']:
        """Boundaries to track in place of the parent."""
        if self.status is TopologyStatus.UNCHANGED:
            return [self.parent]
        return list(self.children)

    def __str__(self) -> str:
        return f"TopologyResult(status={self.status.value}, children={len(self.children)})"


# ============================================================================
# Abstract Base Class (Interface)
# ============================================================================

class BaseBoundary(ABC):
    """
    Abstract deformable boundary.

    Implementations:
    - Polygon: closed 2D polyline
    - Surface: closed 3D triangle mesh

    Subclasses must keep ``_positions``, ``_driving``, ``_feedback`` and
    ``_normals`` the same length and call :meth:`invalidate` whenever point
    positions change.
    """

    dim = 3
    feedback_gain = 2.0

    def __init__(self, config: BoundaryConfig, window: Optional[SlidingWindow] = None):
        """
        Args:
            config: Shared configuration (kept by reference)
            window: Convergence window. If None, a fresh one of
                config.window_size is created.
        """
        self.config = config
        self.window = window if window is not None else SlidingWindow(config.window_size)
        self._positions = np.zeros((0, 3), dtype=np.float64)
        self._driving = np.zeros((0, 3), dtype=np.float64)
        self._feedback = np.zeros((0, 3), dtype=np.float64)
        self._normals = np.zeros((0, 3), dtype=np.float64)
        self._normals_dirty = True
        self._sphere: Optional[BoundingSphere] = None

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    @abstractmethod
    def _active_indices(self) -> np.ndarray:
        """Rows of the storage arrays holding live points, in order."""

    @abstractmethod
    def _update_normals(self):
        """Recompute ``_normals`` at the active rows."""

    def _allocate(self, positions: np.ndarray):
        positions = np.array(positions, dtype=np.float64).reshape(-1, 3)
        self._positions = positions
        self._driving = np.zeros_like(positions)
        self._feedback = np.zeros_like(positions)
        self._normals = np.zeros_like(positions)
        self.invalidate()

    def invalidate(self):
        """Mark normals and bounding sphere for recomputation on next read."""
        self._normals_dirty = True
        self._sphere = None

    @property
    def points(self) -> np.ndarray:
        """Copy of the live point coordinates (N, 3)."""
        return self._positions[self._active_indices()].copy()

    @property
    def n_points(self) -> int:
        return int(len(self._active_indices()))

    def __len__(self) -> int:
        return self.n_points

    @property
    def normals(self) -> np.ndarray:
        """Outward unit normals at the live points (N, 3)."""
        if self._normals_dirty:
            self._update_normals()
            self._normals_dirty = False
        return self._normals[self._active_indices()].copy()

    def _fresh_normals(self) -> np.ndarray:
        if self._normals_dirty:
            self._update_normals()
            self._normals_dirty = False
        return self._normals

    @property
    def driving_forces(self) -> np.ndarray:
        return self._driving[self._active_indices()].copy()

    @property
    def feedback_forces(self) -> np.ndarray:
        return self._feedback[self._active_indices()].copy()

    def add_driving_force(self, forces: np.ndarray):
        """Accumulate external forces (N, 3) into the driving buffer."""
        self._driving[self._active_indices()] += np.asarray(forces, dtype=np.float64)

    def _sampling_coords(self, indices: np.ndarray) -> np.ndarray:
        """Image-space coordinates of the given rows."""
        return self._positions[indices]

    # ------------------------------------------------------------------
    # Shape measures
    # ------------------------------------------------------------------

    @abstractmethod
    def dimension(self, order: int) -> float:
        """
        Scalar shape measure.

        Args:
            order: 0 = point count, 1 = perimeter / surface area,
                   2 = area / volume

        Raises:
            UnsupportedDimensionError: For any other order
        """

    @property
    @abstractmethod
    def convergence_measure(self) -> float:
        """Value pushed into the convergence window after each move."""

    def bounding_sphere(self) -> BoundingSphere:
        """Centroid and max centroid distance, cached until points move."""
        if self._sphere is None:
            points = self._positions[self._active_indices()]
            if len(points) == 0:
                self._sphere = BoundingSphere(center=np.zeros(3), radius=0.0)
            else:
                center = points.mean(axis=0)
                radius = float(np.linalg.norm(points - center, axis=1).max())
                self._sphere = BoundingSphere(center=center, radius=radius)
        return self._sphere

    def mass_center(self) -> np.ndarray:
        return self.bounding_sphere().center.copy()

    @abstractmethod
    def penetration_depth(self, point: np.ndarray, center: Optional[np.ndarray] = None) -> float:
        """
        Depth of ``point`` inside this boundary, 0 when outside.

        Args:
            point: Point to test
            center: Origin of the test ray (defaults to the bounding-sphere centre)
        """

    def contains_point(self, point: np.ndarray, center: Optional[np.ndarray] = None) -> bool:
        return self.penetration_depth(point, center) > 0

    @abstractmethod
    def to_mask(self, shape: Tuple[int, ...]) -> np.ndarray:
        """Boolean raster of the enclosed region."""

    # ------------------------------------------------------------------
    # Topology / lifecycle
    # ------------------------------------------------------------------

    @abstractmethod
    def resample(
        self,
        min_factor: Optional[float] = None,
        max_factor: Optional[float] = None
    ) -> TopologyResult:
        """
        Bring every edge length into [rho * min_factor, rho * max_factor].

        Runs the topology check first; when it reports SPLIT or VANISHED the
        boundary is left as-is and the result is returned immediately.
        Factors default to the configuration's.
        """

    @abstractmethod
    def clone(self) -> 'BaseBoundary':
        """Copy of the points sharing the configuration, with a fresh window."""

    def _new_window(self) -> Optional[SlidingWindow]:
        return SlidingWindow(self.window.size) if self.window is not None else None

    def _factors(self, min_factor: Optional[float], max_factor: Optional[float]) -> Tuple[float, float]:
        min_factor = self.config.min_factor if min_factor is None else min_factor
        max_factor = self.config.max_factor if max_factor is None else max_factor
        validate_resample_factors(min_factor, max_factor)
        return min_factor, max_factor

    # ------------------------------------------------------------------
    # Forces
    # ------------------------------------------------------------------

    @abstractmethod
    def compute_internal_forces(self, weight: float):
        """Accumulate the smoothing (Laplacian) force."""

    def compute_edge_forces(self, edge_field: np.ndarray, weight: float):
        """
        Accumulate ``weight * gradient`` sampled from an edge field.

        Args:
            edge_field: Gradient components (dim, *shape) or scalar edge map (*shape)
            weight: Term weight
        """
        indices = self._active_indices()
        self._driving[indices] += edge_force(
            edge_field, self._sampling_coords(indices), weight, self.dim
        )

    def compute_region_forces(
        self,
        image: np.ndarray,
        weight: float,
        c_in: float,
        c_out: float,
        sensitivity: float = 1.0
    ):
        """
        Accumulate the region competition force along the outward normals.

        Args:
            image: Scalar image, ideally normalised to [0, 1]
            weight: Term weight
            c_in: Mean intensity inside
            c_out: Mean intensity outside
            sensitivity: 1 by default (0 is read as 1)
        """
        normals = self._fresh_normals()
        indices = self._active_indices()
        self._driving[indices] += region_force(
            image,
            self._sampling_coords(indices),
            normals[indices],
            weight,
            self.config.resolution,
            c_in,
            c_out,
            sensitivity
        )

    def compute_feedback_forces(self, target: 'BaseBoundary') -> int:
        """
        Accumulate collision forces pushing this boundary out of ``target``.

        Returns:
            tests: Number of points that were tested against the target
        """
        normals = self._fresh_normals()
        indices = self._active_indices()
        forces, tests = feedback_force(
            self._positions[indices], normals[indices], target, self.feedback_gain
        )
        self._feedback[indices] += forces
        logger.debug("[Boundary] %d feedback tests against %r", tests, target)
        return tests

    # ------------------------------------------------------------------
    # Integration
    # ------------------------------------------------------------------

    @abstractmethod
    def max_displacement(self, time_step: float = 1.0) -> float:
        """Per-step displacement cap."""

    def move(self, field: Optional[np.ndarray] = None, time_step: float = 1.0) -> np.ndarray:
        """
        Apply the accumulated forces and reset the force buffers.

        Args:
            field: Optional boolean region of interest; driving forces only act
                on points lying inside it (feedback forces always act)
            time_step: Integration time step

        Returns:
            displacements: Displacement applied to each live point (N, 3)
        """
        indices = self._active_indices()
        driving_mask = None
        if field is not None:
            driving_mask = self._inside_field(field, indices)

        displacements = integrate(
            self._positions,
            self._driving,
            self._feedback,
            indices,
            self.max_displacement(time_step),
            time_step=self._force_time_scale(time_step),
            driving_mask=driving_mask
        )
        self.invalidate()

        if self.window is not None:
            self.window.push(self.convergence_measure)
        return displacements

    def _force_time_scale(self, time_step: float) -> float:
        return 1.0

    def _inside_field(self, field: np.ndarray, indices: np.ndarray) -> np.ndarray:
        field = np.asarray(field, dtype=bool)
        coords = self._sampling_coords(indices)[:, :field.ndim]
        pixels = np.floor(coords[:, ::-1]).astype(int)
        inside = np.all((pixels >= 0) & (pixels < np.asarray(field.shape)), axis=1)
        result = np.zeros(len(indices), dtype=bool)
        result[inside] = field[tuple(pixels[inside].T)]
        return result

    def __repr__(self) -> str:
        return f"{type(self).__name__}(n_points={self.n_points})"
