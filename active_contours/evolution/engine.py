"""
Evolution engine: drives a set of boundaries over an image.

Every step runs in three phases so that no boundary ever sees another one
half-way through an update:

1. forces for all boundaries, computed against frozen positions
2. move all boundaries
3. resample all boundaries and apply topology changes
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

import numpy as np

from ..forces.fields import compute_gradient_field, compute_region_means, normalize_image
from ..geometry.boundary import BaseBoundary, BoundaryConfig, TopologyResult, TopologyStatus
from ..geometry.polygon import Polygon
from ..geometry.surface import Surface
from .config import EvolutionConfig

logger = logging.getLogger(__name__)

TopologyListener = Callable[[TopologyResult], None]


# ============================================================================
# Results
# ============================================================================

@dataclass
class EvolutionResult:
    """
    Outcome of :meth:`ActiveContours.run`.

    Attributes:
        boundaries: Boundaries still tracked at the end
        iterations: Steps performed
        converged: Whether every boundary's window reported convergence
        elapsed_time: Wall-clock duration in seconds
        topology_events: Number of splits and disappearances
    """
    boundaries: List[BaseBoundary]
    iterations: int
    converged: bool
    elapsed_time: float
    topology_events: int = 0

    def get_measures(self, order: int = 2) -> List[float]:
        """Shape measure of each boundary (area / volume by default)."""
        return [boundary.dimension(order) for boundary in self.boundaries]

    def get_masks(self, shape) -> List[np.ndarray]:
        """Rasterised region of each boundary."""
        return [boundary.to_mask(shape) for boundary in self.boundaries]

    def __str__(self) -> str:
        status = "converged" if self.converged else "not converged"
        return (
            f"EvolutionResult({len(self.boundaries)} boundaries, "
            f"{self.iterations} iterations, {status}, "
            f"{self.topology_events} topology events, {self.elapsed_time:.2f}s)"
        )


# ============================================================================
# Engine
# ============================================================================

class ActiveContours:
    """
    Multi-boundary active contour evolution.

    Example:
        >>> config = BoundaryConfig(resolution=2.0, min_area=20.0)
        >>> seeds = [Polygon.from_ellipse((64, 64), (30, 20), config)]
        >>> engine = ActiveContours(image, seeds, EvolutionConfig(region_weight=1.0))
        >>> result = engine.run()
        >>> print(result)
    """

    def __init__(
        self,
        image: np.ndarray,
        boundaries: Sequence[BaseBoundary],
        config: Optional[EvolutionConfig] = None,
        field: Optional[np.ndarray] = None,
        listener: Optional[TopologyListener] = None
    ):
        """
        Args:
            image: Scalar image (H, W) for polygons or (D, H, W) for surfaces
            boundaries: Initial boundaries (tracked by reference)
            config: Evolution parameters. If None, uses defaults.
            field: Optional boolean region of interest, same shape as image;
                driving forces only act inside it
            listener: Called with every SPLIT / VANISHED TopologyResult

        Raises:
            ValueError: If the image is not 2D/3D, or a boundary does not
                match its dimensionality
        """
        self.config = config or EvolutionConfig()
        self.image = np.asarray(image, dtype=np.float64)
        if self.image.ndim not in (2, 3):
            raise ValueError(f"Image must be 2D or 3D, got shape {self.image.shape}")

        for boundary in boundaries:
            if boundary.dim != self.image.ndim:
                raise ValueError(
                    f"{type(boundary).__name__} is {boundary.dim}D but the image is {self.image.ndim}D"
                )
        if field is not None and np.shape(field) != self.image.shape:
            raise ValueError(f"Field shape {np.shape(field)} does not match image shape {self.image.shape}")

        self._boundaries: List[BaseBoundary] = list(boundaries)
        self.field = None if field is None else np.asarray(field, dtype=bool)
        self.listener = listener
        self.iteration = 0
        self.topology_events = 0

        self._region_image = normalize_image(self.image)
        self._edge_field: Optional[np.ndarray] = None
        self._target_volumes: Dict[int, float] = {}
        if self.config.volume_constraint:
            for boundary in self._boundaries:
                if isinstance(boundary, Surface):
                    self._target_volumes[id(boundary)] = boundary.dimension(2)

    @property
    def boundaries(self) -> List[BaseBoundary]:
        return list(self._boundaries)

    @property
    def edge_field(self) -> np.ndarray:
        """Gradient of the smoothed gradient magnitude, computed on first use."""
        if self._edge_field is None:
            self._edge_field = compute_gradient_field(self._region_image, self.config.edge_sigma)
        return self._edge_field

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def compute_forces(self) -> int:
        """
        Phase 1: accumulate every enabled force term on every boundary.

        Returns:
            Number of feedback containment tests run
        """
        cfg = self.config

        c_in, c_out = {}, 0.0
        if cfg.region_weight != 0 and self._boundaries:
            c_in, c_out = compute_region_means(self._region_image, self._boundaries)

        for boundary in self._boundaries:
            if cfg.internal_weight != 0:
                boundary.compute_internal_forces(cfg.internal_weight)
            if cfg.edge_weight != 0:
                boundary.compute_edge_forces(self.edge_field, cfg.edge_weight)
            if cfg.region_weight != 0:
                boundary.compute_region_forces(
                    self._region_image,
                    cfg.region_weight,
                    c_in[id(boundary)],
                    c_out,
                    cfg.region_sensitivity
                )

            if isinstance(boundary, Surface):
                if cfg.balloon_weight != 0:
                    boundary.compute_balloon_forces(cfg.balloon_weight)
                if cfg.axis_weight != 0:
                    boundary.compute_axis_forces(cfg.axis_weight)
                target = self._target_volumes.get(id(boundary))
                if target is not None:
                    boundary.compute_volume_constraint(target)

        tests = 0
        if cfg.coupling and len(self._boundaries) > 1:
            for boundary in self._boundaries:
                for target in self._boundaries:
                    if target is not boundary:
                        tests += boundary.compute_feedback_forces(target)
        return tests

    def move_all(self):
        """Phase 2: integrate every boundary."""
        for boundary in self._boundaries:
            boundary.move(self.field, self.config.time_step)

    def resample_all(self) -> List[TopologyResult]:
        """
        Phase 3: resample every boundary and apply topology changes.

        Split parents are replaced by their children; vanished boundaries
        are dropped.

        Returns:
            The SPLIT / VANISHED results of this phase
        """
        tracked: List[BaseBoundary] = []
        events: List[TopologyResult] = []

        for boundary in self._boundaries:
            result = boundary.resample()
            tracked.extend(result.replacements)
            if not result.changed:
                continue

            events.append(result)
            if result.status is TopologyStatus.SPLIT:
                logger.info(
                    "[ActiveContours] Iteration %d: %r split into %d",
                    self.iteration, boundary, len(result.children)
                )
            else:
                logger.info("[ActiveContours] Iteration %d: %r vanished", self.iteration, boundary)
            self._target_volumes.pop(id(boundary), None)
            if self.listener is not None:
                self.listener(result)

        self._boundaries = tracked
        self.topology_events += len(events)
        return events

    def step(self) -> List[TopologyResult]:
        """Run one full evolution step (forces, move, resample)."""
        tests = self.compute_forces()
        self.move_all()
        events = self.resample_all()
        self.iteration += 1
        logger.debug(
            "[ActiveContours] Iteration %d: %d boundaries, %d feedback tests",
            self.iteration, len(self._boundaries), tests
        )
        return events

    def has_converged(self) -> bool:
        """True when boundaries remain and every convergence window is full and stable."""
        if not self._boundaries:
            return False
        criterion = self.config.convergence_criterion
        return all(
            boundary.window is not None and boundary.window.is_converged(criterion)
            for boundary in self._boundaries
        )

    def run(self, max_iterations: Optional[int] = None) -> EvolutionResult:
        """
        Step until convergence or until ``max_iterations`` steps were made.

        Args:
            max_iterations: Overrides config.max_iterations

        Returns:
            EvolutionResult
        """
        if max_iterations is None:
            max_iterations = self.config.max_iterations

        start = time.perf_counter()
        start_iteration = self.iteration
        events_before = self.topology_events
        converged = False

        for _ in range(max_iterations):
            if not self._boundaries:
                logger.info("[ActiveContours] No boundary left after %d iterations", self.iteration)
                break
            self.step()
            if self.has_converged():
                converged = True
                logger.info("[ActiveContours] Converged after %d iterations", self.iteration)
                break
        else:
            logger.info("[ActiveContours] Stopped at the %d iteration cap", max_iterations)

        return EvolutionResult(
            boundaries=self.boundaries,
            iterations=self.iteration - start_iteration,
            converged=converged,
            elapsed_time=time.perf_counter() - start,
            topology_events=self.topology_events - events_before
        )


# ============================================================================
# Helper Functions
# ============================================================================

def boundaries_from_labels(labels: np.ndarray, boundary_config: BoundaryConfig) -> List[BaseBoundary]:
    """
    One boundary per non-zero label of a 2D or 3D label (or boolean) mask.

    Polygons are traced in 2D, surfaces are meshed with marching cubes in 3D.
    """
    labels = np.asarray(labels)
    if labels.ndim not in (2, 3):
        raise ValueError(f"Label mask must be 2D or 3D, got shape {labels.shape}")

    boundaries = []
    for label in np.unique(labels):
        if label == 0:
            continue
        region = labels == label
        if labels.ndim == 2:
            boundaries.append(Polygon.from_mask(region, boundary_config))
        else:
            surface = Surface.from_mask(region, boundary_config)
            surface.resample()
            boundaries.append(surface)
    return boundaries


def process_evolution_batch(
    images: 'Dict[str, np.ndarray]',
    masks: 'Dict[str, np.ndarray]',
    config: Optional[EvolutionConfig] = None,
    boundary_config: Optional[BoundaryConfig] = None
) -> 'Dict[str, EvolutionResult]':
    """
    Evoluciona contornos activos sobre múltiples imágenes.

    Para cada imagen, cada etiqueta no nula de su máscara inicial se
    convierte en un contorno (polígono en 2D, superficie en 3D) y todos
    evolucionan juntos hasta converger o alcanzar max_iterations.

    Args:
        images: Diccionario {image_id: numpy_array} con imágenes escalares.
        masks: Diccionario {image_id: numpy_array} con máscaras iniciales
               (booleanas o de etiquetas) del mismo tamaño que cada imagen.
        config: Parámetros de evolución. Si None, usa valores por defecto.
        boundary_config: Configuración de los contornos. Si None, usa
                         BoundaryConfig() por defecto.

    Returns:
        Diccionario {image_id: EvolutionResult}.

    Raises:
        ValueError: Si images y masks tienen IDs diferentes.
        ValueError: Si alguna máscara no tiene el tamaño de su imagen.

    Example:
        >>> results = process_evolution_batch(
        ...     {'cells': image},
        ...     {'cells': initial_mask},
        ...     EvolutionConfig(region_weight=1.0, max_iterations=200)
        ... )
        >>> print(results['cells'])
    """
    image_ids = set(images.keys())
    mask_ids = set(masks.keys())

    if image_ids != mask_ids:
        error_msg = "Los diccionarios images y masks deben tener los mismos IDs.\n"
        if image_ids - mask_ids:
            error_msg += f"Faltan en masks: {image_ids - mask_ids}\n"
        if mask_ids - image_ids:
            error_msg += f"Faltan en images: {mask_ids - image_ids}\n"
        raise ValueError(error_msg)

    config = config or EvolutionConfig()
    boundary_config = boundary_config or BoundaryConfig()

    results = {}
    for image_id in images:
        image = np.asarray(images[image_id])
        mask = np.asarray(masks[image_id])
        if mask.shape != image.shape:
            raise ValueError(
                f"La máscara de {image_id} tiene tamaño {mask.shape}, "
                f"la imagen tiene {image.shape}"
            )

        seeds = boundaries_from_labels(mask, boundary_config)
        engine = ActiveContours(image, seeds, config)
        results[image_id] = engine.run()
        logger.info("[ActiveContours] %s: %s", image_id, results[image_id])

    return results
