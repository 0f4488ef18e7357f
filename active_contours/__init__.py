"""
Active Contours - Contornos activos 2D (polígonos) y 3D (mallas) para segmentación.

Este paquete implementa la evolución de contornos deformables guiada por
fuerzas internas, de bordes y de región, con detección de cambios de
topología (división y desaparición) y fuerzas de contacto entre contornos.
"""

from .errors import ActiveContourError, ShapeSourceError, UnsupportedDimensionError
from .evolution import (
    ActiveContours,
    EvolutionConfig,
    EvolutionResult,
    load_evolution_config,
    process_evolution_batch
)
from .geometry import (
    BaseBoundary,
    BoundaryConfig,
    Polygon,
    SlidingWindow,
    Surface,
    TopologyResult,
    TopologyStatus
)
from .tracing import MaskTracer, TracerConfig, trace_mask

__all__ = [
    # Errors
    'ActiveContourError',
    'ShapeSourceError',
    'UnsupportedDimensionError',
    # Geometry
    'BaseBoundary',
    'BoundaryConfig',
    'Polygon',
    'Surface',
    'SlidingWindow',
    'TopologyResult',
    'TopologyStatus',
    # Tracing
    'MaskTracer',
    'TracerConfig',
    'trace_mask',
    # Evolution
    'ActiveContours',
    'EvolutionConfig',
    'EvolutionResult',
    'load_evolution_config',
    'process_evolution_batch'
]
