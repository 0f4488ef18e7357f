"""
Deformable boundaries: closed polygons (2D) and closed triangle meshes (3D).

Both variants share the force buffers, integration and topology-result
contract defined in boundary.py.
"""

from .boundary import (
    BaseBoundary,
    BoundaryConfig,
    BoundingSphere,
    TopologyResult,
    TopologyStatus,
    validate_resample_factors
)
from .convergence import SlidingWindow
from .polygon import Polygon
from .surface import Surface

__all__ = [
    'BaseBoundary',
    'BoundaryConfig',
    'BoundingSphere',
    'TopologyResult',
    'TopologyStatus',
    'validate_resample_factors',
    'SlidingWindow',
    'Polygon',
    'Surface'
]
