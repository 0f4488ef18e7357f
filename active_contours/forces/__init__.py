"""
Force pipeline.

This module provides:
1. Bilinear / trilinear image sampling (zero outside the image)
2. Force kernels (internal, edge, region, feedback, balloon, constraints)
3. Field preparation (edge field, region means)
4. Bounded-displacement integration
"""

from .fields import compute_gradient_field, compute_region_means, normalize_image
from .integrator import cap_displacement, integrate
from .sampling import sample_at, sample_bilinear, sample_gradient, sample_trilinear
from .terms import (
    axis_constraint_scale,
    balloon_force,
    edge_force,
    feedback_force,
    polygon_laplacian,
    region_force,
    region_magnitude,
    volume_constraint_scale
)

__all__ = [
    # Sampling
    'sample_at',
    'sample_bilinear',
    'sample_trilinear',
    'sample_gradient',
    # Force terms
    'polygon_laplacian',
    'edge_force',
    'region_magnitude',
    'region_force',
    'feedback_force',
    'balloon_force',
    'volume_constraint_scale',
    'axis_constraint_scale',
    # Fields
    'compute_gradient_field',
    'compute_region_means',
    'normalize_image',
    # Integration
    'cap_displacement',
    'integrate'
]
