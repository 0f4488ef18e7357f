"""
Self-intersection detection and split decisions for closed polylines.
"""

from .detector import (
    IntersectionReport,
    SplitDecision,
    check_loop_or_division,
    find_self_intersection,
    polygon_area,
    signed_polygon_area,
    split_arcs
)

__all__ = [
    'IntersectionReport',
    'SplitDecision',
    'check_loop_or_division',
    'find_self_intersection',
    'polygon_area',
    'signed_polygon_area',
    'split_arcs'
]
