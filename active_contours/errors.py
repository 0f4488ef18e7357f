"""
Exception types raised by the active contour engine.

Topology changes are not errors: they are reported through
:class:`~active_contours.geometry.boundary.TopologyResult`.
"""


class ActiveContourError(Exception):
    """Base class for all engine errors."""


class UnsupportedDimensionError(ActiveContourError, ValueError):
    """Raised when a shape measure of an unknown order is requested."""

    def __init__(self, order: int):
        self.order = order
        super().__init__(f"Dimension {order} not implemented (expected 0, 1 or 2)")


class ShapeSourceError(ActiveContourError, ValueError):
    """Raised when a boundary cannot be built from the supplied shape source."""
