"""
Binary mask tracing into ordered closed polylines.
"""

from .mask_tracer import MaskTracer, TracerConfig, trace_mask

__all__ = ['MaskTracer', 'TracerConfig', 'trace_mask']
