"""
Evolución de contornos activos.

Provides the evolution configuration (with JSON loading), the multi-boundary
engine and the batch helper.
"""

from .config import EvolutionConfig, load_evolution_config, save_evolution_config
from .engine import (
    ActiveContours,
    EvolutionResult,
    boundaries_from_labels,
    process_evolution_batch
)

__all__ = [
    'EvolutionConfig',
    'load_evolution_config',
    'save_evolution_config',
    'ActiveContours',
    'EvolutionResult',
    'boundaries_from_labels',
    'process_evolution_batch'
]
