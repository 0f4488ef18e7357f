"""
Evolution Configuration

Weights and stopping rules of the contour evolution, plus JSON loading and
saving of parameter sets.
"""

import json
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional, Union


@dataclass
class EvolutionConfig:
    """
    Parameters of :class:`ActiveContours`.

    A weight of 0 disables its term. Balloon, axis and volume terms only
    apply to surfaces.
    """
    internal_weight: float = 0.1
    """Smoothing (Laplacian) weight"""

    edge_weight: float = 0.0
    """Attraction toward image edges"""

    region_weight: float = 1.0
    """Region competition weight"""

    region_sensitivity: float = 1.0
    """Balance between inside and outside region terms (0 is read as 1)"""

    balloon_weight: float = 0.0
    """Inflation (> 0) or deflation (< 0) along the normals"""

    axis_weight: float = 0.0
    """Damping of motion away from the major axis, in [0, 1]"""

    volume_constraint: bool = False
    """Keep each surface close to its initial volume"""

    coupling: bool = True
    """Push overlapping boundaries apart (feedback forces)"""

    time_step: float = 1.0
    """Integration time step"""

    max_iterations: int = 500
    """Hard cap on evolution steps"""

    convergence_criterion: float = 0.001
    """Coefficient of variation of the window below which a boundary has converged"""

    edge_sigma: float = 1.0
    """Gaussian scale of the edge field, in pixels"""

    def __post_init__(self):
        """Validate configuration."""
        if self.time_step <= 0:
            raise ValueError(f"time_step must be > 0, got {self.time_step}")
        if self.max_iterations < 1:
            raise ValueError(f"max_iterations must be >= 1, got {self.max_iterations}")
        if self.convergence_criterion < 0:
            raise ValueError(f"convergence_criterion must be >= 0, got {self.convergence_criterion}")
        if self.edge_sigma < 0:
            raise ValueError(f"edge_sigma must be >= 0, got {self.edge_sigma}")
        if not 0 <= self.axis_weight <= 1:
            raise ValueError(f"axis_weight must be in [0, 1], got {self.axis_weight}")

    @classmethod
    def from_dict(cls, params: Dict[str, Any]) -> 'EvolutionConfig':
        """
        Build a configuration from a parameter dictionary.

        Raises:
            ValueError: On unknown keys or invalid values
        """
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(params) - known)
        if unknown:
            raise ValueError(f"Unknown evolution parameters: {', '.join(unknown)}")
        return cls(**params)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def load_evolution_config(path: Union[str, Path]) -> EvolutionConfig:
    """
    Load an :class:`EvolutionConfig` from a JSON file.

    Args:
        path: JSON file holding an object of parameters

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If the JSON is not an object, or holds unknown keys
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    with open(path, 'r', encoding='utf-8') as f:
        params = json.load(f)

    if not isinstance(params, dict):
        raise ValueError(f"Expected a JSON object in {path}, got {type(params).__name__}")
    return EvolutionConfig.from_dict(params)


def save_evolution_config(config: EvolutionConfig, path: Union[str, Path], indent: Optional[int] = 2):
    """Write ``config`` as a JSON object, creating parent directories."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(config.to_dict(), f, indent=indent)
