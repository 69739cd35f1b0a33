"""
Per-iteration diagnostics for the registration loop.

Captures what the loop decided at each iteration (noise magnitudes, residuals,
convergence deltas, filter regime, timings) so a run can be inspected after
the fact without re-running it.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List

import numpy as np


@dataclass
class IterationDiagnostics:
    """Diagnostic record for one registration iteration."""

    iteration: int
    n_correspondences: int
    n_normal_correspondences: int

    res1: float
    res2: float
    r_mag: float
    q_mag: float

    dT: float
    dR: float

    pose: np.ndarray = field(default_factory=lambda: np.zeros((6,), dtype=np.float64))
    concentrations: np.ndarray = field(default_factory=lambda: np.zeros((4,), dtype=np.float64))

    scaled_inversion: bool = False
    regularized_eigenvalues: int = 0

    search_time_sec: float = 0.0
    filter_time_sec: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "iteration": self.iteration,
            "n_correspondences": self.n_correspondences,
            "n_normal_correspondences": self.n_normal_correspondences,
            "res1": self.res1,
            "res2": self.res2,
            "r_mag": self.r_mag,
            "q_mag": self.q_mag,
            "dT": self.dT,
            "dR": self.dR,
            "pose": np.asarray(self.pose, dtype=float).tolist(),
            "concentrations": np.asarray(self.concentrations, dtype=float).tolist(),
            "scaled_inversion": bool(self.scaled_inversion),
            "regularized_eigenvalues": int(self.regularized_eigenvalues),
            "search_time_sec": self.search_time_sec,
            "filter_time_sec": self.filter_time_sec,
        }


def diagnostics_to_json(diagnostics: List[IterationDiagnostics]) -> str:
    """Serialize a run's diagnostics as a JSON array."""
    return json.dumps([d.to_dict() for d in diagnostics])
