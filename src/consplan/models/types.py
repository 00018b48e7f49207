# src/consplan/models/types.py
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import numpy as np

from ..core.config import SolverConfig
from .program import CompiledProgram

@dataclass(frozen=True)
class SolverRequest:
    program: CompiledProgram
    config: SolverConfig = field(default_factory=SolverConfig)

@dataclass(frozen=True)
class SolverResponse:
    values: np.ndarray
    objective_value: float
    bound: Optional[float]
    status: str
    runtime: float
    backend: str
    time_limit_reached: bool = False

@dataclass(frozen=True)
class Solution:
    """Decisions for every (unit, zone) plus solver metadata. Never mutated."""
    values: np.ndarray              # raw vector over all program columns
    decisions: np.ndarray           # (units, zones)
    objective_value: float
    status: str                     # "OPTIMAL" or "SUBOPTIMAL"
    runtime: float
    backend: str
    bound: Optional[float] = None
    gap: Optional[float] = None
    time_limit_reached: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_optimal(self) -> bool:
        return self.status == "OPTIMAL"

    def selected(self, tol: float = 1e-6) -> np.ndarray:
        """Boolean (units, zones) mask of allocated cells."""
        return self.decisions > tol

    def selected_units(self, zone: Optional[int] = None, tol: float = 1e-6) -> np.ndarray:
        sel = self.selected(tol)
        mask = sel.any(axis=1) if zone is None else sel[:, zone]
        return np.flatnonzero(mask)
