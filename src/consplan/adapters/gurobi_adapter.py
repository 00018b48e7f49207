
from __future__ import annotations
from typing import Any, Dict

from .base import PyomoBackend
from ..core.config import SolverConfig


class GurobiBackend(PyomoBackend):
    """Commercial Gurobi through `gurobipy` (requires a licence)."""

    name = "gurobi"
    solver_name = "gurobi_direct"

    def options(self, cfg: SolverConfig) -> Dict[str, Any]:
        opts: Dict[str, Any] = {
            "MIPGap": float(cfg.gap),
            "Threads": int(cfg.threads),
            "Presolve": int(cfg.presolve),
        }
        if cfg.time_limit is not None:
            opts["TimeLimit"] = float(cfg.time_limit)
        if cfg.first_feasible:
            opts["SolutionLimit"] = 1
        if cfg.numeric_focus:
            opts["NumericFocus"] = 3
        return opts
