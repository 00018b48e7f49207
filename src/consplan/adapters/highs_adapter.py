
from __future__ import annotations
from typing import Any, Dict

from .base import PyomoBackend
from ..core.config import SolverConfig


class HighsBackend(PyomoBackend):
    """Open-source HiGHS through Pyomo's APPSI interface (needs `highspy`)."""

    name = "highs"
    solver_name = "appsi_highs"

    def options(self, cfg: SolverConfig) -> Dict[str, Any]:
        presolve = {-1: "choose", 0: "off"}.get(cfg.presolve, "on")
        opts: Dict[str, Any] = {
            "mip_rel_gap": float(cfg.gap),
            "threads": int(cfg.threads),
            "presolve": presolve,
        }
        if cfg.time_limit is not None:
            opts["time_limit"] = float(cfg.time_limit)
        if cfg.first_feasible:
            opts["mip_max_improving_sols"] = 1
        if cfg.numeric_focus:
            opts["mip_feasibility_tolerance"] = 1e-9
            opts["primal_feasibility_tolerance"] = 1e-9
        return opts
