
from __future__ import annotations
from typing import Any, Dict

from .base import PyomoBackend
from ..core.config import SolverConfig


class CbcBackend(PyomoBackend):
    """COIN-OR CBC through the `cbc` executable on PATH."""

    name = "cbc"
    solver_name = "cbc"

    def options(self, cfg: SolverConfig) -> Dict[str, Any]:
        opts: Dict[str, Any] = {
            "ratio": float(cfg.gap),
            "threads": int(cfg.threads),
            "presolve": "off" if cfg.presolve == 0 else "on",
        }
        if cfg.time_limit is not None:
            opts["sec"] = float(cfg.time_limit)
        if cfg.first_feasible:
            opts["maxSolutions"] = 1
        # CBC has no numeric-focus switch; tighter integrality is the closest match
        if cfg.numeric_focus:
            opts["integerTolerance"] = 1e-9
        return opts
