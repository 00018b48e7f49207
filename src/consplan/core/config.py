# consplan/core/config.py
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import math
import pathlib
import yaml

from .errors import InvalidParameterRange

BACKENDS = ("auto", "gurobi", "highs", "cbc")

# ---------- leaf configs ----------
@dataclass
class SolverConfig:
    backend: str = "auto"
    gap: float = 0.1
    time_limit: Optional[float] = None
    threads: int = 1
    presolve: int = 2            # -1 automatic, 0 off, 1 conservative, 2 aggressive
    verbose: bool = False
    first_feasible: bool = False
    numeric_focus: bool = False
    run_checks: bool = True

    def __post_init__(self):
        if self.backend not in BACKENDS:
            raise InvalidParameterRange(f"backend must be one of {BACKENDS}, got {self.backend!r}")
        if not (0.0 <= float(self.gap) <= 1.0):
            raise InvalidParameterRange(f"gap must be in [0, 1], got {self.gap}")
        if self.time_limit is not None and (not math.isfinite(self.time_limit) or self.time_limit <= 0):
            raise InvalidParameterRange(f"time_limit must be a positive number, got {self.time_limit}")
        if int(self.threads) < 1:
            raise InvalidParameterRange(f"threads must be >= 1, got {self.threads}")
        if self.presolve not in (-1, 0, 1, 2):
            raise InvalidParameterRange(f"presolve must be -1, 0, 1 or 2, got {self.presolve}")

@dataclass
class PresolveConfig:
    threshold: float = 1e9

    def __post_init__(self):
        if not (math.isfinite(self.threshold) and self.threshold > 1.0):
            raise InvalidParameterRange(f"presolve threshold must be finite and > 1, got {self.threshold}")

@dataclass
class ModifierConfig:
    name: str = "min_set"
    params: Dict[str, Any] = field(default_factory=dict)

@dataclass
class AnalysisConfig:
    replacement_cost: bool = False
    max_workers: int = 1

@dataclass
class RunConfig:
    log_level: str = "INFO"
    out_dir: str = "runs/minimal"

# ---------- helpers ----------
def _as(cls, obj, defaults: Optional[Dict[str, Any]] = None):
    """Coerce a possibly-dict `obj` into dataclass `cls` (overlaying defaults)."""
    if isinstance(obj, cls):
        return obj
    if isinstance(obj, dict):
        base = {} if defaults is None else dict(defaults)
        base.update(obj)
        return cls(**base)  # type: ignore[arg-type]
    # nothing provided: build from defaults or empty
    return cls(**({} if defaults is None else defaults))  # type: ignore[arg-type]

def _as_list(obj) -> List[ModifierConfig]:
    if obj is None:
        return []
    if isinstance(obj, (dict, ModifierConfig)):
        obj = [obj]
    return [_as(ModifierConfig, o) for o in obj]

# ---------- top-level ----------
@dataclass
class ConsplanConfig:
    data_path: str = "examples/minimal/data"
    data_format: str = "csv"     # "csv" or "marxan"
    objective: ModifierConfig = field(default_factory=ModifierConfig)
    targets: List[ModifierConfig] = field(default_factory=list)
    constraints: List[ModifierConfig] = field(default_factory=list)
    penalties: List[ModifierConfig] = field(default_factory=list)
    decisions: Optional[ModifierConfig] = None
    solver: SolverConfig = field(default_factory=SolverConfig)
    presolve: PresolveConfig = field(default_factory=PresolveConfig)
    analysis: AnalysisConfig = field(default_factory=AnalysisConfig)
    run: RunConfig = field(default_factory=RunConfig)

    def __post_init__(self):
        # Coerce any stray dicts into the right dataclasses
        self.objective = _as(ModifierConfig, self.objective, ModifierConfig().__dict__)
        self.targets = _as_list(self.targets)
        self.constraints = _as_list(self.constraints)
        self.penalties = _as_list(self.penalties)
        if self.decisions is not None:
            self.decisions = _as(ModifierConfig, self.decisions)
        self.solver = _as(SolverConfig, self.solver, SolverConfig().__dict__)
        self.presolve = _as(PresolveConfig, self.presolve, PresolveConfig().__dict__)
        self.analysis = _as(AnalysisConfig, self.analysis, AnalysisConfig().__dict__)
        self.run = _as(RunConfig, self.run, RunConfig().__dict__)
        if self.data_format not in ("csv", "marxan"):
            raise InvalidParameterRange(f"data_format must be 'csv' or 'marxan', got {self.data_format!r}")

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "ConsplanConfig":
        d = d or {}
        return cls(
            data_path=d.get("data_path", "examples/minimal/data"),
            data_format=d.get("data_format", "csv"),
            objective=_as(ModifierConfig, d.get("objective"), ModifierConfig().__dict__),
            targets=_as_list(d.get("targets")),
            constraints=_as_list(d.get("constraints")),
            penalties=_as_list(d.get("penalties")),
            decisions=d.get("decisions"),
            solver=_as(SolverConfig, d.get("solver"), SolverConfig().__dict__),
            presolve=_as(PresolveConfig, d.get("presolve"), PresolveConfig().__dict__),
            analysis=_as(AnalysisConfig, d.get("analysis"), AnalysisConfig().__dict__),
            run=_as(RunConfig, d.get("run"), RunConfig().__dict__),
        )

def load_config(path_or_dict: str | pathlib.Path | Dict[str, Any] | ConsplanConfig) -> ConsplanConfig:
    """Accept YAML path, dict, or ConsplanConfig; always return a fully-typed ConsplanConfig."""
    if isinstance(path_or_dict, ConsplanConfig):
        return path_or_dict
    if isinstance(path_or_dict, dict):
        return ConsplanConfig.from_dict(path_or_dict)
    path = pathlib.Path(path_or_dict)
    with path.open("r") as f:
        d = yaml.safe_load(f) or {}
    return ConsplanConfig.from_dict(d)
