from __future__ import annotations
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional
from pathlib import Path

import numpy as np
from loguru import logger

from .config import ConsplanConfig, ModifierConfig
from .datatypes import ProblemData
from .errors import InvalidParameterRange
from .graph import off_diagonal, relation_matrix
from .problem import ConservationProblem
from ..io.loaders import load_problem_data
from ..io.marxan import marxan_problem
from ..io.writers import write_solution
from ..models.importance import replacement_cost
from ..models.objectives import Phylogeny
from ..models.presolve import presolve_check
from ..models.solvers import solve_program
from ..models.types import Solution

# config name -> ConservationProblem builder method
OBJECTIVES = {
    "min_set": "add_min_set_objective",
    "max_utility": "add_max_utility_objective",
    "max_features": "add_max_features_objective",
    "max_phylo_div": "add_max_phylo_div_objective",
}
TARGETS = {
    "relative": "add_relative_targets",
    "absolute": "add_absolute_targets",
    "loglinear": "add_loglinear_targets",
    "manual": "add_manual_targets",
}
CONSTRAINTS = {
    "locked_in": "add_locked_in_constraints",
    "locked_out": "add_locked_out_constraints",
    "neighbor": "add_neighbor_constraints",
    "contiguity": "add_contiguity_constraints",
    "linear": "add_linear_constraints",
}
PENALTIES = {
    "boundary": "add_boundary_penalties",
    "connectivity": "add_connectivity_penalties",
}
DECISIONS = {
    "binary": "add_binary_decisions",
    "proportion": "add_proportion_decisions",
    "integer": "add_integer_decisions",
}


@dataclass
class RunResult:
    problem: ConservationProblem
    solution: Solution
    presolve_ok: bool
    replacement: Optional[np.ndarray] = None
    outputs: Dict[str, Path] = field(default_factory=dict)


class PlanningRun:
    """Load data, attach the configured modifiers, check, solve and write outputs."""

    def __init__(self, cfg: ConsplanConfig, data: Optional[ProblemData] = None):
        self.cfg = cfg
        self.data = data if data is not None else load_problem_data(cfg)

    # ---------- parameter references ----------
    def _relation(self, value):
        # "boundary" names the loaded boundary table; "adjacency" its shared edges only
        if value == "boundary":
            return self.data.boundary_triplets()
        if value == "adjacency":
            n = len(self.data.planning_units)
            m = off_diagonal(relation_matrix(self.data.boundary_triplets(), n, name="boundary data"))
            return (m > 0).astype(float)
        if isinstance(value, list):
            return np.asarray(value, dtype=float)
        return value

    def _params(self, mc: ModifierConfig, problem: ConservationProblem) -> Dict[str, Any]:
        params = dict(mc.params)
        if "data" in params:
            params["data"] = self._relation(params["data"])
        if "ids" in params:
            index = {uid: i for i, uid in enumerate(problem.unit_ids)}
            params["units"] = [index[i] for i in params.pop("ids")]
        if "phylogeny" in params and isinstance(params["phylogeny"], dict):
            ph = params["phylogeny"]
            params["phylogeny"] = Phylogeny.from_clades(ph["clades"], ph["lengths"], problem.number_of_features)
        return params

    def _apply(self, problem: ConservationProblem, mc: ModifierConfig, table: Dict[str, str], kind: str):
        if mc.name not in table:
            raise InvalidParameterRange(f"unknown {kind} {mc.name!r}; expected one of {sorted(table)}")
        logger.debug("Adding {} {} {}", kind, mc.name, mc.params)
        return getattr(problem, table[mc.name])(**self._params(mc, problem))

    # ---------- stages ----------
    def build_problem(self) -> ConservationProblem:
        cfg = self.cfg
        if cfg.data_format == "marxan":
            p = marxan_problem(self.data)
        else:
            p = ConservationProblem.from_data(self.data)
            p = self._apply(p, cfg.objective, OBJECTIVES, "objective")
            for mc in cfg.targets:
                p = self._apply(p, mc, TARGETS, "targets")
        for mc in cfg.constraints:
            p = self._apply(p, mc, CONSTRAINTS, "constraints")
        for mc in cfg.penalties:
            p = self._apply(p, mc, PENALTIES, "penalties")
        if cfg.decisions is not None:
            p = self._apply(p, cfg.decisions, DECISIONS, "decisions")
        logger.info("Built problem: {}", p)
        return p

    def run(self, write: bool = True) -> RunResult:
        problem = self.build_problem()
        program = problem.compile()
        ok = presolve_check(program, threshold=self.cfg.presolve.threshold)
        solver_cfg = self.cfg.solver
        solution = solve_program(program, replace(solver_cfg, run_checks=False))
        logger.info("Objective {:.6g} ({}, {:.2f}s)", solution.objective_value, solution.status, solution.runtime)
        rc = None
        if self.cfg.analysis.replacement_cost:
            rc = replacement_cost(problem, solution, solver_cfg, max_workers=self.cfg.analysis.max_workers)
        outputs = write_solution(problem, solution, self.cfg.run.out_dir, rc) if write else {}
        return RunResult(problem=problem, solution=solution, presolve_ok=ok, replacement=rc, outputs=outputs)
