from __future__ import annotations
import concurrent.futures
import multiprocessing
from dataclasses import replace
from typing import Optional, Tuple, TYPE_CHECKING

import numpy as np
from loguru import logger

from ..core.config import SolverConfig
from ..core.errors import Infeasible
from .solvers import solve_program
from .types import Solution

if TYPE_CHECKING:
    from ..core.problem import ConservationProblem


def _column(program, cell: Tuple[int, int]) -> int:
    return int(cell[0]) * program.n_zones + int(cell[1])


def _loss(program, col: int, base: float, cfg: SolverConfig) -> float:
    if program.lb[col] > 0:
        # locked in: removing it can never be feasible
        return float("inf")
    try:
        alt = solve_program(program.with_bounds(col, ub=0.0), cfg)
    except Infeasible:
        return float("inf")
    if program.sense == "min":
        return alt.objective_value - base
    return base - alt.objective_value


def replacement_cost(
    problem: "ConservationProblem",
    solution: Solution,
    cfg: Optional[SolverConfig] = None,
    max_workers: int = 1,
) -> np.ndarray:
    """Objective loss from excluding each selected (unit, zone).

    Every selected cell is forced to zero in turn and the program re-solved.
    Cells whose removal makes the problem infeasible score ``inf``; cells that
    were not selected score ``NaN``.
    """
    cfg = replace(cfg or SolverConfig(), run_checks=False)
    program = problem.compile()
    out = np.full((program.n_units, program.n_zones), np.nan)
    cells = [tuple(c) for c in np.argwhere(solution.selected())]
    logger.info("Replacement cost: re-solving for {} selected cells", len(cells))

    if max_workers > 1:
        # one solve per process: Pyomo swaps the process-wide stdout while solving
        ctx = multiprocessing.get_context("spawn")
        with concurrent.futures.ProcessPoolExecutor(max_workers=max_workers, mp_context=ctx) as executor:
            futures = {
                executor.submit(_loss, program, _column(program, cell), solution.objective_value, cfg): cell
                for cell in cells
            }
            for fut in concurrent.futures.as_completed(futures):
                out[futures[fut]] = fut.result()
    else:
        for cell in cells:
            out[cell] = _loss(program, _column(program, cell), solution.objective_value, cfg)
    return out
