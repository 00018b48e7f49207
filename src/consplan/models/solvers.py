from __future__ import annotations
import math
import time
from typing import Optional, Tuple

import numpy as np
import pyomo.environ as pyo
from pyomo.opt import TerminationCondition
from loguru import logger

from ..core.config import SolverConfig
from ..core.interfaces import SolverBackend
from ..core.errors import (
    Infeasible, SolverError, SolverUnavailable, TimeLimitExceeded, Unbounded,
)
from ..plugins import registry
from ..plugins.backends import AUTO_ORDER
from .presolve import presolve_check
from .program import CompiledProgram
from .types import Solution, SolverRequest, SolverResponse

_DOMAINS = {"B": pyo.Binary, "I": pyo.Integers, "C": pyo.Reals}
_OPTIMAL = (
    TerminationCondition.optimal,
    TerminationCondition.globallyOptimal,
    TerminationCondition.locallyOptimal,
)
_INFEASIBLE = (TerminationCondition.infeasible, TerminationCondition.infeasibleOrUnbounded)


def _termcond(res):
    tc = getattr(getattr(res, "solver", None), "termination_condition", None)
    return tc if tc is not None else getattr(res, "termination_condition", None)


def _has_solution(res) -> bool:
    sols = getattr(res, "solution", None)
    if sols is None or len(sols) == 0:
        return False
    return len(sols(0).variable) > 0


def _bound(value) -> Optional[float]:
    return None if not math.isfinite(value) else float(value)


def _trivial_row(sense: str, rhs: float, tol: float = 1e-9) -> bool:
    if sense == "<=":
        return 0.0 <= rhs + tol
    if sense == ">=":
        return 0.0 >= rhs - tol
    return abs(rhs) <= tol


def to_pyomo(program: CompiledProgram) -> pyo.ConcreteModel:
    """Translate a compiled program into a Pyomo ConcreteModel over `m.x[j]`."""
    m = pyo.ConcreteModel(name="consplan")
    n = program.n_variables
    m.x = pyo.Var(range(n))
    for j in range(n):
        m.x[j].domain = _DOMAINS[program.vtypes[j]]
        m.x[j].setlb(_bound(program.lb[j]))
        m.x[j].setub(_bound(program.ub[j]))

    nz = np.flatnonzero(program.objective)
    if nz.size:
        expr = pyo.quicksum(float(program.objective[j]) * m.x[j] for j in nz)
    else:
        expr = 0.0 * m.x[0]
    m.obj = pyo.Objective(expr=expr, sense=pyo.minimize if program.sense == "min" else pyo.maximize)

    m.rows = pyo.ConstraintList()
    A = program.A
    for i in range(program.n_rows):
        lo, hi = A.indptr[i], A.indptr[i + 1]
        sense, rhs = program.row_senses[i], float(program.rhs[i])
        if lo == hi:
            if not _trivial_row(sense, rhs):
                raise Infeasible(f"row {i} ({program.row_categories[i]}) has no terms and cannot be satisfied")
            continue
        lhs = pyo.quicksum(float(v) * m.x[int(j)] for j, v in zip(A.indices[lo:hi], A.data[lo:hi]))
        if sense == "<=":
            m.rows.add(lhs <= rhs)
        elif sense == ">=":
            m.rows.add(lhs >= rhs)
        else:
            m.rows.add(lhs == rhs)
    return m


def _backend_for(cfg: SolverConfig) -> SolverBackend:
    if cfg.backend != "auto":
        backend = registry.get(cfg.backend)()
        if not backend.available():
            raise SolverUnavailable(f"solver backend '{cfg.backend}' is not available")
        return backend
    for name in AUTO_ORDER:
        backend = registry.get(name)()
        if backend.available():
            logger.debug("Automatic backend selection picked {}", name)
            return backend
    raise SolverUnavailable(f"no solver backend available (tried {', '.join(AUTO_ORDER)})")


def _values(m: pyo.ConcreteModel, program: CompiledProgram) -> np.ndarray:
    x = np.array([pyo.value(m.x[j], exception=False) or 0.0 for j in range(program.n_variables)], dtype=float)
    integral = np.array([t != "C" for t in program.vtypes], dtype=bool)
    x[integral] = np.round(x[integral])
    return np.clip(x, program.lb, program.ub)


def _status(tc, has_solution: bool) -> Tuple[str, bool]:
    if tc in _INFEASIBLE:
        raise Infeasible(f"problem is infeasible (termination: {tc})")
    if tc == TerminationCondition.unbounded:
        raise Unbounded("problem is unbounded")
    if tc == TerminationCondition.maxTimeLimit:
        if not has_solution:
            raise TimeLimitExceeded("time limit reached before any feasible solution was found")
        logger.warning("Time limit reached; returning best solution found so far")
        return "SUBOPTIMAL", True
    if not has_solution:
        raise SolverError(f"solver finished without a solution (termination: {tc})")
    if tc in _OPTIMAL:
        return "OPTIMAL", False
    return "SUBOPTIMAL", False


def run_request(request: SolverRequest) -> SolverResponse:
    program, cfg = request.program, request.config
    backend = _backend_for(cfg)
    m = to_pyomo(program)
    with backend.handle() as opt:
        t0 = time.perf_counter()
        res = opt.solve(m, tee=cfg.verbose, load_solutions=False, options=backend.options(cfg))
        runtime = time.perf_counter() - t0
        tc = _termcond(res)
        has_solution = _has_solution(res)
        status, hit_limit = _status(tc, has_solution)
        m.solutions.load_from(res)
    values = _values(m, program)
    problem_info = getattr(res, "problem", None)
    attr = "lower_bound" if program.sense == "min" else "upper_bound"
    bound = getattr(problem_info, attr, None) if problem_info is not None else None
    bound = None if bound is None or not math.isfinite(float(bound)) else float(bound)
    logger.info("{} finished: {} in {:.2f}s", backend.name, status, runtime)
    return SolverResponse(
        values=values,
        objective_value=program.objective_value(values),
        bound=bound,
        status=status,
        runtime=runtime,
        backend=backend.name,
        time_limit_reached=hit_limit,
    )


def solve_program(program: CompiledProgram, cfg: Optional[SolverConfig] = None) -> Solution:
    """Solve a compiled program; raises a SolverError subclass when no solution exists."""
    cfg = cfg or SolverConfig()
    checks_ok = None
    if cfg.run_checks:
        checks_ok = presolve_check(program)
    logger.info("Solving program: {}", program.summary())
    resp = run_request(SolverRequest(program, cfg))
    gap = None
    if resp.bound is not None:
        gap = abs(resp.objective_value - resp.bound) / max(abs(resp.objective_value), 1e-10)
    values = resp.values
    values.flags.writeable = False
    decisions = program.primary(values)
    return Solution(
        values=values,
        decisions=decisions,
        objective_value=resp.objective_value,
        status=resp.status,
        runtime=resp.runtime,
        backend=resp.backend,
        bound=resp.bound,
        gap=gap,
        time_limit_reached=resp.time_limit_reached,
        metadata={"program": program.summary(), "presolve_ok": checks_ok},
    )
