
from __future__ import annotations
from typing import TYPE_CHECKING

import numpy as np
from loguru import logger

from ..core.errors import MissingModifier, ModifierConflict, NonFiniteCoefficient
from .decisions import BinaryDecision
from .objectives import check_targets
from .program import CompiledProgram, ProgramBuilder
from .targets import resolve_targets

if TYPE_CHECKING:
    from ..core.problem import ConservationProblem


def _check_inputs(problem: "ConservationProblem") -> None:
    costs = np.asarray(problem.costs, dtype=float)
    if np.any(np.isinf(costs)):
        raise NonFiniteCoefficient("cost", "costs must be finite (use NaN for unavailable zones)")
    for z in range(problem.number_of_zones):
        data = problem.amounts(z).data
        if data.size and not np.all(np.isfinite(data)):
            raise NonFiniteCoefficient("feature amount", f"zone {z}")


def _apply_bounds(builder: ProgramBuilder, problem: "ConservationProblem") -> None:
    unavailable = np.isnan(np.asarray(problem.costs, dtype=float)).ravel()
    builder.tighten_primary(np.flatnonzero(unavailable), ub=0.0)
    builder.tighten_primary(np.flatnonzero(problem.locked_in.ravel()), lb=1.0)
    builder.tighten_primary(np.flatnonzero(problem.locked_out.ravel()), ub=0.0)
    for c in problem.modifiers.constraints:
        c.contribute_bounds(builder)

    lb, ub = builder.primary_lb, builder.primary_ub
    clash = np.flatnonzero(lb > ub)
    if clash.size:
        units = sorted({int(c) // builder.n_zones for c in clash})
        raise ModifierConflict(
            f"planning units {units[:10]} are locked in and locked out "
            "(or locked in to a zone where they are unavailable)")
    per_unit = lb.reshape(builder.n_units, builder.n_zones).sum(axis=1)
    over = np.flatnonzero(per_unit > builder.primary_upper)
    if over.size:
        raise ModifierConflict(f"planning units {over[:10].tolist()} are locked in to more than one zone")


def _zone_allocation_rows(builder: ProgramBuilder) -> None:
    """Each unit is allocated to at most one zone in total."""
    if builder.n_zones < 2:
        return
    cols = np.arange(builder.n_primary)
    builder.add_rows(cols // builder.n_zones, cols, 1.0, "<=",
                     np.full(builder.n_units, builder.primary_upper), "zone allocation")


def compile_problem(problem: "ConservationProblem") -> CompiledProgram:
    """Assemble the program for a problem and its modifier stack.

    Order is fixed so that the same problem always compiles to an identical
    program: primary block and bounds, zone allocation rows, objective (its
    auxiliaries, budget and target rows), constraints in the order they were
    added, then penalties in the order they were added.
    """
    stack = problem.modifiers
    objective = stack.objective
    if objective is None:
        raise MissingModifier("problem has no objective")
    decision = stack.decision if stack.decision is not None else BinaryDecision()

    _check_inputs(problem)
    builder = ProgramBuilder(problem, decision.vtype, decision.upper)
    builder.targets = resolve_targets(problem, stack.targets)
    check_targets(objective, builder.targets)

    _apply_bounds(builder, problem)
    _zone_allocation_rows(builder)

    objective.contribute_objective(builder)
    objective.contribute_rows(builder)
    for c in stack.constraints:
        c.contribute_rows(builder)
    for p in stack.penalties:
        p.contribute_objective(builder)
        p.contribute_rows(builder)

    program = builder.build()
    logger.debug(
        "Compiled {} ({}): {} variables in {} blocks, {} rows",
        objective.label, decision.label, program.n_variables, len(program.blocks), program.n_rows,
    )
    return program
