
from __future__ import annotations
from dataclasses import dataclass
from typing import List, Union, TYPE_CHECKING
import warnings

import numpy as np
from loguru import logger

from ..core.errors import PresolveWarning
from .program import CompiledProgram

if TYPE_CHECKING:
    from ..core.problem import ConservationProblem

DEFAULT_THRESHOLD = 1e9

# penalty terms are summed into the same objective as these base terms,
# so their range is measured together with them
_PENALTY_CATEGORIES = ("boundary", "connectivity")
_BASE_CATEGORIES = ("cost", "weight", "target weights", "branch lengths")


@dataclass(frozen=True)
class PresolveIssue:
    category: str
    message: str
    ratio: float = float("nan")


def _ratio(values: np.ndarray) -> float:
    v = np.abs(values[np.isfinite(values)])
    v = v[v > 0]
    if v.size == 0:
        return 1.0
    return float(v.max() / v.min())


def _range_issues(program: CompiledProgram, threshold: float) -> List[PresolveIssue]:
    prov = program.provenance
    base = [prov[c] for c in _BASE_CATEGORIES if c in prov]
    out: List[PresolveIssue] = []
    for category in sorted(prov):
        values = prov[category]
        if category in _PENALTY_CATEGORIES and base:
            values = np.concatenate([values] + base)
        r = _ratio(values)
        if r > threshold:
            out.append(PresolveIssue(
                category,
                f"{category} values span {r:.3g}x (max/min non-zero); "
                "rescale the data to avoid numerical issues",
                r,
            ))
    bounds = np.concatenate([program.lb, program.ub])
    r = _ratio(bounds)
    if r > threshold:
        out.append(PresolveIssue("bounds", f"variable bounds span {r:.3g}x", r))
    return out


def _structural_issues(program: CompiledProgram) -> List[PresolveIssue]:
    out: List[PresolveIssue] = []
    n, z = program.n_units, program.n_zones
    lb = program.lb[: program.n_primary].reshape(n, z)
    ub = program.ub[: program.n_primary].reshape(n, z)
    free = ub > lb
    if program.sense == "min":
        obj = program.objective[: program.n_primary].reshape(n, z)
        if np.any(free) and np.all(obj[free] < 0):
            out.append(PresolveIssue(
                "cost", "all planning unit costs are negative once penalties are applied; "
                        "every unit will be selected"))
    if np.all(np.any(lb > 0, axis=1)):
        out.append(PresolveIssue("locked in", "all planning units locked in; the solution is fixed"))
    if np.all(ub <= 0):
        out.append(PresolveIssue("locked out", "all planning units locked out; nothing can be selected"))
    return out


def presolve_report(program: CompiledProgram, threshold: float = DEFAULT_THRESHOLD) -> List[PresolveIssue]:
    """All numerical-range and structural issues found in a compiled program."""
    return _range_issues(program, threshold) + _structural_issues(program)


def presolve_check(
    target: Union[CompiledProgram, "ConservationProblem"],
    threshold: float = DEFAULT_THRESHOLD,
) -> bool:
    """Return True when no issues are found; warn once per issue otherwise.

    Never raises for a detected issue: the result is advisory.
    """
    program = target if isinstance(target, CompiledProgram) else target.compile()
    issues = presolve_report(program, threshold)
    for issue in issues:
        logger.warning("Presolve check [{}]: {}", issue.category, issue.message)
        warnings.warn(f"{issue.category}: {issue.message}", PresolveWarning, stacklevel=2)
    return not issues
