from __future__ import annotations
from typing import Any, Dict, List, Optional, TYPE_CHECKING

import numpy as np
import scipy.sparse as sp

from ..core.graph import connected_components, relation_matrix
from .targets import resolve_targets
from .types import Solution

if TYPE_CHECKING:
    from ..core.problem import ConservationProblem


def feature_representation(problem: "ConservationProblem", solution: Solution) -> np.ndarray:
    """Amount of each feature held by the solution, shape (features, zones)."""
    x = solution.decisions
    held = np.zeros((problem.number_of_features, problem.number_of_zones))
    for z in range(problem.number_of_zones):
        held[:, z] = problem.amounts(z) @ x[:, z]
    return held


def target_coverage(problem: "ConservationProblem", solution: Solution, tol: float = 1e-6) -> List[Dict[str, Any]]:
    held = feature_representation(problem, solution)
    rows = []
    for t in resolve_targets(problem, problem.modifiers.targets):
        amount = float(held[t.feature, list(t.zones)].sum())
        if t.sense == ">=":
            met = amount >= t.value - tol
        elif t.sense == "<=":
            met = amount <= t.value + tol
        else:
            met = abs(amount - t.value) <= tol
        rows.append({
            "feature": problem.feature_names[t.feature],
            "zones": [problem.zone_names[z] for z in t.zones],
            "sense": t.sense,
            "target": float(t.value),
            "held": amount,
            "met": bool(met),
        })
    return rows


def solution_cost(problem: "ConservationProblem", solution: Solution) -> float:
    costs = np.nan_to_num(problem.costs, nan=0.0)
    return float((costs * solution.decisions).sum())


def boundary_length(problem: "ConservationProblem", solution: Solution, data, zone: Optional[int] = None) -> float:
    """Total outer boundary of the selected units.

    Shared edges between two selected units cancel; edges against unselected
    units and the exposed perimeter on the diagonal are counted in full.
    """
    n = problem.number_of_planning_units
    m = relation_matrix(data, n, name="boundary data")
    x = solution.decisions.sum(axis=1) if zone is None else solution.decisions[:, zone]
    x = np.clip(x, 0.0, 1.0)
    diag = m.diagonal()
    off = m - sp.diags(diag)
    # sum_i x_i * (diag_i + sum_j b_ij) - sum_ij b_ij x_i x_j
    total = float(x @ diag) + float(x @ np.asarray(off.sum(axis=1)).ravel()) - float(x @ (off @ x))
    return total


def solution_components(problem: "ConservationProblem", solution: Solution, data, zone: Optional[int] = None) -> int:
    """Number of connected groups formed by the selected units."""
    n = problem.number_of_planning_units
    m = relation_matrix(data, n, name="adjacency data")
    sel = solution.selected()
    mask = sel.any(axis=1) if zone is None else sel[:, zone]
    labels = connected_components(m, mask)
    return int(np.unique(labels[labels >= 0]).size)
