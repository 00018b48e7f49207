from __future__ import annotations
import numpy as np
from ..core.datatypes import AmountRecord, BoundaryRecord, FeatureRecord, PlanningUnitRecord, ProblemData
from ..core.graph import boundary_matrix_from_grid
from ..core.problem import ConservationProblem

def synthesize_problem_data(n_rows: int = 9, n_cols: int = 10, n_features: int = 5,
                            n_zones: int = 1, seed: int = 0) -> ProblemData:
    """Random grid landscape: unit ids run row-major from 1, features are patchy."""
    rng = np.random.default_rng(seed)
    n = n_rows * n_cols
    costs = rng.uniform(1.0, 10.0, size=(n, n_zones)).round(3)
    units = [PlanningUnitRecord(id=i + 1, cost=costs[i].tolist()) for i in range(n)]
    features = [FeatureRecord(id=j + 1, name=f"feature_{j + 1}") for j in range(n_features)]
    amounts = []
    for j in range(n_features):
        present = rng.random(n) < 0.6
        present[rng.integers(n)] = True   # every feature occurs somewhere
        values = rng.uniform(0.1, 1.0, size=n).round(3)
        for i in np.flatnonzero(present):
            for z in range(n_zones):
                amounts.append(AmountRecord(pu=int(i) + 1, species=j + 1, amount=float(values[i]), zone=z + 1))
    bm = boundary_matrix_from_grid(n_rows, n_cols).tocoo()
    boundary = [
        BoundaryRecord(id1=int(i) + 1, id2=int(k) + 1, boundary=float(v))
        for i, k, v in zip(bm.row, bm.col, bm.data) if i <= k
    ]
    return ProblemData(planning_units=units, features=features, amounts=amounts, boundary=boundary,
                       zone_names=[f"zone_{z + 1}" for z in range(n_zones)])

def synthesize_grid_problem(n_rows: int = 9, n_cols: int = 10, n_features: int = 5,
                            n_zones: int = 1, seed: int = 0) -> ConservationProblem:
    return ConservationProblem.from_data(synthesize_problem_data(n_rows, n_cols, n_features, n_zones, seed))
