from __future__ import annotations
import csv
from pathlib import Path
from typing import Any, Dict, Optional, TYPE_CHECKING

import numpy as np
import yaml
from loguru import logger

from ..models.summary import feature_representation, solution_cost, target_coverage
from ..models.types import Solution

if TYPE_CHECKING:
    from ..core.problem import ConservationProblem


def _clean(v: float) -> Any:
    if v is None:
        return None
    v = float(v)
    if np.isnan(v):
        return None
    if np.isinf(v):
        return "inf" if v > 0 else "-inf"
    return v


def write_solution(problem: "ConservationProblem", solution: Solution, out_dir: str | Path,
                   replacement: Optional[np.ndarray] = None) -> Dict[str, Path]:
    """Write `solution.csv` (one row per unit) and `summary.yaml` under out_dir."""
    out = Path(out_dir)
    out.mkdir(parents=True, exist_ok=True)
    zones = problem.zone_names

    csv_path = out / "solution.csv"
    header = ["id"] + [f"solution_{z}" for z in zones]
    if replacement is not None:
        header += [f"replacement_cost_{z}" for z in zones]
    with csv_path.open("w", newline="", encoding="utf-8") as f:
        w = csv.writer(f)
        w.writerow(header)
        for i, uid in enumerate(problem.unit_ids):
            row = [uid] + [float(v) for v in solution.decisions[i]]
            if replacement is not None:
                row += [_clean(v) for v in replacement[i]]
            w.writerow(row)

    held = feature_representation(problem, solution)
    summary = {
        "status": solution.status,
        "backend": solution.backend,
        "objective": _clean(solution.objective_value),
        "bound": _clean(solution.bound),
        "gap": _clean(solution.gap),
        "runtime": round(float(solution.runtime), 4),
        "time_limit_reached": bool(solution.time_limit_reached),
        "cost": solution_cost(problem, solution),
        "selected_units": int(solution.selected().any(axis=1).sum()),
        "representation": {
            name: {z: float(held[j, k]) for k, z in enumerate(zones)}
            for j, name in enumerate(problem.feature_names)
        },
        "targets": target_coverage(problem, solution),
    }
    yaml_path = out / "summary.yaml"
    yaml_path.write_text(yaml.safe_dump(summary, sort_keys=False))
    logger.info("Wrote {} and {}", csv_path, yaml_path)
    return {"solution": csv_path, "summary": yaml_path}
