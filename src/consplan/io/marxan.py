from __future__ import annotations
import math
import warnings
from pathlib import Path
from typing import Dict, Optional, Union

import numpy as np
from loguru import logger

from ..core.datatypes import ProblemData
from ..core.errors import InvalidParameterRange, ModifierConflict
from ..core.problem import ConservationProblem
from .csv_loader import read_amounts, read_boundary, read_features, read_planning_units

FIELDS = ("INPUTDIR", "PUNAME", "SPECNAME", "PUVSPRNAME", "BOUNDNAME", "BLM", "ASYMMETRICCONNECTIVITY")


def parse_input_file(path: Union[str, Path]) -> Dict[str, str]:
    """Read the `FIELD value` lines of a Marxan input.dat file.

    Unknown fields are ignored; the first occurrence of a field wins.
    """
    out: Dict[str, str] = {}
    for line in Path(path).read_text().splitlines():
        parts = line.strip().split(None, 1)
        if len(parts) == 2 and parts[0] in FIELDS and parts[0] not in out:
            out[parts[0]] = parts[1].strip()
    return out


def _truthy(value: Optional[str]) -> bool:
    return value is not None and value.strip().lower() in ("1", "true", "t", "yes")


def _locate(fields: Dict[str, str], field: str, input_dir: Path, required: bool = True) -> Optional[Path]:
    name = fields.get(field)
    if name is None:
        if required:
            raise FileNotFoundError(f"input file does not contain {field} field")
        return None
    for candidate in (Path(name), input_dir / name):
        if candidate.exists():
            return candidate
    if required:
        raise FileNotFoundError(f"file path in {field} field does not exist: {name}")
    return None


def read_marxan_input(path: Union[str, Path]) -> ProblemData:
    path = Path(path)
    fields = parse_input_file(path)
    if _truthy(fields.get("ASYMMETRICCONNECTIVITY")):
        raise ModifierConflict("Marxan inputs with asymmetric connectivity are not supported")
    input_dir = path.parent
    if "INPUTDIR" in fields:
        base = Path(fields["INPUTDIR"])
        input_dir = base if base.is_absolute() else input_dir / base

    units, zone_names = read_planning_units(_locate(fields, "PUNAME", input_dir))
    features = read_features(_locate(fields, "SPECNAME", input_dir))
    amounts = read_amounts(_locate(fields, "PUVSPRNAME", input_dir), zone_names)
    bound_path = _locate(fields, "BOUNDNAME", input_dir, required=False)
    boundary = read_boundary(bound_path) if bound_path is not None else []
    blm = float(fields["BLM"]) if "BLM" in fields else 0.0
    logger.info("Read Marxan input {} ({} units, {} features)", path, len(units), len(features))
    return ProblemData(planning_units=units, features=features, amounts=amounts,
                       boundary=boundary, zone_names=zone_names, blm=blm)


def marxan_problem(source: Union[str, Path, ProblemData], blm: Optional[float] = None) -> ConservationProblem:
    """Build the classic Marxan minimum set problem.

    `source` is an input.dat path or already-loaded ProblemData. Units with
    status 2 or 3 are locked in or out, targets come from the `prop` or the
    `amount` column of the feature table and boundary data (if any) is
    penalized by the boundary length modifier with an edge factor of 1.
    """
    data = source if isinstance(source, ProblemData) else read_marxan_input(source)
    blm = data.blm if blm is None else float(blm)
    if not math.isfinite(blm):
        raise InvalidParameterRange(f"BLM must be finite, got {blm}")
    if data.number_of_zones != 1:
        raise InvalidParameterRange("Marxan problems have a single zone")

    has_prop = any(f.prop is not None for f in data.features)
    has_amount = any(f.amount is not None for f in data.features)
    if has_prop == has_amount:
        raise InvalidParameterRange('feature table must have the column "prop" or "amount" and not both')

    p = ConservationProblem.from_data(data).add_min_set_objective()
    feats = sorted(data.features, key=lambda f: f.id)
    if has_prop:
        p = p.add_relative_targets(np.array([f.prop for f in feats], dtype=float))
    else:
        p = p.add_absolute_targets(np.array([f.amount for f in feats], dtype=float))

    if data.boundary:
        p = p.add_boundary_penalties(blm, data.boundary_triplets(), edge_factor=1.0)
    elif abs(blm) > 1e-50:
        msg = "no boundary data supplied so the BLM has no effect"
        logger.warning(msg)
        warnings.warn(msg, UserWarning, stacklevel=2)
    return p
