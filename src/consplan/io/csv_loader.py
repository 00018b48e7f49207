# consplan/src/consplan/io/csv_loader.py
from __future__ import annotations
import csv
import math
from pathlib import Path
from typing import Optional
from loguru import logger
from ..core.datatypes import (
    AmountRecord, BoundaryRecord, FeatureRecord, PlanningUnitRecord, ProblemData,
)

def _read_csv(path: Path) -> list[dict]:
    with path.open(newline="", encoding="utf-8") as f:
        head = f.readline()
        f.seek(0)
        # Marxan tables are either comma or tab separated
        rdr = csv.DictReader(f, delimiter="\t" if "\t" in head else ",")
        return [{k.strip(): (v.strip() if isinstance(v, str) else v) for k, v in r.items() if k} for r in rdr]

def _num(value, default: Optional[float] = None) -> Optional[float]:
    if value is None or value == "":
        return default
    if str(value).strip().upper() in ("NA", "NAN"):
        return math.nan
    return float(value)

def _cost_columns(row: dict) -> list[str]:
    if "cost" in row:
        return ["cost"]
    cols = [k for k in row if k.startswith("cost_")]
    if not cols:
        raise KeyError("pu table needs a 'cost' column or one 'cost_<zone>' column per zone")
    return cols

def read_planning_units(path: Path) -> tuple[list[PlanningUnitRecord], list[str]]:
    # pu.csv: id,cost[,status]  or  id,cost_<zone>...[,status]
    rows = _read_csv(path)
    if not rows:
        raise ValueError(f"{path} has no planning units")
    cols = _cost_columns(rows[0])
    zone_names = ["zone_1"] if cols == ["cost"] else [c[len("cost_"):] for c in cols]
    units = [
        PlanningUnitRecord(
            id=int(float(r["id"])),
            cost=[_num(r.get(c), math.nan) for c in cols],
            status=int(float(r.get("status") or 0)),
        )
        for r in rows
    ]
    return units, zone_names

def read_features(path: Path) -> list[FeatureRecord]:
    # spec.csv: id[,name][,prop|amount]
    out = []
    for i, r in enumerate(_read_csv(path)):
        fid = int(float(r["id"]))
        out.append(FeatureRecord(
            id=fid,
            name=r.get("name") or f"feature.{i + 1}",
            prop=_num(r.get("prop")),
            amount=_num(r.get("amount")),
        ))
    return out

def read_amounts(path: Path, zone_names: list[str]) -> list[AmountRecord]:
    # puvspr.csv: species,pu,amount[,zone]
    zone_index = {name: k + 1 for k, name in enumerate(zone_names)}
    out = []
    for r in _read_csv(path):
        zone = r.get("zone") or 1
        zone = zone_index[zone] if zone in zone_index else int(float(zone))
        out.append(AmountRecord(
            pu=int(float(r["pu"])), species=int(float(r["species"])),
            amount=float(r["amount"]), zone=zone,
        ))
    return out

def read_boundary(path: Path) -> list[BoundaryRecord]:
    # bound.csv: id1,id2,boundary
    return [
        BoundaryRecord(id1=int(float(r["id1"])), id2=int(float(r["id2"])), boundary=float(r["boundary"]))
        for r in _read_csv(path)
    ]

def load_problem_data_from_csvs(data_dir: str) -> ProblemData:
    dp = Path(data_dir)
    units, zone_names = read_planning_units(dp / "pu.csv")
    features = read_features(dp / "spec.csv")
    amounts = read_amounts(dp / "puvspr.csv", zone_names)

    # Optional: bound.csv (id1,id2,boundary)
    bound_path = dp / "bound.csv"
    boundary = read_boundary(bound_path) if bound_path.exists() else []

    logger.info(
        "Loaded CSV data: |PU|={} |F|={} |A|={} |B|={} zones={}",
        len(units), len(features), len(amounts), len(boundary), zone_names,
    )
    return ProblemData(planning_units=units, features=features, amounts=amounts,
                       boundary=boundary, zone_names=zone_names)
