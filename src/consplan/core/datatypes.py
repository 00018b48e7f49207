
from __future__ import annotations
from pydantic import BaseModel, Field
from typing import Dict, List, Optional, Tuple

from .errors import DimensionMismatch

class PlanningUnitRecord(BaseModel):
    id: int = Field(gt=0)
    cost: List[float]                 # one entry per zone; NaN = not available in that zone
    status: int = Field(0, ge=0, le=3)  # 2 = locked in, 3 = locked out

class FeatureRecord(BaseModel):
    id: int = Field(gt=0)
    name: str
    prop: Optional[float] = Field(None, ge=0.0, le=1.0)
    amount: Optional[float] = Field(None, ge=0.0)

class AmountRecord(BaseModel):
    pu: int = Field(gt=0)
    species: int = Field(gt=0)
    amount: float = Field(ge=0.0)
    zone: int = Field(1, ge=1)

class BoundaryRecord(BaseModel):
    id1: int = Field(gt=0)
    id2: int = Field(gt=0)
    boundary: float

class ProblemData(BaseModel):
    planning_units: List[PlanningUnitRecord] = Field(default_factory=list)
    features: List[FeatureRecord] = Field(default_factory=list)
    amounts: List[AmountRecord] = Field(default_factory=list)
    boundary: List[BoundaryRecord] = Field(default_factory=list)
    zone_names: List[str] = Field(default_factory=lambda: ["zone_1"])
    blm: float = 0.0

    @property
    def number_of_zones(self) -> int:
        return len(self.zone_names)

    def unit_index(self) -> Dict[int, int]:
        """Planning unit id -> 0-based row, in ascending id order."""
        return {pid: i for i, pid in enumerate(sorted(r.id for r in self.planning_units))}

    def boundary_triplets(self) -> List[Tuple[int, int, float]]:
        index = self.unit_index()
        out = []
        for b in self.boundary:
            if b.id1 not in index or b.id2 not in index:
                raise DimensionMismatch(f"boundary record refers to unknown planning unit: {b}")
            out.append((index[b.id1], index[b.id2], b.boundary))
        return out
