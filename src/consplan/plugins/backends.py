
from __future__ import annotations
from .registry import register
from ..adapters.cbc_adapter import CbcBackend
from ..adapters.gurobi_adapter import GurobiBackend
from ..adapters.highs_adapter import HighsBackend

# order matters: "auto" takes the first available backend
AUTO_ORDER = ("gurobi", "highs", "cbc")

@register("gurobi")
def gurobi_backend() -> GurobiBackend:
    return GurobiBackend()

@register("highs")
def highs_backend() -> HighsBackend:
    return HighsBackend()

@register("cbc")
def cbc_backend() -> CbcBackend:
    return CbcBackend()
