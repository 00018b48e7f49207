
from __future__ import annotations
from dataclasses import dataclass, field, fields, replace
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union, TYPE_CHECKING

import numpy as np
import scipy.sparse as sp
from loguru import logger

from ..core.errors import InvalidParameterRange, NonFiniteCoefficient

if TYPE_CHECKING:
    from ..core.problem import ConservationProblem
    from .targets import ResolvedTarget

SENSES = (">=", "<=", "=")
VTYPES = ("B", "C", "I")


def _frozen(a, dtype=None) -> np.ndarray:
    out = np.array(a, dtype=dtype, copy=True)
    out.flags.writeable = False
    return out


def _frozen_csr(m: sp.spmatrix) -> sp.csr_matrix:
    out = sp.csr_matrix(m, copy=True)
    for arr in (out.data, out.indices, out.indptr):
        arr.flags.writeable = False
    return out


@dataclass(frozen=True)
class VariableBlock:
    name: str
    start: int
    stop: int

    @property
    def size(self) -> int:
        return self.stop - self.start


@dataclass(frozen=True)
class CompiledProgram:
    """A normalized linear/integer program.

    Columns are laid out unit-major: the primary decision for (unit, zone)
    sits at column ``unit * n_zones + zone``. Auxiliary blocks follow in the
    order listed in ``blocks``. Rows are stored in a CSR matrix ``A`` with a
    relational operator and right-hand side per row.
    """

    sense: str
    objective: np.ndarray
    A: sp.csr_matrix
    row_senses: Tuple[str, ...]
    rhs: np.ndarray
    lb: np.ndarray
    ub: np.ndarray
    vtypes: Tuple[str, ...]
    row_categories: Tuple[str, ...]
    blocks: Tuple[VariableBlock, ...]
    n_units: int
    n_zones: int
    provenance: Mapping[str, np.ndarray] = field(default_factory=dict)

    @property
    def n_variables(self) -> int:
        return int(self.objective.size)

    @property
    def n_rows(self) -> int:
        return int(self.rhs.size)

    @property
    def n_primary(self) -> int:
        return self.n_units * self.n_zones

    def block(self, name: str) -> VariableBlock:
        for b in self.blocks:
            if b.name == name:
                return b
        raise KeyError(f"No variable block named '{name}'")

    def primary(self, x) -> np.ndarray:
        """Reshape the primary sub-vector of a raw solution into (units, zones)."""
        x = np.asarray(x, dtype=float)
        return x[: self.n_primary].reshape(self.n_units, self.n_zones)

    def objective_value(self, x) -> float:
        return float(np.dot(self.objective, np.asarray(x, dtype=float)))

    def with_bounds(self, cols, lb: Optional[float] = None, ub: Optional[float] = None) -> "CompiledProgram":
        """Independent copy with the bounds of `cols` replaced."""
        cols = np.atleast_1d(np.asarray(cols, dtype=int))
        new_lb, new_ub = np.array(self.lb), np.array(self.ub)
        if lb is not None:
            new_lb[cols] = lb
        if ub is not None:
            new_ub[cols] = ub
        if np.any(new_lb > new_ub):
            raise InvalidParameterRange("lower bound above upper bound after restriction")
        return replace(self, lb=_frozen(new_lb), ub=_frozen(new_ub))

    def equals(self, other: "CompiledProgram") -> bool:
        """Exact (bitwise) equality of layout, coefficients and row order."""
        if not isinstance(other, CompiledProgram):
            return False
        same = (
            self.sense == other.sense
            and self.row_senses == other.row_senses
            and self.vtypes == other.vtypes
            and self.row_categories == other.row_categories
            and self.blocks == other.blocks
            and self.A.shape == other.A.shape
        )
        if not same:
            return False
        arrays = [
            (self.objective, other.objective), (self.rhs, other.rhs),
            (self.lb, other.lb), (self.ub, other.ub),
            (self.A.data, other.A.data), (self.A.indices, other.A.indices),
            (self.A.indptr, other.A.indptr),
        ]
        return all(np.array_equal(a, b) for a, b in arrays)

    def summary(self) -> Dict[str, int]:
        return {"variables": self.n_variables, "rows": self.n_rows, "nonzeros": int(self.A.nnz)}

    def __reduce__(self):
        # mappingproxy does not pickle; ship a plain dict and re-freeze on load
        state = {f.name: getattr(self, f.name) for f in fields(self)}
        state["provenance"] = dict(self.provenance)
        return (_restore_program, (state,))


def _restore_program(state: Dict) -> CompiledProgram:
    for key in ("objective", "rhs", "lb", "ub"):
        state[key] = _frozen(state[key])
    state["A"] = _frozen_csr(state["A"])
    state["provenance"] = MappingProxyType({k: _frozen(v) for k, v in state["provenance"].items()})
    return CompiledProgram(**state)


class ProgramBuilder:
    """Mutable assembly area used while compiling one program."""

    def __init__(self, problem: "ConservationProblem", primary_vtype: str = "B", primary_upper: float = 1.0):
        self.problem = problem
        self.n_units = problem.number_of_planning_units
        self.n_zones = problem.number_of_zones
        self.n_primary = self.n_units * self.n_zones
        self.primary_vtype = primary_vtype
        self.primary_upper = float(primary_upper)
        self.sense = "min"
        self.targets: List["ResolvedTarget"] = []
        self._n_vars = 0
        self._lb: List[np.ndarray] = []
        self._ub: List[np.ndarray] = []
        self._vtypes: List[str] = []
        self._blocks: List[VariableBlock] = []
        self._obj_cols: List[np.ndarray] = []
        self._obj_vals: List[np.ndarray] = []
        self._row_idx: List[np.ndarray] = []
        self._col_idx: List[np.ndarray] = []
        self._vals: List[np.ndarray] = []
        self._senses: List[str] = []
        self._rhs: List[float] = []
        self._categories: List[str] = []
        self._provenance: Dict[str, List[np.ndarray]] = {}
        self.add_variables("primary", self.n_primary, primary_vtype, 0.0, primary_upper)
        self._primary_lb = self._lb[0]
        self._primary_ub = self._ub[0]

    # ---------- indexing ----------
    def index(self, units, zone: int) -> np.ndarray:
        return np.asarray(units, dtype=int) * self.n_zones + int(zone)

    @property
    def n_variables(self) -> int:
        return self._n_vars

    @property
    def n_rows(self) -> int:
        return len(self._rhs)

    @property
    def primary_lb(self) -> np.ndarray:
        return self._primary_lb

    @property
    def primary_ub(self) -> np.ndarray:
        return self._primary_ub

    # ---------- variables ----------
    def add_variables(self, name: str, count: int, vtype: str, lb: float = 0.0, ub: float = 1.0) -> np.ndarray:
        if vtype not in VTYPES:
            raise ValueError(f"Unknown variable type {vtype!r}")
        self._check(np.array([lb, ub]), "bounds", allow_inf=True)
        start = self._n_vars
        self._lb.append(np.full(count, float(lb)))
        self._ub.append(np.full(count, float(ub)))
        self._vtypes.extend([vtype] * count)
        self._n_vars += count
        self._blocks.append(VariableBlock(name, start, self._n_vars))
        return np.arange(start, self._n_vars)

    def block_indices(self, name: str) -> np.ndarray:
        for b in self._blocks:
            if b.name == name:
                return np.arange(b.start, b.stop)
        raise KeyError(f"No variable block named '{name}'")

    def unique_block_name(self, base: str) -> str:
        names = {b.name for b in self._blocks}
        if base not in names:
            return base
        i = 2
        while f"{base}_{i}" in names:
            i += 1
        return f"{base}_{i}"

    def tighten_primary(self, cols, lb: Optional[float] = None, ub: Optional[float] = None) -> None:
        cols = np.asarray(cols, dtype=int)
        if lb is not None:
            self._primary_lb[cols] = np.maximum(self._primary_lb[cols], lb)
        if ub is not None:
            self._primary_ub[cols] = np.minimum(self._primary_ub[cols], ub)

    # ---------- objective ----------
    def set_sense(self, sense: str) -> None:
        if sense not in ("min", "max"):
            raise ValueError(f"sense must be 'min' or 'max', got {sense!r}")
        self.sense = sense

    @property
    def penalty_sign(self) -> float:
        """+1 when minimizing, -1 when maximizing: penalties always worsen the objective."""
        return 1.0 if self.sense == "min" else -1.0

    def add_objective(self, cols, coefs, category: str) -> None:
        cols = np.asarray(cols, dtype=int)
        coefs = np.broadcast_to(np.asarray(coefs, dtype=float), cols.shape).copy()
        self._check(coefs, category)
        self._obj_cols.append(cols)
        self._obj_vals.append(coefs)

    # ---------- rows ----------
    def add_rows(self, rows, cols, coefs, senses: Union[str, Sequence[str]], rhs, category: str) -> int:
        """Append a batch of rows given local (0-based) row numbers for each entry."""
        rhs = np.atleast_1d(np.asarray(rhs, dtype=float))
        rows = np.asarray(rows, dtype=int)
        cols = np.asarray(cols, dtype=int)
        coefs = np.broadcast_to(np.asarray(coefs, dtype=float), cols.shape).copy()
        self._check(coefs, category)
        self._check(rhs, category)
        k = rhs.size
        if isinstance(senses, str):
            senses = [senses] * k
        if len(senses) != k or any(s not in SENSES for s in senses):
            raise ValueError("row senses must be '>=', '<=' or '=' and match the number of rows")
        first = self.n_rows
        self._row_idx.append(rows + first)
        self._col_idx.append(cols)
        self._vals.append(coefs)
        self._senses.extend(senses)
        self._rhs.extend(rhs.tolist())
        self._categories.extend([category] * k)
        return first

    def add_row(self, cols, coefs, sense: str, rhs: float, category: str) -> int:
        cols = np.asarray(cols, dtype=int)
        return self.add_rows(np.zeros(cols.size, dtype=int), cols, coefs, sense, [rhs], category)

    # ---------- provenance ----------
    def record(self, category: str, values) -> None:
        v = np.abs(np.asarray(values, dtype=float).ravel())
        v = v[v > 0]
        if v.size:
            self._provenance.setdefault(category, []).append(v)

    def _check(self, values: np.ndarray, category: str, allow_inf: bool = False) -> None:
        bad = np.isnan(values) if allow_inf else ~np.isfinite(values)
        if np.any(bad):
            raise NonFiniteCoefficient(category)

    # ---------- output ----------
    def build(self) -> CompiledProgram:
        n = self._n_vars
        obj = np.zeros(n)
        if self._obj_cols:
            np.add.at(obj, np.concatenate(self._obj_cols), np.concatenate(self._obj_vals))
        if self._row_idx:
            r = np.concatenate(self._row_idx)
            c = np.concatenate(self._col_idx)
            v = np.concatenate(self._vals)
        else:
            r = c = np.zeros(0, dtype=int)
            v = np.zeros(0)
        A = sp.coo_matrix((v, (r, c)), shape=(self.n_rows, n)).tocsr()
        A.sum_duplicates()
        A.eliminate_zeros()
        A.sort_indices()
        lb = np.concatenate(self._lb) if self._lb else np.zeros(0)
        ub = np.concatenate(self._ub) if self._ub else np.zeros(0)
        if np.any(lb > ub):
            bad = int(np.flatnonzero(lb > ub)[0])
            raise InvalidParameterRange(f"variable {bad} has lower bound above upper bound")
        prov = {k: _frozen(np.concatenate(v)) for k, v in sorted(self._provenance.items())}
        program = CompiledProgram(
            sense=self.sense,
            objective=_frozen(obj),
            A=_frozen_csr(A),
            row_senses=tuple(self._senses),
            rhs=_frozen(np.asarray(self._rhs, dtype=float)),
            lb=_frozen(lb),
            ub=_frozen(ub),
            vtypes=tuple(self._vtypes),
            row_categories=tuple(self._categories),
            blocks=tuple(self._blocks),
            n_units=self.n_units,
            n_zones=self.n_zones,
            provenance=MappingProxyType(prov),
        )
        logger.debug("Compiled program: {}", program.summary())
        return program
