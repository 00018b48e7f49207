
from __future__ import annotations
from dataclasses import dataclass, replace
from typing import Iterator, Optional, Sequence, Tuple, TYPE_CHECKING

import numpy as np
import scipy.sparse as sp
from loguru import logger

from .errors import DimensionMismatch, InvalidParameterRange, ModifierConflict
from .interfaces import Modifier, ModifierKind
from .datatypes import ProblemData
from ..models import constraints as _constraints
from ..models import decisions as _decisions
from ..models import objectives as _objectives
from ..models import penalties as _penalties
from ..models import targets as _targets

if TYPE_CHECKING:
    from .config import SolverConfig
    from ..models.program import CompiledProgram
    from ..models.types import Solution


@dataclass(frozen=True)
class ModifierStack:
    """Immutable snapshot of everything attached to a problem."""

    objective: Optional[Modifier] = None
    decision: Optional[Modifier] = None
    targets: Tuple[Modifier, ...] = ()
    constraints: Tuple[Modifier, ...] = ()
    penalties: Tuple[Modifier, ...] = ()

    def with_modifier(self, modifier: Modifier, problem: "ConservationProblem") -> "ModifierStack":
        kind = modifier.kind
        if kind is ModifierKind.OBJECTIVE and self.objective is not None:
            raise ModifierConflict(
                f"problem already has an objective ({self.objective.label}); cannot add {modifier.label}")
        if kind is ModifierKind.DECISION and self.decision is not None:
            raise ModifierConflict(
                f"problem already has a decision type ({self.decision.label}); cannot add {modifier.label}")
        modifier.validate(problem)
        if kind is ModifierKind.OBJECTIVE:
            return replace(self, objective=modifier)
        if kind is ModifierKind.DECISION:
            return replace(self, decision=modifier)
        if kind is ModifierKind.TARGET:
            return replace(self, targets=self.targets + (modifier,))
        if kind is ModifierKind.CONSTRAINT:
            return replace(self, constraints=self.constraints + (modifier,))
        if kind is ModifierKind.PENALTY:
            return replace(self, penalties=self.penalties + (modifier,))
        raise TypeError(f"Unknown modifier kind: {kind!r}")

    def __iter__(self) -> Iterator[Modifier]:
        for m in (self.objective, self.decision):
            if m is not None:
                yield m
        yield from self.targets
        yield from self.constraints
        yield from self.penalties


def _readonly(a: np.ndarray) -> np.ndarray:
    a.flags.writeable = False
    return a


def _as_csr(m) -> sp.csr_matrix:
    out = sp.csr_matrix(m, dtype=float, copy=True)
    out.eliminate_zeros()
    out.sort_indices()
    for arr in (out.data, out.indices, out.indptr):
        arr.flags.writeable = False
    return out


def _lock_array(value, n: int, z: int, name: str) -> np.ndarray:
    out = np.zeros((n, z), dtype=bool)
    if value is None:
        return _readonly(out)
    arr = np.asarray(value)
    if arr.dtype == bool:
        if arr.shape == (n, z):
            out[:] = arr
        elif arr.shape == (n,):
            out[arr, :] = True
        else:
            raise DimensionMismatch(f"{name} has shape {arr.shape}; expected ({n},) or ({n}, {z})")
    else:
        idx = arr.astype(int).ravel()
        if idx.size and (idx.min() < 0 or idx.max() >= n):
            raise DimensionMismatch(f"{name} refers to units outside 0..{n - 1}")
        out[idx, :] = True
    return _readonly(out)


class ConservationProblem:
    """Planning units x zones x features, with costs, amounts and locks.

    Data are frozen at construction. Every ``add``/``add_*`` call validates the
    modifier against the problem and returns a new problem that shares the
    same data with an extended modifier stack.
    """

    def __init__(
        self,
        costs,
        amounts,
        zones: Optional[int] = None,
        *,
        unit_ids: Optional[Sequence[int]] = None,
        feature_names: Optional[Sequence[str]] = None,
        zone_names: Optional[Sequence[str]] = None,
        locked_in=None,
        locked_out=None,
    ):
        c = np.array(costs, dtype=float)
        if c.ndim == 1:
            c = c[:, None]
        if c.ndim != 2:
            raise DimensionMismatch(f"costs must be 1-D or 2-D, got {c.ndim} dimensions")
        n, z = c.shape
        if zones is not None and zones != z:
            raise DimensionMismatch(f"zone count {zones} disagrees with {z} cost columns")
        if z < 1 or n < 1:
            raise DimensionMismatch("need at least one planning unit and one zone")

        if sp.issparse(amounts) or (isinstance(amounts, np.ndarray) and amounts.ndim == 2):
            amounts = [amounts]
        mats = [_as_csr(a) for a in amounts]
        if len(mats) != z:
            raise DimensionMismatch(f"{len(mats)} amount matrices supplied for {z} zones")
        m = mats[0].shape[0]
        for i, mat in enumerate(mats):
            if mat.shape[1] != n:
                raise DimensionMismatch(f"amount matrix for zone {i} has {mat.shape[1]} units; costs have {n}")
            if mat.shape[0] != m:
                raise DimensionMismatch(f"amount matrix for zone {i} has {mat.shape[0]} features; expected {m}")
            if mat.nnz and np.nanmin(mat.data) < 0:
                raise InvalidParameterRange(f"amount matrix for zone {i} contains negative amounts")

        self._costs = _readonly(c)
        self._amounts = tuple(mats)
        self._unit_ids = self._names(unit_ids, n, "unit_ids", lambda i: i + 1)
        self._feature_names = self._names(feature_names, m, "feature_names", lambda i: f"feature_{i + 1}")
        self._zone_names = self._names(zone_names, z, "zone_names", lambda i: f"zone_{i + 1}")
        self._locked_in = _lock_array(locked_in, n, z, "locked_in")
        self._locked_out = _lock_array(locked_out, n, z, "locked_out")
        self._modifiers = ModifierStack()

    @staticmethod
    def _names(values, size: int, name: str, default) -> tuple:
        if values is None:
            return tuple(default(i) for i in range(size))
        values = tuple(values)
        if len(values) != size:
            raise DimensionMismatch(f"{name} has {len(values)} entries; expected {size}")
        return values

    # ---------- construction from records ----------
    @classmethod
    def from_data(cls, data: ProblemData) -> "ConservationProblem":
        z = data.number_of_zones
        pus = sorted(data.planning_units, key=lambda r: r.id)
        feats = sorted(data.features, key=lambda r: r.id)
        pu_index = {r.id: i for i, r in enumerate(pus)}
        ft_index = {r.id: i for i, r in enumerate(feats)}
        if len(pu_index) != len(pus) or len(ft_index) != len(feats):
            raise DimensionMismatch("duplicate planning unit or feature ids")
        costs = np.empty((len(pus), z))
        for i, r in enumerate(pus):
            if len(r.cost) != z:
                raise DimensionMismatch(f"planning unit {r.id} has {len(r.cost)} costs for {z} zones")
            costs[i] = r.cost
        rows, cols, vals = [[] for _ in range(z)], [[] for _ in range(z)], [[] for _ in range(z)]
        for a in data.amounts:
            if a.pu not in pu_index or a.species not in ft_index or a.zone > z:
                raise DimensionMismatch(f"amount record refers to unknown unit/feature/zone: {a}")
            rows[a.zone - 1].append(ft_index[a.species])
            cols[a.zone - 1].append(pu_index[a.pu])
            vals[a.zone - 1].append(a.amount)
        shape = (len(feats), len(pus))
        mats = [sp.coo_matrix((vals[k], (rows[k], cols[k])), shape=shape).tocsr() for k in range(z)]
        status = np.array([r.status for r in pus])
        locked_in = np.zeros((len(pus), z), dtype=bool)
        locked_in[status == 2, 0] = True
        locked_out = np.zeros((len(pus), z), dtype=bool)
        locked_out[status == 3, :] = True
        logger.debug("Built problem from records: {} units, {} features, {} zones", len(pus), len(feats), z)
        return cls(costs, mats, z,
                   unit_ids=[r.id for r in pus], feature_names=[r.name for r in feats],
                   zone_names=data.zone_names, locked_in=locked_in, locked_out=locked_out)

    # ---------- read accessors ----------
    @property
    def number_of_planning_units(self) -> int:
        return self._costs.shape[0]

    @property
    def number_of_features(self) -> int:
        return self._amounts[0].shape[0]

    @property
    def number_of_zones(self) -> int:
        return self._costs.shape[1]

    @property
    def costs(self) -> np.ndarray:
        return self._costs

    @property
    def locked_in(self) -> np.ndarray:
        return self._locked_in

    @property
    def locked_out(self) -> np.ndarray:
        return self._locked_out

    @property
    def unit_ids(self) -> tuple:
        return self._unit_ids

    @property
    def feature_names(self) -> tuple:
        return self._feature_names

    @property
    def zone_names(self) -> tuple:
        return self._zone_names

    @property
    def modifiers(self) -> ModifierStack:
        return self._modifiers

    def amounts(self, zone: int = 0) -> sp.csr_matrix:
        """Features x units amount matrix for one zone."""
        return self._amounts[zone]

    def feature_abundances(self) -> np.ndarray:
        """Total amount of each feature in each zone, shape (features, zones)."""
        return np.column_stack([np.asarray(a.sum(axis=1)).ravel() for a in self._amounts])

    def feature_abundance(self, feature: int, zone: Optional[int] = None) -> float:
        ab = self.feature_abundances()[feature]
        return float(ab.sum() if zone is None else ab[zone])

    def __repr__(self) -> str:
        names = ", ".join(m.label for m in self._modifiers) or "no modifiers"
        return (f"ConservationProblem(units={self.number_of_planning_units}, "
                f"features={self.number_of_features}, zones={self.number_of_zones}; {names})")

    # ---------- builder ----------
    def add(self, modifier: Modifier) -> "ConservationProblem":
        stack = self._modifiers.with_modifier(modifier, self)
        new = object.__new__(type(self))
        new.__dict__.update(self.__dict__)
        new._modifiers = stack
        logger.debug("Added {}", modifier.describe())
        return new

    def add_min_set_objective(self):
        return self.add(_objectives.MinSetObjective())

    def add_max_utility_objective(self, budget, weights=None):
        return self.add(_objectives.MaxUtilityObjective(budget, weights))

    def add_max_features_objective(self, budget, weights=None):
        return self.add(_objectives.MaxFeaturesObjective(budget, weights))

    def add_max_phylo_div_objective(self, budget, phylogeny):
        return self.add(_objectives.MaxPhyloDivObjective(budget, phylogeny))

    def add_relative_targets(self, fraction):
        return self.add(_targets.RelativeTargets(fraction))

    def add_absolute_targets(self, amount):
        return self.add(_targets.AbsoluteTargets(amount))

    def add_loglinear_targets(self, lower_bound_amount, lower_bound_target, upper_bound_amount,
                              upper_bound_target, cap_amount=None, cap_target=None, abundances=None):
        return self.add(_targets.LogLinearTargets(
            lower_bound_amount, lower_bound_target, upper_bound_amount, upper_bound_target,
            cap_amount, cap_target, None if abundances is None else tuple(abundances)))

    def add_manual_targets(self, entries):
        return self.add(_targets.ManualTargets(tuple(entries)))

    def add_locked_in_constraints(self, units, zone=None):
        return self.add(_constraints.LockedInConstraints(units, zone))

    def add_locked_out_constraints(self, units, zone=None):
        return self.add(_constraints.LockedOutConstraints(units, zone))

    def add_neighbor_constraints(self, k, data, zones=None):
        return self.add(_constraints.NeighborConstraints(k, data, zones))

    def add_contiguity_constraints(self, data, zones=None):
        return self.add(_constraints.ContiguityConstraints(data, zones))

    def add_linear_constraints(self, threshold, sense, data):
        return self.add(_constraints.LinearConstraints(threshold, sense, data))

    def add_boundary_penalties(self, penalty, data, edge_factor=0.5, zone_weights=1.0):
        return self.add(_penalties.BoundaryPenalties(penalty, data, edge_factor, zone_weights))

    def add_connectivity_penalties(self, penalty, data, edge_factor=1.0, zones=None):
        return self.add(_penalties.ConnectivityPenalties(penalty, data, edge_factor, zones))

    def add_binary_decisions(self):
        return self.add(_decisions.BinaryDecision())

    def add_proportion_decisions(self):
        return self.add(_decisions.ProportionDecision())

    def add_integer_decisions(self, upper_limit: int):
        return self.add(_decisions.IntegerDecision(upper_limit))

    # ---------- compile / check / solve ----------
    def compile(self) -> "CompiledProgram":
        from ..models.compiler import compile_problem
        return compile_problem(self)

    def presolve_check(self, threshold: float = 1e9) -> bool:
        from ..models.presolve import presolve_check
        return presolve_check(self.compile(), threshold=threshold)

    def solve(self, cfg: Optional["SolverConfig"] = None, **overrides) -> "Solution":
        from .config import SolverConfig
        from ..models.solvers import solve_program
        if cfg is None:
            cfg = SolverConfig(**overrides)
        elif overrides:
            cfg = replace(cfg, **overrides)
        return solve_program(self.compile(), cfg)
