
from __future__ import annotations
from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np
import scipy.sparse as sp
from scipy.sparse.csgraph import connected_components

from ..core.errors import InvalidParameterLength, InvalidParameterRange, ModifierConflict
from ..core.graph import off_diagonal, relation_matrix
from ..core.interfaces import Modifier, ModifierKind


class Constraint(Modifier):
    kind = ModifierKind.CONSTRAINT


def lock_mask(units, n_units: int, n_zones: int, zone: Optional[int], name: str) -> np.ndarray:
    """Normalize unit indices, a (N,) boolean mask or a (N, Z) mask into (N, Z) booleans.

    A 1-D selection applies to `zone`, or to every zone when `zone` is None.
    """
    arr = np.asarray(units)
    if arr.dtype == bool:
        if arr.shape == (n_units, n_zones) and zone is None:
            return arr.copy()
        if arr.shape != (n_units,):
            raise InvalidParameterLength(f"{name} mask must have shape ({n_units},) or ({n_units}, {n_zones})")
        picked = arr
    else:
        idx = arr.astype(int).ravel()
        if idx.size and (idx.min() < 0 or idx.max() >= n_units):
            raise InvalidParameterLength(f"{name} unit index outside 0..{n_units - 1}")
        picked = np.zeros(n_units, dtype=bool)
        picked[idx] = True
    mask = np.zeros((n_units, n_zones), dtype=bool)
    if zone is None:
        mask[picked, :] = True
    else:
        if not 0 <= zone < n_zones:
            raise InvalidParameterLength(f"{name} zone {zone} outside 0..{n_zones - 1}")
        mask[picked, zone] = True
    return mask


def zone_matrix(zones, n_zones: int, name: str) -> np.ndarray:
    if zones is None:
        return np.eye(n_zones, dtype=bool)
    z = np.asarray(zones, dtype=float)
    if z.shape != (n_zones, n_zones):
        raise InvalidParameterLength(f"{name} zone matrix must be {n_zones}x{n_zones}, got {z.shape}")
    if np.any((z != 0) & (z != 1)) or np.any(z != z.T):
        raise InvalidParameterRange(f"{name} zone matrix must be symmetric with 0/1 entries")
    return z.astype(bool)


@dataclass(frozen=True, eq=False)
class LockedInConstraints(Constraint):
    """Force units into the solution (in `zone`, or per a (N, Z) mask)."""

    units: object
    zone: Optional[int] = None
    label = "locked in constraints"

    def mask(self, problem) -> np.ndarray:
        zone = self.zone
        if zone is None and problem.number_of_zones == 1:
            zone = 0
        arr = np.asarray(self.units)
        if zone is None and not (arr.dtype == bool and arr.ndim == 2):
            raise InvalidParameterRange("locked in constraints need a zone when the problem has several zones")
        return lock_mask(self.units, problem.number_of_planning_units, problem.number_of_zones, zone, self.label)

    def validate(self, problem):
        self.mask(problem)

    def contribute_bounds(self, builder):
        cols = np.flatnonzero(self.mask(builder.problem).ravel())
        builder.tighten_primary(cols, lb=1.0)


@dataclass(frozen=True, eq=False)
class LockedOutConstraints(Constraint):
    """Exclude units from the solution (in `zone`, or in every zone)."""

    units: object
    zone: Optional[int] = None
    label = "locked out constraints"

    def mask(self, problem) -> np.ndarray:
        return lock_mask(self.units, problem.number_of_planning_units, problem.number_of_zones, self.zone, self.label)

    def validate(self, problem):
        self.mask(problem)

    def contribute_bounds(self, builder):
        cols = np.flatnonzero(self.mask(builder.problem).ravel())
        builder.tighten_primary(cols, ub=0.0)


def _neighbours(data, n: int, name: str) -> sp.csr_matrix:
    m = relation_matrix(data, n, symmetric=True, name=name)
    return off_diagonal(m)


@dataclass(frozen=True, eq=False)
class NeighborConstraints(Constraint):
    """Every selected unit needs at least `k` selected neighbours.

    Neighbours are the units related to it in `data`; with a zone matrix a
    neighbour allocated to any related zone counts.
    """

    k: int
    data: object = None
    zones: object = None
    label = "neighbor constraints"

    def validate(self, problem):
        if int(self.k) != self.k or self.k < 1:
            raise InvalidParameterRange(f"k must be a positive integer, got {self.k}")
        if self.data is None:
            raise InvalidParameterRange("neighbor constraints need adjacency data")
        _neighbours(self.data, problem.number_of_planning_units, self.label)
        zone_matrix(self.zones, problem.number_of_zones, self.label)

    def contribute_rows(self, builder):
        adj = _neighbours(self.data, builder.n_units, self.label)
        zm = zone_matrix(self.zones, builder.n_zones, self.label)
        for z in range(builder.n_zones):
            if not zm[z].any():
                continue
            related = np.flatnonzero(zm[z])
            rows: List[np.ndarray] = []
            cols: List[np.ndarray] = []
            coefs: List[np.ndarray] = []
            for i in range(builder.n_units):
                nbrs = adj.indices[adj.indptr[i]:adj.indptr[i + 1]]
                c = [builder.index(nbrs, zz) for zz in related] + [builder.index([i], z)]
                c = np.concatenate(c)
                v = np.append(np.ones(c.size - 1), -float(self.k))
                rows.append(np.full(c.size, i))
                cols.append(c)
                coefs.append(v)
            builder.add_rows(np.concatenate(rows), np.concatenate(cols), np.concatenate(coefs),
                             ">=", np.zeros(builder.n_units), "neighbor")


@dataclass(frozen=True, eq=False)
class ContiguityConstraints(Constraint):
    """Selected units must form one connected component per zone network.

    Zones related in `zones` (a symmetric 0/1 matrix, identity by default)
    form one network whose units must be connected when pooled together;
    zones with a zero diagonal are unconstrained.

    Formulated as a single-commodity flow: at most one root per network
    emits flow, every selected unit consumes one unit of it, and flow may only
    travel along arcs between selected units. Size grows linearly with the
    number of units plus adjacent pairs.
    """

    data: object = None
    zones: object = None
    label = "contiguity constraints"

    def validate(self, problem):
        if self.data is None:
            raise InvalidParameterRange("contiguity constraints need adjacency data")
        _neighbours(self.data, problem.number_of_planning_units, self.label)
        zone_matrix(self.zones, problem.number_of_zones, self.label)
        decision = problem.modifiers.decision
        if decision is not None and decision.vtype != "B":
            raise ModifierConflict("contiguity constraints require binary decisions")

    def networks(self, n_zones: int) -> List[Tuple[int, ...]]:
        zm = zone_matrix(self.zones, n_zones, self.label)
        active = np.flatnonzero(np.diag(zm))
        if active.size == 0:
            return []
        _, labels = connected_components(sp.csr_matrix(zm[np.ix_(active, active)].astype(float)), directed=False)
        return [tuple(int(z) for z in active[labels == lab]) for lab in np.unique(labels)]

    def contribute_rows(self, builder):
        if builder.primary_vtype != "B":
            raise ModifierConflict("contiguity constraints require binary decisions")
        adj = sp.triu(_neighbours(self.data, builder.n_units, self.label), k=1).tocoo()
        n = builder.n_units
        tails = np.concatenate([adj.row, adj.col])
        heads = np.concatenate([adj.col, adj.row])
        n_arcs = tails.size
        big_m = float(max(n - 1, 1))
        units = np.arange(n)
        for zones in self.networks(builder.n_zones):
            tag = builder.unique_block_name("contiguity_root")
            roots = builder.add_variables(tag, n, "B", 0.0, 1.0)
            supply = builder.add_variables(tag.replace("root", "supply"), n, "C", 0.0, float(n))
            flows = builder.add_variables(tag.replace("root", "flow"), n_arcs, "C", 0.0, big_m)

            def _u(idx):
                # pooled selection of units idx over the network's zones
                idx = np.asarray(idx, dtype=int)
                c = np.concatenate([builder.index(idx, z) for z in zones])
                r = np.tile(np.arange(idx.size), len(zones))
                return r, c

            # at most one root
            builder.add_row(roots, np.ones(n), "<=", 1.0, "contiguity")
            # a root must be selected: r_i - u_i <= 0
            r, c = _u(units)
            builder.add_rows(np.concatenate([units, r]), np.concatenate([roots, c]),
                             np.concatenate([np.ones(n), -np.ones(c.size)]), "<=", np.zeros(n), "contiguity")
            # only the root supplies flow: s_i - n r_i <= 0
            builder.add_rows(np.concatenate([units, units]), np.concatenate([supply, roots]),
                             np.concatenate([np.ones(n), -np.full(n, float(n))]), "<=", np.zeros(n), "contiguity")
            # conservation: s_i + inflow_i - outflow_i - u_i = 0
            arcs = np.arange(n_arcs)
            builder.add_rows(
                np.concatenate([units, heads, tails, r]),
                np.concatenate([supply, flows[arcs], flows[arcs], c]),
                np.concatenate([np.ones(n), np.ones(n_arcs), -np.ones(n_arcs), -np.ones(c.size)]),
                "=", np.zeros(n), "contiguity")
            # flow only between selected units: f_a - M u_tail <= 0 and f_a - M u_head <= 0
            for ends in (tails, heads):
                r, c = _u(ends)
                builder.add_rows(np.concatenate([arcs, r]), np.concatenate([flows, c]),
                                 np.concatenate([np.ones(n_arcs), -np.full(c.size, big_m)]),
                                 "<=", np.zeros(n_arcs), "contiguity")


@dataclass(frozen=True, eq=False)
class LinearConstraints(Constraint):
    """sum(data * x) (sense) threshold, with data given per unit or per (unit, zone)."""

    threshold: float
    sense: str
    data: object
    label = "linear constraints"

    def _data(self, problem) -> np.ndarray:
        n, z = problem.number_of_planning_units, problem.number_of_zones
        d = np.asarray(self.data, dtype=float)
        if d.shape == (n,) and z == 1:
            d = d[:, None]
        if d.shape != (n, z):
            raise InvalidParameterLength(f"linear constraint data must be ({n}, {z}), got {d.shape}")
        return d

    def validate(self, problem):
        if self.sense not in (">=", "<=", "="):
            raise InvalidParameterRange(f"sense must be '>=', '<=' or '=', got {self.sense!r}")
        self._data(problem)

    def contribute_rows(self, builder):
        d = self._data(builder.problem).ravel()
        cols = np.flatnonzero(d)
        builder.add_row(cols, d[cols], self.sense, float(self.threshold), "linear constraint")
        builder.record("linear constraint", d[cols])
