
from __future__ import annotations
from dataclasses import dataclass
from typing import Tuple

import numpy as np
import scipy.sparse as sp

from ..core.errors import InvalidParameterLength, InvalidParameterRange
from ..core.graph import exposed_boundary, off_diagonal, relation_matrix
from ..core.interfaces import Modifier, ModifierKind


class Penalty(Modifier):
    """Objective terms that make fragmented configurations worse.

    Penalties add their auxiliary variables, objective terms and the rows
    linearizing those terms in one pass from contribute_objective, after the
    objective has fixed the optimization sense.
    """

    kind = ModifierKind.PENALTY


def _per_zone(value, n_zones: int, name: str, lo: float = -np.inf, hi: float = np.inf) -> np.ndarray:
    arr = np.asarray(value, dtype=float)
    if arr.ndim == 0:
        arr = np.full(n_zones, float(arr))
    if arr.shape != (n_zones,):
        raise InvalidParameterLength(f"{name} must be a scalar or have one value per zone ({n_zones})")
    if np.any(~np.isfinite(arr)) or np.any(arr < lo) or np.any(arr > hi):
        raise InvalidParameterRange(f"{name} must be finite and within [{lo}, {hi}]")
    return arr


def _upper_pairs(m: sp.spmatrix) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """(i, j, value) for stored entries with i < j, in row-major order."""
    up = sp.triu(off_diagonal(m), k=1).tocsr()
    up.sort_indices()
    coo = up.tocoo()
    return coo.row.astype(int), coo.col.astype(int), coo.data.astype(float)


@dataclass(frozen=True, eq=False)
class BoundaryPenalties(Penalty):
    """penalty * shared boundary for every adjacent pair in different states.

    The diagonal of `data` holds each unit's exposed boundary, added as
    penalty * edge_factor * exposed for every selected unit. Pair terms use
    one continuous auxiliary d >= |x_i - x_j| per pair and zone.
    """

    penalty: float
    data: object
    edge_factor: object = 0.5
    zone_weights: object = 1.0
    label = "boundary penalties"

    def _matrix(self, n: int) -> sp.csr_matrix:
        return relation_matrix(self.data, n, symmetric=True, name="boundary")

    def validate(self, problem):
        if not np.isfinite(self.penalty) or self.penalty < 0:
            raise InvalidParameterRange(f"boundary penalty must be finite and >= 0, got {self.penalty}")
        _per_zone(self.edge_factor, problem.number_of_zones, "edge_factor", 0.0, 1.0)
        _per_zone(self.zone_weights, problem.number_of_zones, "zone_weights", 0.0)
        self._matrix(problem.number_of_planning_units)

    def contribute_objective(self, builder):
        if self.penalty == 0:
            return
        m = self._matrix(builder.n_units)
        edge = _per_zone(self.edge_factor, builder.n_zones, "edge_factor", 0.0, 1.0)
        weights = _per_zone(self.zone_weights, builder.n_zones, "zone_weights", 0.0)
        exposed = exposed_boundary(m)
        ii, jj, bb = _upper_pairs(m)
        sign = builder.penalty_sign
        for z in range(builder.n_zones):
            scale = self.penalty * weights[z]
            if scale == 0:
                continue
            units = np.flatnonzero(exposed)
            edge_terms = scale * edge[z] * exposed[units]
            builder.add_objective(builder.index(units, z), sign * edge_terms, "boundary")
            builder.record("boundary", edge_terms)
            if ii.size == 0:
                continue
            name = builder.unique_block_name(f"boundary_z{z}")
            d = builder.add_variables(name, ii.size, "C", 0.0, builder.primary_upper)
            builder.add_objective(d, sign * scale * bb, "boundary")
            builder.record("boundary", scale * bb)
            xi, xj = builder.index(ii, z), builder.index(jj, z)
            k = np.arange(ii.size)
            rows = np.concatenate([k, k, k])
            # d - x_i + x_j >= 0
            builder.add_rows(rows, np.concatenate([d, xi, xj]),
                             np.concatenate([np.ones(k.size), -np.ones(k.size), np.ones(k.size)]),
                             ">=", np.zeros(k.size), "boundary")
            # d + x_i - x_j >= 0
            builder.add_rows(rows, np.concatenate([d, xi, xj]),
                             np.concatenate([np.ones(k.size), np.ones(k.size), -np.ones(k.size)]),
                             ">=", np.zeros(k.size), "boundary")


@dataclass(frozen=True, eq=False)
class ConnectivityPenalties(Penalty):
    """Reward selecting connected units together.

    Each pair contributes penalty * (c_ij + c_ji) * x_i * x_j (scaled by the
    zone matrix entry for the two zones), linearized with one auxiliary per
    pair. Negative strengths penalize co-selection instead. Diagonal entries
    give a per-unit term scaled by edge_factor.
    """

    penalty: float
    data: object
    edge_factor: object = 1.0
    zones: object = None
    label = "connectivity penalties"

    def _matrix(self, n: int) -> sp.csr_matrix:
        return relation_matrix(self.data, n, symmetric=False, allow_negative=True, name="connectivity")

    def _zones(self, n_zones: int) -> np.ndarray:
        if self.zones is None:
            return np.eye(n_zones)
        zm = np.asarray(self.zones, dtype=float)
        if zm.shape != (n_zones, n_zones):
            raise InvalidParameterLength(f"connectivity zone matrix must be {n_zones}x{n_zones}, got {zm.shape}")
        if np.any(~np.isfinite(zm)) or np.any(zm != zm.T):
            raise InvalidParameterRange("connectivity zone matrix must be finite and symmetric")
        return zm

    def validate(self, problem):
        if not np.isfinite(self.penalty):
            raise InvalidParameterRange(f"connectivity penalty must be finite, got {self.penalty}")
        _per_zone(self.edge_factor, problem.number_of_zones, "edge_factor", 0.0, 1.0)
        self._zones(problem.number_of_zones)
        self._matrix(problem.number_of_planning_units)

    def contribute_objective(self, builder):
        if self.penalty == 0:
            return
        c = self._matrix(builder.n_units)
        sym = (c + c.T).tocsr()
        zm = self._zones(builder.n_zones)
        edge = _per_zone(self.edge_factor, builder.n_zones, "edge_factor", 0.0, 1.0)
        ii, jj, ss = _upper_pairs(sym)
        diag = np.asarray(c.diagonal(), dtype=float)
        sign = builder.penalty_sign
        a_cols, b_cols, reward = [], [], []
        for z1 in range(builder.n_zones):
            units = np.flatnonzero(diag)
            if zm[z1, z1] != 0 and units.size:
                terms = self.penalty * edge[z1] * zm[z1, z1] * diag[units]
                builder.add_objective(builder.index(units, z1), -sign * terms, "connectivity")
                builder.record("connectivity", terms)
            for z2 in range(z1, builder.n_zones):
                if zm[z1, z2] == 0 or ii.size == 0:
                    continue
                a_cols.append(builder.index(ii, z1))
                b_cols.append(builder.index(jj, z2))
                reward.append(self.penalty * zm[z1, z2] * ss)
                if z1 != z2:
                    a_cols.append(builder.index(jj, z1))
                    b_cols.append(builder.index(ii, z2))
                    reward.append(self.penalty * zm[z1, z2] * ss)
        if not reward:
            return
        xa, xb, r = np.concatenate(a_cols), np.concatenate(b_cols), np.concatenate(reward)
        builder.record("connectivity", r)
        y = builder.add_variables(builder.unique_block_name("connectivity"), r.size, "C", 0.0, builder.primary_upper)
        builder.add_objective(y, -sign * r, "connectivity")
        up = np.flatnonzero(r > 0)
        if up.size:
            # y pushed up by the objective: y <= x_a and y <= x_b
            k = np.arange(up.size)
            for x in (xa, xb):
                builder.add_rows(np.concatenate([k, k]), np.concatenate([y[up], x[up]]),
                                 np.concatenate([np.ones(k.size), -np.ones(k.size)]),
                                 "<=", np.zeros(k.size), "connectivity")
        down = np.flatnonzero(r < 0)
        if down.size:
            # y pushed down: y >= x_a + x_b - upper
            k = np.arange(down.size)
            builder.add_rows(np.concatenate([k, k, k]), np.concatenate([y[down], xa[down], xb[down]]),
                             np.concatenate([np.ones(k.size), -np.ones(k.size), -np.ones(k.size)]),
                             ">=", np.full(k.size, -builder.primary_upper), "connectivity")
