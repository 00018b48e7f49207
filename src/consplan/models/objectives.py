
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Optional, Sequence, Tuple, TYPE_CHECKING

import numpy as np
from loguru import logger

from ..core.errors import InvalidParameterLength, InvalidParameterRange, UnresolvedTarget
from ..core.interfaces import Modifier, ModifierKind
from .targets import ResolvedTarget, per_feature_zone

if TYPE_CHECKING:
    from .program import ProgramBuilder


# ---------- shared pieces ----------
def _costs(builder: "ProgramBuilder") -> Tuple[np.ndarray, np.ndarray]:
    """Unit-major cost vector (NaN replaced by 0) and the availability mask."""
    c = np.asarray(builder.problem.costs, dtype=float).ravel()
    avail = ~np.isnan(c)
    return np.where(avail, c, 0.0), avail


def target_entries(builder: "ProgramBuilder", target: ResolvedTarget) -> Tuple[np.ndarray, np.ndarray]:
    """Columns and amounts contributing to one target row."""
    cols, coefs = [], []
    for z in target.zones:
        mat = builder.problem.amounts(z)
        lo, hi = mat.indptr[target.feature], mat.indptr[target.feature + 1]
        cols.append(builder.index(mat.indices[lo:hi], z))
        coefs.append(mat.data[lo:hi])
    cols, coefs = np.concatenate(cols), np.concatenate(coefs)
    builder.record("feature amount", coefs)
    return cols, coefs


def emit_target_rows(builder: "ProgramBuilder", indicators: Optional[np.ndarray] = None) -> None:
    """One row per resolved target.

    Without indicators: sum(amount * x) (sense) target. With one indicator
    column per target: sum(amount * x) - target * y >= 0, so y can only be 1
    when the target is met.
    """
    for i, t in enumerate(builder.targets):
        cols, coefs = target_entries(builder, t)
        builder.record("target", [t.value])
        if indicators is None:
            builder.add_row(cols, coefs, t.sense, t.value, "target")
        else:
            if t.sense != ">=":
                raise InvalidParameterRange(
                    f"targets with sense '{t.sense}' cannot be used with this objective")
            builder.add_row(np.append(cols, indicators[i]), np.append(coefs, -t.value), ">=", 0.0, "target")


def _check_budget(budget, n_zones: int) -> None:
    b = np.asarray(budget, dtype=float)
    if b.ndim > 1 or (b.ndim == 1 and b.size != n_zones):
        raise InvalidParameterLength(f"budget must be a scalar or have one value per zone ({n_zones})")
    if np.any(~np.isfinite(b)) or np.any(b < 0):
        raise InvalidParameterRange("budget must be finite and >= 0")


def emit_budget_rows(builder: "ProgramBuilder", budget) -> None:
    c, avail = _costs(builder)
    builder.record("cost", c[avail])
    b = np.asarray(budget, dtype=float)
    builder.record("budget", b)
    cols = np.flatnonzero(avail)
    if b.ndim == 0:
        builder.add_row(cols, c[cols], "<=", float(b), "budget")
        return
    zones = cols % builder.n_zones
    builder.add_rows(zones, cols, c[cols], "<=", b, "budget")


def _check_weights(weights, problem, name: str) -> None:
    if weights is None:
        return
    w = per_feature_zone(weights, problem, name)
    if np.any(~np.isfinite(w)):
        raise InvalidParameterRange(f"{name} must be finite")


class Objective(Modifier):
    kind = ModifierKind.OBJECTIVE
    requires_targets = True
    sense = "min"


# ---------- variants ----------
@dataclass(frozen=True, eq=False)
class MinSetObjective(Objective):
    """Minimize total cost while meeting every target."""

    label = "minimum set objective"

    def contribute_objective(self, builder):
        builder.set_sense("min")
        c, avail = _costs(builder)
        cols = np.flatnonzero(avail)
        builder.add_objective(cols, c[cols], "cost")
        builder.record("cost", c[cols])

    def contribute_rows(self, builder):
        emit_target_rows(builder)


@dataclass(frozen=True, eq=False)
class MaxUtilityObjective(Objective):
    """Maximize the weighted amount of all features held, within a budget."""

    budget: object = 0.0
    weights: Optional[object] = None
    label = "maximum utility objective"
    requires_targets = False
    sense = "max"

    def validate(self, problem):
        _check_budget(self.budget, problem.number_of_zones)
        _check_weights(self.weights, problem, "feature weights")

    def contribute_objective(self, builder):
        builder.set_sense("max")
        problem = builder.problem
        w = per_feature_zone(1.0 if self.weights is None else self.weights, problem, "feature weights")
        if self.weights is not None:
            builder.record("weight", w)
        if builder.targets:
            logger.warning("{} ignores the {} attached targets", self.label, len(builder.targets))
        for z in range(builder.n_zones):
            mat = problem.amounts(z)
            builder.record("feature amount", mat.data)
            utility = np.asarray(mat.T @ w[:, z]).ravel()
            units = np.flatnonzero(utility)
            builder.add_objective(builder.index(units, z), utility[units], "weight")

    def contribute_rows(self, builder):
        emit_budget_rows(builder, self.budget)


@dataclass(frozen=True, eq=False)
class MaxFeaturesObjective(Objective):
    """Maximize the weighted number of targets met, within a budget."""

    budget: object = 0.0
    weights: Optional[object] = None
    label = "maximum features objective"
    sense = "max"

    def validate(self, problem):
        _check_budget(self.budget, problem.number_of_zones)
        _check_weights(self.weights, problem, "target weights")

    def contribute_objective(self, builder):
        builder.set_sense("max")
        w = per_feature_zone(1.0 if self.weights is None else self.weights, builder.problem, "target weights")
        met = builder.add_variables("target_met", len(builder.targets), "B", 0.0, 1.0)
        tw = np.array([w[t.feature, list(t.zones)].mean() for t in builder.targets])
        if self.weights is not None:
            builder.record("target weights", tw)
        builder.add_objective(met, tw, "target weights")

    def contribute_rows(self, builder):
        emit_budget_rows(builder, self.budget)
        emit_target_rows(builder, indicators=builder.block_indices("target_met"))


@dataclass(frozen=True, eq=False)
class Phylogeny:
    """Features-by-branches incidence plus branch lengths.

    ``branch_matrix[f, b] == 1`` when feature f descends from branch b
    (terminal branches included).
    """

    branch_matrix: np.ndarray
    branch_lengths: np.ndarray

    @classmethod
    def from_clades(cls, clades: Sequence[Sequence[int]], lengths: Sequence[float], n_features: int) -> "Phylogeny":
        mat = np.zeros((n_features, len(clades)))
        for b, members in enumerate(clades):
            mat[list(members), b] = 1.0
        return cls(mat, np.asarray(lengths, dtype=float))

    @property
    def number_of_branches(self) -> int:
        return int(self.branch_lengths.size)


@dataclass(frozen=True, eq=False)
class MaxPhyloDivObjective(Objective):
    """Maximize the total length of branches with at least one met target, within a budget."""

    budget: object = 0.0
    phylogeny: Phylogeny = field(default=None)  # type: ignore[assignment]
    label = "maximum phylogenetic diversity objective"
    sense = "max"

    def validate(self, problem):
        _check_budget(self.budget, problem.number_of_zones)
        if self.phylogeny is None:
            raise InvalidParameterRange("a phylogeny is required")
        mat = np.asarray(self.phylogeny.branch_matrix)
        lengths = np.asarray(self.phylogeny.branch_lengths, dtype=float)
        if mat.ndim != 2 or mat.shape[0] != problem.number_of_features:
            raise InvalidParameterLength(
                f"phylogeny must describe {problem.number_of_features} features, got {mat.shape}")
        if lengths.shape != (mat.shape[1],):
            raise InvalidParameterLength("branch_lengths must have one value per branch")
        if np.any(~np.isfinite(lengths)) or np.any(lengths < 0):
            raise InvalidParameterRange("branch lengths must be finite and >= 0")

    def contribute_objective(self, builder):
        builder.set_sense("max")
        lengths = np.asarray(self.phylogeny.branch_lengths, dtype=float)
        builder.add_variables("target_met", len(builder.targets), "B", 0.0, 1.0)
        branches = builder.add_variables("branch_present", lengths.size, "B", 0.0, 1.0)
        builder.record("branch lengths", lengths)
        builder.add_objective(branches, lengths, "branch lengths")

    def contribute_rows(self, builder):
        emit_budget_rows(builder, self.budget)
        met = builder.block_indices("target_met")
        emit_target_rows(builder, indicators=met)
        mat = np.asarray(self.phylogeny.branch_matrix)
        branches = builder.block_indices("branch_present")
        features = np.array([t.feature for t in builder.targets], dtype=int)
        # branch b only counts when some target of a descendant feature is met
        for b in range(branches.size):
            members = np.flatnonzero(mat[features, b] > 0) if features.size else np.zeros(0, dtype=int)
            cols = np.append(branches[b], met[members])
            coefs = np.append(1.0, -np.ones(members.size))
            builder.add_row(cols, coefs, "<=", 0.0, "phylogeny")


def check_targets(objective: Objective, targets: Sequence[ResolvedTarget]) -> None:
    if objective.requires_targets and not targets:
        raise UnresolvedTarget(f"{objective.label} requires targets; none were added")
