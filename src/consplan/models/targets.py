
from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple, TYPE_CHECKING

import numpy as np
from loguru import logger

from ..core.errors import InvalidParameterLength, InvalidParameterRange, UnresolvedTarget
from ..core.interfaces import Modifier, ModifierKind

if TYPE_CHECKING:
    from ..core.problem import ConservationProblem

TargetKey = Tuple[int, Tuple[int, ...]]


@dataclass(frozen=True)
class ResolvedTarget:
    feature: int
    zones: Tuple[int, ...]
    sense: str
    value: float

    @property
    def key(self) -> TargetKey:
        return (self.feature, self.zones)


def per_feature_zone(value, problem: "ConservationProblem", name: str) -> np.ndarray:
    """Broadcast a scalar, (M,) or (M, Z) parameter to a float (M, Z) array."""
    m, z = problem.number_of_features, problem.number_of_zones
    arr = np.asarray(value, dtype=float)
    if arr.ndim == 0:
        return np.full((m, z), float(arr))
    if arr.ndim == 1:
        if arr.size != m:
            raise InvalidParameterLength(f"{name} must have one value per feature ({m}), got {arr.size}")
        return np.repeat(arr[:, None], z, axis=1)
    if arr.shape != (m, z):
        raise InvalidParameterLength(f"{name} must be ({m}, {z}), got {arr.shape}")
    return arr.copy()


def _check_range(arr: np.ndarray, name: str, lo: float = 0.0, hi: float = np.inf) -> None:
    known = arr[~np.isnan(arr)]
    if np.any(np.isinf(known)):
        raise InvalidParameterRange(f"{name} must be finite")
    if np.any(known < lo) or np.any(known > hi):
        raise InvalidParameterRange(f"{name} must be within [{lo}, {hi}]")


def _from_matrix(values: np.ndarray, label: str) -> Dict[TargetKey, ResolvedTarget]:
    missing = np.argwhere(np.isnan(values))
    if missing.size:
        f, z = missing[0]
        raise UnresolvedTarget(f"{label}: no target specified for feature {f} in zone {z}")
    out: Dict[TargetKey, ResolvedTarget] = {}
    for f in range(values.shape[0]):
        for z in range(values.shape[1]):
            t = ResolvedTarget(f, (z,), ">=", float(values[f, z]))
            out[t.key] = t
    return out


class Targets(Modifier):
    kind = ModifierKind.TARGET

    def resolve(self, problem: "ConservationProblem") -> Dict[TargetKey, ResolvedTarget]:
        raise NotImplementedError


@dataclass(frozen=True, eq=False)
class RelativeTargets(Targets):
    """Targets as a fraction of each feature's total amount in each zone."""

    fraction: object
    label = "relative targets"

    def validate(self, problem):
        _check_range(per_feature_zone(self.fraction, problem, "relative targets"), "relative targets", 0.0, 1.0)

    def resolve(self, problem):
        frac = per_feature_zone(self.fraction, problem, "relative targets")
        return _from_matrix(frac * problem.feature_abundances(), self.label)


@dataclass(frozen=True, eq=False)
class AbsoluteTargets(Targets):
    amount: object
    label = "absolute targets"

    def validate(self, problem):
        _check_range(per_feature_zone(self.amount, problem, "absolute targets"), "absolute targets")

    def resolve(self, problem):
        return _from_matrix(per_feature_zone(self.amount, problem, "absolute targets"), self.label)


def loglinear_interpolation(x, lower_x: float, lower_y: float, upper_x: float, upper_y: float) -> np.ndarray:
    """Interpolate y linearly in log10(x) between two thresholds, clamping outside.

    Values at or below `lower_x` get `lower_y`; at or above `upper_x` get
    `upper_y`. No logarithm is taken of values at or below `lower_x`, so a
    lower threshold of 0 is allowed.
    """
    x = np.asarray(x, dtype=float)
    out = np.empty_like(x)
    low = x <= lower_x
    high = (x >= upper_x) & ~low
    mid = ~(low | high)
    out[low] = lower_y
    out[high] = upper_y
    if np.any(mid):
        if lower_x > 0:
            lx, ux = np.log10(lower_x), np.log10(upper_x)
            out[mid] = lower_y + (np.log10(x[mid]) - lx) * (upper_y - lower_y) / (ux - lx)
        else:
            # log10(0) is -inf, so the line is flat at upper_y for every positive x
            out[mid] = upper_y
    return out


@dataclass(frozen=True, eq=False)
class LogLinearTargets(Targets):
    """Relative targets scaled log-linearly with feature abundance, optionally capped.

    Only available for single-zone problems.
    """

    lower_bound_amount: float
    lower_bound_target: float
    upper_bound_amount: float
    upper_bound_target: float
    cap_amount: Optional[float] = None
    cap_target: Optional[float] = None
    abundances: Optional[Sequence[float]] = None
    label = "loglinear targets"

    def validate(self, problem):
        if problem.number_of_zones != 1:
            raise InvalidParameterRange("loglinear targets require a problem with a single zone")
        for name in ("lower_bound_amount", "upper_bound_amount"):
            v = getattr(self, name)
            if not np.isfinite(v) or v < 0:
                raise InvalidParameterRange(f"{name} must be finite and >= 0, got {v}")
        for name in ("lower_bound_target", "upper_bound_target"):
            v = getattr(self, name)
            if not (np.isfinite(v) and 0.0 <= v <= 1.0):
                raise InvalidParameterRange(f"{name} must be within [0, 1], got {v}")
        if self.lower_bound_amount > self.upper_bound_amount:
            raise InvalidParameterRange("lower_bound_amount must not exceed upper_bound_amount")
        if (self.cap_amount is None) != (self.cap_target is None):
            raise InvalidParameterRange("cap_amount and cap_target must be supplied together")
        if self.cap_amount is not None:
            for name in ("cap_amount", "cap_target"):
                v = getattr(self, name)
                if not (np.isfinite(v) and v >= 0):
                    raise InvalidParameterRange(f"{name} must be finite and >= 0, got {v}")
        if self.abundances is not None:
            a = np.asarray(self.abundances, dtype=float)
            if a.shape != (problem.number_of_features,):
                raise InvalidParameterLength(
                    f"abundances must have one value per feature ({problem.number_of_features}), got {a.size}")
            if np.any(~np.isfinite(a)) or np.any(a < 0):
                raise InvalidParameterRange("abundances must be finite and >= 0")

    def absolute_targets(self, problem) -> np.ndarray:
        if self.abundances is None:
            a = problem.feature_abundances()[:, 0]
        else:
            a = np.asarray(self.abundances, dtype=float)
        t = loglinear_interpolation(a, self.lower_bound_amount, self.lower_bound_target,
                                    self.upper_bound_amount, self.upper_bound_target) * a
        if self.cap_amount is not None:
            t[a >= self.cap_amount] = self.cap_target
        return t

    def resolve(self, problem):
        return _from_matrix(self.absolute_targets(problem)[:, None], self.label)


@dataclass(frozen=True)
class TargetEntry:
    feature: int
    target: float
    zones: Tuple[int, ...] = (0,)
    type: str = "absolute"
    sense: str = ">="


@dataclass(frozen=True, eq=False)
class ManualTargets(Targets):
    """Explicit per-feature targets; an entry may span several zones."""

    entries: Tuple[TargetEntry, ...]
    label = "manual targets"

    def __post_init__(self):
        object.__setattr__(self, "entries", tuple(
            e if isinstance(e, TargetEntry) else TargetEntry(**{**e, "zones": tuple(e.get("zones", (0,)))})
            for e in self.entries
        ))

    def validate(self, problem):
        m, z = problem.number_of_features, problem.number_of_zones
        if not self.entries:
            raise InvalidParameterLength("manual targets need at least one entry")
        for e in self.entries:
            if not 0 <= e.feature < m:
                raise InvalidParameterLength(f"feature index {e.feature} outside 0..{m - 1}")
            if not e.zones or any(not 0 <= zz < z for zz in e.zones):
                raise InvalidParameterLength(f"zones {e.zones} outside 0..{z - 1}")
            if e.type not in ("absolute", "relative"):
                raise InvalidParameterRange(f"target type must be 'absolute' or 'relative', got {e.type!r}")
            if e.sense not in (">=", "<=", "="):
                raise InvalidParameterRange(f"target sense must be '>=', '<=' or '=', got {e.sense!r}")
            if np.isnan(e.target):
                continue
            if not np.isfinite(e.target) or e.target < 0:
                raise InvalidParameterRange(f"target for feature {e.feature} must be finite and >= 0")
            if e.type == "relative" and e.target > 1:
                raise InvalidParameterRange(f"relative target for feature {e.feature} must be <= 1")

    def resolve(self, problem):
        out: Dict[TargetKey, ResolvedTarget] = {}
        abundance = problem.feature_abundances()
        for e in self.entries:
            if np.isnan(e.target):
                raise UnresolvedTarget(f"{self.label}: no target value for feature {e.feature}")
            zones = tuple(sorted(set(e.zones)))
            value = float(e.target)
            if e.type == "relative":
                value *= float(abundance[e.feature, list(zones)].sum())
            t = ResolvedTarget(e.feature, zones, e.sense, value)
            out[t.key] = t
        return out


def resolve_targets(problem: "ConservationProblem", targets: Sequence[Targets]) -> List[ResolvedTarget]:
    """Merge all target modifiers; later modifiers replace earlier ones per key."""
    merged: Dict[TargetKey, ResolvedTarget] = {}
    for t in targets:
        resolved = t.resolve(problem)
        overlap = merged.keys() & resolved.keys()
        if overlap:
            logger.warning("{} replace {} previously specified targets", t.label, len(overlap))
        merged.update(resolved)
    return [merged[k] for k in sorted(merged)]
