
from __future__ import annotations


class ConsplanError(Exception):
    """Base class for every error raised by consplan."""


# ---------- model construction / modifiers ----------
class DimensionMismatch(ConsplanError, ValueError):
    """Cost, amount or lock data disagree on the number of units, features or zones."""


class ModifierConflict(ConsplanError, ValueError):
    """Two mutually exclusive modifiers were attached to the same problem."""


class InvalidParameterLength(ConsplanError, ValueError):
    pass


class InvalidParameterRange(ConsplanError, ValueError):
    pass


class UnresolvedTarget(ConsplanError, ValueError):
    """Compilation was attempted before every required target was specified."""


class NonFiniteCoefficient(ConsplanError, ValueError):
    def __init__(self, category: str, detail: str = ""):
        self.category = category
        msg = f"non-finite value in {category} data"
        super().__init__(f"{msg}: {detail}" if detail else msg)


# ---------- solving ----------
class SolverError(ConsplanError, RuntimeError):
    pass


class Infeasible(SolverError):
    pass


class Unbounded(SolverError):
    pass


class TimeLimitExceeded(SolverError):
    """Raised only when the time limit expired before any incumbent was found."""


class SolverUnavailable(SolverError):
    pass


class PresolveWarning(UserWarning):
    """Advisory numerical-stability warning; never blocks a solve."""


class MissingModifier(ConsplanError, ValueError):
    """A problem was compiled without a required modifier (e.g. no objective)."""
