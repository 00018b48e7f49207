
from __future__ import annotations
from dataclasses import dataclass

from ..core.errors import InvalidParameterRange
from ..core.interfaces import Modifier, ModifierKind


class Decision(Modifier):
    kind = ModifierKind.DECISION
    vtype = "B"

    @property
    def upper(self) -> float:
        return 1.0


@dataclass(frozen=True, eq=False)
class BinaryDecision(Decision):
    """Each (unit, zone) is either selected or not."""

    label = "binary decisions"
    vtype = "B"


@dataclass(frozen=True, eq=False)
class ProportionDecision(Decision):
    """Any fraction of a unit may be allocated to a zone."""

    label = "proportion decisions"
    vtype = "C"


@dataclass(frozen=True, eq=False)
class IntegerDecision(Decision):
    """Whole-number allocations between 0 and `upper_limit`."""

    upper_limit: int = 1
    label = "integer decisions"
    vtype = "I"

    def validate(self, problem):
        if int(self.upper_limit) != self.upper_limit or self.upper_limit < 1:
            raise InvalidParameterRange(f"upper_limit must be a positive integer, got {self.upper_limit}")

    @property
    def upper(self) -> float:
        return float(self.upper_limit)
