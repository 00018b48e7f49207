
from __future__ import annotations
from contextlib import AbstractContextManager
from enum import Enum
from typing import Any, ClassVar, Dict, Protocol, TYPE_CHECKING, runtime_checkable

if TYPE_CHECKING:
    from .problem import ConservationProblem
    from .config import SolverConfig
    from ..models.program import ProgramBuilder


class ModifierKind(str, Enum):
    OBJECTIVE = "objective"
    TARGET = "target"
    CONSTRAINT = "constraint"
    PENALTY = "penalty"
    DECISION = "decision"


class Modifier:
    """Something attached to a problem that shapes the compiled program.

    Each variant overrides whichever of the contribute_* hooks it needs. The
    compiler calls them in a fixed order (bounds, objective, rows) so a
    modifier never has to know which other modifiers are present.
    """

    kind: ClassVar[ModifierKind]
    label: ClassVar[str] = "modifier"

    def validate(self, problem: "ConservationProblem") -> None:
        """Check parameters against the problem shape; raise on mismatch."""

    def contribute_bounds(self, builder: "ProgramBuilder") -> None:
        pass

    def contribute_objective(self, builder: "ProgramBuilder") -> None:
        pass

    def contribute_rows(self, builder: "ProgramBuilder") -> None:
        pass

    def describe(self) -> str:
        return self.label


@runtime_checkable
class SolverBackend(Protocol):
    name: str

    def available(self) -> bool: ...

    def options(self, cfg: "SolverConfig") -> Dict[str, Any]: ...

    def handle(self) -> AbstractContextManager[Any]: ...
