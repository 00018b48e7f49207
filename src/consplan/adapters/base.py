
from __future__ import annotations
from contextlib import contextmanager
from typing import Any, Dict, Iterator

import pyomo.environ as pyo
from loguru import logger

from ..core.config import SolverConfig
from ..core.errors import SolverUnavailable


class PyomoBackend:
    """A MILP solver reached through a Pyomo solver plugin.

    Subclasses name the plugin and translate the shared SolverConfig into the
    solver's own option names.
    """

    name = "pyomo"
    solver_name = ""

    def available(self) -> bool:
        try:
            return bool(pyo.SolverFactory(self.solver_name).available(exception_flag=False))
        except Exception as e:  # plugin import errors surface here
            logger.debug("Backend {} not usable: {}", self.name, e)
            return False

    def options(self, cfg: SolverConfig) -> Dict[str, Any]:
        raise NotImplementedError

    @contextmanager
    def handle(self) -> Iterator[Any]:
        """Yield a fresh solver object; release it however the solve ends."""
        opt = pyo.SolverFactory(self.solver_name)
        if not opt.available(exception_flag=False):
            raise SolverUnavailable(f"solver backend '{self.name}' ({self.solver_name}) is not available")
        try:
            yield opt
        finally:
            self.release(opt)

    def release(self, opt: Any) -> None:
        close = getattr(opt, "close", None)
        if callable(close):
            close()
        logger.debug("Released {} handle", self.name)
