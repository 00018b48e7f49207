from __future__ import annotations

from pathlib import Path
import logging

from ..core.config import ConsplanConfig, load_config as _load_config
from ..core.datatypes import ProblemData
from .csv_loader import load_problem_data_from_csvs
from .marxan import read_marxan_input

logger = logging.getLogger(__name__)


def _input_file(path: Path) -> Path:
    """A Marxan data path may name input.dat itself or the folder holding it."""
    if path.is_dir():
        return path / "input.dat"
    return path


def load_problem_data(cfg: ConsplanConfig) -> ProblemData:
    path = Path(cfg.data_path)
    if cfg.data_format == "marxan":
        logger.info("Loading ProblemData from Marxan input %s", _input_file(path))
        data = read_marxan_input(_input_file(path))
    else:
        logger.info("Loading ProblemData from CSVs under %s", path)
        data = load_problem_data_from_csvs(str(path))
    logger.info("Loaded %d planning units over %d zone(s)", len(data.planning_units), data.number_of_zones)
    return data

def load_config(path: str | Path) -> ConsplanConfig:
    return _load_config(path)
