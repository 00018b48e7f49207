"""
Shared fixtures for the consplan test suite.

Solver-backed tests are marked with `requires_highs` and skip cleanly when the
HiGHS backend (highspy via Pyomo APPSI) cannot be loaded.
"""

import numpy as np
import pytest
import scipy.sparse as sp

from consplan.adapters.highs_adapter import HighsBackend
from consplan.core.problem import ConservationProblem


requires_highs = pytest.mark.skipif(not HighsBackend().available(), reason="HiGHS backend not available")


@pytest.fixture
def small_problem():
    """Four units, two features, one zone."""
    costs = np.array([1.0, 2.0, 3.0, 4.0])
    amounts = sp.csr_matrix(np.array([
        [1.0, 0.0, 2.0, 1.0],
        [0.0, 3.0, 1.0, 0.0],
    ]))
    return ConservationProblem(costs, amounts)


@pytest.fixture
def two_zone_problem():
    """Three units, two features, two zones; unit 2 is unavailable in zone 1."""
    costs = np.array([
        [1.0, 2.0],
        [2.0, 1.0],
        [3.0, np.nan],
    ])
    z0 = sp.csr_matrix(np.array([[1.0, 1.0, 1.0], [0.0, 2.0, 0.0]]))
    z1 = sp.csr_matrix(np.array([[0.5, 0.5, 0.0], [1.0, 0.0, 0.0]]))
    return ConservationProblem(costs, [z0, z1], zone_names=["reserve", "harvest"])
