"""
Unit tests for presolve numerical checks.

Every check is advisory: it warns with PresolveWarning and returns False, and
never raises.

Run with: python -m pytest tests/test_presolve.py -v
"""

import warnings

import numpy as np
import pytest
import scipy.sparse as sp

from conftest import requires_highs
from consplan.core.config import SolverConfig
from consplan.core.errors import PresolveWarning
from consplan.core.graph import boundary_matrix_from_grid
from consplan.core.problem import ConservationProblem
from consplan.io.readers import synthesize_grid_problem
from consplan.models.objectives import Phylogeny
from consplan.models.presolve import presolve_check, presolve_report


def _categories(problem):
    return {issue.category for issue in presolve_report(problem.compile())}


def _messages(problem):
    return " ".join(issue.message for issue in presolve_report(problem.compile()))


@pytest.fixture
def grid():
    return synthesize_grid_problem(4, 4, n_features=3, seed=1)


class TestNoFalsePositives:
    """Well-scaled problems pass silently."""

    def test_grid_problem_passes(self, grid):
        p = (grid.add_min_set_objective().add_relative_targets(0.2)
             .add_boundary_penalties(0.5, boundary_matrix_from_grid(4, 4)))
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            assert presolve_check(p) is True

    def test_problem_method(self, grid):
        p = grid.add_min_set_objective().add_relative_targets(0.2)
        assert p.presolve_check() is True


class TestRangeChecks:
    """Coefficient ranges wider than the threshold are reported by category."""

    @pytest.mark.parametrize("penalty", [1e10, 1e-10])
    def test_boundary(self, grid, penalty):
        p = (grid.add_min_set_objective().add_relative_targets(0.2)
             .add_boundary_penalties(penalty, boundary_matrix_from_grid(4, 4)))
        with pytest.warns(PresolveWarning):
            assert presolve_check(p) is False
        assert "boundary" in _categories(p)

    def test_connectivity(self, grid):
        c = np.zeros((16, 16))
        c[0, 1] = c[1, 0] = 1e10
        p = grid.add_min_set_objective().add_relative_targets(0.2).add_connectivity_penalties(1.0, c)
        assert "connectivity" in _categories(p)

    def test_feature_amount(self):
        amounts = sp.csr_matrix(np.array([[1e-6, 1e6, 1.0]]))
        p = ConservationProblem([1.0, 1.0, 1.0], amounts).add_min_set_objective().add_relative_targets(0.1)
        assert "feature amount" in _categories(p)

    def test_cost(self):
        p = (ConservationProblem([1e-6, 1e6, 1.0], sp.csr_matrix(np.ones((1, 3))))
             .add_min_set_objective().add_relative_targets(0.1))
        assert "cost" in _categories(p)

    def test_weight(self, small_problem):
        p = small_problem.add_max_utility_objective(budget=5.0, weights=[1e-6, 1e6])
        assert "weight" in _categories(p)

    def test_target(self, small_problem):
        p = small_problem.add_min_set_objective().add_absolute_targets([1e-8, 1e4])
        assert "target" in _categories(p)

    def test_target_weights(self, small_problem):
        p = small_problem.add_max_features_objective(budget=5.0, weights=[1e-6, 1e6]).add_relative_targets(0.1)
        assert "target weights" in _categories(p)

    def test_branch_lengths(self, small_problem):
        phylo = Phylogeny.from_clades([[0], [1]], [1e-6, 1e6], 2)
        p = small_problem.add_max_phylo_div_objective(5.0, phylo).add_relative_targets(0.1)
        assert "branch lengths" in _categories(p)

    @requires_highs
    def test_single_boundary_entry_round_trip(self, grid):
        base = grid.add_min_set_objective().add_relative_targets(0.2)
        bm = boundary_matrix_from_grid(4, 4).toarray()
        inflated = bm.copy()
        inflated[0, 1] = inflated[1, 0] = 1e10
        p = base.add_boundary_penalties(0.5, inflated)
        with pytest.warns(PresolveWarning, match="boundary"):
            assert presolve_check(p) is False
        assert "boundary" in _categories(p)
        # advisory only: the inflated problem still solves
        sol = p.solve(SolverConfig(backend="highs", gap=0.0, run_checks=False))
        assert sol.status in ("OPTIMAL", "SUBOPTIMAL")
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            assert presolve_check(base.add_boundary_penalties(0.5, bm)) is True

    def test_threshold_is_adjustable(self):
        p = (ConservationProblem([1.0, 1e3], sp.csr_matrix(np.ones((1, 2))))
             .add_min_set_objective().add_relative_targets(0.1))
        assert presolve_check(p, threshold=1e9) is True
        with pytest.warns(PresolveWarning):
            assert presolve_check(p, threshold=10.0) is False


class TestStructuralChecks:
    """Degenerate problems that solve but are probably mistakes."""

    def test_negative_costs(self):
        p = (ConservationProblem([-1.0, -2.0], sp.csr_matrix(np.ones((1, 2))))
             .add_min_set_objective().add_relative_targets(0.1))
        assert "negative" in _messages(p)

    def test_all_locked_in(self, small_problem):
        p = small_problem.add_min_set_objective().add_relative_targets(0.1).add_locked_in_constraints([0, 1, 2, 3])
        assert "locked in" in _categories(p)

    def test_all_locked_out(self, small_problem):
        p = small_problem.add_min_set_objective().add_relative_targets(0.1).add_locked_out_constraints([0, 1, 2, 3])
        assert "locked out" in _categories(p)

    def test_partial_locks_pass(self, small_problem):
        p = small_problem.add_min_set_objective().add_relative_targets(0.1).add_locked_in_constraints([0])
        assert not {"locked in", "locked out"} & _categories(p)
