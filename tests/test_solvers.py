"""
End-to-end tests that solve small problems with HiGHS.

Tests:
1. Minimum set on a 90-unit grid meets every target
2. Locking units in never lowers the optimal cost
3. Boundary penalties never increase fragmentation as they grow
4. Contiguity constraints yield one connected reserve
5. Replacement cost is infinite for irreplaceable units, serial or pooled
6. A time limit returns the incumbent as SUBOPTIMAL
7. Backend option translation and termination mapping

Run with: python -m pytest tests/test_solvers.py -v
"""

import numpy as np
import pytest
import scipy.sparse as sp
from pyomo.opt import TerminationCondition

from conftest import requires_highs
from consplan.core.config import ConsplanConfig, SolverConfig
from consplan.core.errors import Infeasible, SolverError, TimeLimitExceeded, Unbounded
from consplan.core.interfaces import SolverBackend
from consplan.core.graph import adjacency_matrix_from_grid, boundary_matrix_from_grid, is_contiguous
from consplan.core.pipeline import PlanningRun
from consplan.core.problem import ConservationProblem
from consplan.io.readers import synthesize_grid_problem, synthesize_problem_data
from consplan.models.importance import replacement_cost
from consplan.models.solvers import _status, solve_program
from consplan.models.summary import (
    boundary_length, feature_representation, solution_components, solution_cost, target_coverage,
)

EXACT = SolverConfig(backend="highs", gap=0.0)


@requires_highs
class TestMinimumSet:
    """Classic minimum set problems."""

    def test_grid_problem_meets_targets(self):
        p = synthesize_grid_problem(9, 10, n_features=5, seed=0).add_min_set_objective().add_relative_targets(0.1)
        sol = p.solve(EXACT)
        assert sol.status == "OPTIMAL"
        assert sol.backend == "highs"
        assert sol.decisions.shape == (90, 1)
        assert all(row["met"] for row in target_coverage(p, sol))
        assert sol.objective_value == pytest.approx(solution_cost(p, sol))
        held = feature_representation(p, sol)[:, 0]
        assert np.all(held >= 0.1 * p.feature_abundances()[:, 0] - 1e-6)

    def test_locked_in_never_cheaper(self):
        base = synthesize_grid_problem(9, 10, n_features=5, seed=0).add_min_set_objective().add_relative_targets(0.1)
        free = base.solve(EXACT)
        unused = np.flatnonzero(~free.selected()[:, 0])[:3]
        locked = base.add_locked_in_constraints(unused).solve(EXACT)
        assert locked.objective_value >= free.objective_value - 1e-6
        assert locked.selected()[unused, 0].all()

    def test_proportion_decisions_are_a_relaxation(self):
        base = synthesize_grid_problem(4, 4, n_features=3, seed=2).add_min_set_objective().add_relative_targets(0.3)
        binary = base.solve(EXACT)
        relaxed = base.add_proportion_decisions().solve(EXACT)
        assert relaxed.objective_value <= binary.objective_value + 1e-6

    def test_infeasible_targets(self, small_problem):
        p = small_problem.add_min_set_objective().add_absolute_targets([100.0, 1.0])
        with pytest.raises(Infeasible):
            p.solve(EXACT)

    def test_multi_zone_allocation(self, two_zone_problem):
        p = two_zone_problem.add_min_set_objective().add_absolute_targets(np.array([[1.0, 0.5], [0.0, 1.0]]))
        sol = p.solve(EXACT)
        # each unit in at most one zone; unavailable cell stays empty
        assert np.all(sol.decisions.sum(axis=1) <= 1 + 1e-9)
        assert sol.decisions[2, 1] == 0.0


@requires_highs
class TestSpatial:
    """Boundary penalties and contiguity."""

    def _square(self):
        data = synthesize_problem_data(4, 4, n_features=3, seed=5)
        return ConservationProblem.from_data(data).add_min_set_objective().add_relative_targets(0.3)

    def test_boundary_penalty_monotone(self):
        base = self._square()
        bm = boundary_matrix_from_grid(4, 4)
        shared = bm - sp.diags(bm.diagonal())
        cuts = []
        for penalty in (0.0, 1.0, 10.0, 100.0):
            sol = base.add_boundary_penalties(penalty, bm, edge_factor=0.0).solve(EXACT)
            x = sol.decisions[:, 0]
            cuts.append(float(x @ np.asarray(shared.sum(axis=1)).ravel() - x @ (shared @ x)))
        assert all(b <= a + 1e-6 for a, b in zip(cuts, cuts[1:]))

    def test_contiguity_connects_corners(self):
        n = 16
        amounts = np.zeros((1, n))
        amounts[0, [0, 15]] = 1.0
        adj = adjacency_matrix_from_grid(4, 4)
        p = (ConservationProblem(np.ones(n), sp.csr_matrix(amounts))
             .add_min_set_objective().add_absolute_targets(2.0)
             .add_contiguity_constraints(adj))
        sol = p.solve(EXACT)
        mask = sol.selected()[:, 0]
        assert mask[0] and mask[15]
        assert is_contiguous(adj, mask)
        assert solution_components(p, sol, adj) == 1
        # shortest rook path between opposite corners of a 4x4 grid
        assert mask.sum() == 7

    def test_neighbor_constraints(self):
        adj = adjacency_matrix_from_grid(1, 5)
        amounts = sp.csr_matrix(np.array([[0.0, 0.0, 1.0, 0.0, 0.0]]))
        p = (ConservationProblem(np.ones(5), amounts)
             .add_min_set_objective().add_absolute_targets(1.0)
             .add_neighbor_constraints(1, adj))
        sol = p.solve(EXACT)
        mask = sol.selected()[:, 0]
        assert mask[2]
        assert mask.sum() == 2
        assert boundary_length(p, sol, boundary_matrix_from_grid(1, 5)) == pytest.approx(6.0)


@requires_highs
class TestReplacementCost:
    """Post-hoc importance scores."""

    def test_irreplaceable_unit(self):
        amounts = sp.csr_matrix(np.array([
            [1.0, 0.0, 0.0],
            [0.0, 1.0, 1.0],
        ]))
        p = ConservationProblem([1.0, 2.0, 3.0], amounts).add_min_set_objective().add_absolute_targets(1.0)
        sol = p.solve(EXACT)
        rc = replacement_cost(p, sol, EXACT)
        assert np.isinf(rc[0, 0])
        assert rc[1, 0] == pytest.approx(1.0)
        assert np.isnan(rc[2, 0])

    def test_process_pool_matches_serial(self):
        p = synthesize_grid_problem(4, 4, n_features=3, seed=1).add_min_set_objective().add_relative_targets(0.2)
        sol = p.solve(EXACT)
        serial = replacement_cost(p, sol, EXACT)
        pooled = replacement_cost(p, sol, EXACT, max_workers=2)
        np.testing.assert_allclose(pooled, serial, atol=1e-6)
        assert np.array_equal(np.isnan(pooled), np.isnan(serial))


@requires_highs
class TestTimeLimit:
    """A time limit returns the incumbent instead of failing."""

    def test_incumbent_is_suboptimal(self):
        p = (synthesize_grid_problem(20, 20, n_features=20, seed=0)
             .add_min_set_objective().add_relative_targets(0.3)
             .add_boundary_penalties(5.0, boundary_matrix_from_grid(20, 20)))
        try:
            sol = p.solve(SolverConfig(backend="highs", gap=0.0, time_limit=0.5, run_checks=False))
        except TimeLimitExceeded:
            pytest.skip("HiGHS found no incumbent within the time limit on this machine")
        assert sol.status == "SUBOPTIMAL"
        assert sol.time_limit_reached
        assert all(row["met"] for row in target_coverage(p, sol))


class TestTerminationMapping:
    """Solver termination conditions mapped to statuses and errors."""

    def test_time_limit_without_incumbent(self):
        with pytest.raises(TimeLimitExceeded):
            _status(TerminationCondition.maxTimeLimit, False)

    def test_time_limit_with_incumbent(self):
        assert _status(TerminationCondition.maxTimeLimit, True) == ("SUBOPTIMAL", True)

    def test_optimal(self):
        assert _status(TerminationCondition.optimal, True) == ("OPTIMAL", False)

    @pytest.mark.parametrize("tc,error", [
        (TerminationCondition.infeasible, Infeasible),
        (TerminationCondition.infeasibleOrUnbounded, Infeasible),
        (TerminationCondition.unbounded, Unbounded),
        (TerminationCondition.error, SolverError),
    ])
    def test_failures(self, tc, error):
        with pytest.raises(error):
            _status(tc, False)


@requires_highs
class TestPipeline:
    """Configured runs write their outputs."""

    def test_planning_run(self, tmp_path):
        cfg = ConsplanConfig.from_dict({
            "objective": {"name": "min_set"},
            "targets": [{"name": "relative", "params": {"fraction": 0.2}}],
            "penalties": [{"name": "boundary", "params": {"penalty": 0.1, "data": "boundary"}}],
            "solver": {"backend": "highs", "gap": 0.0},
            "run": {"out_dir": str(tmp_path / "run")},
        })
        res = PlanningRun(cfg, data=synthesize_problem_data(4, 4, n_features=2, seed=0)).run()
        assert res.presolve_ok
        assert res.solution.status == "OPTIMAL"
        assert res.outputs["solution"].exists()
        assert res.outputs["summary"].exists()

    def test_run_leaves_global_rng_alone(self, tmp_path):
        cfg = ConsplanConfig.from_dict({
            "objective": {"name": "min_set"},
            "targets": [{"name": "relative", "params": {"fraction": 0.2}}],
            "solver": {"backend": "highs", "gap": 0.0},
            "run": {"out_dir": str(tmp_path / "run")},
        })
        np.random.seed(7)
        before = np.random.get_state()[1].copy()
        PlanningRun(cfg, data=synthesize_problem_data(3, 3, n_features=2, seed=0)).run(write=False)
        assert np.array_equal(np.random.get_state()[1], before)

    def test_solve_program_directly(self, small_problem):
        prog = small_problem.add_min_set_objective().add_absolute_targets([1.0, 3.0]).compile()
        sol = solve_program(prog, EXACT)
        assert sol.objective_value == pytest.approx(3.0)
        assert sol.selected_units().tolist() == [0, 1]


class TestBackendOptions:
    """SolverConfig translated into each backend's own option names."""

    def test_highs_options(self):
        from consplan.adapters.highs_adapter import HighsBackend
        opts = HighsBackend().options(SolverConfig(gap=0.05, time_limit=10, presolve=0, first_feasible=True))
        assert opts["mip_rel_gap"] == 0.05
        assert opts["time_limit"] == 10.0
        assert opts["presolve"] == "off"
        assert opts["mip_max_improving_sols"] == 1

    def test_gurobi_options(self):
        from consplan.adapters.gurobi_adapter import GurobiBackend
        opts = GurobiBackend().options(SolverConfig(threads=4, numeric_focus=True))
        assert opts["Threads"] == 4
        assert opts["NumericFocus"] == 3
        assert "TimeLimit" not in opts

    def test_cbc_options(self):
        from consplan.adapters.cbc_adapter import CbcBackend
        opts = CbcBackend().options(SolverConfig(gap=0.0, time_limit=5))
        assert opts["ratio"] == 0.0
        assert opts["sec"] == 5.0

    def test_backends_satisfy_protocol(self):
        from consplan.adapters.cbc_adapter import CbcBackend
        from consplan.adapters.gurobi_adapter import GurobiBackend
        from consplan.adapters.highs_adapter import HighsBackend
        for backend in (HighsBackend(), GurobiBackend(), CbcBackend()):
            assert isinstance(backend, SolverBackend)

    def test_registry(self):
        from consplan.plugins import backends  # noqa: F401
        from consplan.plugins.registry import get, names
        assert {"gurobi", "highs", "cbc"} <= set(names())
        assert get("highs")().solver_name == "appsi_highs"
        with pytest.raises(KeyError):
            get("glpk")
