"""
Unit tests for ConservationProblem construction and the modifier builder.

Run with: python -m pytest tests/test_problem.py -v
"""

import numpy as np
import pytest
import scipy.sparse as sp

from consplan.core.datatypes import AmountRecord, FeatureRecord, PlanningUnitRecord, ProblemData
from consplan.core.errors import (
    DimensionMismatch, InvalidParameterLength, InvalidParameterRange, ModifierConflict,
)
from consplan.core.problem import ConservationProblem


class TestConstruction:
    """Shape checks and frozen data."""

    def test_dimensions(self, two_zone_problem):
        p = two_zone_problem
        assert p.number_of_planning_units == 3
        assert p.number_of_features == 2
        assert p.number_of_zones == 2
        assert p.zone_names == ("reserve", "harvest")

    def test_cost_amount_mismatch(self):
        """Amount matrix with the wrong number of units is rejected."""
        with pytest.raises(DimensionMismatch):
            ConservationProblem([1.0, 2.0, 3.0], sp.csr_matrix(np.ones((2, 4))))

    def test_zone_count_mismatch(self):
        with pytest.raises(DimensionMismatch):
            ConservationProblem(np.ones((3, 2)), [sp.csr_matrix(np.ones((1, 3)))])

    def test_negative_amounts_rejected(self):
        with pytest.raises(InvalidParameterRange):
            ConservationProblem([1.0, 1.0], sp.csr_matrix(np.array([[1.0, -1.0]])))

    def test_data_is_read_only(self, small_problem):
        with pytest.raises(ValueError):
            small_problem.costs[0] = 99.0

    def test_amounts_drop_explicit_zeros(self):
        m = sp.csr_matrix((np.array([0.0, 2.0]), (np.array([0, 0]), np.array([0, 1]))), shape=(1, 2))
        p = ConservationProblem([1.0, 1.0], m)
        assert p.amounts(0).nnz == 1

    def test_feature_abundances(self, two_zone_problem):
        ab = two_zone_problem.feature_abundances()
        np.testing.assert_allclose(ab, [[3.0, 1.0], [2.0, 1.0]])
        assert two_zone_problem.feature_abundance(0) == pytest.approx(4.0)

    def test_lock_mask_shape_checked(self):
        with pytest.raises(DimensionMismatch):
            ConservationProblem([1.0, 1.0], sp.csr_matrix(np.ones((1, 2))), locked_in=np.ones(3, dtype=bool))


class TestFromData:
    """Building from pydantic records."""

    def _data(self, **kw):
        return ProblemData(
            planning_units=[
                PlanningUnitRecord(id=3, cost=[3.0], status=0),
                PlanningUnitRecord(id=1, cost=[1.0], status=2),
                PlanningUnitRecord(id=2, cost=[2.0], status=3),
            ],
            features=[FeatureRecord(id=1, name="owl")],
            amounts=[AmountRecord(pu=1, species=1, amount=1.0), AmountRecord(pu=3, species=1, amount=2.0)],
            **kw,
        )

    def test_units_sorted_by_id(self):
        p = ConservationProblem.from_data(self._data())
        assert p.unit_ids == (1, 2, 3)
        np.testing.assert_allclose(p.costs[:, 0], [1.0, 2.0, 3.0])
        np.testing.assert_allclose(p.amounts(0).toarray(), [[1.0, 0.0, 2.0]])

    def test_status_locks(self):
        p = ConservationProblem.from_data(self._data())
        assert p.locked_in[:, 0].tolist() == [True, False, False]
        assert p.locked_out[:, 0].tolist() == [False, True, False]

    def test_unknown_unit_in_amounts(self):
        data = self._data()
        data.amounts.append(AmountRecord(pu=9, species=1, amount=1.0))
        with pytest.raises(DimensionMismatch):
            ConservationProblem.from_data(data)


class TestBuilder:
    """`add` returns a new problem and never mutates the original."""

    def test_add_returns_new_problem(self, small_problem):
        p2 = small_problem.add_min_set_objective()
        assert p2 is not small_problem
        assert small_problem.modifiers.objective is None
        assert p2.modifiers.objective is not None
        assert p2.costs is small_problem.costs

    def test_second_objective_conflicts(self, small_problem):
        p = small_problem.add_min_set_objective()
        with pytest.raises(ModifierConflict):
            p.add_max_utility_objective(budget=5.0)

    def test_second_decision_conflicts(self, small_problem):
        p = small_problem.add_binary_decisions()
        with pytest.raises(ModifierConflict):
            p.add_proportion_decisions()

    def test_targets_accumulate(self, small_problem):
        p = small_problem.add_relative_targets(0.1).add_absolute_targets(1.0)
        assert len(p.modifiers.targets) == 2

    def test_bad_target_length(self, small_problem):
        with pytest.raises(InvalidParameterLength):
            small_problem.add_absolute_targets([1.0, 2.0, 3.0])

    def test_relative_target_range(self, small_problem):
        with pytest.raises(InvalidParameterRange):
            small_problem.add_relative_targets(1.5)

    def test_integer_decision_limit(self, small_problem):
        with pytest.raises(InvalidParameterRange):
            small_problem.add_integer_decisions(0)

    def test_negative_boundary_penalty(self, small_problem):
        with pytest.raises(InvalidParameterRange):
            small_problem.add_boundary_penalties(-1.0, np.eye(4))

    def test_contiguity_requires_binary(self, small_problem):
        p = small_problem.add_proportion_decisions()
        with pytest.raises(ModifierConflict):
            p.add_contiguity_constraints(np.ones((4, 4)))

    def test_locked_in_needs_zone_for_multi_zone(self, two_zone_problem):
        with pytest.raises(InvalidParameterRange):
            two_zone_problem.add_locked_in_constraints([0])

    def test_repr_lists_modifiers(self, small_problem):
        p = small_problem.add_min_set_objective().add_relative_targets(0.2)
        text = repr(p)
        assert "minimum set objective" in text
        assert "relative targets" in text
