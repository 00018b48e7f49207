"""
Unit tests for target modifiers and their resolution.

Run with: python -m pytest tests/test_targets.py -v
"""

import numpy as np
import pytest

from consplan.core.errors import InvalidParameterRange, UnresolvedTarget
from consplan.models.targets import TargetEntry, loglinear_interpolation, resolve_targets


class TestResolution:
    """Resolved (feature, zones) -> value mappings."""

    def test_relative_targets(self, small_problem):
        p = small_problem.add_relative_targets(0.5)
        resolved = resolve_targets(p, p.modifiers.targets)
        assert [t.value for t in resolved] == pytest.approx([2.0, 2.0])
        assert all(t.sense == ">=" for t in resolved)

    def test_relative_targets_per_zone(self, two_zone_problem):
        p = two_zone_problem.add_relative_targets(np.array([[0.5, 1.0], [0.5, 0.0]]))
        values = {t.key: t.value for t in resolve_targets(p, p.modifiers.targets)}
        assert values[(0, (0,))] == pytest.approx(1.5)
        assert values[(0, (1,))] == pytest.approx(1.0)
        assert values[(1, (1,))] == pytest.approx(0.0)

    def test_later_targets_override(self, small_problem):
        p = small_problem.add_relative_targets(0.5).add_absolute_targets([1.0, 0.25])
        resolved = resolve_targets(p, p.modifiers.targets)
        assert [t.value for t in resolved] == pytest.approx([1.0, 0.25])

    def test_manual_targets_span_zones(self, two_zone_problem):
        p = two_zone_problem.add_manual_targets([
            {"feature": 0, "target": 0.5, "zones": [0, 1], "type": "relative"},
            TargetEntry(feature=1, target=1.0, zones=(0,), sense="<="),
        ])
        resolved = {t.key: t for t in resolve_targets(p, p.modifiers.targets)}
        assert resolved[(0, (0, 1))].value == pytest.approx(2.0)
        assert resolved[(1, (0,))].sense == "<="

    def test_missing_manual_target(self, small_problem):
        p = small_problem.add_min_set_objective().add_manual_targets([{"feature": 0, "target": np.nan}])
        with pytest.raises(UnresolvedTarget):
            p.compile()

    def test_min_set_without_targets(self, small_problem):
        with pytest.raises(UnresolvedTarget):
            small_problem.add_min_set_objective().compile()


class TestLogLinear:
    """Log-linear scaling of relative targets with abundance."""

    def test_interpolation(self):
        out = loglinear_interpolation([1.0, 10.0, 100.0, 1000.0, 1e4], 10.0, 0.9, 1000.0, 0.1)
        np.testing.assert_allclose(out, [0.9, 0.9, 0.5, 0.1, 0.1])

    def test_targets_from_abundances(self, small_problem):
        p = small_problem.add_loglinear_targets(10.0, 0.9, 1000.0, 0.1, abundances=[100.0, 1000.0])
        resolved = resolve_targets(p, p.modifiers.targets)
        assert [t.value for t in resolved] == pytest.approx([50.0, 100.0])

    def test_cap(self, small_problem):
        p = small_problem.add_loglinear_targets(10.0, 0.9, 1000.0, 0.1, cap_amount=500.0, cap_target=20.0,
                                                abundances=[100.0, 1000.0])
        resolved = resolve_targets(p, p.modifiers.targets)
        assert [t.value for t in resolved] == pytest.approx([50.0, 20.0])

    def test_single_zone_only(self, two_zone_problem):
        with pytest.raises(InvalidParameterRange):
            two_zone_problem.add_loglinear_targets(10.0, 0.9, 1000.0, 0.1)

    def test_lower_amount_zero(self, small_problem):
        out = loglinear_interpolation([0.0, 5.0, 2000.0], 0.0, 0.9, 1000.0, 0.1)
        np.testing.assert_allclose(out, [0.9, 0.1, 0.1])
        p = small_problem.add_loglinear_targets(0.0, 0.9, 1000.0, 0.1, abundances=[0.0, 100.0])
        resolved = resolve_targets(p, p.modifiers.targets)
        assert [t.value for t in resolved] == pytest.approx([0.0, 10.0])

    def test_lower_amount_negative(self, small_problem):
        with pytest.raises(InvalidParameterRange):
            small_problem.add_loglinear_targets(-1.0, 0.9, 1000.0, 0.1)
