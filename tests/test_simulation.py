"""Tests for the synthetic session scenarios."""

import numpy as np
import pytest

from biofeedback_loop.models import BiofeedbackError
from biofeedback_loop.protocols import get_pattern
from biofeedback_loop.simulation import SCENARIOS, UnknownScenarioError, run_session


class TestScenarios:
    @pytest.mark.parametrize("name", sorted(SCENARIOS))
    def test_scenarios_are_seeded(self, name):
        a = SCENARIOS[name](1.0, np.random.default_rng(3))
        b = SCENARIOS[name](1.0, np.random.default_rng(3))
        assert a == b

    def test_unknown_scenario(self, settings):
        with pytest.raises(UnknownScenarioError):
            run_session("zombie", settings=settings)
        assert issubclass(UnknownScenarioError, BiofeedbackError)


class TestRunSession:
    def test_deterministic(self, settings):
        first = run_session("nominal", ticks=200, seed=11, settings=settings)
        second = run_session("nominal", ticks=200, seed=11, settings=settings)
        assert first.commands == second.commands
        assert first.final_belief == second.final_belief

    def test_nominal_session_is_calm(self, settings):
        report = run_session("nominal", ticks=300, settings=settings, protocol=get_pattern("coherence"))
        assert report.pattern == "coherence"
        assert report.final_belief.arousal < 0.4
        assert all(0.8 <= c.scale <= 1.4 for c in report.commands)
        # Nothing before the warm-up window closes.
        assert all(c.timestamp >= settings.warmup_seconds for c in report.commands)

    def test_panic_raises_arousal(self, settings):
        calm = run_session("nominal", ticks=100, settings=settings)
        panic = run_session("panic", ticks=100, settings=settings)
        assert panic.final_belief.arousal > calm.final_belief.arousal + 0.3

    def test_sensor_failure_reports_faults(self, settings):
        report = run_session("sensor_failure", ticks=300, settings=settings)
        assert report.fault_count > 0
        for value, (lo, hi) in zip(report.final_belief.mean, [(0, 1), (-0.5, 0.5), (-1, 1), (0, 1), (0, 1)]):
            assert lo <= value <= hi

    @pytest.mark.parametrize("kwargs", [{"ticks": 0}, {"dt": 0.0}])
    def test_invalid_arguments(self, settings, kwargs):
        with pytest.raises(ValueError):
            run_session("nominal", settings=settings, **kwargs)
