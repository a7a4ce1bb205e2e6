"""Tests for the physiological dynamics model."""

import numpy as np
import pytest

from biofeedback_loop.estimation.dynamics import (
    DEFAULT_PARAMS,
    arousal_step,
    attention_step,
    propagate,
    rhythm_step,
    valence_step,
)
from biofeedback_loop.models import ProtocolTarget


@pytest.fixture
def target() -> ProtocolTarget:
    return ProtocolTarget()


class TestPerDimensionSteps:
    def test_rhythm_pulled_toward_target(self, target):
        assert rhythm_step(0.0, target, 0.1) == pytest.approx(0.007)

    def test_rhythm_at_target_is_fixed_point(self, target):
        assert rhythm_step(target.rhythm, target, 0.5) == pytest.approx(target.rhythm)

    def test_attention_at_baseline_without_rhythm_stays(self, target):
        assert attention_step(target.attention, 0.0, target, 1.0) == pytest.approx(target.attention)

    def test_attention_boosted_by_rhythm(self, target):
        boosted = attention_step(target.attention, 1.0, target, 1.0)
        assert boosted == pytest.approx(target.attention + DEFAULT_PARAMS.attention_boost)

    def test_valence_stable_at_yerkes_dodson_peak(self, target):
        peak = DEFAULT_PARAMS.yerkes_dodson_peak
        assert valence_step(target.valence, peak, target, 0.1) == pytest.approx(target.valence)

    def test_valence_drops_away_from_peak(self, target):
        assert valence_step(target.valence, 1.0, target, 0.1) < target.valence

    def test_arousal_velocity_accelerates_toward_target(self, target):
        arousal, velocity = arousal_step(0.2, 0.0, target, 0.1)
        assert arousal == pytest.approx(0.2)
        assert velocity > 0.0


class TestPropagate:
    def test_shape_and_no_clamping(self, target):
        out = propagate(np.array([1.0, 0.5, 0.0, 0.5, 0.0]), target, 1.0)
        assert out.shape == (5,)
        assert out[0] == pytest.approx(1.5)

    def test_arousal_settles_near_equilibrium(self):
        target = ProtocolTarget(arousal=0.2)
        state = np.array([0.9, 0.0, 0.0, 0.5, 0.0])
        for _ in range(2000):
            state = propagate(state, target, 0.1)
        # Logistic term shifts the resting point slightly below the target.
        assert 0.0 < state[0] < 0.2
        assert abs(state[1]) < 1e-3
        assert state[4] == pytest.approx(target.rhythm, abs=1e-3)
