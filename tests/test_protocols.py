"""Tests for the breathing-pattern catalogue."""

import pytest
from pydantic import ValidationError

from biofeedback_loop.models import BiofeedbackError
from biofeedback_loop.protocols import (
    BREATHING_PATTERNS,
    UnknownPatternError,
    get_pattern,
    scaled_timings,
    target_category,
    target_for_pattern,
)


class TestCatalogue:
    def test_all_patterns_present(self):
        assert set(BREATHING_PATTERNS) == {
            "4-7-8",
            "box",
            "calm",
            "coherence",
            "deep-relax",
            "7-11",
            "awake",
            "triangle",
            "tactical",
            "buteyko",
            "wim-hof",
        }

    def test_unknown_pattern(self):
        with pytest.raises(UnknownPatternError):
            get_pattern("square-dance")
        assert issubclass(UnknownPatternError, BiofeedbackError)
        assert issubclass(UnknownPatternError, KeyError)

    def test_breath_rate(self):
        assert get_pattern("coherence").breath_rate == pytest.approx(5.0)
        assert get_pattern("box").breath_rate == pytest.approx(3.75)

    def test_patterns_are_immutable(self):
        with pytest.raises(ValidationError):
            get_pattern("box").arousal_impact = 0.5

    def test_scaled_timings(self):
        scaled = scaled_timings(get_pattern("4-7-8"), 1.25)
        assert scaled.inhale == pytest.approx(5.0)
        assert scaled.hold_in == pytest.approx(8.75)
        assert scaled.exhale == pytest.approx(10.0)
        assert scaled.hold_out == 0.0


class TestTargets:
    @pytest.mark.parametrize(
        ("pattern_id", "category"),
        [
            ("4-7-8", "parasympathetic"),
            ("7-11", "parasympathetic"),
            ("coherence", "balanced"),  # -0.5 sits on the boundary
            ("box", "balanced"),
            ("awake", "sympathetic"),
            ("wim-hof", "sympathetic"),
        ],
    )
    def test_category(self, pattern_id, category):
        assert target_category(get_pattern(pattern_id)) == category

    def test_parasympathetic_target(self):
        target = target_for_pattern(get_pattern("deep-relax"))
        assert (target.arousal, target.attention, target.rhythm, target.valence) == (0.2, 0.5, 0.8, 0.6)

    def test_default_target_without_pattern(self):
        target = target_for_pattern(None)
        assert (target.arousal, target.attention, target.rhythm, target.valence) == (0.5, 0.6, 0.7, 0.5)

    def test_target_carries_only_the_envelope(self):
        target = target_for_pattern(get_pattern("4-7-8"))
        assert set(target.model_dump()) == {"arousal", "attention", "rhythm", "valence"}
