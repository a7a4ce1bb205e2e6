"""Breathing-pattern catalogue and the protocol targets derived from it.

A pattern's ``arousal_impact`` (-1 sedative … +1 stimulant) selects one of
four reference envelopes the dynamics model pulls the belief toward:

===============  ========  =========  ======  =======
Category         Arousal   Attention  Rhythm  Valence
===============  ========  =========  ======  =======
parasympathetic  0.2       0.5        0.8     0.6
balanced         0.4       0.7        0.9     0.5
sympathetic      0.7       0.8        0.6     0.7
default          0.5       0.6        0.7     0.5
===============  ========  =========  ======  =======
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from biofeedback_loop.models import BiofeedbackError, ProtocolTarget


class UnknownPatternError(BiofeedbackError, KeyError):
    """Raised when a pattern id is not in the catalogue."""


class PhaseTimings(BaseModel):
    """Phase durations in seconds; zero-length phases are skipped."""

    model_config = ConfigDict(frozen=True)

    inhale: float = Field(gt=0.0)
    hold_in: float = Field(0.0, ge=0.0)
    exhale: float = Field(gt=0.0)
    hold_out: float = Field(0.0, ge=0.0)

    @property
    def cycle_seconds(self) -> float:
        return self.inhale + self.hold_in + self.exhale + self.hold_out


class BreathPattern(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    label: str
    timings: PhaseTimings
    arousal_impact: float = Field(ge=-1.0, le=1.0)

    @property
    def breath_rate(self) -> float:
        """Breaths per minute at tempo scale 1.0."""
        return 60.0 / self.timings.cycle_seconds


def _pattern(pid: str, label: str, timings: tuple[float, float, float, float], impact: float) -> BreathPattern:
    inhale, hold_in, exhale, hold_out = timings
    return BreathPattern(
        id=pid,
        label=label,
        timings=PhaseTimings(inhale=inhale, hold_in=hold_in, exhale=exhale, hold_out=hold_out),
        arousal_impact=impact,
    )


BREATHING_PATTERNS: dict[str, BreathPattern] = {
    p.id: p
    for p in (
        _pattern("4-7-8", "Tranquility", (4, 7, 8, 0), -0.8),
        _pattern("box", "Focus", (4, 4, 4, 4), 0.0),
        _pattern("calm", "Balance", (4, 0, 6, 0), -0.3),
        _pattern("coherence", "Coherence", (6, 0, 6, 0), -0.5),
        _pattern("deep-relax", "Deep Rest", (4, 0, 8, 0), -0.9),
        _pattern("7-11", "7-11", (7, 0, 11, 0), -1.0),
        _pattern("awake", "Energize", (4, 0, 2, 0), 0.8),
        _pattern("triangle", "Triangle", (4, 4, 4, 0), 0.2),
        _pattern("tactical", "Tactical", (5, 5, 5, 5), 0.1),
        _pattern("buteyko", "Light Air", (3, 0, 3, 4), -0.2),
        _pattern("wim-hof", "Tummo Power", (2, 0, 1, 15), 1.0),
    )
}

_TARGETS: dict[str, tuple[float, float, float, float]] = {
    # (arousal, attention, rhythm, valence)
    "parasympathetic": (0.2, 0.5, 0.8, 0.6),
    "balanced": (0.4, 0.7, 0.9, 0.5),
    "sympathetic": (0.7, 0.8, 0.6, 0.7),
    "default": (0.5, 0.6, 0.7, 0.5),
}


def get_pattern(pattern_id: str) -> BreathPattern:
    try:
        return BREATHING_PATTERNS[pattern_id]
    except KeyError:
        raise UnknownPatternError(pattern_id) from None


def target_category(pattern: BreathPattern | None) -> str:
    if pattern is None:
        return "default"
    if pattern.arousal_impact < -0.5:
        return "parasympathetic"
    if pattern.arousal_impact > 0.5:
        return "sympathetic"
    return "balanced"


def target_for_pattern(pattern: BreathPattern | None) -> ProtocolTarget:
    """Map a pattern (or no pattern) to the envelope the estimator tracks."""
    arousal, attention, rhythm, valence = _TARGETS[target_category(pattern)]
    return ProtocolTarget(
        arousal=arousal,
        attention=attention,
        rhythm=rhythm,
        valence=valence,
    )


def scaled_timings(pattern: BreathPattern, tempo_scale: float) -> PhaseTimings:
    """Phase durations after the session scheduler applies a tempo scale."""
    t = pattern.timings
    return PhaseTimings(
        inhale=t.inhale * tempo_scale,
        hold_in=t.hold_in * tempo_scale,
        exhale=t.exhale * tempo_scale,
        hold_out=t.hold_out * tempo_scale,
    )
