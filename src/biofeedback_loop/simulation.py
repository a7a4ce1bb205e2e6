"""Deterministic synthetic sessions for demos, the CLI and tests.

Each scenario maps ``(elapsed_seconds, rng)`` to a :class:`SensorObservation`
without its timestamp; :func:`run_session` stamps it and drives a
:class:`~biofeedback_loop.loop.orchestrator.BiofeedbackLoop` through
START → ticks → HALT.
"""

from __future__ import annotations

import math
from typing import Any, Callable

import numpy as np
import structlog
from pydantic import BaseModel, Field

from biofeedback_loop.config import Settings
from biofeedback_loop.loop.orchestrator import build_loop
from biofeedback_loop.models import (
    Belief,
    BiofeedbackError,
    Halt,
    ProtocolTarget,
    SensorObservation,
    StartSession,
    TempoCommand,
)
from biofeedback_loop.protocols import BreathPattern

logger = structlog.get_logger(__name__)

Scenario = Callable[[float, np.random.Generator], dict[str, Any]]


class UnknownScenarioError(BiofeedbackError, KeyError):
    """Raised when a scenario name is not registered."""


# ── Scenarios ─────────────────────────────────────────────────


def nominal(elapsed: float, rng: np.random.Generator) -> dict[str, Any]:
    """Calm, coherent breathing: RSA-like heart rate around 60 bpm."""
    return {
        "heart_rate": 60.0 + 5.0 * math.sin(2.0 * math.pi * elapsed / 10.0) + rng.normal(0.0, 1.0),
        "hr_confidence": 0.95,
        "hrv": 80.0 + rng.normal(0.0, 5.0),
        "hrv_confidence": 0.95,
        "respiration_rate": 6.0 + rng.normal(0.0, 0.3),
        "resp_confidence": 0.9,
        "facial_valence": 0.3 + rng.normal(0.0, 0.05),
        "facial_confidence": 0.8,
    }


def panic(elapsed: float, rng: np.random.Generator) -> dict[str, Any]:
    """Acute stress: tachycardia, collapsed HRV, fast shallow breathing."""
    return {
        "heart_rate": 160.0 + rng.normal(0.0, 3.0),
        "hr_confidence": 0.9,
        "hrv": 800.0 + rng.normal(0.0, 20.0),
        "hrv_confidence": 0.9,
        "respiration_rate": 24.0 + rng.normal(0.0, 1.0),
        "resp_confidence": 0.85,
        "facial_valence": -0.5 + rng.normal(0.0, 0.05),
        "facial_confidence": 0.7,
    }


def sensor_failure(elapsed: float, rng: np.random.Generator) -> dict[str, Any]:
    """Nominal physiology seen through a flaky sensor: dropouts and glitches."""
    reading = nominal(elapsed, rng)
    for value_key, conf_key in (
        ("heart_rate", "hr_confidence"),
        ("hrv", "hrv_confidence"),
        ("respiration_rate", "resp_confidence"),
        ("facial_valence", "facial_confidence"),
    ):
        if rng.random() < 0.3:
            reading[conf_key] = 0.0
    if rng.random() < 0.1:
        reading["heart_rate"] = 300.0
    if rng.random() < 0.1:
        reading["respiration_rate"] = 0.5
    return reading


SCENARIOS: dict[str, Scenario] = {
    "nominal": nominal,
    "panic": panic,
    "sensor_failure": sensor_failure,
}


def get_scenario(name: str) -> Scenario:
    try:
        return SCENARIOS[name]
    except KeyError:
        raise UnknownScenarioError(name) from None


# ── Session runner ───────────────────────────────────────────


class SessionReport(BaseModel):
    """What a simulated session produced."""

    scenario: str
    pattern: str | None = None
    ticks: int
    commands: list[TempoCommand] = Field(default_factory=list)
    final_belief: Belief
    final_tempo: float
    fault_count: int = 0


def run_session(
    scenario: str = "nominal",
    *,
    ticks: int = 300,
    dt: float = 0.1,
    seed: int = 0,
    protocol: ProtocolTarget | BreathPattern | None = None,
    settings: Settings | None = None,
    start_time: float = 0.0,
) -> SessionReport:
    """Run one synthetic session end to end.

    Parameters
    ----------
    scenario : str
        Key of :data:`SCENARIOS`.
    ticks : int
        Number of observations to feed.
    dt : float
        Spacing between observations in seconds.
    seed : int
        Seed of the noise generator; equal seeds give identical sessions.
    protocol : ProtocolTarget or BreathPattern, optional
        Target the estimator tracks; the default target when omitted.
    settings : Settings, optional
        Loop configuration; the cached process settings when omitted.
    """
    generate = get_scenario(scenario)
    if ticks < 1:
        raise ValueError("ticks must be at least 1")
    if not dt > 0:
        raise ValueError("dt must be positive")

    rng = np.random.default_rng(seed)
    loop = build_loop(settings, protocol)
    loop.handle(StartSession(timestamp=start_time))

    commands: list[TempoCommand] = []
    fault_count = 0
    belief = loop.belief
    t = start_time
    for i in range(1, ticks + 1):
        t = start_time + i * dt
        result = loop.ingest(SensorObservation(timestamp=t, **generate(i * dt, rng)))
        belief = result.belief
        fault_count += len(result.faults)
        if result.command is not None:
            commands.append(result.command)

    final_tempo = loop.tempo_scale
    loop.handle(Halt(timestamp=t, reason="simulation_complete"))
    logger.info(
        "simulation.finished",
        scenario=scenario,
        ticks=ticks,
        commands=len(commands),
        faults=fault_count,
        final_tempo=round(final_tempo, 4),
    )
    return SessionReport(
        scenario=scenario,
        pattern=loop.pattern.id if loop.pattern else None,
        ticks=ticks,
        commands=commands,
        final_belief=belief,
        final_tempo=final_tempo,
        fault_count=fault_count,
    )
