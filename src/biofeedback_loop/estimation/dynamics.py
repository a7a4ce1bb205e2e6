"""Physiological dynamics model: how each belief dimension evolves unobserved.

Every function here is pure: it maps a state (or one of its components),
the active :class:`ProtocolTarget` and a time step to the next value, with
no clamping.  The estimator propagates unclamped sigma points through
:func:`propagate` and clamps only the recombined mean, so the sigma-point
spread is not collapsed at range boundaries.

State vector layout: ``[arousal, arousal_velocity, valence, attention,
rhythm_alignment]``.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np

from biofeedback_loop.models import ProtocolTarget


@dataclass(frozen=True)
class DynamicsParams:
    """Time constants (seconds) and coupling gains of the model."""

    tau_arousal: float = 15.0  # pull of arousal toward the protocol target
    tau_arousal_velocity: float = 5.0  # damping of the momentum state
    tau_valence: float = 8.0
    tau_attention: float = 5.0
    tau_rhythm: float = 10.0

    logistic_rate: float = 0.1  # saturation of arousal near 0 and 1
    yerkes_dodson_peak: float = 0.4  # arousal at which valence peaks
    yerkes_dodson_coupling: float = 0.5
    attention_boost: float = 0.1  # attention gained per unit rhythm per second


DEFAULT_PARAMS = DynamicsParams()


# ── Per-dimension dynamics ───────────────────────────────────


def arousal_acceleration(
    arousal: float,
    velocity: float,
    target: ProtocolTarget,
    params: DynamicsParams = DEFAULT_PARAMS,
) -> float:
    """Second derivative of arousal.

    Logistic saturation term, velocity damping and a spring toward the
    protocol's arousal target, giving a near critically-damped approach.
    """
    return (
        -params.logistic_rate * arousal * (1.0 - arousal)
        - velocity / params.tau_arousal_velocity
        + (target.arousal - arousal) / params.tau_arousal
    )


def arousal_step(
    arousal: float,
    velocity: float,
    target: ProtocolTarget,
    dt: float,
    params: DynamicsParams = DEFAULT_PARAMS,
) -> tuple[float, float]:
    """Advance ``(arousal, arousal_velocity)`` by one Euler step."""
    accel = arousal_acceleration(arousal, velocity, target, params)
    return arousal + velocity * dt, velocity + accel * dt


def valence_step(
    valence: float,
    arousal: float,
    target: ProtocolTarget,
    dt: float,
    params: DynamicsParams = DEFAULT_PARAMS,
) -> float:
    """Relax valence toward an inverted-U function of arousal (Yerkes–Dodson).

    The set-point is the protocol's comfort valence, lowered the further
    arousal sits from the peak on either side.
    """
    setpoint = target.valence - abs(arousal - params.yerkes_dodson_peak) * params.yerkes_dodson_coupling
    return valence + (setpoint - valence) / params.tau_valence * dt


def attention_step(
    attention: float,
    rhythm: float,
    target: ProtocolTarget,
    dt: float,
    params: DynamicsParams = DEFAULT_PARAMS,
) -> float:
    """Exponential decay toward the baseline, boosted by sustained rhythm sync."""
    decay = math.exp(-dt / params.tau_attention)
    baseline = target.attention
    return baseline + (attention - baseline) * decay + rhythm * params.attention_boost * dt


def rhythm_step(
    rhythm: float,
    target: ProtocolTarget,
    dt: float,
    params: DynamicsParams = DEFAULT_PARAMS,
) -> float:
    """First-order phase-locked pull toward the protocol's lock-in level."""
    return rhythm + (target.rhythm - rhythm) / params.tau_rhythm * dt


# ── Full state transition ────────────────────────────────────


def propagate(
    state: np.ndarray,
    target: ProtocolTarget,
    dt: float,
    params: DynamicsParams = DEFAULT_PARAMS,
) -> np.ndarray:
    """Apply every per-dimension step to a full state vector."""
    a, da, v, att, r = (float(x) for x in state)
    a_next, da_next = arousal_step(a, da, target, dt, params)
    return np.array(
        [
            a_next,
            da_next,
            valence_step(v, a, target, dt, params),
            attention_step(att, r, target, dt, params),
            rhythm_step(r, target, dt, params),
        ]
    )
