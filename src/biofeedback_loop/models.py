"""Shared Pydantic models used across the engine.

These models represent:
- Sensor observations arriving from the sensing collaborator
- The estimator's belief snapshot (mean + covariance + derived metrics)
- The protocol target the dynamics model pulls toward
- Tempo commands handed to the external session scheduler
- Session lifecycle events (closed tagged union)
- Recoverable fault records surfaced as diagnostics
"""

from __future__ import annotations

import math
from enum import Enum
from typing import Annotated, Literal, Sequence, Union

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator

# ── Constants ─────────────────────────────────────────────────

STATE_DIM = 5
STATE_LABELS = ("arousal", "arousal_velocity", "valence", "attention", "rhythm_alignment")

# Inclusive (low, high) range of every state dimension, in state-vector order.
STATE_BOUNDS: tuple[tuple[float, float], ...] = (
    (0.0, 1.0),
    (-0.5, 0.5),
    (-1.0, 1.0),
    (0.0, 1.0),
    (0.0, 1.0),
)

# Hard safety limits on the tempo scale; configuration may narrow them only.
TEMPO_SCALE_MIN = 0.8
TEMPO_SCALE_MAX = 1.4

_SYMMETRY_TOL = 1e-8
_PSD_TOL = 1e-9


class BiofeedbackError(Exception):
    """Base for configuration-time errors.  Never raised from a tick."""


# ── Enums ─────────────────────────────────────────────────────


class FaultKind(str, Enum):
    """Recoverable fault categories.  None of them is ever raised."""

    SENSOR_FAULT = "sensor_fault"
    NUMERICAL_INSTABILITY = "numerical_instability"
    INVALID_SAMPLE_INTERVAL = "invalid_sample_interval"


class SessionStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    HALTED = "halted"


# ── Observations ─────────────────────────────────────────────


class SensorObservation(BaseModel):
    """Per-tick readings from the sensing collaborator.

    Every channel is optional.  A channel whose confidence is omitted is
    trusted fully; a confidence of ``0`` disables the channel for the tick.
    Raw values are deliberately unconstrained so implausible readings reach
    the estimator, which drops them as sensor faults.
    """

    model_config = ConfigDict(frozen=True)

    timestamp: float = Field(allow_inf_nan=False, description="Monotonic clock reading in seconds.")

    heart_rate: float | None = Field(None, description="Heart rate in bpm.")
    hr_confidence: float | None = Field(None, ge=0.0, le=1.0)

    hrv: float | None = Field(
        None,
        description="HRV stress index (Baevsky); higher means less variability.",
    )
    hrv_confidence: float | None = Field(None, ge=0.0, le=1.0)

    respiration_rate: float | None = Field(None, description="Breaths per minute.")
    resp_confidence: float | None = Field(None, ge=0.0, le=1.0)

    facial_valence: float | None = Field(None, description="Facial valence in [-1, 1].")
    facial_confidence: float | None = Field(None, ge=0.0, le=1.0)


# ── Protocol target ──────────────────────────────────────────


class ProtocolTarget(BaseModel):
    """Reference arousal / rhythm envelope of the active breathing pattern."""

    model_config = ConfigDict(frozen=True)

    arousal: float = Field(0.5, ge=0.0, le=1.0)
    attention: float = Field(0.6, ge=0.0, le=1.0)
    rhythm: float = Field(0.7, ge=0.0, le=1.0)
    valence: float = Field(0.5, ge=-1.0, le=1.0)


# ── Belief ───────────────────────────────────────────────────


class Belief(BaseModel):
    """Read-only snapshot of the estimator's state.

    Build instances with :meth:`from_state` or :meth:`neutral_prior`; the
    validators reject out-of-range means and covariances that are not
    symmetric positive semi-definite.
    """

    model_config = ConfigDict(frozen=True)

    arousal: float = Field(ge=0.0, le=1.0)
    arousal_velocity: float = Field(ge=-0.5, le=0.5)
    valence: float = Field(ge=-1.0, le=1.0)
    attention: float = Field(ge=0.0, le=1.0)
    rhythm_alignment: float = Field(ge=0.0, le=1.0)

    covariance: tuple[tuple[float, ...], ...]

    prediction_error: float = Field(0.0, ge=0.0)
    mahalanobis_distance: float = Field(0.0, ge=0.0)
    timestamp: float | None = Field(None, allow_inf_nan=False)

    @model_validator(mode="after")
    def _check_covariance(self) -> Belief:
        cov = np.asarray(self.covariance, dtype=float)
        if cov.shape != (STATE_DIM, STATE_DIM):
            raise ValueError(f"covariance must be {STATE_DIM}x{STATE_DIM}, got {cov.shape}")
        if not np.all(np.isfinite(cov)):
            raise ValueError("covariance contains non-finite entries")
        if not np.allclose(cov, cov.T, atol=_SYMMETRY_TOL):
            raise ValueError("covariance is not symmetric")
        if np.linalg.eigvalsh(cov).min() < -_PSD_TOL:
            raise ValueError("covariance is not positive semi-definite")
        return self

    # ── Factories ─────────────────────────────────────────────

    @classmethod
    def from_state(
        cls,
        mean: Sequence[float],
        covariance: np.ndarray,
        *,
        target: ProtocolTarget | None = None,
        mahalanobis_distance: float = 0.0,
        timestamp: float | None = None,
    ) -> Belief:
        """Snapshot a state vector, clamping the mean into its valid ranges."""
        a, da, v, att, r = clamp_state(mean)
        target = target or ProtocolTarget()
        err = math.sqrt(0.5 * (a - target.arousal) ** 2 + 0.5 * (r - target.rhythm) ** 2)
        return cls(
            arousal=a,
            arousal_velocity=da,
            valence=v,
            attention=att,
            rhythm_alignment=r,
            covariance=tuple(tuple(float(c) for c in row) for row in np.asarray(covariance)),
            prediction_error=err,
            mahalanobis_distance=mahalanobis_distance,
            timestamp=timestamp,
        )

    @classmethod
    def neutral_prior(cls, variance: float = 0.2, timestamp: float | None = None) -> Belief:
        """The belief every session starts from."""
        return cls.from_state(
            neutral_mean(),
            np.eye(STATE_DIM) * variance,
            timestamp=timestamp,
        )

    # ── Derived metrics ───────────────────────────────────────

    @property
    def mean(self) -> tuple[float, float, float, float, float]:
        return (self.arousal, self.arousal_velocity, self.valence, self.attention, self.rhythm_alignment)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def arousal_variance(self) -> float:
        return self.covariance[0][0]

    @computed_field  # type: ignore[prop-decorator]
    @property
    def attention_variance(self) -> float:
        return self.covariance[3][3]

    @computed_field  # type: ignore[prop-decorator]
    @property
    def rhythm_variance(self) -> float:
        return self.covariance[4][4]

    @computed_field  # type: ignore[prop-decorator]
    @property
    def confidence(self) -> float:
        """1 minus the mean marginal variance, clamped to [0, 1]."""
        trace = sum(self.covariance[i][i] for i in range(STATE_DIM))
        return max(0.0, min(1.0, 1.0 - trace / STATE_DIM))


def neutral_mean() -> np.ndarray:
    """Neutral prior mean: mid arousal, at rest, neutral valence, no sync yet."""
    return np.array([0.5, 0.0, 0.0, 0.5, 0.0])


def clamp_state(mean: Sequence[float]) -> tuple[float, float, float, float, float]:
    """Clamp each state dimension into :data:`STATE_BOUNDS`."""
    return tuple(  # type: ignore[return-value]
        float(min(hi, max(lo, x))) for x, (lo, hi) in zip(mean, STATE_BOUNDS)
    )


# ── Tempo command ────────────────────────────────────────────


class TempoCommand(BaseModel):
    """Tempo rescale request consumed by the session scheduler."""

    model_config = ConfigDict(frozen=True)

    scale: float = Field(ge=TEMPO_SCALE_MIN, le=TEMPO_SCALE_MAX)
    reason: str = ""
    timestamp: float = Field(allow_inf_nan=False)

    @classmethod
    def create(cls, scale: float, reason: str, timestamp: float) -> TempoCommand:
        """Build a command with ``scale`` clamped to the hard safety limits."""
        clamped = max(TEMPO_SCALE_MIN, min(TEMPO_SCALE_MAX, scale))
        if clamped != scale:
            reason = f"{reason} (clamped)"
        return cls(scale=clamped, reason=reason, timestamp=timestamp)


# ── Session events ───────────────────────────────────────────


class StartSession(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["START_SESSION"] = "START_SESSION"
    timestamp: float = Field(allow_inf_nan=False)


class Halt(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["HALT"] = "HALT"
    timestamp: float = Field(allow_inf_nan=False)
    reason: str = "user"


class Interruption(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["INTERRUPTION"] = "INTERRUPTION"
    timestamp: float = Field(allow_inf_nan=False)
    kind: Literal["pause", "background"] = "pause"


class Resume(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["RESUME"] = "RESUME"
    timestamp: float = Field(allow_inf_nan=False)


class BeliefUpdate(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["BELIEF_UPDATE"] = "BELIEF_UPDATE"
    timestamp: float = Field(allow_inf_nan=False)
    belief: Belief


SessionEvent = Annotated[
    Union[StartSession, Halt, Interruption, Resume, BeliefUpdate],
    Field(discriminator="type"),
]


# ── Diagnostics ──────────────────────────────────────────────


class Fault(BaseModel):
    """A recoverable fault, absorbed locally and reported as diagnostics."""

    model_config = ConfigDict(frozen=True)

    kind: FaultKind
    source: str = Field(description="Channel or component that raised the fault.")
    detail: str = ""
    value: float | None = None


class FusionReport(BaseModel):
    """Outcome of one estimator update: which channels were fused or dropped."""

    fused: list[str] = Field(default_factory=list)
    faults: list[Fault] = Field(default_factory=list)
    max_mahalanobis: float = 0.0

    @property
    def dead_reckoning(self) -> bool:
        """True when no channel survived and the tick was prediction-only."""
        return not self.fused


class TickResult(BaseModel):
    """Everything one observation tick produced."""

    belief: Belief
    command: TempoCommand | None = None
    fused: list[str] = Field(default_factory=list)
    faults: list[Fault] = Field(default_factory=list)
