"""Sensor channel descriptors: measurement models, noise and plausibility.

The estimator fuses whatever channels an observation carries by iterating
:func:`build_channel_table`; adding a sensor means adding one
:class:`SensorChannel` entry, never a new branch in the update step.

=================  ===========================  =====================  =========
Channel            Normalised reading           Expected from state    Base R
=================  ===========================  =====================  =========
heart_rate         (bpm - 50) / 70              arousal                0.15
hrv                min(1, stress_index / 300)   arousal·(1 - rhythm)   0.25
respiration_rate   0.5 + (brpm - 12) / 20       0.5 + 0.5·arousal      0.20
facial_valence     valence                      valence                0.30
=================  ===========================  =====================  =========
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Callable

import numpy as np

from biofeedback_loop.models import SensorObservation

# Confidences below this are treated as this value when scaling noise.
_MIN_CONFIDENCE = 0.05


@dataclass(frozen=True)
class SensorChannel:
    """How one observation field maps onto the state."""

    name: str
    value_field: str
    confidence_field: str
    normalise: Callable[[float], float]
    measure: Callable[[np.ndarray], np.ndarray]  # sigma points (m, n) -> (m,)
    base_noise: float
    plausible: tuple[float, float]  # raw-value range; outside is a sensor fault

    def reading(self, obs: SensorObservation) -> tuple[float, float] | None:
        """Return ``(raw_value, confidence)`` or ``None`` if the channel is absent."""
        value = getattr(obs, self.value_field)
        if value is None:
            return None
        confidence = getattr(obs, self.confidence_field)
        if confidence is None:
            confidence = 1.0
        if confidence <= 0.0:
            return None
        return float(value), float(confidence)

    def is_plausible(self, value: float) -> bool:
        lo, hi = self.plausible
        return math.isfinite(value) and lo <= value <= hi

    def effective_noise(self, confidence: float) -> float:
        """Measurement noise grows inversely with confidence."""
        return self.base_noise / max(confidence, _MIN_CONFIDENCE)


# ── Normalisation (raw reading -> measurement space) ─────────


def normalise_heart_rate(bpm: float) -> float:
    return (bpm - 50.0) / 70.0


def normalise_hrv(stress_index: float) -> float:
    return min(1.0, stress_index / 300.0)


def normalise_respiration(brpm: float) -> float:
    # 12 brpm at rest lands on the bottom of the expected range (arousal 0).
    return 0.5 + (brpm - 12.0) / 20.0


def normalise_valence(valence: float) -> float:
    return valence


# ── Measurement models (state -> expected normalised reading) ─


def measure_heart_rate(x: np.ndarray) -> np.ndarray:
    return x[..., 0]


def measure_hrv(x: np.ndarray) -> np.ndarray:
    # Stress rises with arousal and falls as breathing locks in.
    return x[..., 0] * (1.0 - x[..., 4])


def measure_respiration(x: np.ndarray) -> np.ndarray:
    return 0.5 + 0.5 * x[..., 0]


def measure_valence(x: np.ndarray) -> np.ndarray:
    return x[..., 2]


def build_channel_table(
    *,
    noise_heart_rate: float = 0.15,
    noise_hrv: float = 0.25,
    noise_respiration: float = 0.20,
    noise_facial_valence: float = 0.30,
) -> tuple[SensorChannel, ...]:
    """Return the fixed channel table, in fusion order."""
    return (
        SensorChannel(
            name="heart_rate",
            value_field="heart_rate",
            confidence_field="hr_confidence",
            normalise=normalise_heart_rate,
            measure=measure_heart_rate,
            base_noise=noise_heart_rate,
            plausible=(30.0, 220.0),
        ),
        SensorChannel(
            name="hrv",
            value_field="hrv",
            confidence_field="hrv_confidence",
            normalise=normalise_hrv,
            measure=measure_hrv,
            base_noise=noise_hrv,
            plausible=(0.0, 1500.0),
        ),
        SensorChannel(
            name="respiration_rate",
            value_field="respiration_rate",
            confidence_field="resp_confidence",
            normalise=normalise_respiration,
            measure=measure_respiration,
            base_noise=noise_respiration,
            plausible=(2.0, 60.0),
        ),
        SensorChannel(
            name="facial_valence",
            value_field="facial_valence",
            confidence_field="facial_confidence",
            normalise=normalise_valence,
            measure=measure_valence,
            base_noise=noise_facial_valence,
            plausible=(-1.0, 1.0),
        ),
    )
