"""Centralised engine settings loaded from environment / .env file."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from biofeedback_loop.models import TEMPO_SCALE_MAX, TEMPO_SCALE_MIN

_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent


class Settings(BaseSettings):
    """All runtime configuration for the biofeedback engine.

    Values are read from environment variables first, then from a *.env* file
    located at the project root.  Every variable lives in the flat
    ``BIOFEEDBACK_`` namespace, e.g. ``BIOFEEDBACK_PID_KP=0.4``.
    """

    model_config = SettingsConfigDict(
        env_prefix="BIOFEEDBACK_",
        env_file=str(_PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Logging ───────────────────────────────────────────────
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # ── Unscented transform ───────────────────────────────────
    ukf_alpha: float = Field(1.0, gt=0.0)  # sigma-point spread
    ukf_beta: float = 2.0  # 2 is optimal for Gaussian priors
    ukf_kappa: float = 0.0

    # Process noise variance per state dimension, per second:
    # [arousal, arousal_velocity, valence, attention, rhythm_alignment]
    process_noise: list[float] = Field(
        default_factory=lambda: [0.01, 0.01, 0.01, 0.01, 0.01],
        min_length=5,
        max_length=5,
    )
    initial_variance: float = Field(0.2, gt=0.0)
    max_variance: float = Field(1.0, gt=0.0)
    covariance_epsilon: float = Field(1e-6, gt=0.0)

    # ── Sensor channels ───────────────────────────────────────
    noise_heart_rate: float = Field(0.15, gt=0.0)
    noise_hrv: float = Field(0.25, gt=0.0)
    noise_respiration: float = Field(0.20, gt=0.0)
    noise_facial_valence: float = Field(0.30, gt=0.0)
    gate_sigma: float = Field(3.0, gt=0.0)  # Mahalanobis outlier gate

    # ── Sample interval window (shared by estimator & controller) ─
    max_sample_interval: float = Field(1.0, gt=0.0)  # seconds

    # ── PID tempo controller ──────────────────────────────────
    pid_kp: float = 0.5
    pid_ki: float = 0.05
    pid_kd: float = 0.1
    pid_output_min: float = -0.05  # per-tick tempo step bounds
    pid_output_max: float = 0.05
    pid_integral_min: float = -0.1
    pid_integral_max: float = 0.1
    pid_derivative_alpha: float = Field(1.0, gt=0.0, le=1.0)

    # ── Loop ──────────────────────────────────────────────────
    target_alignment: float = Field(0.7, ge=0.0, le=1.0)
    warmup_seconds: float = Field(10.0, ge=0.0)
    tempo_deadband: float = Field(0.005, ge=0.0)
    tempo_min: float = 0.8  # never speed up more than 20%
    tempo_max: float = 1.4  # never slow down more than 40%

    # ── Resonance watchdog ────────────────────────────────────
    watchdog_enabled: bool = True
    watchdog_divergence_threshold: float = 0.6
    watchdog_max_divergence_seconds: float = 30.0

    @model_validator(mode="after")
    def _check_bounds(self) -> Settings:
        if self.pid_output_min > self.pid_output_max:
            raise ValueError("pid_output_min must not exceed pid_output_max")
        if self.pid_integral_min > self.pid_integral_max:
            raise ValueError("pid_integral_min must not exceed pid_integral_max")
        if not TEMPO_SCALE_MIN <= self.tempo_min <= 1.0 <= self.tempo_max <= TEMPO_SCALE_MAX:
            raise ValueError("tempo bounds must bracket 1.0 within the hard safety limits")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return a cached :class:`Settings` singleton."""
    return Settings()
