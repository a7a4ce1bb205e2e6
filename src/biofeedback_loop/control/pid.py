"""PID tempo controller with anti-windup, sample-interval guard and diagnostics.

Turns the rhythm-alignment tracking error into a bounded per-tick tempo
adjustment::

    P = Kp * e
    I = clamp(I + Ki * e * dt, integral_min, integral_max)
    D = Kd * (e - e_prev) / dt        (optionally low-pass filtered)
    u = clamp(P + I + D, output_min, output_max)

A sample whose ``dt`` is non-positive, non-finite or longer than
``max_dt`` is rejected without touching the controller state, so a
paused or backgrounded loop cannot produce a derivative spike.
"""

from __future__ import annotations

import math

import structlog
from pydantic import BaseModel, ConfigDict, Field, model_validator

from biofeedback_loop.config import Settings

logger = structlog.get_logger(__name__)


class PIDConfig(BaseModel):
    """Gains and bounds of a :class:`PIDController`."""

    kp: float
    ki: float
    kd: float

    output_min: float = -math.inf
    output_max: float = math.inf
    integral_min: float = -10.0
    integral_max: float = 10.0

    derivative_alpha: float = Field(
        1.0,
        gt=0.0,
        le=1.0,
        description="Low-pass weight of the newest derivative sample; 1.0 disables filtering.",
    )
    max_dt: float = Field(1.0, gt=0.0, description="Longest accepted sample interval (s).")

    @model_validator(mode="after")
    def _check_bounds(self) -> PIDConfig:
        if self.output_min > self.output_max:
            raise ValueError("output_min must not exceed output_max")
        if self.integral_min > self.integral_max:
            raise ValueError("integral_min must not exceed integral_max")
        return self


class PIDDiagnostics(BaseModel):
    """Last computed terms, retrievable without recomputation."""

    model_config = ConfigDict(frozen=True)

    p: float = 0.0
    i: float = 0.0
    d: float = 0.0
    integral: float = 0.0
    output: float = 0.0

    def summary(self) -> str:
        return f"P={self.p:+.4f} I={self.i:+.4f} D={self.d:+.4f}"


class PIDController:
    """Single-input single-output PID controller.

    The controller owns its state exclusively; :meth:`reset` must be called
    on every session start, halt and interruption so the integral does not
    carry over between sessions.
    """

    def __init__(self, config: PIDConfig) -> None:
        self._config = config
        self._integral = 0.0
        self._prev_error = 0.0
        self._prev_derivative = 0.0
        self._last = PIDDiagnostics()

    @property
    def config(self) -> PIDConfig:
        return self._config

    def compute(self, error: float, dt: float) -> float:
        """Return the control signal for ``error`` measured ``dt`` seconds after the last sample.

        Rejected samples return the previous output unchanged.
        """
        cfg = self._config
        if not (math.isfinite(error) and math.isfinite(dt) and 0.0 < dt <= cfg.max_dt):
            logger.warning("pid.sample_rejected", error=error, dt=dt, max_dt=cfg.max_dt)
            return self._last.output

        p = cfg.kp * error

        self._integral = _clamp(self._integral + cfg.ki * error * dt, cfg.integral_min, cfg.integral_max)

        raw_derivative = (error - self._prev_error) / dt
        derivative = cfg.derivative_alpha * raw_derivative + (1.0 - cfg.derivative_alpha) * self._prev_derivative
        d = cfg.kd * derivative

        output = _clamp(p + self._integral + d, cfg.output_min, cfg.output_max)

        self._prev_error = error
        self._prev_derivative = derivative
        self._last = PIDDiagnostics(p=p, i=self._integral, d=d, integral=self._integral, output=output)
        return output

    def reset(self) -> None:
        """Zero the accumulator and error memory.  Gains and bounds are kept."""
        self._integral = 0.0
        self._prev_error = 0.0
        self._prev_derivative = 0.0
        self._last = PIDDiagnostics()

    def diagnostics(self) -> PIDDiagnostics:
        return self._last

    def set_gains(self, kp: float | None = None, ki: float | None = None, kd: float | None = None) -> None:
        """Retune on the fly; unspecified gains keep their value."""
        updates = {k: v for k, v in (("kp", kp), ("ki", ki), ("kd", kd)) if v is not None}
        if updates:
            self._config = self._config.model_copy(update=updates)
            logger.info("pid.gains_updated", **updates)


def create_tempo_controller(settings: Settings) -> PIDController:
    """Build a fresh tempo controller for one session from settings."""
    return PIDController(
        PIDConfig(
            kp=settings.pid_kp,
            ki=settings.pid_ki,
            kd=settings.pid_kd,
            output_min=settings.pid_output_min,
            output_max=settings.pid_output_max,
            integral_min=settings.pid_integral_min,
            integral_max=settings.pid_integral_max,
            derivative_alpha=settings.pid_derivative_alpha,
            max_dt=settings.max_sample_interval,
        )
    )


def _clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))
