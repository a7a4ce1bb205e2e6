"""Unscented Kalman filter over the 5-D physiological belief.

The estimator owns the belief (mean + covariance) exclusively.  Its two
entry points mutate it:

- :meth:`UnscentedStateEstimator.predict` propagates sigma points through the
  nonlinear dynamics model and adds process noise.
- :meth:`UnscentedStateEstimator.update` fuses every channel present in an
  observation, one scalar Kalman step per channel, after plausibility and
  Mahalanobis gating.

Neither ever raises on bad data.  Implausible readings, gated outliers,
invalid sample intervals and covariance repairs are returned as
:class:`Fault` records and logged.
"""

from __future__ import annotations

import math
from typing import Sequence

import numpy as np
import structlog

from biofeedback_loop.config import Settings
from biofeedback_loop.estimation.channels import SensorChannel, build_channel_table
from biofeedback_loop.estimation.dynamics import DEFAULT_PARAMS, DynamicsParams, propagate
from biofeedback_loop.estimation.sigma import (
    Stabilized,
    StabilizeOutcome,
    cap_variance,
    cross_covariance,
    hold_variance_floor,
    merwe_weights,
    sigma_points,
    stabilize_covariance,
    unscented_covariance,
    unscented_mean,
)
from biofeedback_loop.models import (
    STATE_DIM,
    Belief,
    Fault,
    FaultKind,
    FusionReport,
    ProtocolTarget,
    SensorObservation,
    clamp_state,
    neutral_mean,
)

logger = structlog.get_logger(__name__)


class UnscentedStateEstimator:
    """Sigma-point estimator of arousal, valence, attention and rhythm alignment.

    Parameters
    ----------
    alpha, beta, kappa : float
        Scaled unscented transform parameters.  The default ``alpha=1``
        keeps every covariance weight non-negative.
    process_noise : sequence of float
        Diagonal process-noise variance per second, one per state dimension.
    initial_variance : float
        Diagonal of the prior covariance used at reset and as the last-resort
        fallback when the covariance cannot be repaired.
    max_variance : float
        Ceiling on every marginal variance during dead reckoning.
    epsilon : float
        Diagonal loading applied once when a Cholesky factorisation fails.
    gate_sigma : float
        Mahalanobis distance beyond which a channel reading is rejected.
    max_sample_interval : float
        Largest accepted ``dt`` in seconds for :meth:`predict`.
    channels : sequence of SensorChannel, optional
        Channel table; defaults to :func:`build_channel_table`.
    dynamics : DynamicsParams
        Time constants of the dynamics model.
    target : ProtocolTarget, optional
        Initial protocol target; the neutral default when omitted.
    """

    def __init__(
        self,
        *,
        alpha: float = 1.0,
        beta: float = 2.0,
        kappa: float = 0.0,
        process_noise: Sequence[float] = (0.01, 0.01, 0.01, 0.01, 0.01),
        initial_variance: float = 0.2,
        max_variance: float = 1.0,
        epsilon: float = 1e-6,
        gate_sigma: float = 3.0,
        max_sample_interval: float = 1.0,
        channels: Sequence[SensorChannel] | None = None,
        dynamics: DynamicsParams = DEFAULT_PARAMS,
        target: ProtocolTarget | None = None,
    ) -> None:
        if len(process_noise) != STATE_DIM:
            raise ValueError(f"process_noise needs {STATE_DIM} entries, got {len(process_noise)}")
        if initial_variance > max_variance:
            raise ValueError("initial_variance must not exceed max_variance")

        self._weights = merwe_weights(STATE_DIM, alpha, beta, kappa)
        self._q = np.diag(np.asarray(process_noise, dtype=float))
        self._prior = np.eye(STATE_DIM) * initial_variance
        self._max_variance = max_variance
        self._epsilon = epsilon
        self._gate_sigma = gate_sigma
        self._max_dt = max_sample_interval
        self._channels = tuple(channels) if channels is not None else build_channel_table()
        self._dynamics = dynamics
        self._target = target or ProtocolTarget()

        self._x = neutral_mean()
        self._p = self._prior.copy()
        self._last_mahalanobis = 0.0
        self._timestamp: float | None = None
        self._faults: list[Fault] = []

    @classmethod
    def from_settings(cls, settings: Settings, target: ProtocolTarget | None = None) -> UnscentedStateEstimator:
        return cls(
            alpha=settings.ukf_alpha,
            beta=settings.ukf_beta,
            kappa=settings.ukf_kappa,
            process_noise=settings.process_noise,
            initial_variance=settings.initial_variance,
            max_variance=settings.max_variance,
            epsilon=settings.covariance_epsilon,
            gate_sigma=settings.gate_sigma,
            max_sample_interval=settings.max_sample_interval,
            channels=build_channel_table(
                noise_heart_rate=settings.noise_heart_rate,
                noise_hrv=settings.noise_hrv,
                noise_respiration=settings.noise_respiration,
                noise_facial_valence=settings.noise_facial_valence,
            ),
            target=target,
        )

    # ── Read-only views ───────────────────────────────────────

    @property
    def mean(self) -> np.ndarray:
        return self._x.copy()

    @property
    def covariance(self) -> np.ndarray:
        return self._p.copy()

    @property
    def target(self) -> ProtocolTarget:
        return self._target

    @property
    def belief(self) -> Belief:
        """Snapshot of the current belief for downstream collaborators."""
        return Belief.from_state(
            self._x,
            self._p,
            target=self._target,
            mahalanobis_distance=self._last_mahalanobis,
            timestamp=self._timestamp,
        )

    # ── Lifecycle ─────────────────────────────────────────────

    def reset(self) -> None:
        """Return to the neutral prior.  The protocol target is kept."""
        self._x = neutral_mean()
        self._p = self._prior.copy()
        self._last_mahalanobis = 0.0
        self._timestamp = None
        self._faults.clear()

    def set_protocol(self, target: ProtocolTarget) -> None:
        """Replace the protocol target; takes effect on the next predict."""
        self._target = target
        logger.debug("estimator.protocol_set", target=target.model_dump())

    # ── Predict ───────────────────────────────────────────────

    def predict(self, dt: float) -> bool:
        """Advance the belief by ``dt`` seconds using the dynamics model.

        Returns ``False`` (and leaves the belief untouched) when ``dt`` is
        outside ``(0, max_sample_interval]``.  Marginal variances never drop
        below their pre-predict values: without evidence uncertainty can
        only grow, up to ``max_variance``.
        """
        if not (math.isfinite(dt) and 0.0 < dt <= self._max_dt):
            self._record(
                Fault(
                    kind=FaultKind.INVALID_SAMPLE_INTERVAL,
                    source="estimator.predict",
                    detail=f"dt outside (0, {self._max_dt}]",
                    value=dt if math.isfinite(dt) else None,
                )
            )
            return False

        stab = self._stabilize(self._p, "predict")
        floor = np.diag(stab.cov).copy()
        points = sigma_points(self._x, stab.factor, self._weights)
        propagated = np.array([propagate(p, self._target, dt, self._dynamics) for p in points])

        x_pred = unscented_mean(propagated, self._weights)
        p_pred = unscented_covariance(propagated, x_pred, self._weights) + self._q * dt
        p_pred = cap_variance(hold_variance_floor(p_pred, floor), self._max_variance)

        self._x = np.array(clamp_state(x_pred))
        self._p = self._stabilize(p_pred, "predict").cov
        return True

    # ── Update ────────────────────────────────────────────────

    def update(self, observation: SensorObservation) -> FusionReport:
        """Fuse every trustworthy channel of ``observation``.

        Channels are fused sequentially, each as its own scalar Kalman
        step on freshly regenerated sigma points.  A tick where no channel
        survives leaves the covariance untouched (dead reckoning).
        """
        report = FusionReport()
        self._timestamp = observation.timestamp

        for channel in self._channels:
            reading = channel.reading(observation)
            if reading is None:
                continue
            raw, confidence = reading

            if not channel.is_plausible(raw):
                self._record(
                    Fault(
                        kind=FaultKind.SENSOR_FAULT,
                        source=channel.name,
                        detail=f"implausible reading outside {channel.plausible}",
                        value=raw if math.isfinite(raw) else None,
                    )
                )
                continue

            distance = self._fuse(channel, channel.normalise(raw), confidence)
            if distance is None:
                continue
            report.max_mahalanobis = max(report.max_mahalanobis, distance)
            if distance > self._gate_sigma:
                self._record(
                    Fault(
                        kind=FaultKind.SENSOR_FAULT,
                        source=channel.name,
                        detail=f"mahalanobis {distance:.2f} exceeds {self._gate_sigma:g} sigma gate",
                        value=raw,
                    )
                )
                continue
            report.fused.append(channel.name)

        self._last_mahalanobis = report.max_mahalanobis
        report.faults = self._drain()
        if report.dead_reckoning:
            logger.debug("estimator.dead_reckoning", n_faults=len(report.faults))
        return report

    def step(self, observation: SensorObservation, dt: float | None = None) -> tuple[Belief, FusionReport]:
        """Predict by ``dt`` (when given) and fuse ``observation``.

        An invalid ``dt`` skips the whole tick; the returned report then
        carries only the :attr:`FaultKind.INVALID_SAMPLE_INTERVAL` fault.
        """
        if dt is not None and not self.predict(dt):
            return self.belief, FusionReport(faults=self._drain())
        report = self.update(observation)
        return self.belief, report

    # ── Internals ─────────────────────────────────────────────

    def _fuse(self, channel: SensorChannel, z: float, confidence: float) -> float | None:
        """Gate and apply one scalar measurement.

        Returns the Mahalanobis distance of the reading, or ``None`` when the
        innovation variance is degenerate.  The state is only modified when
        the distance is within the gate.
        """
        w = self._weights
        stab = self._stabilize(self._p, channel.name)
        self._p = stab.cov
        points = sigma_points(self._x, stab.factor, w)
        z_points = channel.measure(points)
        z_pred = float(w.mean @ z_points)

        s = float(w.cov @ (z_points - z_pred) ** 2) + channel.effective_noise(confidence)
        if not (math.isfinite(s) and s > 0.0):
            self._record(
                Fault(
                    kind=FaultKind.NUMERICAL_INSTABILITY,
                    source=channel.name,
                    detail="non-positive innovation variance",
                )
            )
            return None

        innovation = z - z_pred
        distance = abs(innovation) / math.sqrt(s)
        if distance > self._gate_sigma:
            return distance

        gain = cross_covariance(points, self._x, z_points, z_pred, w) / s
        self._x = np.array(clamp_state(self._x + gain * innovation))
        self._p = self._stabilize(self._p - np.outer(gain, gain) * s, channel.name).cov
        logger.debug(
            "estimator.channel_fused",
            channel=channel.name,
            innovation=round(innovation, 4),
            mahalanobis=round(distance, 3),
            confidence=confidence,
        )
        return distance

    def _stabilize(self, cov: np.ndarray, stage: str) -> Stabilized:
        stab = stabilize_covariance(cov, self._prior, self._epsilon)
        if stab.outcome is not StabilizeOutcome.OK:
            self._record(
                Fault(
                    kind=FaultKind.NUMERICAL_INSTABILITY,
                    source=f"estimator.{stage}",
                    detail=f"covariance {stab.outcome.value}",
                )
            )
        return stab

    def _record(self, fault: Fault) -> None:
        self._faults.append(fault)
        logger.warning(
            "estimator.fault",
            kind=fault.kind.value,
            source=fault.source,
            detail=fault.detail,
            value=fault.value,
        )

    def _drain(self) -> list[Fault]:
        faults, self._faults = self._faults, []
        return faults
