"""Biofeedback loop orchestrator: belief in, tempo command out.

The orchestrator owns the session status, the current tempo scale and the
bookkeeping between ticks.  It is driven entirely by the closed
:data:`~biofeedback_loop.models.SessionEvent` union::

    IDLE ──START──▶ RUNNING ──INTERRUPTION──▶ PAUSED
      ▲               │  ▲                      │
      │               │  └────────RESUME────────┘
      │              HALT
      │               ▼
      └──START──── HALTED

Every START, HALT and INTERRUPTION resets the PID controller and clears the
tick clock, so no integral and no derivative history survive a lifecycle
transition.
"""

from __future__ import annotations

import math
from typing import assert_never

import structlog

from biofeedback_loop.config import Settings, get_settings
from biofeedback_loop.control.pid import PIDController, create_tempo_controller
from biofeedback_loop.estimation.ukf import UnscentedStateEstimator
from biofeedback_loop.models import (
    Belief,
    BeliefUpdate,
    Halt,
    Interruption,
    ProtocolTarget,
    Resume,
    SensorObservation,
    SessionEvent,
    SessionStatus,
    StartSession,
    TempoCommand,
    TickResult,
)
from biofeedback_loop.monitors.watchdog import ResonanceWatchdog
from biofeedback_loop.protocols import BreathPattern, target_for_pattern

logger = structlog.get_logger(__name__)


class BiofeedbackLoop:
    """Closed loop between the state estimator and the tempo controller.

    Parameters
    ----------
    estimator : UnscentedStateEstimator
        Owned exclusively by this loop for the duration of a session.
    controller : PIDController
        Owned exclusively by this loop; reset on every lifecycle transition.
    target_alignment : float
        Rhythm-alignment setpoint.
    warmup_seconds : float
        Time after START during which no tempo command is produced.
    deadband : float
        Tempo changes of this size or smaller are suppressed.
    tempo_min, tempo_max : float
        Bounds on the commanded tempo scale.
    max_sample_interval : float
        Longest gap between ticks that still counts as continuous.
    watchdog : ResonanceWatchdog, optional
        Divergence monitor; disabled when ``None``.
    """

    def __init__(
        self,
        estimator: UnscentedStateEstimator,
        controller: PIDController,
        *,
        target_alignment: float = 0.7,
        warmup_seconds: float = 10.0,
        deadband: float = 0.005,
        tempo_min: float = 0.8,
        tempo_max: float = 1.4,
        max_sample_interval: float = 1.0,
        watchdog: ResonanceWatchdog | None = None,
    ) -> None:
        self._estimator = estimator
        self._controller = controller
        self._target_alignment = target_alignment
        self._warmup = warmup_seconds
        self._deadband = deadband
        self._tempo_min = tempo_min
        self._tempo_max = tempo_max
        self._max_dt = max_sample_interval
        self._watchdog = watchdog

        self._status = SessionStatus.IDLE
        self._tempo = 1.0
        self._session_start: float | None = None
        self._last_tick: float | None = None
        self._last_observation: float | None = None
        self._pattern: BreathPattern | None = None

    # ── Read-only views ───────────────────────────────────────

    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def tempo_scale(self) -> float:
        return self._tempo

    @property
    def belief(self) -> Belief:
        return self._estimator.belief

    @property
    def pattern(self) -> BreathPattern | None:
        return self._pattern

    @property
    def controller(self) -> PIDController:
        return self._controller

    # ── Protocol ──────────────────────────────────────────────

    def set_protocol(self, protocol: ProtocolTarget | BreathPattern | None) -> None:
        """Point the estimator at a new target, given directly or via a pattern."""
        if isinstance(protocol, ProtocolTarget):
            self._pattern = None
            target = protocol
        else:
            self._pattern = protocol
            target = target_for_pattern(protocol)
        self._estimator.set_protocol(target)
        logger.info(
            "loop.protocol_set",
            pattern=self._pattern.id if self._pattern else None,
            target_rhythm=target.rhythm,
        )

    # ── Events ────────────────────────────────────────────────

    def handle(self, event: SessionEvent) -> TempoCommand | None:
        """Apply one lifecycle or belief event; return a tempo command if one is due."""
        match event:
            case StartSession():
                self._controller.reset()
                self._estimator.reset()
                self._reset_clock()
                self._tempo = 1.0
                self._session_start = event.timestamp
                self._status = SessionStatus.RUNNING
                logger.info("loop.session_started", timestamp=event.timestamp)
                return None
            case Halt():
                self._controller.reset()
                self._reset_clock()
                self._tempo = 1.0
                self._status = SessionStatus.HALTED
                logger.info("loop.session_halted", reason=event.reason)
                return None
            case Interruption():
                self._controller.reset()
                self._reset_clock()
                if self._status is SessionStatus.RUNNING:
                    self._status = SessionStatus.PAUSED
                logger.info("loop.session_interrupted", kind=event.kind, status=self._status.value)
                return None
            case Resume():
                if self._status is SessionStatus.PAUSED:
                    self._status = SessionStatus.RUNNING
                    logger.info("loop.session_resumed", timestamp=event.timestamp)
                return None
            case BeliefUpdate():
                return self._on_belief(event.belief, event.timestamp)
            case _:
                assert_never(event)

    def ingest(self, observation: SensorObservation) -> TickResult:
        """Run one full tick: estimate from ``observation``, then control.

        The prediction interval is taken from consecutive observation
        timestamps; the first observation of a session is fused without a
        prediction step.  An observation whose interval is outside
        ``(0, max_sample_interval]`` is skipped by the estimator and
        reported as a fault.  After a gap the clock restarts from the
        skipped observation; an out-of-order one leaves it alone.
        """
        dt: float | None = None
        if self._last_observation is not None:
            dt = observation.timestamp - self._last_observation

        belief, report = self._estimator.step(observation, dt)
        if dt is not None and not 0.0 < dt <= self._max_dt:
            if dt > self._max_dt:
                logger.info("loop.observation_gap", gap=round(dt, 3))
                self._last_observation = observation.timestamp
            return TickResult(belief=belief, fused=report.fused, faults=report.faults)

        self._last_observation = observation.timestamp
        command = self.handle(BeliefUpdate(timestamp=observation.timestamp, belief=belief))
        return TickResult(belief=belief, command=command, fused=report.fused, faults=report.faults)

    # ── Internals ─────────────────────────────────────────────

    def _on_belief(self, belief: Belief, now: float) -> TempoCommand | None:
        if self._status is not SessionStatus.RUNNING:
            return None

        previous, self._last_tick = self._last_tick, now
        if self._session_start is not None and now - self._session_start < self._warmup:
            return None
        if previous is None:
            return None

        dt = now - previous
        if not (math.isfinite(dt) and dt > 0.0):
            # Out of order: keep the newer clock reading.
            self._last_tick = previous
            logger.debug("loop.tick_skipped", reason="non_positive_dt", dt=dt)
            return None
        if dt > self._max_dt:
            logger.debug("loop.tick_skipped", reason="gap", dt=dt)
            return None

        if self._watchdog is not None and self._watchdog.observe(self._tempo, belief.prediction_error, dt):
            self._controller.reset()
            self._tempo = 1.0
            command = TempoCommand.create(1.0, "watchdog_reset", now)
            logger.warning("loop.tempo_command", scale=command.scale, reason=command.reason)
            return command

        error = self._target_alignment - belief.rhythm_alignment
        signal = self._controller.compute(error, dt)
        scale = max(self._tempo_min, min(self._tempo_max, self._tempo + signal))
        if abs(scale - self._tempo) <= self._deadband:
            return None

        self._tempo = scale
        command = TempoCommand.create(
            scale,
            f"rhythm_alignment={belief.rhythm_alignment:.3f} {self._controller.diagnostics().summary()}",
            now,
        )
        logger.info("loop.tempo_command", scale=round(command.scale, 4), error=round(error, 4), reason=command.reason)
        return command

    def _reset_clock(self) -> None:
        self._last_tick = None
        self._last_observation = None
        if self._watchdog is not None:
            self._watchdog.reset()


def build_loop(
    settings: Settings | None = None,
    protocol: ProtocolTarget | BreathPattern | None = None,
) -> BiofeedbackLoop:
    """Assemble a loop with a fresh estimator, controller and watchdog."""
    settings = settings or get_settings()
    estimator = UnscentedStateEstimator.from_settings(settings)
    loop = BiofeedbackLoop(
        estimator,
        create_tempo_controller(settings),
        target_alignment=settings.target_alignment,
        warmup_seconds=settings.warmup_seconds,
        deadband=settings.tempo_deadband,
        tempo_min=settings.tempo_min,
        tempo_max=settings.tempo_max,
        max_sample_interval=settings.max_sample_interval,
        watchdog=ResonanceWatchdog.from_settings(settings) if settings.watchdog_enabled else None,
    )
    loop.set_protocol(protocol)
    return loop
