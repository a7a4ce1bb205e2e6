"""Resonance watchdog: fall back to the nominal tempo when control diverges.

A tempo that stays away from 1.0 while the belief keeps drifting away from
the protocol target means the loop is chasing noise.  The watchdog
accumulates the time spent in that state, bleeds it off twice as fast
whenever the condition clears, and trips once the accumulated time passes
``max_divergence_seconds``.
"""

from __future__ import annotations

import structlog

from biofeedback_loop.config import Settings

logger = structlog.get_logger(__name__)

_DECAY_RATE = 2.0


class ResonanceWatchdog:
    """Time-accumulating divergence detector.

    Parameters
    ----------
    divergence_threshold : float
        Belief prediction error above which the session counts as diverging.
    max_divergence_seconds : float
        Accumulated divergence time that trips the watchdog.
    tempo_tolerance : float
        Deviation of the tempo scale from 1.0 that counts as "adjusted".
    """

    def __init__(
        self,
        divergence_threshold: float = 0.6,
        max_divergence_seconds: float = 30.0,
        tempo_tolerance: float = 0.01,
    ) -> None:
        if max_divergence_seconds <= 0:
            raise ValueError("max_divergence_seconds must be positive")
        self.divergence_threshold = divergence_threshold
        self.max_divergence_seconds = max_divergence_seconds
        self.tempo_tolerance = tempo_tolerance
        self._diverged = 0.0

    @classmethod
    def from_settings(cls, settings: Settings) -> ResonanceWatchdog:
        return cls(
            divergence_threshold=settings.watchdog_divergence_threshold,
            max_divergence_seconds=settings.watchdog_max_divergence_seconds,
        )

    @property
    def diverged_seconds(self) -> float:
        return self._diverged

    def observe(self, tempo_scale: float, prediction_error: float, dt: float) -> bool:
        """Account for ``dt`` seconds of the current tick.

        Returns ``True`` when the watchdog trips; the accumulator is cleared
        at the same time so the caller only sees one trip per episode.
        """
        adjusted = abs(tempo_scale - 1.0) > self.tempo_tolerance
        if adjusted and prediction_error > self.divergence_threshold:
            self._diverged += dt
        else:
            self._diverged = max(0.0, self._diverged - _DECAY_RATE * dt)

        if self._diverged > self.max_divergence_seconds:
            logger.warning(
                "watchdog.tripped",
                diverged_seconds=round(self._diverged, 2),
                tempo_scale=tempo_scale,
                prediction_error=round(prediction_error, 3),
            )
            self._diverged = 0.0
            return True
        return False

    def reset(self) -> None:
        self._diverged = 0.0
