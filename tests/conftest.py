"""Shared pytest fixtures."""

from __future__ import annotations

import numpy as np
import pytest
from structlog.testing import capture_logs

from biofeedback_loop.config import Settings
from biofeedback_loop.control.pid import PIDConfig, PIDController
from biofeedback_loop.estimation.ukf import UnscentedStateEstimator
from biofeedback_loop.loop.orchestrator import BiofeedbackLoop
from biofeedback_loop.models import Belief, SensorObservation


@pytest.fixture(autouse=True)
def captured_logs():
    """Route every structlog event into a list instead of stdout."""
    with capture_logs() as logs:
        yield logs


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None)


@pytest.fixture
def estimator() -> UnscentedStateEstimator:
    return UnscentedStateEstimator()


@pytest.fixture
def tempo_pid_config() -> PIDConfig:
    return PIDConfig(
        kp=0.5,
        ki=0.05,
        kd=0.1,
        output_min=-0.05,
        output_max=0.05,
        integral_min=-0.1,
        integral_max=0.1,
    )


@pytest.fixture
def controller(tempo_pid_config: PIDConfig) -> PIDController:
    return PIDController(tempo_pid_config)


@pytest.fixture
def loop(estimator: UnscentedStateEstimator, controller: PIDController) -> BiofeedbackLoop:
    """A loop without warm-up or watchdog, so control starts on the second tick."""
    return BiofeedbackLoop(estimator, controller, warmup_seconds=0.0)


@pytest.fixture
def calm_observation() -> SensorObservation:
    return SensorObservation(
        timestamp=1.0,
        heart_rate=62.0,
        hr_confidence=0.95,
        hrv=90.0,
        hrv_confidence=0.9,
        respiration_rate=6.0,
        resp_confidence=0.9,
        facial_valence=0.2,
        facial_confidence=0.8,
    )


def make_belief(rhythm: float, arousal: float = 0.5, timestamp: float | None = None) -> Belief:
    """Belief with the given rhythm alignment and a small diagonal covariance."""
    return Belief.from_state(
        [arousal, 0.0, 0.0, 0.5, rhythm],
        np.eye(5) * 0.05,
        timestamp=timestamp,
    )


def assert_valid_covariance(cov: np.ndarray) -> None:
    assert cov.shape == (5, 5)
    assert np.all(np.isfinite(cov))
    assert np.allclose(cov, cov.T, atol=1e-10)
    assert np.linalg.eigvalsh(cov).min() >= -1e-9
