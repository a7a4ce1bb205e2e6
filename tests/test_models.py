"""Tests for the shared Pydantic models."""

import numpy as np
import pytest
from pydantic import TypeAdapter, ValidationError

from biofeedback_loop.models import (
    Belief,
    Fault,
    FaultKind,
    FusionReport,
    Halt,
    Interruption,
    SensorObservation,
    SessionEvent,
    TempoCommand,
)


class TestBelief:
    def test_from_state_clamps_mean(self):
        belief = Belief.from_state([1.7, -2.0, 3.0, -0.1, 0.5], np.eye(5) * 0.1)
        assert belief.mean == (1.0, -0.5, 1.0, 0.0, 0.5)

    def test_neutral_prior(self):
        belief = Belief.neutral_prior()
        assert belief.mean == (0.5, 0.0, 0.0, 0.5, 0.0)
        assert belief.confidence == pytest.approx(0.8)
        assert belief.arousal_variance == pytest.approx(0.2)

    def test_prediction_error_against_default_target(self):
        belief = Belief.neutral_prior()
        assert belief.prediction_error == pytest.approx(np.sqrt(0.5 * 0.49))

    def test_rejects_asymmetric_covariance(self):
        cov = np.eye(5) * 0.1
        cov[0, 1] = 0.05
        with pytest.raises(ValidationError, match="symmetric"):
            Belief.from_state([0.5, 0.0, 0.0, 0.5, 0.0], cov)

    def test_rejects_indefinite_covariance(self):
        cov = np.diag([0.1, 0.1, -0.1, 0.1, 0.1])
        with pytest.raises(ValidationError, match="positive semi-definite"):
            Belief.from_state([0.5, 0.0, 0.0, 0.5, 0.0], cov)

    def test_rejects_wrong_shape(self):
        with pytest.raises(ValidationError):
            Belief.from_state([0.5, 0.0, 0.0, 0.5, 0.0], np.eye(3))

    def test_rejects_out_of_range_field(self):
        with pytest.raises(ValidationError):
            Belief(
                arousal=1.5,
                arousal_velocity=0.0,
                valence=0.0,
                attention=0.5,
                rhythm_alignment=0.0,
                covariance=tuple(tuple(row) for row in np.eye(5)),
            )

    def test_json_dump_includes_derived_metrics(self):
        dumped = Belief.neutral_prior().model_dump(mode="json")
        assert {"confidence", "arousal_variance", "rhythm_variance"} <= dumped.keys()


class TestTempoCommand:
    def test_create_clamps(self):
        cmd = TempoCommand.create(2.0, "pid", 1.0)
        assert cmd.scale == 1.4
        assert cmd.reason == "pid (clamped)"

    def test_create_in_range(self):
        cmd = TempoCommand.create(1.1, "pid", 1.0)
        assert cmd.scale == 1.1
        assert cmd.reason == "pid"

    def test_direct_construction_validated(self):
        with pytest.raises(ValidationError):
            TempoCommand(scale=0.5, timestamp=0.0)


class TestEvents:
    def test_discriminated_union(self):
        adapter = TypeAdapter(SessionEvent)
        assert isinstance(adapter.validate_python({"type": "HALT", "timestamp": 1.0}), Halt)
        event = adapter.validate_python({"type": "INTERRUPTION", "timestamp": 2.0, "kind": "background"})
        assert isinstance(event, Interruption)
        assert event.kind == "background"

    def test_unknown_event_rejected(self):
        with pytest.raises(ValidationError):
            TypeAdapter(SessionEvent).validate_python({"type": "REBOOT", "timestamp": 1.0})


class TestObservation:
    def test_confidence_bounds(self):
        with pytest.raises(ValidationError):
            SensorObservation(timestamp=0.0, heart_rate=60.0, hr_confidence=1.5)

    def test_raw_values_unconstrained(self):
        obs = SensorObservation(timestamp=0.0, heart_rate=300.0)
        assert obs.heart_rate == 300.0

    @pytest.mark.parametrize("timestamp", [float("nan"), float("inf"), float("-inf")])
    def test_non_finite_timestamp_rejected(self, timestamp):
        with pytest.raises(ValidationError):
            SensorObservation(timestamp=timestamp, heart_rate=60.0)
        with pytest.raises(ValidationError):
            TypeAdapter(SessionEvent).validate_python({"type": "HALT", "timestamp": timestamp})
        with pytest.raises(ValidationError):
            TempoCommand.create(1.1, "test", timestamp)


def test_fusion_report_dead_reckoning():
    assert FusionReport().dead_reckoning
    report = FusionReport(fused=["hrv"], faults=[Fault(kind=FaultKind.SENSOR_FAULT, source="heart_rate")])
    assert not report.dead_reckoning
