"""Feedback control of the breathing tempo."""

from biofeedback_loop.control.pid import PIDConfig, PIDController, PIDDiagnostics, create_tempo_controller

__all__ = ["PIDConfig", "PIDController", "PIDDiagnostics", "create_tempo_controller"]
