"""Closed-loop orchestration of estimator and tempo controller."""

from biofeedback_loop.loop.orchestrator import BiofeedbackLoop, build_loop

__all__ = ["BiofeedbackLoop", "build_loop"]
