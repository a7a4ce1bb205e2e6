"""Session-level safety monitors."""

from biofeedback_loop.monitors.watchdog import ResonanceWatchdog

__all__ = ["ResonanceWatchdog"]
