"""State estimation: sigma-point fusion of physiological sensor channels.

This package maintains the engine's belief over
``[arousal, arousal_velocity, valence, attention, rhythm_alignment]``.

Architecture
------------
1. **Dynamics model** (`dynamics.py`)
   - Pure per-dimension transition functions (logistic arousal with
     momentum, Yerkes–Dodson valence, attention decay, rhythm lock-in)

2. **Sigma-point machinery** (`sigma.py`)
   - Scaled unscented weights and sigma points
   - Covariance symmetrisation, Cholesky check, diagonal loading and
     reset-to-prior

3. **Channel table** (`channels.py`)
   - One descriptor per sensor: normalisation, measurement model, base
     noise, physiological plausibility range

4. **Estimator** (`ukf.py`)
   - Predict / update / step, Mahalanobis gating, dead reckoning

Faults
------
Sensor faults, numerical instability and invalid sample intervals are
absorbed and reported as :class:`~biofeedback_loop.models.Fault` records;
nothing here raises during a tick.
"""

from biofeedback_loop.estimation.channels import SensorChannel, build_channel_table
from biofeedback_loop.estimation.dynamics import DynamicsParams, propagate
from biofeedback_loop.estimation.ukf import UnscentedStateEstimator

__all__ = [
    "DynamicsParams",
    "SensorChannel",
    "UnscentedStateEstimator",
    "build_channel_table",
    "propagate",
]
