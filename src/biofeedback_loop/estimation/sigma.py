"""Scaled unscented transform and covariance maintenance.

Sigma points and weights follow Van der Merwe's scaled formulation::

    lambda = alpha^2 (n + kappa) - n
    chi_0  = mean
    chi_i  = mean + sqrt(n + lambda) * L[:, i]        i = 1..n
    chi_i  = mean - sqrt(n + lambda) * L[:, i - n]    i = n+1..2n

where ``L`` is the lower Cholesky factor of the covariance.  Covariances
that fail factorisation are repaired by :func:`stabilize_covariance`.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum

import numpy as np


@dataclass(frozen=True)
class UnscentedWeights:
    """Mean and covariance weights for ``2n + 1`` sigma points."""

    n: int
    lam: float
    mean: np.ndarray
    cov: np.ndarray

    @property
    def spread(self) -> float:
        return math.sqrt(self.n + self.lam)


def merwe_weights(n: int, alpha: float, beta: float, kappa: float) -> UnscentedWeights:
    """Compute scaled unscented weights.

    Raises ``ValueError`` when the parameters give ``n + lambda <= 0``,
    for which no sigma-point set exists.
    """
    lam = alpha**2 * (n + kappa) - n
    if n + lam <= 0:
        raise ValueError(f"invalid unscented parameters: n + lambda = {n + lam:.3g} <= 0")
    w_i = 1.0 / (2.0 * (n + lam))
    w_mean = np.full(2 * n + 1, w_i)
    w_cov = np.full(2 * n + 1, w_i)
    w_mean[0] = lam / (n + lam)
    w_cov[0] = w_mean[0] + (1.0 - alpha**2 + beta)
    return UnscentedWeights(n=n, lam=lam, mean=w_mean, cov=w_cov)


def sigma_points(mean: np.ndarray, factor: np.ndarray, weights: UnscentedWeights) -> np.ndarray:
    """Return the ``(2n + 1, n)`` sigma-point matrix.

    ``factor`` is the lower Cholesky factor of the covariance.
    """
    offsets = (weights.spread * factor).T  # row i is column i of the factor
    return np.vstack([mean, mean + offsets, mean - offsets])


def unscented_mean(points: np.ndarray, weights: UnscentedWeights) -> np.ndarray:
    return weights.mean @ points


def unscented_covariance(points: np.ndarray, mean: np.ndarray, weights: UnscentedWeights) -> np.ndarray:
    diff = points - mean
    return (diff.T * weights.cov) @ diff


def cross_covariance(
    x_points: np.ndarray,
    x_mean: np.ndarray,
    z_points: np.ndarray,
    z_mean: float,
    weights: UnscentedWeights,
) -> np.ndarray:
    """State / scalar-measurement cross-covariance, shape ``(n,)``."""
    return ((x_points - x_mean).T * weights.cov) @ (z_points - z_mean)


# ── Covariance maintenance ───────────────────────────────────


class StabilizeOutcome(str, Enum):
    OK = "ok"
    INFLATED = "inflated"  # diagonal loading was needed
    RESET = "reset"  # fell back to the prior covariance


@dataclass(frozen=True)
class Stabilized:
    cov: np.ndarray
    factor: np.ndarray
    outcome: StabilizeOutcome


def symmetrize(cov: np.ndarray) -> np.ndarray:
    return 0.5 * (cov + cov.T)


def stabilize_covariance(cov: np.ndarray, prior: np.ndarray, epsilon: float) -> Stabilized:
    """Symmetrize ``cov`` and make sure it factorises.

    On a failed Cholesky factorisation ``epsilon`` is added to the diagonal
    and the factorisation retried once; if that fails too, ``prior`` (which
    must be positive definite) replaces the covariance.
    """
    if np.all(np.isfinite(cov)):
        cov = symmetrize(cov)
        try:
            return Stabilized(cov, np.linalg.cholesky(cov), StabilizeOutcome.OK)
        except np.linalg.LinAlgError:
            pass
        inflated = cov + epsilon * np.eye(cov.shape[0])
        try:
            return Stabilized(inflated, np.linalg.cholesky(inflated), StabilizeOutcome.INFLATED)
        except np.linalg.LinAlgError:
            pass
    reset = prior.copy()
    return Stabilized(reset, np.linalg.cholesky(reset), StabilizeOutcome.RESET)


def hold_variance_floor(cov: np.ndarray, floor: np.ndarray) -> np.ndarray:
    """Raise each marginal variance to at least ``floor`` by diagonal loading.

    Adding a non-negative diagonal keeps the matrix positive semi-definite.
    """
    deficit = np.clip(floor - np.diag(cov), 0.0, None)
    return cov + np.diag(deficit)


def cap_variance(cov: np.ndarray, max_variance: float) -> np.ndarray:
    """Shrink rows/columns whose variance exceeds ``max_variance``.

    Uses the congruence ``D C D`` with ``D = diag(min(1, sqrt(max / C_ii)))``,
    which preserves positive semi-definiteness and the correlation structure.
    """
    diag = np.diag(cov)
    if np.all(diag <= max_variance):
        return cov
    scale = np.ones_like(diag)
    over = diag > max_variance
    scale[over] = np.sqrt(max_variance / diag[over])
    return cov * np.outer(scale, scale)
