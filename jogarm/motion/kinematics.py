"""
Differential-kinematics helpers for the jog engine.

Pure functions on numpy arrays: truncated SVD pseudoinverse, the
two-threshold proximity ramp shared by singularity and collision
scaling, and the per-joint limit clamp.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from numba import njit  # type: ignore[import-untyped]
from numpy.typing import NDArray

# Two singular values closer than this are treated as equal when deciding
# whether motion heads toward a singularity.
SIGMA_TIE_TOL: float = 1e-12


@dataclass(frozen=True, slots=True)
class PseudoInverse:
    """Result of a truncated SVD pseudoinverse."""

    matrix: NDArray[np.float64]  # (N, 6)
    singular_values: NDArray[np.float64]  # descending
    rank: int

    @property
    def sigma_min(self) -> float:
        if self.singular_values.size == 0:
            return 0.0
        return float(self.singular_values[-1])


def pseudo_inverse(jacobian: NDArray, epsilon: float = 1e-6) -> PseudoInverse:
    """
    Compute J+ = V S+ U^T, zeroing reciprocals of singular values below ``epsilon``.

    Only the min(6, N) singular values of the thin SVD are reported, so an
    arm with fewer than six joints is judged on the directions it can reach.
    """
    J = np.asarray(jacobian, dtype=np.float64)
    if J.ndim != 2:
        raise ValueError(f"Jacobian must be 2-D, got shape {J.shape}")
    U, s, Vt = np.linalg.svd(J, full_matrices=False)
    keep = s > epsilon
    s_inv = np.zeros_like(s)
    s_inv[keep] = 1.0 / s[keep]
    J_pinv = (Vt.T * s_inv) @ U.T
    return PseudoInverse(matrix=J_pinv, singular_values=s, rank=int(np.count_nonzero(keep)))


def smallest_singular_value(jacobian: NDArray) -> float:
    s = np.linalg.svd(np.asarray(jacobian, dtype=np.float64), compute_uv=False)
    return float(s[-1]) if s.size else 0.0


def proximity_scale(value: float, lower_threshold: float, hard_stop_threshold: float) -> float:
    """
    Map a proximity measure to a velocity scale in [0, 1].

    ``value`` at or above ``lower_threshold`` gives 1, at or below
    ``hard_stop_threshold`` gives exactly 0, and the scale ramps linearly in
    between. Non-finite values (other than +inf) halt.
    """
    if value != value:  # NaN
        return 0.0
    if value <= hard_stop_threshold:
        return 0.0
    if value >= lower_threshold:
        return 1.0
    scale = (value - hard_stop_threshold) / (lower_threshold - hard_stop_threshold)
    return min(1.0, max(0.0, scale))


def moving_toward_singularity(sigma_now: float, sigma_ahead: float | None) -> bool:
    """
    True if stepping along the commanded motion does not increase sigma_min.

    An unknown look-ahead (``None``) counts as moving toward.
    """
    if sigma_ahead is None:
        return True
    return sigma_ahead <= sigma_now + SIGMA_TIE_TOL


def singularity_scale(
    sigma_now: float,
    sigma_ahead: float | None,
    lower_threshold: float,
    hard_stop_threshold: float,
) -> float:
    """Velocity scale for singularity proximity; only decelerates toward it."""
    if not moving_toward_singularity(sigma_now, sigma_ahead):
        return 1.0
    return proximity_scale(sigma_now, lower_threshold, hard_stop_threshold)


@njit(cache=True)
def _clamp_increments(
    delta: np.ndarray,
    positions: np.ndarray,
    min_pos: np.ndarray,
    max_pos: np.ndarray,
    max_step: np.ndarray,
    has_limits: np.ndarray,
    margin: float,
    out: np.ndarray,
) -> None:
    n = delta.shape[0]
    for i in range(n):
        d = delta[i]
        lim = max_step[i]
        if d > lim:
            d = lim
        elif d < -lim:
            d = -lim
        if has_limits[i]:
            hi = max_pos[i] - margin
            lo = min_pos[i] + margin
            q = positions[i]
            if d > 0.0 and q + d > hi:
                d = hi - q
                if d < 0.0:
                    d = 0.0
            elif d < 0.0 and q + d < lo:
                d = lo - q
                if d > 0.0:
                    d = 0.0
        out[i] = d


def clamp_joint_increments(
    delta: NDArray,
    positions: NDArray,
    min_position: NDArray,
    max_position: NDArray,
    max_step: NDArray,
    has_position_limits: NDArray,
    margin: float,
) -> NDArray[np.float64]:
    """
    Clamp each joint's per-cycle increment independently.

    Velocity: |delta_i| is limited to ``max_step[i]`` (max velocity times the
    publish period). Position: an increment that would carry the joint past
    ``[min + margin, max - margin]`` in the outward direction is shortened to
    land on the boundary, or zeroed if the joint is already beyond it.
    Inward motion is never restricted. Other joints are left untouched and
    the operation is idempotent.
    """
    d = np.ascontiguousarray(delta, dtype=np.float64)
    out = np.empty_like(d)
    _clamp_increments(
        d,
        np.ascontiguousarray(positions, dtype=np.float64),
        np.ascontiguousarray(min_position, dtype=np.float64),
        np.ascontiguousarray(max_position, dtype=np.float64),
        np.ascontiguousarray(max_step, dtype=np.float64),
        np.ascontiguousarray(has_position_limits, dtype=np.bool_),
        float(margin),
        out,
    )
    return out
