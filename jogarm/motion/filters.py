"""
Second-order low-pass filtering of joint signals.

The filter keeps the last three raw and last two filtered samples:

    y = k * (x[n] + 2x[n-1] + x[n-2]
             - (-2c^2 + 2) * y[n-1]
             - (c^2 - 1.414c + 1) * y[n-2])
    k = 1 / (1 + c^2 + 1.414c)

This is the bilinear-transform Butterworth section; the (c^2 - 1.414c + 1)
term belongs to the older output sample, otherwise the recursion is
unstable for c > 1. A larger coefficient ``c`` filters more heavily. The
DC gain is one, so a constant input is reproduced once the history is
settled.
"""

from __future__ import annotations

import numpy as np
from numba import njit  # type: ignore[import-untyped]
from numpy.typing import ArrayLike, NDArray


def _coefficients(c: float) -> tuple[float, float, float]:
    """Return (k, a1, a2) for filter coefficient c."""
    if not c > 0.0:
        raise ValueError(f"Low-pass filter coefficient must be positive, got {c}")
    k = 1.0 / (1.0 + c * c + 1.414 * c)
    a1 = c * c - 1.414 * c + 1.0
    a2 = -2.0 * c * c + 2.0
    return k, a1, a2


class LowPassFilter:
    """Filter a single scalar signal (one joint's velocity or position)."""

    __slots__ = ("filter_coeff", "_k", "_a1", "_a2", "_x", "_y")

    def __init__(self, low_pass_filter_coeff: float) -> None:
        self.filter_coeff = float(low_pass_filter_coeff)
        self._k, self._a1, self._a2 = _coefficients(self.filter_coeff)
        # x[n], x[n-1], x[n-2]
        self._x = [0.0, 0.0, 0.0]
        # y[n-1], y[n-2]
        self._y = [0.0, 0.0]

    def reset(self, data: float) -> None:
        """Fill the whole history with ``data`` so the output resumes without a jump."""
        v = float(data)
        self._x[0] = self._x[1] = self._x[2] = v
        self._y[0] = self._y[1] = v

    def filter(self, new_msrmt: float) -> float:
        x = self._x
        y = self._y
        x[2] = x[1]
        x[1] = x[0]
        x[0] = float(new_msrmt)

        out = self._k * (
            x[2] + 2.0 * x[1] + x[0] - self._a1 * y[1] - self._a2 * y[0]
        )

        y[1] = y[0]
        y[0] = out
        return out


@njit(cache=True)
def _filter_step(
    x: np.ndarray,
    y: np.ndarray,
    new: np.ndarray,
    out: np.ndarray,
    k: float,
    a1: float,
    a2: float,
) -> None:
    """Advance every channel by one sample. x is (3, n), y is (2, n)."""
    n = new.shape[0]
    for i in range(n):
        x[2, i] = x[1, i]
        x[1, i] = x[0, i]
        x[0, i] = new[i]
        v = k * (x[2, i] + 2.0 * x[1, i] + x[0, i] - a1 * y[1, i] - a2 * y[0, i])
        y[1, i] = y[0, i]
        y[0, i] = v
        out[i] = v


class JointFilterBank:
    """
    One low-pass filter per joint, stepped together.

    Equivalent to a list of ``LowPassFilter`` instances but works on numpy
    arrays in a single compiled pass.
    """

    __slots__ = ("num_joints", "filter_coeff", "_k", "_a1", "_a2", "_x", "_y")

    def __init__(self, num_joints: int, low_pass_filter_coeff: float) -> None:
        self.num_joints = int(num_joints)
        self.filter_coeff = float(low_pass_filter_coeff)
        self._k, self._a1, self._a2 = _coefficients(self.filter_coeff)
        self._x = np.zeros((3, self.num_joints), dtype=np.float64)
        self._y = np.zeros((2, self.num_joints), dtype=np.float64)

    def reset(self, data: ArrayLike) -> None:
        """Reset every channel; ``data`` is a scalar or one value per joint."""
        arr = np.broadcast_to(np.asarray(data, dtype=np.float64), (self.num_joints,))
        self._x[:] = arr
        self._y[:] = arr

    def filter(self, new_msrmts: ArrayLike) -> NDArray[np.float64]:
        new = np.ascontiguousarray(new_msrmts, dtype=np.float64)
        if new.shape != (self.num_joints,):
            raise ValueError(
                f"Expected {self.num_joints} samples, got shape {new.shape}"
            )
        out = np.empty(self.num_joints, dtype=np.float64)
        _filter_step(self._x, self._y, new, out, self._k, self._a1, self._a2)
        return out

    def reset_channels(self, mask: NDArray[np.bool_], data: ArrayLike) -> None:
        """Reset only the channels selected by ``mask`` (e.g. after a NaN)."""
        arr = np.broadcast_to(np.asarray(data, dtype=np.float64), (self.num_joints,))
        self._x[:, mask] = arr[mask]
        self._y[:, mask] = arr[mask]
