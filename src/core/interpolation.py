"""
===============================================================================
ATTITUDE PROPAGATION - Tabulated Data Interpolation
===============================================================================
Lagrange interpolation of vector-valued tables on a sliding window.

A global polynomial through thousands of propagation epochs is useless
(Runge oscillation, ill-conditioning), so each query uses only the
``order`` nodes surrounding the requested epoch. The polynomial through a
window is evaluated in barycentric form by SciPy, which is numerically
stable and O(order) per evaluation once the weights are known.

Node abscissae are shifted and scaled to [-1, 1] per window before the
weights are computed; raw epochs of ~1e5-1e6 s would otherwise make the
barycentric weights overflow for orders above a few.

===============================================================================
"""

import logging
from typing import Dict

import numpy as np
from scipy.interpolate import BarycentricInterpolator

logger = logging.getLogger(__name__)


class LagrangeInterpolator:
    """
    Piecewise Lagrange interpolator over a time-ordered table.

    Parameters
    ----------
    times : np.ndarray
        Strictly increasing independent variable values, shape ``(N,)``.
    values : np.ndarray
        Dependent values, shape ``(N,)`` or ``(N, m)``.
    order : int, optional
        Number of nodes per interpolating polynomial (default 8). Reduced to
        ``N`` for short tables.

    Raises
    ------
    ValueError
        If fewer than two nodes are given, the shapes disagree or the times
        are not strictly increasing.
    """

    def __init__(self, times: np.ndarray, values: np.ndarray, order: int = 8) -> None:
        times = np.asarray(times, dtype=np.float64)
        values = np.asarray(values, dtype=np.float64)

        if times.ndim != 1 or times.shape[0] < 2:
            raise ValueError("Interpolation requires at least two nodes in a 1-D time array")
        if values.shape[0] != times.shape[0]:
            raise ValueError(
                f"Table length mismatch: {times.shape[0]} times vs {values.shape[0]} values"
            )
        if np.any(np.diff(times) <= 0.0):
            raise ValueError("Interpolation times must be strictly increasing")
        if order < 2:
            raise ValueError(f"Interpolation order must be at least 2, got {order}")

        self._scalar = values.ndim == 1
        self._times = times
        self._values = values.reshape(times.shape[0], -1)
        self._order = min(order, times.shape[0])
        self._windows: Dict[int, tuple] = {}

    @property
    def order(self) -> int:
        return self._order

    @property
    def lower_bound(self) -> float:
        return float(self._times[0])

    @property
    def upper_bound(self) -> float:
        return float(self._times[-1])

    def _window_start(self, t: float) -> int:
        # Centre the window on the interval containing t; clip at table ends
        index = int(np.searchsorted(self._times, t, side='right')) - 1
        start = index - (self._order // 2 - 1)
        return int(np.clip(start, 0, self._times.shape[0] - self._order))

    def _window(self, start: int):
        window = self._windows.get(start)
        if window is None:
            nodes = self._times[start:start + self._order]
            centre = 0.5 * (nodes[0] + nodes[-1])
            half_width = 0.5 * (nodes[-1] - nodes[0])
            interpolator = BarycentricInterpolator(
                (nodes - centre) / half_width,
                self._values[start:start + self._order],
                axis=0,
            )
            window = (centre, half_width, interpolator)
            self._windows[start] = window
        return window

    def interpolate(self, t: float) -> np.ndarray:
        """
        Evaluate the interpolant at ``t``.

        Outside ``[lower_bound, upper_bound]`` the edge polynomial is
        extrapolated; accuracy there is not guaranteed.
        """
        if t < self._times[0] or t > self._times[-1]:
            logger.debug("Extrapolating table [%.3f, %.3f] to t=%.3f",
                         self._times[0], self._times[-1], t)

        exact = np.searchsorted(self._times, t)
        if exact < self._times.shape[0] and self._times[exact] == t:
            result = self._values[exact].copy()
        else:
            centre, half_width, interpolator = self._window(self._window_start(t))
            result = np.asarray(interpolator((t - centre) / half_width), dtype=np.float64)

        if self._scalar:
            return result.reshape(-1)[0]
        return result.reshape(-1)

    def __call__(self, t: float) -> np.ndarray:
        return self.interpolate(t)

    def __repr__(self) -> str:
        return (f"LagrangeInterpolator(nodes={self._times.shape[0]}, order={self._order}, "
                f"span=[{self._times[0]:.3f}, {self._times[-1]:.3f}])")
