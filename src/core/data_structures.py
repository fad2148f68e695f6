"""
Custom data structures for the propagation engine.

Structures
----------
StateHistory  -- Growable, time-keyed store of state snapshots backed by
                 contiguous NumPy arrays.

All public methods carry full type annotations and NumPy-style docstrings.
"""

from __future__ import annotations

from typing import Dict, Optional, Tuple

import numpy as np


# ---------------------------------------------------------------------------
# 1. StateHistory
# ---------------------------------------------------------------------------

class StateHistory:
    """Growable time-keyed history of state vectors.

    Why contiguous storage?
    -----------------------
    A propagation records one row per saved step, and downstream consumers
    (tabulated ephemerides, DataFrame export) read the whole table at once.
    Storing rows in a pre-allocated NumPy block that doubles when full keeps
    ``append`` amortised O(1) and makes ``to_array`` a slice instead of a
    Python-level stack of thousands of small arrays.

    Memory layout
    -------------
    * ``_timestamps`` -- ``float64[capacity]``
    * ``_states``     -- ``float64[capacity, state_dim]``

    Only the first ``_count`` rows are valid. Epochs must be appended in a
    strictly monotonic order; the direction (forward or backward in time) is
    fixed by the first two entries. Reads always return ascending time.

    Time complexity
    ---------------
    +-------------------+----------------+
    | Operation         | Cost           |
    +===================+================+
    | append            | O(1) amortised |
    | latest            | O(1)           |
    | get_range         | O(n)           |
    | to_array          | O(n)           |
    +-------------------+----------------+

    Parameters
    ----------
    state_dim : int
        Dimensionality of each state vector.
    initial_capacity : int
        Number of rows allocated up front.
    """

    def __init__(self, state_dim: int, initial_capacity: int = 256) -> None:
        if state_dim <= 0:
            raise ValueError(f"state_dim must be positive, got {state_dim}")
        if initial_capacity <= 0:
            raise ValueError(f"initial_capacity must be positive, got {initial_capacity}")

        self._state_dim: int = state_dim
        self._timestamps: np.ndarray = np.zeros(initial_capacity, dtype=np.float64)
        self._states: np.ndarray = np.zeros((initial_capacity, state_dim), dtype=np.float64)

        self._count: int = 0
        self._direction: Optional[float] = None   # +1.0 forward, -1.0 backward

    # -- write -------------------------------------------------------------

    def append(self, timestamp: float, state: np.ndarray) -> None:
        """Record a new state snapshot.

        Parameters
        ----------
        timestamp : float
            Epoch (seconds).
        state : np.ndarray
            State vector of length ``state_dim``.

        Raises
        ------
        ValueError
            If ``state`` has the wrong dimensionality or ``timestamp`` breaks
            the monotonic ordering of the history.
        """
        state = np.asarray(state, dtype=np.float64)
        if state.shape != (self._state_dim,):
            raise ValueError(
                f"Expected state of shape ({self._state_dim},), got {state.shape}"
            )

        if self._count > 0:
            step = timestamp - self._timestamps[self._count - 1]
            if step == 0.0:
                raise ValueError(f"Duplicate epoch {timestamp!r} in state history")
            if self._direction is None:
                self._direction = float(np.sign(step))
            elif np.sign(step) != self._direction:
                raise ValueError(
                    f"Epoch {timestamp!r} breaks the monotonic order of the history"
                )

        if self._count == self._timestamps.shape[0]:
            self._grow()

        self._timestamps[self._count] = timestamp
        self._states[self._count] = state
        self._count += 1

    def _grow(self) -> None:
        capacity = 2 * self._timestamps.shape[0]
        timestamps = np.zeros(capacity, dtype=np.float64)
        states = np.zeros((capacity, self._state_dim), dtype=np.float64)
        timestamps[:self._count] = self._timestamps[:self._count]
        states[:self._count] = self._states[:self._count]
        self._timestamps = timestamps
        self._states = states

    # -- read --------------------------------------------------------------

    def latest(self) -> Tuple[float, np.ndarray]:
        """Most recently appended (epoch, state).

        Raises
        ------
        IndexError
            If the history is empty.
        """
        if self._count == 0:
            raise IndexError("State history is empty")
        return float(self._timestamps[self._count - 1]), self._states[self._count - 1].copy()

    def to_array(self) -> Tuple[np.ndarray, np.ndarray]:
        """Return the full history in ascending time order.

        Returns
        -------
        timestamps : np.ndarray, shape ``(count,)``
        states : np.ndarray, shape ``(count, state_dim)``
        """
        timestamps = self._timestamps[:self._count].copy()
        states = self._states[:self._count].copy()
        if self._direction is not None and self._direction < 0.0:
            return timestamps[::-1].copy(), states[::-1].copy()
        return timestamps, states

    def get_range(self, t_start: float, t_end: float) -> Tuple[np.ndarray, np.ndarray]:
        """Return all snapshots with epochs in ``[t_start, t_end]``, ascending."""
        timestamps, states = self.to_array()
        mask = (timestamps >= t_start) & (timestamps <= t_end)
        return timestamps[mask], states[mask]

    def as_dict(self) -> Dict[float, np.ndarray]:
        """Time-ordered ``{epoch: state}`` mapping (ascending epochs)."""
        timestamps, states = self.to_array()
        return {float(t): row for t, row in zip(timestamps, states)}

    # -- metadata ----------------------------------------------------------

    @property
    def count(self) -> int:
        """Number of stored snapshots."""
        return self._count

    @property
    def state_dim(self) -> int:
        return self._state_dim

    def __len__(self) -> int:
        return self._count

    def __repr__(self) -> str:
        if self._count == 0:
            return f"StateHistory(count=0, dim={self._state_dim})"
        timestamps, _ = self.to_array()
        return (
            f"StateHistory(count={self._count}, dim={self._state_dim}, "
            f"span=[{timestamps[0]:.3f}, {timestamps[-1]:.3f}] s)"
        )
