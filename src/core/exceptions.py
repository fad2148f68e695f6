"""
Error taxonomy for the propagation engine.

Configuration problems are detected at setup and raised as
``ConfigurationError`` (a ``ValueError``) before any integration step is
taken. Failures during integration are ``PropagationError`` subclasses that
carry the last successfully accepted epoch and state so the caller can
report where the run stopped.
"""

from typing import Optional

import numpy as np


class ConfigurationError(ValueError):
    """Invalid body, integrator or propagator setup."""


class PropagationError(RuntimeError):
    """
    Fatal failure while integrating the equations of motion.

    Attributes
    ----------
    time : float or None
        Epoch of the last accepted step (s).
    state : np.ndarray or None
        State vector at ``time``.
    """

    def __init__(self, message: str, time: Optional[float] = None,
                 state: Optional[np.ndarray] = None) -> None:
        if time is not None:
            message = f"{message} (last accepted epoch t={time:.6f} s)"
        super().__init__(message)
        self.time = time
        self.state = None if state is None else np.array(state, dtype=np.float64)


class StepSizeUnderflowError(PropagationError):
    """Step size fell below the minimum while steps were still rejected."""


class NonFiniteStateError(PropagationError):
    """A NaN or infinite value appeared in the propagated state."""
