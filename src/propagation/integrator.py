"""
===============================================================================
ATTITUDE PROPAGATION - Variable-Step Runge-Kutta Integrator
===============================================================================
Embedded Runge-Kutta pairs with local error control.

Each step evaluates the s stages of an embedded pair once and forms two
solutions of different order from the same stages:

    y_low  = y + h * sum(b_low_i  * k_i)
    y_high = y + h * sum(b_high_i * k_i)

Their difference estimates the local truncation error of the lower order
solution. The scalar error norm

    err = max_i |y_high_i - y_low_i| / (atol + rtol * max(|y_i|, |y_new_i|))

accepts the step when err <= 1. The next step size follows a PI controller
(Gustafsson):

    accepted:  h_new = h * clip(safety * err^(-0.7/(p+1)) * err_prev^(0.4/(p+1)),
                                min_factor, max_factor)
    rejected:  h_new = h * max(min_factor, safety * err^(-1/(p+1)))

with p the lower order and |h_new| clipped to [minimum_step, maximum_step].
A rejection whose proposal falls below ``minimum_step`` is fatal: the
integrator raises ``StepSizeUnderflowError`` with the last accepted epoch
and state instead of accepting an inaccurate step.

Coefficient sets
----------------
    rkf45    Runge-Kutta-Fehlberg 4(5), 6 stages
    dopri54  Dormand-Prince 5(4), 7 stages
    rkf78    Runge-Kutta-Fehlberg 7(8), 13 stages

References
----------
    [1] Fehlberg, "Classical Fifth-, Sixth-, Seventh-, and Eighth-Order
        Runge-Kutta Formulas with Stepsize Control", NASA TR R-287, 1968.
    [2] Dormand & Prince, "A family of embedded Runge-Kutta formulae",
        J. Comp. Appl. Math. 6, 1980.
    [3] Hairer & Wanner, "Solving Ordinary Differential Equations II",
        Springer, 1996, Sec. IV.2 (PI step-size control).
===============================================================================
"""

import logging
from dataclasses import dataclass
from enum import Enum, auto
from typing import Callable, Dict, Optional, Tuple

import numpy as np

from core.exceptions import ConfigurationError, NonFiniteStateError, StepSizeUnderflowError

logger = logging.getLogger(__name__)

DerivativeFunction = Callable[[float, np.ndarray], np.ndarray]


# =============================================================================
# BUTCHER TABLEAUS
# =============================================================================

@dataclass(frozen=True, eq=False)
class RungeKuttaCoefficients:
    """
    Butcher tableau of an embedded Runge-Kutta pair.

    Attributes
    ----------
    name : str
        Registry key.
    c : np.ndarray
        Stage nodes (s,).
    a : np.ndarray
        Strictly lower-triangular stage matrix (s, s).
    b_lower, b_higher : np.ndarray
        Weights of the lower and higher order solutions (s,).
    lower_order, higher_order : int
        Orders of the two solutions.
    """
    name: str
    c: np.ndarray
    a: np.ndarray
    b_lower: np.ndarray
    b_higher: np.ndarray
    lower_order: int
    higher_order: int

    @property
    def stages(self) -> int:
        return self.c.shape[0]

    @classmethod
    def from_rows(cls, name: str, c, a_rows, b_lower, b_higher,
                  lower_order: int, higher_order: int) -> 'RungeKuttaCoefficients':
        """Build from the ragged lower-triangular rows of the stage matrix."""
        stages = len(c)
        a = np.zeros((stages, stages))
        for i, row in enumerate(a_rows, start=1):
            a[i, :len(row)] = row
        return cls(name, np.array(c, dtype=np.float64), a,
                   np.array(b_lower, dtype=np.float64), np.array(b_higher, dtype=np.float64),
                   lower_order, higher_order)

    @staticmethod
    def get(name: str) -> 'RungeKuttaCoefficients':
        """
        Look up a coefficient set by name.

        Raises
        ------
        ConfigurationError
            If ``name`` is not a known set.
        """
        try:
            return COEFFICIENT_SETS[name.lower()]
        except KeyError:
            raise ConfigurationError(
                f"Unknown coefficient set: {name}. Valid: {sorted(COEFFICIENT_SETS)}"
            ) from None


_RKF45 = RungeKuttaCoefficients.from_rows(
    "rkf45",
    c=[0.0, 1.0 / 4.0, 3.0 / 8.0, 12.0 / 13.0, 1.0, 1.0 / 2.0],
    a_rows=[
        [1.0 / 4.0],
        [3.0 / 32.0, 9.0 / 32.0],
        [1932.0 / 2197.0, -7200.0 / 2197.0, 7296.0 / 2197.0],
        [439.0 / 216.0, -8.0, 3680.0 / 513.0, -845.0 / 4104.0],
        [-8.0 / 27.0, 2.0, -3544.0 / 2565.0, 1859.0 / 4104.0, -11.0 / 40.0],
    ],
    b_lower=[25.0 / 216.0, 0.0, 1408.0 / 2565.0, 2197.0 / 4104.0, -1.0 / 5.0, 0.0],
    b_higher=[16.0 / 135.0, 0.0, 6656.0 / 12825.0, 28561.0 / 56430.0, -9.0 / 50.0, 2.0 / 55.0],
    lower_order=4,
    higher_order=5,
)

_DOPRI54 = RungeKuttaCoefficients.from_rows(
    "dopri54",
    c=[0.0, 1.0 / 5.0, 3.0 / 10.0, 4.0 / 5.0, 8.0 / 9.0, 1.0, 1.0],
    a_rows=[
        [1.0 / 5.0],
        [3.0 / 40.0, 9.0 / 40.0],
        [44.0 / 45.0, -56.0 / 15.0, 32.0 / 9.0],
        [19372.0 / 6561.0, -25360.0 / 2187.0, 64448.0 / 6561.0, -212.0 / 729.0],
        [9017.0 / 3168.0, -355.0 / 33.0, 46732.0 / 5247.0, 49.0 / 176.0, -5103.0 / 18656.0],
        [35.0 / 384.0, 0.0, 500.0 / 1113.0, 125.0 / 192.0, -2187.0 / 6784.0, 11.0 / 84.0],
    ],
    b_lower=[5179.0 / 57600.0, 0.0, 7571.0 / 16695.0, 393.0 / 640.0,
             -92097.0 / 339200.0, 187.0 / 2100.0, 1.0 / 40.0],
    b_higher=[35.0 / 384.0, 0.0, 500.0 / 1113.0, 125.0 / 192.0,
              -2187.0 / 6784.0, 11.0 / 84.0, 0.0],
    lower_order=4,
    higher_order=5,
)

_RKF78 = RungeKuttaCoefficients.from_rows(
    "rkf78",
    c=[0.0, 2.0 / 27.0, 1.0 / 9.0, 1.0 / 6.0, 5.0 / 12.0, 1.0 / 2.0, 5.0 / 6.0,
       1.0 / 6.0, 2.0 / 3.0, 1.0 / 3.0, 1.0, 0.0, 1.0],
    a_rows=[
        [2.0 / 27.0],
        [1.0 / 36.0, 1.0 / 12.0],
        [1.0 / 24.0, 0.0, 1.0 / 8.0],
        [5.0 / 12.0, 0.0, -25.0 / 16.0, 25.0 / 16.0],
        [1.0 / 20.0, 0.0, 0.0, 1.0 / 4.0, 1.0 / 5.0],
        [-25.0 / 108.0, 0.0, 0.0, 125.0 / 108.0, -65.0 / 27.0, 125.0 / 54.0],
        [31.0 / 300.0, 0.0, 0.0, 0.0, 61.0 / 225.0, -2.0 / 9.0, 13.0 / 900.0],
        [2.0, 0.0, 0.0, -53.0 / 6.0, 704.0 / 45.0, -107.0 / 9.0, 67.0 / 90.0, 3.0],
        [-91.0 / 108.0, 0.0, 0.0, 23.0 / 108.0, -976.0 / 135.0, 311.0 / 54.0,
         -19.0 / 60.0, 17.0 / 6.0, -1.0 / 12.0],
        [2383.0 / 4100.0, 0.0, 0.0, -341.0 / 164.0, 4496.0 / 1025.0, -301.0 / 82.0,
         2133.0 / 4100.0, 45.0 / 82.0, 45.0 / 164.0, 18.0 / 41.0],
        [3.0 / 205.0, 0.0, 0.0, 0.0, 0.0, -6.0 / 41.0, -3.0 / 205.0, -3.0 / 41.0,
         3.0 / 41.0, 6.0 / 41.0, 0.0],
        [-1777.0 / 4100.0, 0.0, 0.0, -341.0 / 164.0, 4496.0 / 1025.0, -289.0 / 82.0,
         2193.0 / 4100.0, 51.0 / 82.0, 33.0 / 164.0, 12.0 / 41.0, 0.0, 1.0],
    ],
    b_lower=[41.0 / 840.0, 0.0, 0.0, 0.0, 0.0, 34.0 / 105.0, 9.0 / 35.0, 9.0 / 35.0,
             9.0 / 280.0, 9.0 / 280.0, 41.0 / 840.0, 0.0, 0.0],
    b_higher=[0.0, 0.0, 0.0, 0.0, 0.0, 34.0 / 105.0, 9.0 / 35.0, 9.0 / 35.0,
              9.0 / 280.0, 9.0 / 280.0, 0.0, 41.0 / 840.0, 41.0 / 840.0],
    lower_order=7,
    higher_order=8,
)

COEFFICIENT_SETS: Dict[str, RungeKuttaCoefficients] = {
    coefficients.name: coefficients for coefficients in (_RKF45, _DOPRI54, _RKF78)
}


# =============================================================================
# SETTINGS
# =============================================================================

@dataclass(frozen=True)
class IntegratorSettings:
    """
    Configuration of a variable-step Runge-Kutta integration.

    The sign of ``initial_step`` selects the propagation direction; the
    step bounds apply to its magnitude.

    Attributes
    ----------
    initial_time : float
        Epoch of the initial state [s].
    initial_step : float
        First step attempted [s], non-zero.
    coefficient_set : str
        One of ``rkf45``, ``dopri54``, ``rkf78``.
    minimum_step, maximum_step : float
        Bounds on |h| [s].
    relative_tolerance, absolute_tolerance : float
        Error tolerances; the absolute tolerance must be positive.
    safety_factor : float
        Multiplier on the optimal step-change factor, in (0, 1].
    minimum_factor, maximum_factor : float
        Bounds on the step-change factor per step.
    propagate_higher_order : bool
        Continue with the higher order solution (local extrapolation)
        instead of the error-controlled lower order one.
    """
    initial_time: float = 0.0
    initial_step: float = 10.0
    coefficient_set: str = "rkf78"
    minimum_step: float = 1.0e-3
    maximum_step: float = 1.0e3
    relative_tolerance: float = 1.0e-12
    absolute_tolerance: float = 1.0e-12
    safety_factor: float = 0.8
    minimum_factor: float = 0.1
    maximum_factor: float = 4.0
    propagate_higher_order: bool = False

    def __post_init__(self):
        RungeKuttaCoefficients.get(self.coefficient_set)

        if not np.isfinite(self.initial_step) or self.initial_step == 0.0:
            raise ConfigurationError(f"Initial step must be finite and non-zero, got {self.initial_step}")
        if not 0.0 < self.minimum_step <= self.maximum_step:
            raise ConfigurationError(
                f"Step bounds must satisfy 0 < minimum_step <= maximum_step, "
                f"got [{self.minimum_step}, {self.maximum_step}]"
            )
        if self.relative_tolerance < 0.0 or self.absolute_tolerance <= 0.0:
            raise ConfigurationError(
                f"Tolerances must satisfy rtol >= 0 and atol > 0, "
                f"got rtol={self.relative_tolerance}, atol={self.absolute_tolerance}"
            )
        if not 0.0 < self.safety_factor <= 1.0:
            raise ConfigurationError(f"Safety factor must be in (0, 1], got {self.safety_factor}")
        if not 0.0 < self.minimum_factor < 1.0 < self.maximum_factor:
            raise ConfigurationError(
                f"Step factors must satisfy 0 < minimum_factor < 1 < maximum_factor, "
                f"got [{self.minimum_factor}, {self.maximum_factor}]"
            )

    @property
    def direction(self) -> float:
        return 1.0 if self.initial_step > 0.0 else -1.0

    @property
    def coefficients(self) -> RungeKuttaCoefficients:
        return RungeKuttaCoefficients.get(self.coefficient_set)


# =============================================================================
# INTEGRATOR
# =============================================================================

class IntegratorStatus(Enum):
    """Lifecycle of the integrator."""
    IDLE = auto()
    STEPPING = auto()
    ACCEPTED = auto()
    REJECTED = auto()
    TERMINATED = auto()


class RungeKuttaVariableStepSizeIntegrator:
    """
    Adaptive embedded Runge-Kutta integrator.

    The integrator knows nothing about the meaning of the state vector: a
    concatenation of translational and rotational blocks shares one error
    norm and one step-size decision.

    Parameters
    ----------
    derivative : callable
        f(t, y) -> dy/dt.
    initial_state : np.ndarray
        State at ``settings.initial_time``.
    settings : IntegratorSettings
        Integrator configuration.

    Examples
    --------
    >>> settings = IntegratorSettings(initial_step=0.1, coefficient_set="rkf45")
    >>> integrator = RungeKuttaVariableStepSizeIntegrator(
    ...     lambda t, y: -y, np.array([1.0]), settings)
    >>> t, y = integrator.step()
    """

    def __init__(self, derivative: DerivativeFunction, initial_state: np.ndarray,
                 settings: IntegratorSettings):
        self.derivative = derivative
        self.settings = settings
        self.coefficients = settings.coefficients

        self._time = float(settings.initial_time)
        self._state = np.array(initial_state, dtype=np.float64)
        if self._state.ndim != 1:
            raise ConfigurationError(f"State must be a 1-D vector, got shape {self._state.shape}")

        step = float(np.clip(abs(settings.initial_step), settings.minimum_step,
                             settings.maximum_step))
        self._step_size = settings.direction * step
        self._last_step_size = 0.0
        self._previous_error = 1.0
        self._rejected_last = False
        self._initial_derivative: Optional[np.ndarray] = None

        self.status = IntegratorStatus.IDLE
        self.accepted_steps = 0
        self.rejected_steps = 0
        self.function_evaluations = 0

    # -------------------------------------------------------------------------
    # PROPERTIES
    # -------------------------------------------------------------------------

    @property
    def current_time(self) -> float:
        return self._time

    @property
    def current_state(self) -> np.ndarray:
        return self._state.copy()

    @property
    def step_size(self) -> float:
        """Signed size of the next step to attempt [s]."""
        return self._step_size

    @property
    def last_step_size(self) -> float:
        """Signed size of the last accepted step [s]."""
        return self._last_step_size

    # -------------------------------------------------------------------------
    # STEPPING
    # -------------------------------------------------------------------------

    def _evaluate_stages(self, h: float) -> Tuple[np.ndarray, np.ndarray]:
        coefficients = self.coefficients
        if self._initial_derivative is None:
            self._initial_derivative = np.asarray(
                self.derivative(self._time, self._state), dtype=np.float64)
            self.function_evaluations += 1

        k = np.empty((coefficients.stages, self._state.shape[0]))
        k[0] = self._initial_derivative
        for i in range(1, coefficients.stages):
            stage_state = self._state + h * (coefficients.a[i, :i] @ k[:i])
            k[i] = self.derivative(self._time + coefficients.c[i] * h, stage_state)
        self.function_evaluations += coefficients.stages - 1

        y_lower = self._state + h * (coefficients.b_lower @ k)
        y_higher = self._state + h * (coefficients.b_higher @ k)
        return y_lower, y_higher

    def _error_norm(self, y_lower: np.ndarray, y_higher: np.ndarray) -> float:
        scale = (self.settings.absolute_tolerance
                 + self.settings.relative_tolerance
                 * np.maximum(np.abs(self._state), np.abs(y_higher)))
        return float(np.max(np.abs(y_higher - y_lower) / scale))

    def _accepted_step_factor(self, error: float) -> float:
        settings = self.settings
        p = self.coefficients.lower_order
        if error == 0.0:
            factor = settings.maximum_factor
        else:
            factor = (settings.safety_factor
                      * error ** (-0.7 / (p + 1))
                      * self._previous_error ** (0.4 / (p + 1)))
        factor = min(max(factor, settings.minimum_factor), settings.maximum_factor)
        if self._rejected_last:
            factor = min(factor, 1.0)
        return factor

    def step(self, step_limit: Optional[float] = None) -> Tuple[float, np.ndarray]:
        """
        Take one accepted step, retrying with smaller steps if needed.

        Parameters
        ----------
        step_limit : float, optional
            Largest signed step allowed, e.g. the remaining time to a final
            epoch. May be smaller than ``minimum_step``.

        Returns
        -------
        (time, state) : Tuple[float, np.ndarray]
            Epoch and state after the accepted step.

        Raises
        ------
        StepSizeUnderflowError
            If a rejected step would need a step below ``minimum_step``.
        NonFiniteStateError
            If the stages produce NaN or infinite values.
        """
        if self.status == IntegratorStatus.TERMINATED:
            raise RuntimeError("Integrator has been terminated")

        settings = self.settings
        p = self.coefficients.lower_order

        while True:
            self.status = IntegratorStatus.STEPPING

            h = self._step_size
            capped = step_limit is not None and abs(step_limit) < abs(h)
            if capped:
                h = step_limit

            y_lower, y_higher = self._evaluate_stages(h)
            error = self._error_norm(y_lower, y_higher)

            if not (np.isfinite(error) and np.all(np.isfinite(y_higher))):
                raise NonFiniteStateError(
                    f"Non-finite state while stepping from t={self._time!r} with h={h!r}",
                    time=self._time, state=self._state,
                )

            if error <= 1.0:
                factor = self._accepted_step_factor(error)
                if not capped:
                    new_step = float(np.clip(abs(h) * factor, settings.minimum_step,
                                             settings.maximum_step))
                    self._step_size = settings.direction * new_step

                self._time = self._time + h
                self._state = y_higher if settings.propagate_higher_order else y_lower
                self._last_step_size = h
                self._previous_error = max(error, 1.0e-10)
                self._rejected_last = False
                self._initial_derivative = None

                self.accepted_steps += 1
                self.status = IntegratorStatus.ACCEPTED
                return self._time, self._state.copy()

            factor = max(settings.minimum_factor,
                         settings.safety_factor * error ** (-1.0 / (p + 1)))
            new_step = abs(h) * factor
            self.rejected_steps += 1
            self._rejected_last = True
            self.status = IntegratorStatus.REJECTED

            logger.debug("Rejected step t=%.6f h=%.6e err=%.3e -> h=%.6e",
                         self._time, h, error, new_step)

            if new_step < settings.minimum_step:
                raise StepSizeUnderflowError(
                    f"Step size {new_step:.3e} s fell below minimum {settings.minimum_step:.3e} s "
                    f"(error norm {error:.3e})",
                    time=self._time, state=self._state,
                )
            self._step_size = settings.direction * min(new_step, settings.maximum_step)

    def modify_current_state(self, state: np.ndarray) -> None:
        """Replace the state at the current epoch (after post-processing)."""
        state = np.array(state, dtype=np.float64)
        if state.shape != self._state.shape:
            raise ValueError(f"Expected state of shape {self._state.shape}, got {state.shape}")
        self._state = state
        self._initial_derivative = None

    def terminate(self) -> None:
        self.status = IntegratorStatus.TERMINATED

    def __repr__(self) -> str:
        return (f"RungeKuttaVariableStepSizeIntegrator({self.coefficients.name}, "
                f"t={self._time:.3f}, h={self._step_size:.3e}, status={self.status.name}, "
                f"accepted={self.accepted_steps}, rejected={self.rejected_steps})")
