"""
===============================================================================
ATTITUDE PROPAGATION - Termination Settings
===============================================================================
When a propagation stops. Termination settings form a closed set of
variants, all handled by ``evaluate_termination``:

    TimeTermination               Final epoch reached (optionally exactly).
    CustomTermination             User predicate of (time, state).
    DependentVariableTermination  Dependent variable crosses a limit.
    HybridTermination             Any / all of a set of the above.

Conditions are evaluated after accepted steps only. Reaching a
termination condition is the normal end of a propagation, not an error.
===============================================================================
"""

from dataclasses import dataclass
from typing import Callable, Iterator, Optional, Sequence, Union

import numpy as np

from core.exceptions import ConfigurationError
from propagation.dependent_variables import DependentVariableRequest

# Relative slack on the final epoch; a capped last step lands within
# rounding of the requested epoch.
_TIME_TOLERANCE = 1.0e-13


@dataclass(frozen=True)
class TimeTermination:
    """
    Stop at ``final_time``.

    With ``terminate_exactly`` the last step is shortened so that the final
    saved epoch equals ``final_time``; otherwise the propagation stops at the
    first accepted step beyond it.
    """
    final_time: float
    terminate_exactly: bool = True


@dataclass(frozen=True)
class CustomTermination:
    """Stop when ``condition(time, state)`` returns True."""
    condition: Callable[[float, np.ndarray], bool]


@dataclass(frozen=True)
class DependentVariableTermination:
    """
    Stop when a dependent variable crosses ``limit_value``.

    Attributes
    ----------
    variable : DependentVariableRequest
        Variable to monitor.
    limit_value : float
        Threshold.
    use_as_lower_limit : bool
        True: stop when the value drops below the limit. False: stop when
        it exceeds the limit.
    component : int, optional
        Component of a vector variable; required when the variable is not
        scalar.
    """
    variable: DependentVariableRequest
    limit_value: float
    use_as_lower_limit: bool
    component: Optional[int] = None


@dataclass(frozen=True)
class HybridTermination:
    """
    Combination of termination settings.

    ``fulfill_single_condition`` selects first-true (any) instead of
    all-true semantics.
    """
    conditions: Sequence['TerminationSettings']
    fulfill_single_condition: bool = True

    def __post_init__(self):
        if not self.conditions:
            raise ConfigurationError("Hybrid termination needs at least one condition")


TerminationSettings = Union[TimeTermination, CustomTermination,
                            DependentVariableTermination, HybridTermination]

VariableEvaluator = Callable[[DependentVariableRequest], np.ndarray]


def evaluate_termination(settings: TerminationSettings, time: float, state: np.ndarray,
                         dependent_variable: Optional[VariableEvaluator] = None,
                         direction: float = 1.0) -> bool:
    """
    Decide whether a propagation stops at (time, state).

    Parameters
    ----------
    settings : TerminationSettings
        Condition to evaluate.
    time : float
        Epoch of the accepted step [s].
    state : np.ndarray
        Propagated state at ``time``.
    dependent_variable : callable, optional
        Returns the current value of a dependent variable request; required
        for ``DependentVariableTermination``.
    direction : float
        +1 for forward, -1 for backward propagation.

    Raises
    ------
    TypeError
        For an object that is not one of the termination variants.
    """
    if isinstance(settings, TimeTermination):
        slack = _TIME_TOLERANCE * max(1.0, abs(settings.final_time))
        return direction * (time - settings.final_time) >= -slack

    if isinstance(settings, CustomTermination):
        return bool(settings.condition(time, state))

    if isinstance(settings, DependentVariableTermination):
        if dependent_variable is None:
            raise ConfigurationError("Dependent-variable termination needs a variable evaluator")
        value = np.atleast_1d(dependent_variable(settings.variable))
        if settings.component is not None:
            value = value[settings.component]
        elif value.shape[0] != 1:
            raise ConfigurationError(
                f"Termination on vector variable {settings.variable} needs a component index"
            )
        else:
            value = value[0]
        if settings.use_as_lower_limit:
            return bool(value < settings.limit_value)
        return bool(value > settings.limit_value)

    if isinstance(settings, HybridTermination):
        results = [evaluate_termination(condition, time, state, dependent_variable, direction)
                   for condition in settings.conditions]
        return any(results) if settings.fulfill_single_condition else all(results)

    raise TypeError(f"Unsupported termination settings: {type(settings).__name__}")


def time_step_limit(settings: TerminationSettings, time: float,
                    direction: float = 1.0) -> Optional[float]:
    """
    Largest signed step that does not overshoot an exact final time.

    Returns None when no exact time condition applies. For all-true hybrid
    settings the step is not limited: an intermediate final time need not
    stop the propagation.
    """
    if isinstance(settings, TimeTermination):
        if not settings.terminate_exactly:
            return None
        remaining = settings.final_time - time
        if direction * remaining <= 0.0:
            return None
        return remaining

    if isinstance(settings, HybridTermination) and settings.fulfill_single_condition:
        limits = [time_step_limit(condition, time, direction) for condition in settings.conditions]
        limits = [limit for limit in limits if limit is not None]
        if not limits:
            return None
        return min(limits, key=abs)

    return None


def dependent_variable_requests(settings: TerminationSettings) -> Iterator[DependentVariableRequest]:
    """All dependent variables a termination setting needs, depth-first."""
    if isinstance(settings, DependentVariableTermination):
        yield settings.variable
    elif isinstance(settings, HybridTermination):
        for condition in settings.conditions:
            yield from dependent_variable_requests(condition)


def describe(settings: TerminationSettings) -> str:
    """Short human-readable description for logs."""
    if isinstance(settings, TimeTermination):
        return f"time >= {settings.final_time}"
    if isinstance(settings, CustomTermination):
        return f"custom({getattr(settings.condition, '__name__', 'condition')})"
    if isinstance(settings, DependentVariableTermination):
        relation = "<" if settings.use_as_lower_limit else ">"
        return f"{settings.variable.kind.value} {relation} {settings.limit_value}"
    if isinstance(settings, HybridTermination):
        joiner = " or " if settings.fulfill_single_condition else " and "
        return "(" + joiner.join(describe(c) for c in settings.conditions) + ")"
    raise TypeError(f"Unsupported termination settings: {type(settings).__name__}")


@dataclass
class TerminationDetails:
    """Why and where a propagation stopped."""
    settings: TerminationSettings
    time: float
    reached_final_condition: bool

    @property
    def description(self) -> str:
        return describe(self.settings)
