"""
===============================================================================
ATTITUDE PROPAGATION - Single-Arc Dynamics Simulator
===============================================================================
Orchestrates one propagation arc: state derivative model, variable-step
integrator, termination, dependent variables and result bookkeeping.

The loop executed for every step:

    1. STEP        -- Integrator takes one accepted step of the combined
                      state (all blocks share the error norm and step size).
    2. POSTPROCESS -- Quaternions renormalized; non-finite states are fatal.
    3. COMMIT      -- Accepted state becomes the environment state of every
                      propagated body.
    4. RECORD      -- State and dependent variables saved every
                      ``save_frequency`` accepted steps and at the end.
    5. TERMINATE?  -- Termination settings evaluated on the accepted state.

After a successful run every propagated body receives a new tabulated
ephemeris built from the saved history, replacing whatever it had before.
A failed run leaves the bodies' ephemerides untouched and re-raises the
error with the last accepted epoch.

Lifecycle: INITIALIZED -> INTEGRATING -> TERMINATED (or FAILED).
===============================================================================
"""

import logging
import time
from enum import Enum, auto
from typing import Dict, List, Optional

import numpy as np
import pandas as pd

from core.data_structures import StateHistory
from core.exceptions import ConfigurationError, NonFiniteStateError, PropagationError
from dynamics.body import Body
from dynamics.ephemeris import TabulatedCartesianEphemeris, TabulatedRotationalEphemeris
from dynamics.state_derivative import (
    ROTATIONAL_STATE_SIZE,
    TRANSLATIONAL_STATE_SIZE,
    RotationalStateDerivative,
    StateDerivativeModel,
    TranslationalStateDerivative,
)
from propagation.dependent_variables import DependentVariableSet
from propagation.integrator import IntegratorSettings, RungeKuttaVariableStepSizeIntegrator
from propagation.propagator_settings import PropagatorSettings, as_multi_type
from propagation.termination import (
    TerminationDetails,
    dependent_variable_requests,
    describe,
    evaluate_termination,
    time_step_limit,
)

logger = logging.getLogger(__name__)

_TRANSLATIONAL_COLUMNS = ("x", "y", "z", "vx", "vy", "vz")
_ROTATIONAL_COLUMNS = ("qw", "qx", "qy", "qz", "wx", "wy", "wz")


class SimulatorStatus(Enum):
    INITIALIZED = auto()
    INTEGRATING = auto()
    TERMINATED = auto()
    FAILED = auto()


class SingleArcDynamicsSimulator:
    """
    Propagate the equations of motion over a single arc.

    Parameters
    ----------
    bodies : dict of str -> Body
        Body map. Bodies are not owned: their current states are written
        during the run and their ephemerides replaced at the end.
    integrator_settings : IntegratorSettings
        Integrator configuration; ``initial_time`` is the arc start.
    propagator_settings : PropagatorSettings
        Single-block or multi-type settings.
    set_integrated_result : bool, optional
        Hand the propagated history to the bodies as tabulated ephemerides
        (default True).
    run_immediately : bool, optional
        Integrate in the constructor (default True).
    progress_interval : int, optional
        Log progress every this many accepted steps.

    Attributes
    ----------
    status : SimulatorStatus
        Lifecycle state.
    termination_details : TerminationDetails or None
        Why the last run stopped.
    """

    def __init__(self, bodies: Dict[str, Body], integrator_settings: IntegratorSettings,
                 propagator_settings: PropagatorSettings, set_integrated_result: bool = True,
                 run_immediately: bool = True, progress_interval: int = 10000) -> None:
        if not isinstance(integrator_settings, IntegratorSettings):
            raise ConfigurationError("integrator_settings must be an IntegratorSettings instance")

        self.bodies = bodies
        self.integrator_settings = integrator_settings
        self.propagator_settings = as_multi_type(propagator_settings)
        self.set_integrated_result = set_integrated_result
        self.progress_interval = progress_interval

        self.state_derivative_model = StateDerivativeModel(
            bodies, self.propagator_settings.create_state_derivatives(bodies))

        acceleration_models = self.propagator_settings.acceleration_models
        torque_models = self.propagator_settings.torque_models
        self.dependent_variables = DependentVariableSet(
            self.propagator_settings.dependent_variables, bodies,
            acceleration_models, torque_models)
        for request in dependent_variable_requests(self.propagator_settings.termination):
            self.dependent_variables.add(request, bodies, acceleration_models, torque_models)

        self.integrator: Optional[RungeKuttaVariableStepSizeIntegrator] = None
        self.status = SimulatorStatus.INITIALIZED
        self.termination_details: Optional[TerminationDetails] = None
        self._state_history = StateHistory(self.state_derivative_model.state_size)
        self._dependent_variable_history: Optional[StateHistory] = None

        logger.info("SingleArcDynamicsSimulator created.  %r", self.state_derivative_model)

        if run_immediately:
            self.integrate_equations_of_motion()

    # =========================================================================
    # INTEGRATION LOOP
    # =========================================================================

    def _record(self, epoch: float, state: np.ndarray) -> None:
        self._state_history.append(epoch, state)
        if self._dependent_variable_history is not None:
            self._dependent_variable_history.append(epoch, self.dependent_variables.evaluate(epoch))

    def _is_terminated(self, epoch: float, state: np.ndarray, direction: float) -> bool:
        return evaluate_termination(
            self.propagator_settings.termination, epoch, state,
            lambda request: self.dependent_variables.evaluate_single(request, epoch),
            direction,
        )

    def integrate_equations_of_motion(self, initial_states: Optional[np.ndarray] = None) -> None:
        """
        Run the propagation from the initial states.

        Parameters
        ----------
        initial_states : np.ndarray, optional
            Override of the concatenated initial state.

        Raises
        ------
        PropagationError
            If integration fails (step-size underflow, non-finite state).
            Logged with the last accepted epoch and re-raised.
        """
        settings = self.propagator_settings
        model = self.state_derivative_model
        direction = self.integrator_settings.direction

        if initial_states is None:
            initial_states = settings.initial_states
        initial_states = np.asarray(initial_states, dtype=np.float64)
        if initial_states.shape != (model.state_size,):
            raise ConfigurationError(
                f"Initial state has shape {initial_states.shape}, expected ({model.state_size},)"
            )

        self._state_history = StateHistory(model.state_size)
        self._dependent_variable_history = (
            StateHistory(self.dependent_variables.size) if self.dependent_variables.size else None)
        self.termination_details = None

        epoch = float(self.integrator_settings.initial_time)
        state = model.postprocess_state(initial_states)
        model.commit(epoch, state)

        self.integrator = RungeKuttaVariableStepSizeIntegrator(
            model, state, self.integrator_settings)
        self._record(epoch, state)

        logger.info("Propagation started.  t0=%.3f s  terminate on %s",
                    epoch, describe(settings.termination))
        self.status = SimulatorStatus.INTEGRATING
        wall_start = time.time()

        step_count = 0
        recorded_last = True
        terminated = self._is_terminated(epoch, state, direction)

        try:
            while not terminated:
                step_limit = time_step_limit(settings.termination, epoch, direction)
                new_epoch, new_state = self.integrator.step(step_limit)

                new_state = model.postprocess_state(new_state)
                if not np.all(np.isfinite(new_state)):
                    raise NonFiniteStateError(
                        f"Non-finite state after step to t={new_epoch!r}",
                        time=epoch, state=state,
                    )
                self.integrator.modify_current_state(new_state)
                model.commit(new_epoch, new_state)
                epoch, state = new_epoch, new_state
                step_count += 1

                terminated = self._is_terminated(epoch, state, direction)
                recorded_last = terminated or step_count % settings.save_frequency == 0
                if recorded_last:
                    self._record(epoch, state)

                if step_count % self.progress_interval == 0:
                    logger.info("Step %d  t=%.3f s  h=%.3e s  wall=%.1f s",
                                step_count, epoch, self.integrator.last_step_size,
                                time.time() - wall_start)
        except PropagationError as exc:
            self.status = SimulatorStatus.FAILED
            logger.error("Propagation failed after %d steps: %s", step_count, exc)
            raise

        if not recorded_last:
            self._record(epoch, state)

        self.integrator.terminate()
        self.status = SimulatorStatus.TERMINATED
        self.termination_details = TerminationDetails(
            settings=settings.termination, time=epoch, reached_final_condition=True)

        logger.info(
            "Propagation complete.  %d accepted / %d rejected steps, %d evaluations, "
            "t=%.3f s, %.2f s wall time.",
            self.integrator.accepted_steps, self.integrator.rejected_steps,
            self.integrator.function_evaluations, epoch, time.time() - wall_start,
        )

        if self.set_integrated_result:
            self._set_integrated_result()

    # =========================================================================
    # EPHEMERIS HANDOFF
    # =========================================================================

    def _set_integrated_result(self) -> None:
        """Replace propagated bodies' ephemerides with the saved history."""
        times, states = self._state_history.to_array()
        if times.shape[0] < 2:
            logger.warning("Only %d saved epoch(s); ephemerides not updated", times.shape[0])
            return

        model = self.state_derivative_model
        for block, block_slice in zip(model.blocks, model.block_slices):
            block_states = states[:, block_slice]
            for index, body in enumerate(block.propagated_bodies):
                if isinstance(block, TranslationalStateDerivative):
                    start = index * TRANSLATIONAL_STATE_SIZE
                    orientation = (body.ephemeris.frame_orientation
                                   if body.ephemeris is not None else "ECLIPJ2000")
                    body.ephemeris = TabulatedCartesianEphemeris(
                        times, block_states[:, start:start + TRANSLATIONAL_STATE_SIZE],
                        frame_origin=block.central_bodies[index],
                        frame_orientation=orientation,
                    )
                elif isinstance(block, RotationalStateDerivative):
                    start = index * ROTATIONAL_STATE_SIZE
                    previous = body.rotational_ephemeris
                    body.rotational_ephemeris = TabulatedRotationalEphemeris(
                        times, block_states[:, start:start + ROTATIONAL_STATE_SIZE],
                        base_frame=previous.base_frame if previous is not None else "ECLIPJ2000",
                        target_frame=(previous.target_frame if previous is not None
                                      else f"{body.name}_Fixed"),
                    )
                logger.info("Ephemeris handoff: %s %s ephemeris <- %d epochs",
                            body.name, block.state_type, times.shape[0])

    # =========================================================================
    # RESULTS
    # =========================================================================

    @property
    def state_history(self) -> Dict[float, np.ndarray]:
        """Time-ordered ``{epoch: concatenated state}``."""
        return self._state_history.as_dict()

    @property
    def dependent_variable_history(self) -> Dict[float, np.ndarray]:
        """Time-ordered ``{epoch: dependent variables}`` in request order."""
        if self._dependent_variable_history is None:
            return {}
        return self._dependent_variable_history.as_dict()

    @property
    def function_evaluations(self) -> int:
        return 0 if self.integrator is None else self.integrator.function_evaluations

    def state_column_names(self) -> List[str]:
        names: List[str] = []
        for block in self.state_derivative_model.blocks:
            columns = (_TRANSLATIONAL_COLUMNS if isinstance(block, TranslationalStateDerivative)
                       else _ROTATIONAL_COLUMNS)
            for body_name in block.bodies_to_propagate:
                names.extend(f"{body_name}_{column}" for column in columns)
        return names

    def get_state_history(self) -> pd.DataFrame:
        """State history as a DataFrame indexed by time."""
        times, states = self._state_history.to_array()
        df = pd.DataFrame(states, columns=self.state_column_names())
        df.insert(0, 'time', times)
        df.set_index('time', inplace=True)
        return df

    def get_dependent_variable_history(self) -> pd.DataFrame:
        """Dependent variables as a DataFrame indexed by time."""
        if self._dependent_variable_history is None:
            logger.warning("No dependent variables recorded.")
            return pd.DataFrame()
        times, values = self._dependent_variable_history.to_array()
        df = pd.DataFrame(values, columns=self.dependent_variables.column_names())
        df.insert(0, 'time', times)
        df.set_index('time', inplace=True)
        return df

    def save_state_history(self, filepath: str, include_dependent_variables: bool = True) -> None:
        """
        Save the state history (and dependent variables) to a CSV file.

        Parameters
        ----------
        filepath : str
            Output file path (e.g., 'output/state_history.csv').
        include_dependent_variables : bool
            Append the dependent-variable columns.
        """
        df = self.get_state_history()
        if include_dependent_variables and self._dependent_variable_history is not None:
            df = df.join(self.get_dependent_variable_history())
        df.to_csv(filepath)
        logger.info("State history saved to %s  (%d records)", filepath, len(df))

    def __repr__(self) -> str:
        return (f"SingleArcDynamicsSimulator(status={self.status.name}, "
                f"size={self.state_derivative_model.state_size}, "
                f"records={len(self._state_history)})")
