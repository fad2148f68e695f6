"""
===============================================================================
ATTITUDE PROPAGATION - Scenario Configuration
===============================================================================
Builds bodies, integrator settings and propagator settings from a YAML
scenario file (see ``config/propagation_config.yaml``).

Top-level sections:
    simulation           initial/final time, save frequency, output path
    integrator           IntegratorSettings fields
    bodies               mass, inertia, gravitational parameter, ephemerides
    propagation          list of translational / rotational blocks
    dependent_variables  list of {kind, body, secondary_body, model_name}
    termination          optional dependent-variable limit added to the
                         final-time condition (first one reached stops)

Every problem in the file is reported as ``ConfigurationError`` before any
integration step is taken.
===============================================================================
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
import yaml

from core.exceptions import ConfigurationError
from core.quaternion import Quaternion
from dynamics.body import Body
from dynamics.environment import (
    AccelerationModel,
    CentralGravityAcceleration,
    ConstantTorque,
    GravityGradientTorque,
    TorqueModel,
)
from dynamics.ephemeris import (
    ConstantEphemeris,
    ConstantRotationalEphemeris,
    SimpleRotationalEphemeris,
)
from propagation.dependent_variables import DependentVariableRequest
from propagation.integrator import IntegratorSettings
from propagation.propagator_settings import (
    MultiTypePropagatorSettings,
    RotationalPropagatorSettings,
    TranslationalPropagatorSettings,
)
from propagation.termination import (
    DependentVariableTermination,
    HybridTermination,
    TerminationSettings,
    TimeTermination,
)

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parents[2] / 'config' / 'propagation_config.yaml'

_INTEGRATOR_KEYS = {
    'initial_step', 'coefficient_set', 'minimum_step', 'maximum_step',
    'relative_tolerance', 'absolute_tolerance', 'safety_factor',
    'minimum_factor', 'maximum_factor', 'propagate_higher_order',
}


def load_config(config_path: Optional[str] = None) -> dict:
    """
    Load a propagation scenario from a YAML file.

    Args:
        config_path: Path to YAML config. Defaults to
                     config/propagation_config.yaml

    Returns:
        Dictionary of scenario parameters
    """
    if config_path is None:
        config_path = str(DEFAULT_CONFIG_PATH)

    logger.info("Loading configuration from: %s", config_path)
    with open(config_path, 'r') as f:
        config = yaml.safe_load(f)

    if not isinstance(config, dict):
        raise ConfigurationError(f"Configuration file {config_path} does not hold a mapping")
    logger.info("Scenario: %s", config.get('simulation', {}).get('name', '<unnamed>'))
    return config


def _section(config: dict, key: str) -> Any:
    if key not in config:
        raise ConfigurationError(f"Missing configuration section '{key}'")
    return config[key]


# =============================================================================
# INTEGRATOR
# =============================================================================

def create_integrator_settings(config: dict) -> IntegratorSettings:
    """IntegratorSettings from the 'integrator' and 'simulation' sections."""
    integrator = dict(_section(config, 'integrator'))
    unknown = set(integrator) - _INTEGRATOR_KEYS
    if unknown:
        raise ConfigurationError(f"Unknown integrator options: {sorted(unknown)}")

    initial_time = float(config.get('simulation', {}).get('initial_time', 0.0))
    kwargs = {key: (value if key in ('coefficient_set', 'propagate_higher_order') else float(value))
              for key, value in integrator.items()}
    return IntegratorSettings(initial_time=initial_time, **kwargs)


# =============================================================================
# BODIES
# =============================================================================

def _inertia_from_config(name: str, body_config: dict) -> Optional[np.ndarray]:
    if 'inertia_tensor' in body_config:
        return np.array(body_config['inertia_tensor'], dtype=np.float64)
    if 'principal_moments' in body_config:
        return np.diag(np.array(body_config['principal_moments'], dtype=np.float64))
    if 'normalized_principal_moments' in body_config:
        if 'mass' not in body_config or 'mean_radius' not in body_config:
            raise ConfigurationError(
                f"Body '{name}': normalized moments need 'mass' and 'mean_radius'")
        scale = float(body_config['mass']) * float(body_config['mean_radius']) ** 2
        return scale * np.diag(np.array(body_config['normalized_principal_moments'],
                                        dtype=np.float64))
    return None


def _ephemeris_from_config(name: str, ephemeris_config: dict):
    kind = ephemeris_config.get('type')
    if kind == 'constant':
        return ConstantEphemeris(
            np.array(ephemeris_config['state'], dtype=np.float64),
            frame_origin=ephemeris_config.get('frame_origin', 'SSB'),
            frame_orientation=ephemeris_config.get('frame_orientation', 'ECLIPJ2000'),
        )
    raise ConfigurationError(f"Body '{name}': unknown ephemeris type {kind!r}")


def _rotational_ephemeris_from_config(name: str, ephemeris_config: dict):
    kind = ephemeris_config.get('type')
    base_frame = ephemeris_config.get('base_frame', 'ECLIPJ2000')
    target_frame = ephemeris_config.get('target_frame', f'{name}_Fixed')
    quaternion = Quaternion.from_vector(
        np.array(ephemeris_config.get('quaternion', [1.0, 0.0, 0.0, 0.0]), dtype=np.float64))

    if kind == 'constant':
        return ConstantRotationalEphemeris(quaternion, base_frame, target_frame)
    if kind == 'simple':
        return SimpleRotationalEphemeris(
            quaternion.conjugate(),
            float(ephemeris_config['rotation_rate']),
            float(ephemeris_config.get('reference_epoch', 0.0)),
            base_frame, target_frame,
        )
    raise ConfigurationError(f"Body '{name}': unknown rotational ephemeris type {kind!r}")


def create_bodies(config: dict) -> Dict[str, Body]:
    """
    Body map from the 'bodies' section.

    Rotational ephemeris quaternions are given body-fixed -> base, in the
    same convention as rotational states.
    """
    bodies: Dict[str, Body] = {}
    for name, body_config in _section(config, 'bodies').items():
        body_config = body_config or {}
        mass = body_config.get('mass')
        mu = body_config.get('gravitational_parameter')
        body = Body(
            name,
            mass=None if mass is None else float(mass),
            inertia_tensor=_inertia_from_config(name, body_config),
            gravitational_parameter=None if mu is None else float(mu),
        )
        if 'ephemeris' in body_config:
            body.ephemeris = _ephemeris_from_config(name, body_config['ephemeris'])
        if 'rotational_ephemeris' in body_config:
            body.rotational_ephemeris = _rotational_ephemeris_from_config(
                name, body_config['rotational_ephemeris'])
        bodies[name] = body
        logger.debug("Created %r", body)
    return bodies


# =============================================================================
# MODELS
# =============================================================================

def _body(bodies: Dict[str, Body], name: str) -> Body:
    if name not in bodies:
        raise ConfigurationError(f"Unknown body '{name}'")
    return bodies[name]


def _acceleration_models(block: dict, bodies: Dict[str, Body]) -> Dict[str, List[AccelerationModel]]:
    models: Dict[str, List[AccelerationModel]] = {}
    for body_name, entries in (block.get('accelerations') or {}).items():
        for entry in entries:
            kind = entry.get('type')
            if kind == 'point_mass_gravity':
                model = CentralGravityAcceleration(
                    _body(bodies, body_name), _body(bodies, entry['body_exerting']),
                    entry.get('gravitational_parameter'), entry.get('name'))
            else:
                raise ConfigurationError(f"Unknown acceleration type {kind!r} on '{body_name}'")
            models.setdefault(body_name, []).append(model)
    return models


def _torque_models(block: dict, bodies: Dict[str, Body]) -> Dict[str, List[TorqueModel]]:
    models: Dict[str, List[TorqueModel]] = {}
    for body_name, entries in (block.get('torques') or {}).items():
        for entry in entries:
            kind = entry.get('type')
            if kind == 'constant':
                model = ConstantTorque(entry['torque'], entry.get('name', 'constant_torque'))
            elif kind == 'gravity_gradient':
                model = GravityGradientTorque(
                    _body(bodies, body_name), _body(bodies, entry['central_body']),
                    entry.get('gravitational_parameter'), entry.get('name'))
            else:
                raise ConfigurationError(f"Unknown torque type {kind!r} on '{body_name}'")
            models.setdefault(body_name, []).append(model)
    return models


# =============================================================================
# PROPAGATION
# =============================================================================

def _dependent_variable(entry: dict) -> DependentVariableRequest:
    try:
        return DependentVariableRequest(
            kind=entry['kind'],
            body=entry['body'],
            secondary_body=entry.get('secondary_body'),
            model_name=entry.get('model_name'),
        )
    except KeyError as exc:
        raise ConfigurationError(f"Dependent variable entry {entry} lacks {exc}") from None


def create_termination_settings(config: dict) -> TerminationSettings:
    """Final-time termination, or a first-true hybrid with a variable limit."""
    simulation = _section(config, 'simulation')
    if 'final_time' not in simulation:
        raise ConfigurationError("Missing 'simulation.final_time'")
    time_condition = TimeTermination(float(simulation['final_time']),
                                     bool(simulation.get('terminate_exactly', True)))

    limit = (config.get('termination') or {}).get('dependent_variable_limit')
    if limit is None:
        return time_condition

    variable_condition = DependentVariableTermination(
        variable=_dependent_variable(limit['variable']),
        limit_value=float(limit['limit_value']),
        use_as_lower_limit=bool(limit.get('use_as_lower_limit', False)),
        component=limit.get('component'),
    )
    return HybridTermination([time_condition, variable_condition], fulfill_single_condition=True)


def create_propagator_settings(config: dict, bodies: Dict[str, Body]) -> MultiTypePropagatorSettings:
    """MultiTypePropagatorSettings from the 'propagation' section."""
    blocks = []
    for block in _section(config, 'propagation'):
        kind = block.get('type')
        if kind == 'translational':
            blocks.append(TranslationalPropagatorSettings(
                central_bodies=block['central_bodies'],
                bodies_to_propagate=block['bodies'],
                initial_states=np.array(block['initial_state'], dtype=np.float64),
                acceleration_models=_acceleration_models(block, bodies),
            ))
        elif kind == 'rotational':
            blocks.append(RotationalPropagatorSettings(
                bodies_to_propagate=block['bodies'],
                initial_states=np.array(block['initial_state'], dtype=np.float64),
                torque_models=_torque_models(block, bodies),
            ))
        else:
            raise ConfigurationError(f"Unknown propagation block type {kind!r}")

    simulation = config.get('simulation', {})
    return MultiTypePropagatorSettings(
        propagator_settings=blocks,
        termination=create_termination_settings(config),
        dependent_variables=[_dependent_variable(e) for e in config.get('dependent_variables') or []],
        save_frequency=int(simulation.get('save_frequency', 1)),
    )


def build_scenario(config: dict) -> Tuple[Dict[str, Body], IntegratorSettings,
                                          MultiTypePropagatorSettings]:
    """Bodies, integrator settings and propagator settings of a scenario."""
    bodies = create_bodies(config)
    integrator_settings = create_integrator_settings(config)
    propagator_settings = create_propagator_settings(config, bodies)
    return bodies, integrator_settings, propagator_settings
