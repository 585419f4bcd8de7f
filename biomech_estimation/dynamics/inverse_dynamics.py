#!/usr/bin/env python3
"""
Human Inverse Dynamics
Two-stage MAP estimation of external wrenches and joint torques

Stage 1 estimates the external wrench of every link from the wrench
sources and the whole-body momentum balance (RCM sensor), on a secondary
model. Stage 2 feeds those wrenches to a floating-base estimator on the
primary model, which returns the joint torques.
"""

import logging
import numpy as np
from typing import Dict, List, Optional

from .map_estimator import MAPEstimator, MAPEstimatorParameters
from .sensors import EstimatorVariant, MeasurementType, RCM_SENSOR_ID
from .wrench_sources import WrenchSource
from ..utils.parameters import ParametersHandler
from ..utils.robot_model import ArticulatedModel, SENSOR_REMOVAL_NAMES


class HumanID:
    """
    Human Inverse Dynamics estimator

    Example:
        hid = HumanID()
        hid.initialize(params, model)
        hid.update_ext_wrenches_measurements({'LeftFoot': w_left, 'RightFoot': w_right})
        hid.solve()
        tau = hid.get_joint_torques()
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)
        self.model: Optional[ArticulatedModel] = None
        self.ext_wrenches_model: Optional[ArticulatedModel] = None
        self.human_mass = 0.0

        self.joint_torques_estimator: Optional[MAPEstimator] = None
        self.ext_wrenches_estimator: Optional[MAPEstimator] = None
        self.wrench_sources: List[WrenchSource] = []

        # Outputs, committed after a successful solve
        self.joint_torques = np.zeros(0)
        self.estimated_ext_wrenches: List[np.ndarray] = []
        self.link_ext_wrenches: Dict[str, np.ndarray] = {}

        self.joint_accelerations = np.zeros(0)
        self.initialized = False

    # ------------------------------------------------------------------
    # Initialization
    # ------------------------------------------------------------------

    def initialize(self, params: ParametersHandler, model: ArticulatedModel) -> bool:
        """
        Build both estimators

        Args:
            params: Configuration with humanMass, JOINT_TORQUES and EXTERNAL_WRENCHES
            model: Primary articulated model, kept in sync by the caller

        Returns:
            True if both estimators are well-posed
        """
        prefix = "[HumanID::initialize]"
        self.initialized = False

        human_mass = params.get_parameter('humanMass')
        if human_mass is None:
            self.logger.error(f"{prefix} Error getting the 'humanMass' parameter.")
            return False
        try:
            human_mass = float(human_mass)
        except (TypeError, ValueError):
            human_mass = float('nan')
        if not (np.isfinite(human_mass) and human_mass > 0.0):
            self.logger.error(f"{prefix} Parameter 'humanMass' must be a positive mass.")
            return False
        self.human_mass = human_mass

        if model is None or not model.is_valid():
            self.logger.error(f"{prefix} Invalid articulated model.")
            return False
        self.model = model

        joint_torques_group = params.get_group('JOINT_TORQUES')
        if joint_torques_group is None:
            self.logger.error(f"{prefix} Error getting the JOINT_TORQUES group.")
            return False
        if not self._initialize_joint_torques_estimator(joint_torques_group):
            self.logger.error(f"{prefix} Error initializing the joint torques estimator.")
            return False

        ext_wrenches_group = params.get_group('EXTERNAL_WRENCHES')
        if ext_wrenches_group is None:
            self.logger.error(f"{prefix} Error getting the EXTERNAL_WRENCHES group.")
            return False
        if not self._initialize_ext_wrenches_estimator(ext_wrenches_group):
            self.logger.error(f"{prefix} Error initializing the external wrenches estimator.")
            return False

        self.joint_torques = np.zeros(model.dofs)
        self.joint_accelerations = np.zeros(model.dofs)
        self.estimated_ext_wrenches = [np.zeros(6) for _ in self.wrench_sources]
        self.link_ext_wrenches = {
            link: np.zeros(6) for link in self.ext_wrenches_estimator.layout.link_names
        }
        self.initialized = True
        return True

    def _initialize_joint_torques_estimator(self, group: ParametersHandler) -> bool:
        prefix = "[HumanID::initialize::joint_torques]"

        removal = group.get_group('SENSOR_REMOVAL')
        if removal is None:
            self.logger.error(f"{prefix} Error getting the 'SENSOR_REMOVAL' group.")
            return False

        unknown = [key for key in removal.keys() if key not in SENSOR_REMOVAL_NAMES.values()]
        if unknown:
            self.logger.error(f"{prefix} Unknown sensor types {unknown} in 'SENSOR_REMOVAL'.")
            return False

        sensors = self.model.sensors.copy()
        for sensor_type, key in SENSOR_REMOVAL_NAMES.items():
            sensor_name = removal.get_parameter(key)
            if sensor_name is None:
                continue
            if sensor_name == '*':
                if not sensors.remove_all_sensors_of_type(sensor_type):
                    self.logger.error(f"{prefix} Error removing all sensors of type {key}.")
                    return False
            elif not sensors.remove_sensor(sensor_type, sensor_name):
                self.logger.warning(f"{prefix} Error removing sensor {sensor_name}, skipping it.")

        defaults = MAPEstimatorParameters()
        estimator_params = self._read_priors(group, defaults, required=False)
        if estimator_params is None:
            return False

        self.joint_torques_estimator = MAPEstimator(
            self.model, EstimatorVariant.FLOATING_BASE, sensors=sensors, logger=self.logger
        )
        return self.joint_torques_estimator.initialize(estimator_params)

    def _initialize_ext_wrenches_estimator(self, group: ParametersHandler) -> bool:
        prefix = "[HumanID::initialize::ext_wrenches]"

        model_path = group.get_parameter('modelPath')
        if model_path is None:
            self.logger.error(f"{prefix} Error getting the 'modelPath' parameter.")
            return False
        try:
            self.ext_wrenches_model = ArticulatedModel.from_urdf(model_path, logger=self.logger)
        except (OSError, ValueError, RuntimeError) as e:
            self.logger.error(f"{prefix} Error loading the model from file {model_path}: {e}")
            return False
        if not self.ext_wrenches_model.set_floating_base(self.model.base_link):
            return False

        source_names = group.get_parameter('wrenchSources')
        if not isinstance(source_names, (list, tuple)):
            self.logger.error(f"{prefix} Error getting the 'wrenchSources' list.")
            return False

        self.wrench_sources = []
        link_names = self.ext_wrenches_model.link_names
        for name in source_names:
            source_group = group.get_group(name)
            if source_group is None:
                self.logger.error(f"{prefix} Error getting the wrench group {name}.")
                return False
            source = WrenchSource.from_parameters(name, source_group, logger=self.logger)
            if source is None:
                return False
            if source.output_frame not in link_names:
                self.logger.error(f"{prefix} Output frame {source.output_frame} is not a model link.")
                return False
            self.wrench_sources.append(source)

        estimator_params = self._read_priors(group, MAPEstimatorParameters(), required=True)
        if estimator_params is None:
            return False

        rcm_covariance = group.get_parameter('cov_measurements_RCM_SENSOR')
        if rcm_covariance is None:
            self.logger.error(f"{prefix} Error getting the 'cov_measurements_RCM_SENSOR' parameter.")
            return False
        estimator_params.specific_measurement_covariance[RCM_SENSOR_ID] = \
            list(np.atleast_1d(rcm_covariance))

        self.ext_wrenches_estimator = MAPEstimator(
            self.ext_wrenches_model,
            EstimatorVariant.NON_COLLOCATED_EXT_WRENCHES,
            logger=self.logger
        )
        return self.ext_wrenches_estimator.initialize(estimator_params)

    def _read_priors(
        self,
        group: ParametersHandler,
        defaults: MAPEstimatorParameters,
        required: bool
    ) -> Optional[MAPEstimatorParameters]:
        """Read mu/cov priors and per-element covariances of a group"""
        prefix = "[HumanID::initialize]"
        values = {}
        for key, default in (
            ('mu_dyn_variables', defaults.prior_mean),
            ('cov_dyn_variables', defaults.prior_covariance),
            ('default_cov_measurements', defaults.default_measurement_covariance),
            ('specificElements', []),
        ):
            value = group.get_parameter(key)
            if value is None:
                if required:
                    self.logger.error(f"{prefix} Error getting the '{key}' parameter.")
                    return None
                value = default
            values[key] = value

        if not isinstance(values['specificElements'], (list, tuple)):
            self.logger.error(f"{prefix} Parameter 'specificElements' must be a list of names.")
            return None
        specific = {}
        for element in values['specificElements']:
            if not isinstance(element, str):
                self.logger.error(f"{prefix} Invalid element {element} in 'specificElements'.")
                return None
            covariance = group.get_parameter(element)
            if covariance is None:
                self.logger.error(f"{prefix} Error getting the '{element}' parameter.")
                return None
            specific[element] = list(np.atleast_1d(covariance))

        try:
            return MAPEstimatorParameters(
                prior_mean=float(values['mu_dyn_variables']),
                prior_covariance=float(values['cov_dyn_variables']),
                dynamics_covariance=float(group.get_parameter(
                    'cov_dyn_constraints', defaults.dynamics_covariance)),
                default_measurement_covariance=float(values['default_cov_measurements']),
                specific_measurement_covariance=specific
            )
        except (TypeError, ValueError) as e:
            self.logger.error(f"{prefix} Invalid prior: {e}.")
            return None

    # ------------------------------------------------------------------
    # Measurements
    # ------------------------------------------------------------------

    def update_ext_wrenches_measurements(self, wrenches: Dict[str, np.ndarray]) -> bool:
        """
        Set the wrench source measurements for the next solve

        Args:
            wrenches: Raw 6D wrenches of the FIXED sources, keyed by output frame

        Returns:
            True if every source could be evaluated
        """
        prefix = "[HumanID::update_ext_wrenches_measurements]"
        if not self.initialized:
            self.logger.error(f"{prefix} The estimator is not initialized.")
            return False

        if not self.ext_wrenches_model.copy_state_from(self.model):
            return False

        if wrenches is None:
            wrenches = {}

        # Evaluate every source before touching the measurement vector
        source_wrenches = []
        for source in self.wrench_sources:
            wrench = source.compute(self.ext_wrenches_model, wrenches)
            if wrench is None or not np.all(np.isfinite(wrench)):
                self.logger.error(f"{prefix} Wrench {source.output_frame} not found.")
                return False
            source_wrenches.append((source.output_frame, wrench))

        estimator = self.ext_wrenches_estimator
        estimator.clear_measurements()
        for frame, wrench in source_wrenches:
            estimator.set_measurement(MeasurementType.NET_EXT_WRENCH, frame, wrench)
        return estimator.set_measurement(MeasurementType.RCM, RCM_SENSOR_ID, self.compute_rcm_in_base_frame())

    def compute_rcm_in_base_frame(self) -> np.ndarray:
        """
        Body weight wrench expected from the sum of external wrenches

        F = -m g applied at the center of mass, expressed in the base frame
        about the base origin.
        """
        world_H_base = self.model.get_base_transform()
        R = world_H_base[:3, :3]
        force = R.T @ (-self.human_mass * self.model.gravity)
        com = R.T @ (self.model.get_center_of_mass() - world_H_base[:3, 3])
        return np.concatenate([force, np.cross(com, force)])

    def set_joint_accelerations(self, joint_accelerations: np.ndarray) -> bool:
        """Joint accelerations used as measurements (zero by default)"""
        try:
            joint_accelerations = np.asarray(joint_accelerations, dtype=float)
        except (TypeError, ValueError):
            joint_accelerations = np.full(0, np.nan)
        if joint_accelerations.shape != self.joint_accelerations.shape \
                or not np.all(np.isfinite(joint_accelerations)):
            self.logger.error(
                f"[HumanID::set_joint_accelerations] Expected {self.joint_accelerations.size} finite values."
            )
            return False
        self.joint_accelerations = joint_accelerations.copy()
        return True

    def update_sensor_measurements(self, measurements: Dict[str, np.ndarray]) -> bool:
        """Readings of the model sensors (accelerometers, gyroscopes) by sensor name"""
        if not self.initialized:
            self.logger.error("[HumanID::update_sensor_measurements] The estimator is not initialized.")
            return False

        layout = self.joint_torques_estimator.layout
        ok = True
        for name, values in measurements.items():
            slots = [
                slot for slot in layout.find_by_id(name)
                if slot.type not in (MeasurementType.NET_EXT_WRENCH, MeasurementType.JOINT_ACCELERATION)
            ]
            if not slots:
                self.logger.error(f"[HumanID::update_sensor_measurements] Unknown sensor {name}.")
                ok = False
                continue
            ok = self.joint_torques_estimator.set_measurement(slots[0].type, name, values) and ok
        return ok

    # ------------------------------------------------------------------
    # Solve
    # ------------------------------------------------------------------

    def solve(self) -> bool:
        """
        Run both estimation stages

        Returns:
            True on success; on failure the previous outputs are kept
        """
        prefix = "[HumanID::solve]"
        if not self.initialized:
            self.logger.error(f"{prefix} The estimator is not initialized.")
            return False

        if not self.ext_wrenches_estimator.update():
            self.logger.error(f"{prefix} Error in the estimation of the external wrenches.")
            return False
        link_wrenches = self.ext_wrenches_estimator.extract_link_ext_wrenches()

        estimator = self.joint_torques_estimator
        for link in estimator.layout.link_names:
            wrench = link_wrenches.get(link, np.zeros(6))
            estimator.set_measurement(MeasurementType.NET_EXT_WRENCH, link, wrench)
        for joint, acceleration in zip(estimator.layout.joint_names, self.joint_accelerations):
            estimator.set_measurement(MeasurementType.JOINT_ACCELERATION, joint, [acceleration])

        if not estimator.update():
            self.logger.error(f"{prefix} Error in the estimation of the joint torques.")
            return False

        self.link_ext_wrenches = link_wrenches
        self.estimated_ext_wrenches = [link_wrenches[s.output_frame].copy() for s in self.wrench_sources]
        self.joint_torques = estimator.extract_joint_torques()
        return True

    # ------------------------------------------------------------------
    # Outputs
    # ------------------------------------------------------------------

    def get_joint_torques(self) -> np.ndarray:
        return self.joint_torques.copy()

    def get_estimated_ext_wrenches(self) -> List[np.ndarray]:
        """Estimated wrench of every source, in configuration order"""
        return [w.copy() for w in self.estimated_ext_wrenches]

    def get_link_ext_wrenches(self) -> Dict[str, np.ndarray]:
        return {link: w.copy() for link, w in self.link_ext_wrenches.items()}
