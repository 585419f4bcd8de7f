#!/usr/bin/env python3
"""
Sparse Maximum-A-Posteriori dynamics estimator

Unknowns d, measurements y with Gaussian priors:
    d ~ N(mu_d, Sigma_d)                 regularization prior
    D d + b_D = 0, cov Sigma_D            equation of motion (floating base only)
    y = Y d + b_Y, cov Sigma_y            sensors

Posterior mean:
    H = Sigma_d^-1 + D' Sigma_D^-1 D + Y' Sigma_y^-1 Y
    g = Sigma_d^-1 mu_d - D' Sigma_D^-1 b_D + Y' Sigma_y^-1 (y - b_Y)
    mu_post = H^-1 g
"""

import logging
import numpy as np
from scipy import sparse
from scipy.sparse.linalg import spsolve
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from .sensors import EstimatorLayout, EstimatorVariant, MeasurementType
from ..utils.math_utils import wrench_transform
from ..utils.robot_model import ArticulatedModel, SensorsList


@dataclass
class MAPEstimatorParameters:
    """Covariance priors of one estimator"""
    prior_mean: float = 0.0                    # mu_dyn_variables
    prior_covariance: float = 1e4              # cov_dyn_variables
    dynamics_covariance: float = 1e-4          # cov_dyn_constraints
    default_measurement_covariance: float = 1e-4
    # Per sensor id (sensor, link or joint name, RCM_SENSOR)
    specific_measurement_covariance: Dict[str, List[float]] = field(default_factory=dict)

    def validate(self, layout: EstimatorLayout) -> Tuple[bool, str]:
        """Check finite means, strictly positive covariances and sizes"""
        if not np.isfinite(self.prior_mean):
            return False, "mu_dyn_variables must be finite"
        for name, value in (
            ('cov_dyn_variables', self.prior_covariance),
            ('cov_dyn_constraints', self.dynamics_covariance),
            ('default_cov_measurements', self.default_measurement_covariance),
        ):
            if not np.isfinite(value) or value <= 0.0:
                return False, f"{name} must be strictly positive, got {value}"

        for id, covariance in self.specific_measurement_covariance.items():
            slots = layout.find_by_id(id)
            if not slots:
                return False, f"no measurement named {id}"
            try:
                covariance = np.asarray(covariance, dtype=float)
            except (TypeError, ValueError):
                return False, f"covariance of {id} must be numeric"
            for slot in slots:
                if covariance.shape != (slot.size,):
                    return False, f"covariance of {id} must have {slot.size} elements"
            if not np.all(np.isfinite(covariance)) or np.any(covariance <= 0.0):
                return False, f"covariance of {id} must be strictly positive"

        return True, ""


class MAPEstimator:
    """
    MAP estimator over a sparse sensor/unknown graph

    One class, two variants:
    - FLOATING_BASE: base and joint accelerations, external wrenches and
      joint torques, constrained by the equation of motion
    - NON_COLLOCATED_EXT_WRENCHES: external wrenches only, tied together by
      the rate-of-change-of-momentum (RCM) measurement

    External wrenches are expressed in the link frame, about the link origin.
    """

    def __init__(
        self,
        model: ArticulatedModel,
        variant: EstimatorVariant,
        sensors: Optional[SensorsList] = None,
        logger: Optional[logging.Logger] = None
    ):
        """
        Initialize estimator

        Args:
            model: Articulated model providing the current state
            variant: Unknown-variable layout
            sensors: Model sensors used as measurements (FLOATING_BASE only)
            logger: Logger for diagnostics
        """
        self.logger = logger or logging.getLogger(__name__)
        self.model = model
        self.variant = variant
        self.layout = EstimatorLayout.from_model(model, variant, sensors)
        self.params = MAPEstimatorParameters()

        n, m = self.layout.sizes()
        self.measurement = np.zeros(m)
        self.estimate = np.zeros(n)

        # Priors
        self._prior_mean = np.zeros(n)
        self._prior_information: Optional[sparse.csc_matrix] = None
        self._measurement_information: Optional[sparse.csc_matrix] = None
        self._dynamics_information: Optional[sparse.csc_matrix] = None

        # Scratch, valid after the last update
        self.D = None
        self.b_D = None
        self.Y = None
        self.b_Y = None

        self.initialized = False

    def initialize(self, params: MAPEstimatorParameters) -> bool:
        """Validate and set the covariance priors"""
        ok, reason = params.validate(self.layout)
        if not ok:
            self.logger.error(f"[MAPEstimator::initialize] Ill-posed priors: {reason}.")
            return False
        self.params = params

        n, m = self.layout.sizes()
        self._prior_mean = np.full(n, params.prior_mean)
        self._prior_information = sparse.identity(n, format='csc') / params.prior_covariance
        self._dynamics_information = sparse.identity(self.layout.nv, format='csc') \
            / params.dynamics_covariance

        variances = np.full(m, params.default_measurement_covariance)
        for slot in self.layout.measurements:
            if slot.id in params.specific_measurement_covariance:
                variances[slot.range] = params.specific_measurement_covariance[slot.id]
        self._measurement_information = sparse.diags(1.0 / variances, format='csc')

        self.initialized = True
        self.logger.debug(
            f"[MAPEstimator::initialize] {self.variant.value}: {n} unknowns, {m} measurements."
        )
        return True

    def is_valid(self) -> bool:
        return self.initialized

    # ------------------------------------------------------------------
    # Measurements
    # ------------------------------------------------------------------

    def clear_measurements(self):
        self.measurement[:] = 0.0

    def set_measurement(self, measurement_type: MeasurementType, id: str, values: Sequence[float]) -> bool:
        """Write the values of one sensor into the measurement vector"""
        slot = self.layout.find(measurement_type, id)
        if slot is None:
            self.logger.error(
                f"[MAPEstimator::set_measurement] No {measurement_type.value} named {id}."
            )
            return False
        try:
            values = np.atleast_1d(np.asarray(values, dtype=float))
        except (TypeError, ValueError):
            values = None
        if values is None or values.shape != (slot.size,) or not np.all(np.isfinite(values)):
            self.logger.error(
                f"[MAPEstimator::set_measurement] {id} expects {slot.size} finite values."
            )
            return False
        self.measurement[slot.range] = values
        return True

    # ------------------------------------------------------------------
    # Model matrices
    # ------------------------------------------------------------------

    def _link_jacobian(self, link: str) -> np.ndarray:
        return self.model.get_frame_jacobian(link, 'local')

    def _dynamics_matrices(self) -> Tuple[sparse.csc_matrix, np.ndarray]:
        """D = [M, -J_1' ... -J_L', -S'], b_D = h"""
        layout = self.layout
        blocks = [sparse.csc_matrix(self.model.get_mass_matrix())]
        for link in layout.link_names:
            blocks.append(sparse.csc_matrix(-self._link_jacobian(link).T))

        S_T = sparse.vstack([
            sparse.csc_matrix((6, layout.num_dofs)),
            sparse.identity(layout.num_dofs, format='csc')
        ])
        blocks.append(-S_T)

        return sparse.hstack(blocks, format='csc'), self.model.get_nonlinear_effects()

    def _measurement_matrices(self) -> Tuple[sparse.csc_matrix, np.ndarray]:
        """Y and b_Y for the current model state"""
        layout = self.layout
        n, m = layout.sizes()
        Y = sparse.lil_matrix((m, n))
        b_Y = np.zeros(m)
        acc = layout.acceleration_range

        for slot in layout.measurements:
            rows = slot.range
            if slot.type == MeasurementType.NET_EXT_WRENCH:
                cols = layout.link_wrench_range(slot.link)
                Y[rows, cols] = np.eye(6)

            elif slot.type == MeasurementType.JOINT_ACCELERATION:
                Y[rows.start, acc.start + 6 + layout.joint_names.index(slot.id)] = 1.0

            elif slot.type == MeasurementType.ACCELEROMETER:
                # Proper acceleration in the link frame: J a + bias - R' g
                R = self.model.get_world_transform(slot.link)[:3, :3]
                Y[rows, acc] = self._link_jacobian(slot.link)[:3, :]
                b_Y[rows] = self.model.get_frame_bias_acceleration(slot.link)[:3] \
                    - R.T @ self.model.gravity

            elif slot.type == MeasurementType.GYROSCOPE:
                # Velocity level, does not depend on the unknowns
                b_Y[rows] = self.model.get_frame_velocity(slot.link, 'local')[3:6]

            elif slot.type == MeasurementType.THREE_AXIS_ANGULAR_ACCELEROMETER:
                Y[rows, acc] = self._link_jacobian(slot.link)[3:6, :]
                b_Y[rows] = self.model.get_frame_bias_acceleration(slot.link)[3:6]

            elif slot.type == MeasurementType.RCM:
                # Sum of external wrenches, in the base frame about its origin
                base_H_world = np.linalg.inv(self.model.get_world_transform(slot.link))
                for link in layout.link_names:
                    base_H_link = base_H_world @ self.model.get_world_transform(link)
                    Y[rows, layout.link_wrench_range(link)] = wrench_transform(
                        base_H_link[:3, :3], base_H_link[:3, 3]
                    )

        return Y.tocsc(), b_Y

    # ------------------------------------------------------------------
    # Estimation
    # ------------------------------------------------------------------

    def update(self) -> bool:
        """
        Compute the posterior mean for the current state and measurements

        Returns:
            True on success; on failure the last estimate is kept
        """
        if not self.initialized:
            self.logger.error("[MAPEstimator::update] The estimator is not initialized.")
            return False

        self.Y, self.b_Y = self._measurement_matrices()
        W_y = self._measurement_information

        H = self._prior_information + self.Y.T @ W_y @ self.Y
        g = self._prior_information @ self._prior_mean \
            + self.Y.T @ (W_y @ (self.measurement - self.b_Y))

        if self.layout.has_dynamics:
            self.D, self.b_D = self._dynamics_matrices()
            W_D = self._dynamics_information
            H = H + self.D.T @ W_D @ self.D
            g = g - self.D.T @ (W_D @ self.b_D)

        estimate = spsolve(sparse.csc_matrix(H), g)
        if not np.all(np.isfinite(estimate)):
            self.logger.error("[MAPEstimator::update] The posterior system could not be solved.")
            return False

        self.estimate = np.asarray(estimate)
        return True

    def get_last_estimate(self) -> np.ndarray:
        return self.estimate.copy()

    def extract_link_ext_wrenches(self) -> Dict[str, np.ndarray]:
        """External wrench of every link, in the link frame"""
        return {
            link: self.estimate[self.layout.link_wrench_range(link)].copy()
            for link in self.layout.link_names
        }

    def extract_joint_torques(self) -> np.ndarray:
        return self.estimate[self.layout.torques_range].copy()

    def extract_accelerations(self) -> np.ndarray:
        return self.estimate[self.layout.acceleration_range].copy()
