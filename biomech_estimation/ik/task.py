#!/usr/bin/env python3
"""
Task definitions for the inverse kinematics QP
Each task turns a measurement into a velocity-level objective on nu
"""

import logging
import numpy as np
import pinocchio as pin
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Dict, List, Optional, Type

from .constraints import JointLimitConstraint
from ..utils.math_utils import is_rotation_matrix
from ..utils.parameters import ParametersHandler
from ..utils.robot_model import ArticulatedModel


class TaskPriority(IntEnum):
    """Priority tiers of the task composer"""
    HIGH = 0   # Equality constraint of the QP
    LOW = 1    # Weighted cost term


class TaskType(Enum):
    """Task types accepted in the configuration"""
    SO3_TASK = 'SO3Task'
    GRAVITY_TASK = 'GravityTask'
    FLOOR_CONTACT_TASK = 'FloorContactTask'
    JOINT_REGULARIZATION_TASK = 'JointRegularizationTask'
    JOINT_CONSTRAINT_TASK = 'JointConstraintTask'


@dataclass
class TaskContribution:
    """
    Rows contributed by a task to one QP solve

    Equality/cost rows: A @ nu ~= b, weighted by ``weight``.
    Inequality rows: lower <= A @ nu <= upper.
    """
    A: np.ndarray
    b: Optional[np.ndarray] = None
    weight: Optional[np.ndarray] = None
    lower: Optional[np.ndarray] = None
    upper: Optional[np.ndarray] = None

    @property
    def is_inequality(self) -> bool:
        return self.lower is not None


def _parse_weight(value, dim: int, default: float) -> Optional[np.ndarray]:
    """Scalar or per-row weight, None if malformed"""
    if value is None:
        return np.full(dim, default)
    try:
        weight = np.atleast_1d(np.asarray(value, dtype=float))
    except (TypeError, ValueError):
        return None
    if weight.size == 1:
        weight = np.full(dim, weight[0])
    if weight.shape != (dim,) or np.any(weight < 0) or not np.all(np.isfinite(weight)):
        return None
    return weight


def _as_vector(value, size: int) -> Optional[np.ndarray]:
    """Finite vector of the given size, None if malformed"""
    try:
        vector = np.asarray(value, dtype=float)
    except (TypeError, ValueError):
        return None
    if vector.shape != (size,) or not np.all(np.isfinite(vector)):
        return None
    return vector


class Task(ABC):
    """
    Abstract base class for inverse kinematics tasks

    Every task exposes the same four capabilities:
    - bind(model): attach to the articulated model
    - initialize(params): read its configuration group
    - set_set_point(...): receive the per-cycle target
    - contribution(dt): rows for the current QP solve
    """

    default_weight = 1.0
    default_priority = TaskPriority.LOW

    def __init__(
        self,
        name: str,
        dim: int,
        logger: Optional[logging.Logger] = None
    ):
        """
        Initialize task

        Args:
            name: Task name for identification
            dim: Task dimension (number of rows)
            logger: Logger for diagnostics
        """
        self.name = name
        self.dim = dim
        self.logger = logger or logging.getLogger(__name__)
        self.model: Optional[ArticulatedModel] = None
        self.weight = np.full(dim, self.default_weight)
        self.priority = self.default_priority
        self.node_number: Optional[int] = None

    def bind(self, model: ArticulatedModel) -> bool:
        """Attach the task to a model"""
        if model is None or not model.is_valid():
            self.logger.error(f"[{self.__class__.__name__}::bind] Invalid model for task {self.name}.")
            return False
        self.model = model
        return True

    def initialize(self, params: ParametersHandler) -> bool:
        """Read weight, priority and node number; subclasses read the rest"""
        prefix = f"[{self.__class__.__name__}::initialize]"
        if self.model is None:
            self.logger.error(f"{prefix} Task {self.name} must be bound to a model first.")
            return False

        weight = _parse_weight(params.get_parameter('weight'), self.dim, self.default_weight)
        if weight is None:
            self.logger.error(f"{prefix} Invalid weight for task {self.name}.")
            return False
        self.weight = weight

        priority = params.get_parameter('priority', int(self.default_priority))
        try:
            self.priority = TaskPriority(int(priority))
        except (TypeError, ValueError):
            self.logger.error(f"{prefix} Invalid priority {priority} for task {self.name}.")
            return False

        node_number = params.get_parameter('node_number')
        try:
            self.node_number = int(node_number) if node_number is not None else None
        except (TypeError, ValueError):
            self.logger.error(f"{prefix} Invalid node_number {node_number} for task {self.name}.")
            return False
        return True

    @abstractmethod
    def set_set_point(self, *args, **kwargs) -> bool:
        """Push the per-cycle target"""
        pass

    @abstractmethod
    def contribution(self, dt: float) -> TaskContribution:
        """Rows for the current QP solve"""
        pass

    def _read_float(self, params: ParametersHandler, key: str, default: float) -> Optional[float]:
        """Finite float parameter, None (logged) if malformed"""
        value = params.get_parameter(key, default)
        try:
            value = float(value)
        except (TypeError, ValueError):
            value = float('nan')
        if not np.isfinite(value):
            self.logger.error(
                f"[{self.__class__.__name__}::initialize] Invalid {key} {params.get_parameter(key)} "
                f"for task {self.name}."
            )
            return None
        return value

    def _require_frame(self, params: ParametersHandler, key: str = 'frame_name') -> Optional[str]:
        frame = params.get_parameter(key)
        prefix = f"[{self.__class__.__name__}::initialize]"
        if frame is None:
            self.logger.error(f"{prefix} Parameter {key} of the {self.name} task is missing.")
            return None
        if not self.model.frame_exists(frame):
            self.logger.error(f"{prefix} Frame {frame} of the {self.name} task is not in the model.")
            return None
        return frame

    def __repr__(self):
        return f"{self.__class__.__name__}('{self.name}', dim={self.dim}, priority={self.priority.name})"


class OrientationTask(Task):
    """
    Frame orientation tracking task (SO3Task)

    b = omega_des + kp * log3(R_des @ R^T), rows = world angular Jacobian
    """

    default_weight = 10.0

    def __init__(self, name: str, logger: Optional[logging.Logger] = None):
        super().__init__(name, dim=3, logger=logger)
        self.frame_name: Optional[str] = None
        self.kp = 10.0
        self.target_rotation = np.eye(3)
        self.target_angular_velocity = np.zeros(3)

    def initialize(self, params: ParametersHandler) -> bool:
        if not super().initialize(params):
            return False
        self.frame_name = self._require_frame(params)
        if self.frame_name is None:
            return False
        kp = self._read_float(params, 'kp_angular', self.kp)
        if kp is None:
            return False
        self.kp = kp
        return True

    def set_set_point(
        self,
        rotation: np.ndarray,
        angular_velocity: Optional[np.ndarray] = None
    ) -> bool:
        """Set desired world orientation and angular velocity"""
        if not is_rotation_matrix(rotation):
            self.logger.error(f"[OrientationTask::set_set_point] Invalid rotation for task {self.name}.")
            return False
        if angular_velocity is None:
            angular_velocity = np.zeros(3)
        angular_velocity = _as_vector(angular_velocity, 3)
        if angular_velocity is None:
            self.logger.error(
                f"[OrientationTask::set_set_point] Invalid angular velocity for task {self.name}."
            )
            return False

        self.target_rotation = np.array(rotation, dtype=float)
        self.target_angular_velocity = angular_velocity.copy()
        return True

    def rotation_error(self) -> np.ndarray:
        R = self.model.get_world_transform(self.frame_name)[:3, :3]
        return pin.log3(self.target_rotation @ R.T)

    def contribution(self, dt: float) -> TaskContribution:
        J = self.model.get_frame_jacobian(self.frame_name)[3:6, :]
        b = self.target_angular_velocity + self.kp * self.rotation_error()
        return TaskContribution(A=J, b=b, weight=self.weight)


class GravityTask(Task):
    """
    Align the frame with the measured vertical (roll and pitch only)

    The measured vertical in the frame is d = R_des^T e_z; the world
    rotation bringing R @ d onto e_z is (R @ d) x e_z, whose Z component is
    always zero, so only the first two angular rows are used.
    """

    default_weight = 10.0

    def __init__(self, name: str, logger: Optional[logging.Logger] = None):
        super().__init__(name, dim=2, logger=logger)
        self.frame_name: Optional[str] = None
        self.kp = 10.0
        self.target_vertical = np.array([0.0, 0.0, 1.0])

    def initialize(self, params: ParametersHandler) -> bool:
        if not super().initialize(params):
            return False
        self.frame_name = self._require_frame(params, 'target_frame_name') \
            if params.has('target_frame_name') else self._require_frame(params)
        if self.frame_name is None:
            return False
        kp = self._read_float(params, 'kp', self.kp)
        if kp is None:
            return False
        self.kp = kp
        return True

    def set_set_point(self, rotation: np.ndarray) -> bool:
        """Set the desired world orientation; only its vertical is used"""
        if not is_rotation_matrix(rotation):
            self.logger.error(f"[GravityTask::set_set_point] Invalid rotation for task {self.name}.")
            return False
        self.target_vertical = np.asarray(rotation, dtype=float).T @ np.array([0.0, 0.0, 1.0])
        return True

    def alignment_error(self) -> np.ndarray:
        R = self.model.get_world_transform(self.frame_name)[:3, :3]
        return np.cross(R @ self.target_vertical, np.array([0.0, 0.0, 1.0]))

    def contribution(self, dt: float) -> TaskContribution:
        J = self.model.get_frame_jacobian(self.frame_name)[3:5, :]
        b = self.kp * self.alignment_error()[:2]
        return TaskContribution(A=J, b=b, weight=self.weight)


class FloorContactTask(Task):
    """
    Keep a frame on the floor while it bears weight

    Contact policy (force hysteresis):
    - enters contact when vertical_force >= vertical_force_threshold
    - leaves contact when vertical_force < vertical_force_threshold * release_ratio
    On contact onset the horizontal position is latched and the target is
    (x0, y0, floor_height). The task weight is zero out of contact.
    """

    default_weight = 10.0

    def __init__(self, name: str, logger: Optional[logging.Logger] = None):
        super().__init__(name, dim=3, logger=logger)
        self.frame_name: Optional[str] = None
        self.kp = 10.0
        self.vertical_force_threshold = 40.0
        self.release_ratio = 0.5
        self.floor_height = 0.0
        self.in_contact = False
        self.vertical_force = 0.0
        self.target_position = np.zeros(3)

    def initialize(self, params: ParametersHandler) -> bool:
        if not super().initialize(params):
            return False
        self.frame_name = self._require_frame(params)
        if self.frame_name is None:
            return False
        values = {}
        for key, default in (
            ('kp_linear', self.kp),
            ('vertical_force_threshold', self.vertical_force_threshold),
            ('release_ratio', self.release_ratio),
            ('floor_height', self.floor_height),
        ):
            values[key] = self._read_float(params, key, default)
            if values[key] is None:
                return False
        self.kp = values['kp_linear']
        self.vertical_force_threshold = values['vertical_force_threshold']
        self.release_ratio = values['release_ratio']
        self.floor_height = values['floor_height']
        if not 0.0 <= self.release_ratio <= 1.0:
            self.logger.error(
                f"[FloorContactTask::initialize] release_ratio of task {self.name} must be in [0, 1]."
            )
            return False
        return True

    def set_set_point(self, vertical_force: float) -> bool:
        """Update the contact state from the measured vertical force"""
        try:
            force = float(vertical_force)
        except (TypeError, ValueError):
            force = float('nan')
        if not np.isfinite(force):
            self.logger.error(f"[FloorContactTask::set_set_point] Invalid force for task {self.name}.")
            return False
        self.vertical_force = force

        if self.in_contact:
            self.in_contact = force >= self.vertical_force_threshold * self.release_ratio
        elif force >= self.vertical_force_threshold:
            self.in_contact = True
            position = self.model.get_world_transform(self.frame_name)[:3, 3]
            self.target_position = np.array([position[0], position[1], self.floor_height])

        return True

    def active_weight(self) -> np.ndarray:
        return self.weight if self.in_contact else np.zeros(self.dim)

    def contribution(self, dt: float) -> TaskContribution:
        J = self.model.get_frame_jacobian(self.frame_name)[:3, :]
        position = self.model.get_world_transform(self.frame_name)[:3, 3]
        b = self.kp * (self.target_position - position)
        return TaskContribution(A=J, b=b, weight=self.active_weight())


class JointRegularizationTask(Task):
    """Joint position regularization task: s_dot = kp * (s_ref - s)"""

    default_weight = 1.0

    def __init__(self, name: str, num_joints: int, logger: Optional[logging.Logger] = None):
        super().__init__(name, dim=num_joints, logger=logger)
        self.num_joints = num_joints
        self.kp = 1.0
        self.reference = np.zeros(num_joints)
        self.target_position = np.zeros(num_joints)

    def initialize(self, params: ParametersHandler) -> bool:
        if not super().initialize(params):
            return False
        kp = self._read_float(params, 'kp', self.kp)
        if kp is None:
            return False
        self.kp = kp
        reference = params.get_parameter('reference')
        if reference is not None:
            reference = _as_vector(reference, self.num_joints)
            if reference is None:
                self.logger.error(
                    f"[JointRegularizationTask::initialize] reference of task {self.name} must "
                    f"have {self.num_joints} elements."
                )
                return False
            self.reference = reference
        self.target_position = self.reference.copy()
        return True

    def set_set_point(self, position: Optional[np.ndarray] = None) -> bool:
        """Set target joint position (configured reference when omitted)"""
        if position is None:
            position = self.reference
        position = _as_vector(position, self.num_joints)
        if position is None:
            self.logger.error(
                f"[JointRegularizationTask::set_set_point] Expected {self.num_joints} joint positions."
            )
            return False
        self.target_position = position.copy()
        return True

    def contribution(self, dt: float) -> TaskContribution:
        J = np.zeros((self.num_joints, self.model.nv))
        # Identity for joint velocities
        J[:, 6:6 + self.num_joints] = np.eye(self.num_joints)

        s = self.model.q[7:7 + self.num_joints]
        b = self.kp * (self.target_position - s)
        return TaskContribution(A=J, b=b, weight=self.weight)


class JointConstraintTask(Task):
    """Joint limits as inequality rows, always enforced"""

    default_priority = TaskPriority.HIGH

    def __init__(self, name: str, num_joints: int, logger: Optional[logging.Logger] = None):
        super().__init__(name, dim=num_joints, logger=logger)
        self.num_joints = num_joints
        self.constraint: Optional[JointLimitConstraint] = None

    def initialize(self, params: ParametersHandler) -> bool:
        if not super().initialize(params):
            return False
        prefix = "[JointConstraintTask::initialize]"

        joint_names = self.model.joint_names
        selected = params.get_parameter('joints_list', joint_names)
        if not isinstance(selected, (list, tuple)):
            self.logger.error(f"{prefix} joints_list of task {self.name} must be a list of joint names.")
            return False
        missing = [j for j in selected if j not in joint_names]
        if missing:
            self.logger.error(f"{prefix} Unknown joints {missing} in task {self.name}.")
            return False
        indices = [joint_names.index(j) for j in selected]

        model_lower, model_upper, model_velocity = self.model.get_joint_limits()
        lower = _as_vector(params.get_parameter('lower_bounds', model_lower[indices]), len(indices))
        upper = _as_vector(params.get_parameter('upper_bounds', model_upper[indices]), len(indices))
        if params.get_parameter('max_velocity') is None:
            velocity = model_velocity[indices]
            velocity = np.where(velocity > 0.0, velocity, 10.0)
        else:
            max_velocity = self._read_float(params, 'max_velocity', 0.0)
            if max_velocity is None or max_velocity <= 0.0:
                self.logger.error(f"{prefix} max_velocity of task {self.name} must be positive.")
                return False
            velocity = np.full(len(indices), max_velocity)

        if lower is None or upper is None or np.any(lower > upper):
            self.logger.error(f"{prefix} Invalid joint bounds in task {self.name}.")
            return False

        self.constraint = JointLimitConstraint(
            name=self.name,
            joint_indices=indices,
            position_lower=lower,
            position_upper=upper,
            velocity_limits=velocity
        )
        self.dim = self.constraint.num_rows
        return True

    def set_set_point(self, joint_positions: np.ndarray, dt: float) -> bool:
        """Refresh the velocity bounds from the current joint positions"""
        joint_positions = _as_vector(joint_positions, self.num_joints)
        if joint_positions is None or not dt > 0.0:
            self.logger.error(f"[JointConstraintTask::set_set_point] Invalid input for task {self.name}.")
            return False
        self.constraint.update(joint_positions, dt)
        return True

    def contribution(self, dt: float) -> TaskContribution:
        A, lower, upper = self.constraint.compute(self.model.nv)
        return TaskContribution(A=A, lower=lower, upper=upper)


TASK_FACTORY: Dict[TaskType, Type[Task]] = {
    TaskType.SO3_TASK: OrientationTask,
    TaskType.GRAVITY_TASK: GravityTask,
    TaskType.FLOOR_CONTACT_TASK: FloorContactTask,
    TaskType.JOINT_REGULARIZATION_TASK: JointRegularizationTask,
    TaskType.JOINT_CONSTRAINT_TASK: JointConstraintTask,
}

# Tasks bound to a node number
NODE_TASK_TYPES: List[TaskType] = [
    TaskType.SO3_TASK,
    TaskType.GRAVITY_TASK,
    TaskType.FLOOR_CONTACT_TASK,
]
