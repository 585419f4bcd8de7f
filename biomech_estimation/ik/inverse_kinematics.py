#!/usr/bin/env python3
"""
Human Inverse Kinematics
Multi-task velocity-level IK with priority tiers, solved with OSQP

Each cycle:
1. Collect the rows of every task
2. Solve the QP for the generalized velocity nu
3. Integrate the configuration with forward Euler on the manifold
4. Push the new state into the model
"""

import logging
import numpy as np
import osqp
import pinocchio as pin
from scipy import sparse
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .calibration import CalibrationManager
from .constraints import Constraints, VelocityBoxConstraint
from .task import (
    TASK_FACTORY, NODE_TASK_TYPES, Task, TaskContribution, TaskPriority, TaskType,
    OrientationTask, GravityTask, FloorContactTask, JointRegularizationTask, JointConstraintTask
)
from ..utils.math_utils import is_rotation_matrix, rotation_from_row_major
from ..utils.parameters import ParametersHandler
from ..utils.robot_model import ArticulatedModel


@dataclass
class IKSolverOptions:
    """QP solver configuration (``IK`` group)"""
    robot_velocity_variable_name: str = 'robot_velocity'
    verbosity: bool = False
    eps_abs: float = 1e-6
    eps_rel: float = 1e-6
    max_iter: int = 4000
    max_generalized_velocity: float = 100.0
    regularization: float = 1e-6   # Tikhonov weight on nu

    @classmethod
    def from_parameters(cls, params: ParametersHandler) -> 'IKSolverOptions':
        defaults = cls()
        return cls(
            robot_velocity_variable_name=str(params.get_parameter(
                'robot_velocity_variable_name', defaults.robot_velocity_variable_name)),
            verbosity=bool(params.get_parameter('verbosity', defaults.verbosity)),
            eps_abs=float(params.get_parameter('eps_abs', defaults.eps_abs)),
            eps_rel=float(params.get_parameter('eps_rel', defaults.eps_rel)),
            max_iter=int(params.get_parameter('max_iter', defaults.max_iter)),
            max_generalized_velocity=float(params.get_parameter(
                'max_generalized_velocity', defaults.max_generalized_velocity)),
            regularization=float(params.get_parameter('regularization', defaults.regularization))
        )


@dataclass
class NodeData:
    """One orientation sensor reading"""
    I_R_IMU: np.ndarray
    I_omega_IMU: np.ndarray = field(default_factory=lambda: np.zeros(3))


class HumanIK:
    """
    Human Inverse Kinematics solver

    Tasks are configured from a parameters handler:

        tasks: [PELVIS_TASK, ...]
        IK: {robot_velocity_variable_name: robot_velocity, ...}
        PELVIS_TASK: {type: SO3Task, node_number: 3, frame_name: Pelvis, ...}

    Orientation, gravity and floor contact tasks are addressed by the
    integer node number of their sensor.

    Example:
        ik = HumanIK()
        ik.initialize(params, model)
        ik.set_dt(0.01)
        ik.update_orientation_task(3, I_R_IMU)
        ik.advance()
        ik.get_joint_positions(s)
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)
        self.model: Optional[ArticulatedModel] = None
        self.options = IKSolverOptions()
        self.calibration = CalibrationManager(logger=self.logger)
        self.constraints = Constraints()

        # Ordered task list (configuration order)
        self.tasks: Dict[str, Task] = {}

        # Node maps per task type
        self.orientation_tasks: Dict[int, OrientationTask] = {}
        self.gravity_tasks: Dict[int, GravityTask] = {}
        self.floor_contact_tasks: Dict[int, FloorContactTask] = {}
        self.regularization_tasks: List[JointRegularizationTask] = []
        self.joint_constraint_tasks: List[JointConstraintTask] = []

        self.variables: Dict[str, int] = {}
        self.dt = 0.01
        self.num_dofs = 0
        self.initialized = False

        # Solver state: configuration and last solution, mirrored into the model
        self.q = np.zeros(0)
        self.nu = np.zeros(0)

    # ------------------------------------------------------------------
    # Initialization
    # ------------------------------------------------------------------

    def initialize(self, params: ParametersHandler, model: ArticulatedModel) -> bool:
        """
        Build every configured task and the QP variable layout

        Args:
            params: Configuration with ``tasks``, ``IK`` and one group per task
            model: Articulated model shared with the caller

        Returns:
            True if every task was created, bound and initialized
        """
        prefix = "[HumanIK::initialize]"
        self.initialized = False

        if params is None:
            self.logger.error(f"{prefix} Invalid parameters handler.")
            return False

        task_names = params.get_parameter('tasks')
        if task_names is None:
            self.logger.error(f"{prefix} Parameter tasks is missing.")
            return False
        if not isinstance(task_names, (list, tuple)):
            self.logger.error(f"{prefix} Parameter tasks must be a list of task names.")
            return False

        if model is None or not model.is_valid():
            self.logger.error(f"{prefix} Invalid articulated model.")
            return False

        ik_group = params.get_group('IK')
        if ik_group is None:
            self.logger.error(f"{prefix} Group IK is missing in the configuration.")
            return False

        try:
            options = IKSolverOptions.from_parameters(ik_group)
        except (TypeError, ValueError) as e:
            self.logger.error(f"{prefix} Invalid option in the IK group: {e}.")
            return False

        self._reset()
        self.model = model
        self.num_dofs = model.dofs
        self.options = options
        self.variables[self.options.robot_velocity_variable_name] = model.nv
        self.constraints.add(VelocityBoxConstraint(max_velocity=self.options.max_generalized_velocity))

        for task_name in task_names:
            if not self._create_task(task_name, params.get_group(task_name)):
                self.logger.error(f"{prefix} Error in the initialization of the {task_name} task.")
                self._reset()
                return False

        self.q = model.q.copy()
        self.nu = model.v.copy()
        self.initialized = True
        self.logger.info(
            f"{prefix} Initialized {len(self.tasks)} tasks over {model.nv} velocity variables."
        )
        return True

    def _reset(self):
        self.tasks = {}
        self.orientation_tasks = {}
        self.gravity_tasks = {}
        self.floor_contact_tasks = {}
        self.regularization_tasks = []
        self.joint_constraint_tasks = []
        self.variables = {}
        self.constraints = Constraints()
        self.calibration = CalibrationManager(logger=self.logger)

    def _create_task(self, task_name: str, group: Optional[ParametersHandler]) -> bool:
        prefix = "[HumanIK::initialize]"
        if group is None:
            self.logger.error(f"{prefix} Group {task_name} is missing in the configuration.")
            return False
        if task_name in self.tasks:
            self.logger.error(f"{prefix} Task {task_name} is listed twice.")
            return False

        type_name = group.get_parameter('type')
        if type_name is None:
            self.logger.error(f"{prefix} Parameter type of the {task_name} task is missing.")
            return False
        try:
            task_type = TaskType(type_name)
        except ValueError:
            self.logger.error(f"{prefix} Invalid task type {type_name}.")
            return False

        node = None
        if task_type in NODE_TASK_TYPES:
            node = group.get_parameter('node_number')
            if node is None:
                self.logger.error(f"{prefix} Parameter node_number of the {task_name} task is missing.")
                return False
            try:
                node = int(node)
            except (TypeError, ValueError):
                self.logger.error(f"{prefix} Invalid node_number {node} in the {task_name} task.")
                return False
            if node in self._node_map(task_type):
                self.logger.error(
                    f"{prefix} Node {node} already has a {task_type.value} "
                    f"(duplicate in task {task_name})."
                )
                return False

        task_class = TASK_FACTORY[task_type]
        if task_type in (TaskType.JOINT_REGULARIZATION_TASK, TaskType.JOINT_CONSTRAINT_TASK):
            task = task_class(task_name, self.num_dofs, logger=self.logger)
        else:
            task = task_class(task_name, logger=self.logger)

        if not task.bind(self.model) or not task.initialize(group):
            return False

        if task_type in (TaskType.SO3_TASK, TaskType.GRAVITY_TASK):
            if not self._register_node(task_name, node, group):
                return False

        if task_type == TaskType.SO3_TASK:
            self.orientation_tasks[node] = task
        elif task_type == TaskType.GRAVITY_TASK:
            self.gravity_tasks[node] = task
        elif task_type == TaskType.FLOOR_CONTACT_TASK:
            self.floor_contact_tasks[node] = task
        elif task_type == TaskType.JOINT_REGULARIZATION_TASK:
            self.regularization_tasks.append(task)
        else:
            self.joint_constraint_tasks.append(task)

        self.tasks[task_name] = task
        self.logger.debug(f"{prefix} Added {task!r}.")
        return True

    def _register_node(self, task_name: str, node: int, group: ParametersHandler) -> bool:
        rotation = group.get_parameter('rotation_matrix')
        if rotation is None:
            self.logger.warning(
                f"[HumanIK::initialize] Parameter rotation_matrix of the {task_name} task is "
                f"missing, setting the rotation from the IMU to the frame "
                f"{group.get_parameter('frame_name')} to identity."
            )
            IMU_R_link = np.eye(3)
        else:
            try:
                IMU_R_link = rotation_from_row_major(rotation)
            except (TypeError, ValueError) as e:
                self.logger.error(f"[HumanIK::initialize] Task {task_name}: {e}.")
                return False
        return self.calibration.add_node(node, IMU_R_link)

    def _node_map(self, task_type: TaskType) -> Dict[int, Task]:
        return {
            TaskType.SO3_TASK: self.orientation_tasks,
            TaskType.GRAVITY_TASK: self.gravity_tasks,
            TaskType.FLOOR_CONTACT_TASK: self.floor_contact_tasks,
        }[task_type]

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def set_dt(self, dt: float) -> bool:
        """Set the integration step in seconds"""
        try:
            value = float(dt)
        except (TypeError, ValueError):
            value = float('nan')
        if not (np.isfinite(value) and value > 0.0):
            self.logger.error(f"[HumanIK::set_dt] Integration step must be positive, got {dt}.")
            return False
        self.dt = value
        return True

    def get_dt(self) -> float:
        return self.dt

    def get_dofs_number(self) -> int:
        return self.num_dofs

    # ------------------------------------------------------------------
    # Task updates
    # ------------------------------------------------------------------

    def update_orientation_task(
        self,
        node: int,
        I_R_IMU: np.ndarray,
        I_omega_IMU: Optional[np.ndarray] = None
    ) -> bool:
        """
        Set the orientation target of a node from a raw IMU reading

        Args:
            node: Node number
            I_R_IMU: IMU orientation in the inertial frame (3x3)
            I_omega_IMU: IMU angular velocity in the inertial frame (3,)

        Returns:
            True on success
        """
        if node not in self.orientation_tasks:
            self.logger.error(f"[HumanIK::update_orientation_task] Invalid node number {node}.")
            return False
        if not is_rotation_matrix(I_R_IMU):
            self.logger.error(f"[HumanIK::update_orientation_task] Invalid rotation for node {node}.")
            return False

        omega = self.calibration.angular_velocity(
            node, np.zeros(3) if I_omega_IMU is None else I_omega_IMU
        )
        if omega is None:
            return False
        I_R_link = self.calibration.link_orientation(node, I_R_IMU)
        return self.orientation_tasks[node].set_set_point(I_R_link, omega)

    set_node_set_point = update_orientation_task

    def update_gravity_task(self, node: int, I_R_IMU: np.ndarray) -> bool:
        """Set the vertical target of a node from a raw IMU reading"""
        if node not in self.gravity_tasks:
            self.logger.error(f"[HumanIK::update_gravity_task] Invalid node number {node}.")
            return False
        if not is_rotation_matrix(I_R_IMU):
            self.logger.error(f"[HumanIK::update_gravity_task] Invalid rotation for node {node}.")
            return False

        I_R_link = self.calibration.link_orientation(node, I_R_IMU)
        return self.gravity_tasks[node].set_set_point(I_R_link)

    def update_floor_contact_task(self, node: int, vertical_force: float) -> bool:
        """Feed the vertical contact force measured at a node"""
        if node not in self.floor_contact_tasks:
            self.logger.error(f"[HumanIK::update_floor_contact_task] Invalid node number {node}.")
            return False
        return self.floor_contact_tasks[node].set_set_point(vertical_force)

    def update_joint_regularization_task(self) -> bool:
        """Push the configured joint reference to every regularization task"""
        ok = True
        for task in self.regularization_tasks:
            ok = task.set_set_point() and ok
        return ok

    def update_joint_constraints_task(self) -> bool:
        """Recompute joint velocity bounds from the current joint positions"""
        if self.model is None:
            return False
        s = self.q[7:]
        ok = True
        for task in self.joint_constraint_tasks:
            ok = task.set_set_point(s, self.dt) and ok
        return ok

    def update_orientation_and_gravity_tasks(self, nodes: Dict[int, NodeData]) -> bool:
        """Update orientation and gravity tasks of several nodes"""
        ok = True
        for node, reading in nodes.items():
            known = False
            if node in self.orientation_tasks:
                known = True
                ok = self.update_orientation_task(node, reading.I_R_IMU, reading.I_omega_IMU) and ok
            if node in self.gravity_tasks:
                known = True
                ok = self.update_gravity_task(node, reading.I_R_IMU) and ok
            if not known:
                self.logger.error(
                    f"[HumanIK::update_orientation_and_gravity_tasks] Invalid node number {node}."
                )
                ok = False
        return ok

    def update_floor_contact_tasks(self, vertical_forces: Dict[int, float]) -> bool:
        """Update floor contact tasks of several nodes"""
        ok = True
        for node, force in vertical_forces.items():
            ok = self.update_floor_contact_task(node, force) and ok
        return ok

    # ------------------------------------------------------------------
    # Calibration
    # ------------------------------------------------------------------

    def calibrate_world_yaw(self, node: int, I_R_IMU: Optional[np.ndarray] = None) -> bool:
        """Remove the world heading of a node (last reading when I_R_IMU is omitted)"""
        return self.calibration.calibrate_world_yaw(node, I_R_IMU)

    def calibrate_all_with_world(
        self,
        node: int,
        reference_frame_name: str,
        I_R_IMU: Optional[np.ndarray] = None
    ) -> bool:
        """Align a node with the current model orientation of a frame"""
        if self.model is None or not self.model.frame_exists(reference_frame_name):
            self.logger.error(
                f"[HumanIK::calibrate_all_with_world] Unknown frame {reference_frame_name}."
            )
            return False
        world_R_frame = self.model.get_world_transform(reference_frame_name)[:3, :3]
        return self.calibration.calibrate_all_with_world(node, world_R_frame, I_R_IMU)

    def clear_calibration_matrices(self):
        self.calibration.clear_calibration_matrices()

    # ------------------------------------------------------------------
    # Solve
    # ------------------------------------------------------------------

    def advance(self) -> bool:
        """
        Run one IK cycle

        Returns:
            True if the QP was solved and the state integrated; on failure
            the state is left unchanged
        """
        if not self.initialized:
            self.logger.error("[HumanIK::advance] The solver is not initialized.")
            return False

        # Writes to the shared model from outside are overridden by the solver state
        if not (np.array_equal(self.model.q, self.q) and np.array_equal(self.model.v, self.nu)):
            self.model.set_configuration(self.q, self.nu)

        self.update_joint_constraints_task()

        P, q_vec, A, l, u = self._build_qp()
        nu = self._solve_qp(P, q_vec, A, l, u)
        if nu is None:
            self.logger.error("[HumanIK::advance] Error in the QP solver.")
            return False

        q_next = pin.integrate(self.model.model, self.q, nu * self.dt)
        if not np.all(np.isfinite(q_next)) or not self.model.set_configuration(q_next, nu):
            self.logger.error("[HumanIK::advance] Error in the integration.")
            return False

        self.q = np.array(q_next)
        self.nu = nu
        return True

    def _build_qp(self) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
        """
        Assemble the QP

        min  sum_i ||A_i nu - b_i||^2_W_i + eps ||nu||^2
        s.t. A_h nu = b_h             (high priority tasks)
             lb <= A_c nu <= ub       (joint limits, velocity box)
        """
        nv = self.model.nv
        P = self.options.regularization * np.eye(nv)
        q_vec = np.zeros(nv)

        equalities: List[TaskContribution] = []
        inequalities = []
        for task in self.tasks.values():
            rows = task.contribution(self.dt)
            if rows.is_inequality:
                inequalities.append((rows.A, rows.lower, rows.upper))
            elif not np.any(rows.weight > 0.0):
                # Inactive (e.g. floor contact task out of contact)
                continue
            elif task.priority == TaskPriority.HIGH:
                equalities.append(rows)
            else:
                # Cost: ||A nu - b||^2_W = nu' A'WA nu - 2 b'WA nu + const
                WA = rows.weight[:, None] * rows.A
                P += rows.A.T @ WA
                q_vec -= WA.T @ rows.b

        A_ineq, lb, ub = self.constraints.build_constraint_matrices(nv, extra=inequalities)

        if equalities:
            A_eq = np.vstack([rows.A for rows in equalities])
            b_eq = np.concatenate([rows.b for rows in equalities])
            A = np.vstack([A_eq, A_ineq])
            l = np.concatenate([b_eq, lb])
            u = np.concatenate([b_eq, ub])
        else:
            A, l, u = A_ineq, lb, ub

        # Make symmetric
        P = 0.5 * (P + P.T)
        return 2.0 * P, 2.0 * q_vec, A, l, u

    def _solve_qp(
        self,
        P: np.ndarray,
        q: np.ndarray,
        A: np.ndarray,
        l: np.ndarray,
        u: np.ndarray
    ) -> Optional[np.ndarray]:
        """Solve QP using OSQP, None on failure"""
        # Active rows change from cycle to cycle, so the problem is set up each time
        solver = osqp.OSQP()
        solver.setup(
            P=sparse.triu(sparse.csc_matrix(P), format='csc'),
            q=q,
            A=sparse.csc_matrix(A),
            l=l,
            u=u,
            verbose=self.options.verbosity,
            eps_abs=self.options.eps_abs,
            eps_rel=self.options.eps_rel,
            max_iter=self.options.max_iter
        )
        result = solver.solve()

        if result.info.status != 'solved':
            self.logger.warning(f"[HumanIK::advance] OSQP status: {result.info.status}.")
            return None
        if result.x is None or not np.all(np.isfinite(result.x)):
            return None
        return np.array(result.x)

    # ------------------------------------------------------------------
    # Outputs
    # ------------------------------------------------------------------

    def _copy_into(self, out: np.ndarray, shape: Tuple[int, ...], value, name: str) -> bool:
        """Copy value() into the caller buffer after checking its shape"""
        if not self.initialized:
            self.logger.error(f"[HumanIK::{name}] The solver is not initialized.")
            return False
        if not isinstance(out, np.ndarray) or out.shape != shape:
            self.logger.error(f"[HumanIK::{name}] Invalid size of the input vector.")
            return False
        out[...] = value()
        return True

    def _base_rotation(self) -> np.ndarray:
        return pin.XYZQUATToSE3(self.q[:7]).rotation

    def get_joint_positions(self, joint_positions: np.ndarray) -> bool:
        return self._copy_into(
            joint_positions, (self.num_dofs,), lambda: self.q[7:], 'get_joint_positions'
        )

    def get_joint_velocities(self, joint_velocities: np.ndarray) -> bool:
        return self._copy_into(
            joint_velocities, (self.num_dofs,), lambda: self.nu[6:], 'get_joint_velocities'
        )

    def get_base_position(self, base_position: np.ndarray) -> bool:
        return self._copy_into(base_position, (3,), lambda: self.q[:3], 'get_base_position')

    def get_base_orientation(self, base_orientation: np.ndarray) -> bool:
        return self._copy_into(base_orientation, (3, 3), self._base_rotation, 'get_base_orientation')

    def get_base_linear_velocity(self, base_velocity: np.ndarray) -> bool:
        """Base linear velocity in world coordinates"""
        return self._copy_into(
            base_velocity, (3,), lambda: self._base_rotation() @ self.nu[:3], 'get_base_linear_velocity'
        )

    def get_base_angular_velocity(self, base_angular_velocity: np.ndarray) -> bool:
        """Base angular velocity in world coordinates"""
        return self._copy_into(
            base_angular_velocity, (3,), lambda: self._base_rotation() @ self.nu[3:6],
            'get_base_angular_velocity'
        )
