"""
Inverse Kinematics modules for human motion estimation
Priority-weighted velocity-level IK with online sensor calibration
"""

from .inverse_kinematics import HumanIK, IKSolverOptions, NodeData
from .task import (
    Task, TaskType, TaskPriority, TaskContribution,
    OrientationTask, GravityTask, FloorContactTask, JointRegularizationTask, JointConstraintTask
)
from .calibration import CalibrationManager
from .constraints import Constraints, JointLimitConstraint, VelocityBoxConstraint

__all__ = [
    'HumanIK',
    'IKSolverOptions',
    'NodeData',
    'Task',
    'TaskType',
    'TaskPriority',
    'TaskContribution',
    'OrientationTask',
    'GravityTask',
    'FloorContactTask',
    'JointRegularizationTask',
    'JointConstraintTask',
    'CalibrationManager',
    'Constraints',
    'JointLimitConstraint',
    'VelocityBoxConstraint'
]
