"""Utility modules for human motion estimation"""

from .math_utils import (
    rotation_matrix_x,
    rotation_matrix_y,
    rotation_matrix_z,
    euler_to_rotation_matrix,
    rotation_matrix_to_euler,
    yaw_from_rotation,
    rotation_from_row_major,
    is_rotation_matrix,
    skew_symmetric,
    wrench_transform,
    rotate_wrench
)

from .parameters import ParametersHandler
from .robot_model import ArticulatedModel, Sensor, SensorType, SensorsList

__all__ = [
    'rotation_matrix_x', 'rotation_matrix_y', 'rotation_matrix_z',
    'euler_to_rotation_matrix', 'rotation_matrix_to_euler',
    'yaw_from_rotation', 'rotation_from_row_major', 'is_rotation_matrix',
    'skew_symmetric', 'wrench_transform', 'rotate_wrench',
    'ParametersHandler',
    'ArticulatedModel', 'Sensor', 'SensorType', 'SensorsList'
]
