"""
Shared fixtures for the estimation tests
"""

import copy
from pathlib import Path
import sys

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from biomech_estimation.utils.robot_model import ArticulatedModel


URDF_PATH = str(Path(__file__).parent / "data" / "human_6dof.urdf")

IK_CONFIG = {
    'tasks': ['PELVIS_TASK', 'LEFT_FOOT_GRAVITY', 'LEFT_FOOT_CONTACT', 'JOINT_REGULARIZATION', 'JOINT_LIMITS'],
    'IK': {
        'robot_velocity_variable_name': 'robot_velocity',
        'verbosity': False,
    },
    'PELVIS_TASK': {
        'type': 'SO3Task',
        'node_number': 3,
        'frame_name': 'Pelvis',
        'kp_angular': 10.0,
    },
    'LEFT_FOOT_GRAVITY': {
        'type': 'GravityTask',
        'node_number': 6,
        'frame_name': 'LeftFoot',
        'kp': 5.0,
        'weight': [1.0, 1.0],
    },
    'LEFT_FOOT_CONTACT': {
        'type': 'FloorContactTask',
        'node_number': 6,
        'frame_name': 'LeftFoot',
        'kp_linear': 5.0,
        'floor_height': -0.95,
    },
    'JOINT_REGULARIZATION': {
        'type': 'JointRegularizationTask',
        'kp': 10.0,
        'weight': 1.0,
    },
    'JOINT_LIMITS': {
        'type': 'JointConstraintTask',
    },
}

ID_CONFIG = {
    'humanMass': 33.0,
    'JOINT_TORQUES': {
        'SENSOR_REMOVAL': {
            'ACCELEROMETER_SENSOR': '*',
            'GYROSCOPE_SENSOR': '*',
            'THREE_AXIS_ANGULAR_ACCELEROMETER_SENSOR': '*',
        },
        'mu_dyn_variables': 0.0,
        'cov_dyn_variables': 1.0e4,
        'cov_dyn_constraints': 1.0e-4,
        'default_cov_measurements': 1.0e-4,
        'specificElements': [],
    },
    'EXTERNAL_WRENCHES': {
        'modelPath': URDF_PATH,
        'wrenchSources': ['LEFT_FOOT_SOURCE', 'RIGHT_FOOT_SOURCE'],
        'LEFT_FOOT_SOURCE': {
            'outputFrame': 'LeftFoot',
            'type': 'dummy',
            'values': [0.0, 0.0, 0.0, 0.0, 0.0, 0.0],
        },
        'RIGHT_FOOT_SOURCE': {
            'outputFrame': 'RightFoot',
            'type': 'dummy',
            'values': [0.0, 0.0, 0.0, 0.0, 0.0, 0.0],
        },
        'mu_dyn_variables': 0.0,
        'cov_dyn_variables': 1.0e4,
        'specificElements': [],
        'cov_measurements_RCM_SENSOR': [1.0e-6, 1.0e-6, 1.0e-6, 1.0e-6, 1.0e-6, 1.0e-6],
        'default_cov_measurements': 1.0,
    },
}


@pytest.fixture
def urdf_path():
    return URDF_PATH


@pytest.fixture
def model():
    return ArticulatedModel.from_urdf(URDF_PATH)


@pytest.fixture
def ik_config():
    return copy.deepcopy(IK_CONFIG)


@pytest.fixture
def id_config():
    return copy.deepcopy(ID_CONFIG)
