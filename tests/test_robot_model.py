"""
Tests for the articulated model wrapper.
Run with: pytest tests/ -v
"""

import numpy as np
import pytest

from biomech_estimation.utils.math_utils import euler_to_rotation_matrix
from biomech_estimation.utils.robot_model import ArticulatedModel, SensorType, SensorsList


class TestModelStructure:
    """Test model loading."""

    def test_valid_floating_base_model(self, model):
        assert model.is_valid()
        assert model.dofs == 6
        assert model.nv == 12
        assert model.nq == 13
        assert model.base_link == 'Pelvis'

    def test_total_mass(self, model):
        assert model.total_mass == pytest.approx(33.0)

    def test_names(self, model):
        assert model.joint_names[0] == 'jLeftHip_rotx'
        assert len(model.joint_names) == 6
        assert set(model.link_names) == {
            'Pelvis', 'LeftUpperLeg', 'LeftLowerLeg', 'LeftFoot',
            'RightUpperLeg', 'RightLowerLeg', 'RightFoot'
        }

    def test_joint_limits(self, model):
        lower, upper, velocity = model.get_joint_limits()
        assert lower[1] == pytest.approx(-0.1)
        assert upper[1] == pytest.approx(2.2)
        assert np.allclose(velocity, 10.0)

    def test_floating_base_selection(self, model):
        assert not model.set_floating_base('LeftFoot')
        assert not model.set_floating_base('Unknown')
        assert model.set_floating_base('Pelvis')


class TestSensors:
    """Test sensors declared in the URDF."""

    def test_sensors_parsed(self, urdf_path):
        sensors = SensorsList.from_urdf(urdf_path)
        assert len(sensors) == 3
        assert [s.name for s in sensors.sensors_of_type(SensorType.GYROSCOPE)] == [
            'Pelvis_gyro', 'LeftFoot_gyro'
        ]

    def test_remove_sensor(self, model):
        sensors = model.sensors.copy()
        assert sensors.remove_sensor(SensorType.GYROSCOPE, 'Pelvis_gyro')
        assert not sensors.remove_sensor(SensorType.GYROSCOPE, 'Pelvis_gyro')
        assert len(sensors) == 2
        # The model list is untouched
        assert len(model.sensors) == 3

    def test_remove_all_sensors_of_type(self, model):
        sensors = model.sensors.copy()
        assert sensors.remove_all_sensors_of_type(SensorType.GYROSCOPE)
        assert [s.type for s in sensors] == [SensorType.ACCELEROMETER]


class TestState:
    """Test state setting and kinematics."""

    def test_neutral_foot_position(self, model):
        T = model.get_world_transform('LeftFoot')
        assert np.allclose(T[:3, 3], [0.0, 0.1, -0.95])
        assert np.allclose(T[:3, :3], np.eye(3))

    def test_set_state_round_trip(self, model):
        pose = np.eye(4)
        pose[:3, :3] = euler_to_rotation_matrix(0.1, 0.2, 0.3)
        pose[:3, 3] = [0.5, -0.2, 1.0]
        s = np.array([0.1, 0.2, 0.0, -0.1, 0.3, 0.0])
        twist = np.array([0.1, 0.0, 0.0, 0.0, 0.0, 0.5])
        s_dot = np.full(6, 0.2)

        assert model.set_state(pose, s, twist, s_dot)
        pose_out, s_out, twist_out, s_dot_out = model.get_state()
        assert np.allclose(pose_out, pose)
        assert np.allclose(s_out, s)
        assert np.allclose(twist_out, twist)
        assert np.allclose(s_dot_out, s_dot)

    def test_set_state_wrong_size(self, model):
        assert not model.set_state(np.eye(4), np.zeros(5), np.zeros(6), np.zeros(6))

    def test_copy_state_by_joint_name(self, model, urdf_path):
        other = ArticulatedModel.from_urdf(urdf_path)
        s = np.linspace(0.1, 0.6, 6)
        pose = np.eye(4)
        pose[:3, 3] = [1.0, 2.0, 3.0]
        model.set_state(pose, s, np.zeros(6), np.zeros(6))

        assert other.copy_state_from(model)
        assert np.allclose(other.q, model.q)
        assert np.allclose(other.get_world_transform('RightFoot'), model.get_world_transform('RightFoot'))

    def test_static_dynamics(self, model):
        M = model.get_mass_matrix()
        assert np.allclose(M, M.T)
        assert M[0, 0] == pytest.approx(33.0)
        h = model.get_nonlinear_effects()
        # Gravity only at rest
        assert h[2] == pytest.approx(33.0 * 9.81)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
