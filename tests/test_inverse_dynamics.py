"""
Tests for the human inverse dynamics estimator.
Run with: pytest tests/ -v
"""

import numpy as np
import pytest

from biomech_estimation.dynamics import HumanID, MeasurementType
from biomech_estimation.dynamics import map_estimator
from biomech_estimation.utils.parameters import ParametersHandler


def make_id(config, model):
    hid = HumanID()
    assert hid.initialize(ParametersHandler.from_dict(config), model)
    return hid


def fixed_source(frame):
    return {
        'outputFrame': frame,
        'type': 'fixed',
        'position': [0.0, 0.0, 0.0],
        'orientation': [1.0, 0.0, 0.0, 0.0, 1.0, 0.0, 0.0, 0.0, 1.0],
    }


class TestInitialization:
    """Test configuration handling."""

    def test_initialize(self, id_config, model):
        hid = make_id(id_config, model)
        assert hid.get_joint_torques().shape == (6,)
        assert len(hid.get_estimated_ext_wrenches()) == 2
        assert hid.ext_wrenches_model is not model
        assert hid.ext_wrenches_model.base_link == 'Pelvis'

    def test_missing_human_mass(self, id_config, model):
        del id_config['humanMass']
        assert not HumanID().initialize(ParametersHandler.from_dict(id_config), model)

    @pytest.mark.parametrize("mass", ['heavy', -5.0, 0.0, float('nan'), [33.0]])
    def test_invalid_human_mass(self, id_config, model, mass):
        id_config['humanMass'] = mass
        assert not HumanID().initialize(ParametersHandler.from_dict(id_config), model)

    def test_unknown_sensor_removal_key(self, id_config, model):
        id_config['JOINT_TORQUES']['SENSOR_REMOVAL']['BOGUS_SENSOR'] = '*'
        assert not HumanID().initialize(ParametersHandler.from_dict(id_config), model)

    def test_scalar_rcm_covariance(self, id_config, model):
        id_config['EXTERNAL_WRENCHES']['cov_measurements_RCM_SENSOR'] = 1.0e-6
        assert not HumanID().initialize(ParametersHandler.from_dict(id_config), model)

    def test_non_numeric_rcm_covariance(self, id_config, model):
        id_config['EXTERNAL_WRENCHES']['cov_measurements_RCM_SENSOR'] = ['a'] * 6
        assert not HumanID().initialize(ParametersHandler.from_dict(id_config), model)

    def test_scalar_dummy_values(self, id_config, model):
        id_config['EXTERNAL_WRENCHES']['LEFT_FOOT_SOURCE']['values'] = 3.0
        assert not HumanID().initialize(ParametersHandler.from_dict(id_config), model)

    def test_non_numeric_priors(self, id_config, model):
        id_config['EXTERNAL_WRENCHES']['cov_dyn_variables'] = 'large'
        assert not HumanID().initialize(ParametersHandler.from_dict(id_config), model)

    @pytest.mark.parametrize("elements", ['LeftFoot', [['LeftFoot']]])
    def test_malformed_specific_elements(self, id_config, model, elements):
        id_config['EXTERNAL_WRENCHES']['specificElements'] = elements
        id_config['EXTERNAL_WRENCHES']['LeftFoot'] = [1e-4] * 6
        assert not HumanID().initialize(ParametersHandler.from_dict(id_config), model)

    def test_wrench_sources_not_a_list(self, id_config, model):
        id_config['EXTERNAL_WRENCHES']['wrenchSources'] = 'LEFT_FOOT_SOURCE'
        assert not HumanID().initialize(ParametersHandler.from_dict(id_config), model)

    def test_invalid_model(self, id_config):
        assert not HumanID().initialize(ParametersHandler.from_dict(id_config), None)

    @pytest.mark.parametrize("group", ['JOINT_TORQUES', 'EXTERNAL_WRENCHES'])
    def test_missing_group(self, id_config, model, group):
        del id_config[group]
        assert not HumanID().initialize(ParametersHandler.from_dict(id_config), model)

    def test_missing_sensor_removal(self, id_config, model):
        del id_config['JOINT_TORQUES']['SENSOR_REMOVAL']
        assert not HumanID().initialize(ParametersHandler.from_dict(id_config), model)

    def test_missing_model_path(self, id_config, model):
        del id_config['EXTERNAL_WRENCHES']['modelPath']
        assert not HumanID().initialize(ParametersHandler.from_dict(id_config), model)

    def test_unreadable_model_path(self, id_config, model, tmp_path):
        id_config['EXTERNAL_WRENCHES']['modelPath'] = str(tmp_path / "missing.urdf")
        assert not HumanID().initialize(ParametersHandler.from_dict(id_config), model)

    @pytest.mark.parametrize("key", [
        'mu_dyn_variables', 'cov_dyn_variables', 'specificElements',
        'cov_measurements_RCM_SENSOR', 'default_cov_measurements', 'wrenchSources'
    ])
    def test_required_ext_wrenches_keys(self, id_config, model, key):
        del id_config['EXTERNAL_WRENCHES'][key]
        assert not HumanID().initialize(ParametersHandler.from_dict(id_config), model)

    def test_joint_torques_priors_optional(self, id_config, model):
        id_config['JOINT_TORQUES'] = {'SENSOR_REMOVAL': {}}
        assert HumanID().initialize(ParametersHandler.from_dict(id_config), model)

    def test_negative_covariance(self, id_config, model):
        id_config['EXTERNAL_WRENCHES']['cov_dyn_variables'] = -1.0
        assert not HumanID().initialize(ParametersHandler.from_dict(id_config), model)

    def test_negative_rcm_covariance(self, id_config, model):
        id_config['EXTERNAL_WRENCHES']['cov_measurements_RCM_SENSOR'] = [1.0, 1.0, -1.0, 1.0, 1.0, 1.0]
        assert not HumanID().initialize(ParametersHandler.from_dict(id_config), model)

    def test_specific_elements(self, id_config, model):
        id_config['EXTERNAL_WRENCHES']['specificElements'] = ['LeftFoot']
        id_config['EXTERNAL_WRENCHES']['LeftFoot'] = [1e-4] * 6
        assert HumanID().initialize(ParametersHandler.from_dict(id_config), model)

        del id_config['EXTERNAL_WRENCHES']['LeftFoot']
        assert not HumanID().initialize(ParametersHandler.from_dict(id_config), model)

    def test_source_frame_not_a_link(self, id_config, model):
        id_config['EXTERNAL_WRENCHES']['LEFT_FOOT_SOURCE']['outputFrame'] = 'jLeftKnee_roty'
        assert not HumanID().initialize(ParametersHandler.from_dict(id_config), model)

    def test_missing_source_group(self, id_config, model):
        id_config['EXTERNAL_WRENCHES']['wrenchSources'].append('HAND_SOURCE')
        assert not HumanID().initialize(ParametersHandler.from_dict(id_config), model)


class TestSensorRemoval:
    """Test sensor removal for the joint torques estimator."""

    def layout_sensors(self, hid):
        layout = hid.joint_torques_estimator.layout
        return [
            slot.id for slot in layout.measurements
            if slot.type not in (MeasurementType.NET_EXT_WRENCH, MeasurementType.JOINT_ACCELERATION)
        ]

    def test_remove_all(self, id_config, model):
        assert self.layout_sensors(make_id(id_config, model)) == []

    def test_remove_by_name(self, id_config, model):
        id_config['JOINT_TORQUES']['SENSOR_REMOVAL'] = {'GYROSCOPE_SENSOR': 'Pelvis_gyro'}
        assert self.layout_sensors(make_id(id_config, model)) == ['Pelvis_accelerometer', 'LeftFoot_gyro']
        # The model keeps its sensors
        assert len(model.sensors) == 3

    def test_unknown_name_is_skipped(self, id_config, model):
        id_config['JOINT_TORQUES']['SENSOR_REMOVAL'] = {'ACCELEROMETER_SENSOR': 'Head_accelerometer'}
        assert len(self.layout_sensors(make_id(id_config, model))) == 3

    def test_sensor_measurements(self, id_config, model):
        id_config['JOINT_TORQUES']['SENSOR_REMOVAL'] = {}
        hid = make_id(id_config, model)
        assert hid.update_sensor_measurements({'Pelvis_accelerometer': [0.0, 0.0, 9.81]})
        assert not hid.update_sensor_measurements({'Pelvis_accelerometer': [0.0, 9.81]})
        assert not hid.update_sensor_measurements({'Head_gyro': [0.0, 0.0, 0.0]})
        assert not hid.update_sensor_measurements({'LeftFoot': np.zeros(6)})


class TestEstimation:
    """Test the two estimation stages."""

    def test_weight_is_conserved(self, id_config, model):
        hid = make_id(id_config, model)
        assert hid.update_ext_wrenches_measurements({})
        assert hid.solve()

        total = sum(w[:3] for w in hid.get_link_ext_wrenches().values())
        assert np.allclose(total, [0.0, 0.0, 33.0 * 9.81], rtol=1e-3, atol=1e-2)
        assert np.all(np.isfinite(hid.get_joint_torques()))

    def test_rcm_in_base_frame(self, id_config, model):
        hid = make_id(id_config, model)
        rcm = hid.compute_rcm_in_base_frame()
        com = model.get_center_of_mass()
        assert np.allclose(rcm[:3], [0.0, 0.0, 33.0 * 9.81])
        assert np.allclose(rcm[3:], np.cross(com, rcm[:3]))

    def test_fixed_sources_drive_the_estimate(self, id_config, model):
        id_config['EXTERNAL_WRENCHES']['LEFT_FOOT_SOURCE'] = fixed_source('LeftFoot')
        id_config['EXTERNAL_WRENCHES']['RIGHT_FOOT_SOURCE'] = fixed_source('RightFoot')
        id_config['EXTERNAL_WRENCHES']['default_cov_measurements'] = 1e-4
        id_config['EXTERNAL_WRENCHES']['cov_measurements_RCM_SENSOR'] = [1.0] * 6
        hid = make_id(id_config, model)

        half_weight = np.array([0.0, 0.0, 33.0 * 9.81 / 2.0, 0.0, 0.0, 0.0])
        assert hid.update_ext_wrenches_measurements({'LeftFoot': half_weight, 'RightFoot': half_weight})
        assert hid.solve()

        left, right = hid.get_estimated_ext_wrenches()
        assert np.allclose(left[:3], half_weight[:3], atol=1e-1)
        assert np.allclose(right[:3], half_weight[:3], atol=1e-1)

    def test_missing_fixed_measurement(self, id_config, model):
        id_config['EXTERNAL_WRENCHES']['LEFT_FOOT_SOURCE'] = fixed_source('LeftFoot')
        hid = make_id(id_config, model)
        assert not hid.update_ext_wrenches_measurements({'RightFoot': np.zeros(6)})
        assert hid.update_ext_wrenches_measurements({'LeftFoot': np.zeros(6)})

    def test_missing_fixed_measurement_keeps_vector(self, id_config, model):
        id_config['EXTERNAL_WRENCHES']['RIGHT_FOOT_SOURCE'] = fixed_source('RightFoot')
        hid = make_id(id_config, model)
        reading = np.array([0.0, 0.0, 150.0, 0.0, 0.0, 0.0])
        assert hid.update_ext_wrenches_measurements({'RightFoot': reading})
        measurement = hid.ext_wrenches_estimator.measurement.copy()

        assert not hid.update_ext_wrenches_measurements({})
        assert not hid.update_ext_wrenches_measurements({'RightFoot': np.full(6, np.nan)})
        assert not hid.update_ext_wrenches_measurements({'RightFoot': np.zeros(3)})
        assert np.array_equal(hid.ext_wrenches_estimator.measurement, measurement)

    def test_secondary_model_follows_primary(self, id_config, model):
        hid = make_id(id_config, model)
        pose = np.eye(4)
        pose[:3, 3] = [0.3, 0.0, 1.0]
        s = np.array([0.1, 0.5, -0.2, 0.0, 0.3, 0.1])
        model.set_state(pose, s, np.zeros(6), np.zeros(6))
        assert hid.update_ext_wrenches_measurements({})
        assert np.allclose(hid.ext_wrenches_model.q, model.q)

    def test_joint_accelerations(self, id_config, model):
        hid = make_id(id_config, model)
        assert hid.set_joint_accelerations(np.full(6, 0.5))
        assert not hid.set_joint_accelerations(np.zeros(5))
        assert not hid.set_joint_accelerations('x')
        assert not hid.set_joint_accelerations(np.full(6, np.inf))

    def test_failed_solve_keeps_outputs(self, id_config, model, monkeypatch):
        hid = make_id(id_config, model)
        hid.update_ext_wrenches_measurements({})
        assert hid.solve()
        torques = hid.get_joint_torques()
        wrenches = hid.get_estimated_ext_wrenches()

        monkeypatch.setattr(map_estimator, 'spsolve', lambda H, g: np.full(g.shape, np.nan))
        assert not hid.solve()
        assert np.array_equal(hid.get_joint_torques(), torques)
        for before, after in zip(wrenches, hid.get_estimated_ext_wrenches()):
            assert np.array_equal(before, after)

    def test_not_initialized(self):
        hid = HumanID()
        assert not hid.update_ext_wrenches_measurements({})
        assert not hid.solve()


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
