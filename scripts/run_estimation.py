#!/usr/bin/env python3
"""
Offline Estimation Runner

Replays a recorded sensor stream through the estimation stack:
- Inverse kinematics from IMU orientations and contact forces
- External wrench and joint torque estimation

Recording format (.npz):
    node_numbers        (N,)         IMU node numbers
    orientations        (T, N, 3, 3) IMU orientations in the inertial frame
    angular_velocities  (T, N, 3)    optional IMU angular velocities
    contact_nodes       (K,)         optional floor contact node numbers
    vertical_forces     (T, K)       optional vertical forces of those nodes
    wrench_frames       (S,)         optional frames of the fixed wrench sources
    wrenches            (T, S, 6)    optional raw wrenches of those frames
"""

import argparse
import logging
import time
from pathlib import Path
import sys

import numpy as np

sys.path.insert(0, str(Path(__file__).parent.parent))

from biomech_estimation.ik import HumanIK, NodeData
from biomech_estimation.dynamics import HumanID
from biomech_estimation.utils.parameters import ParametersHandler
from biomech_estimation.utils.robot_model import ArticulatedModel


class EstimationPipeline:
    """
    Complete estimation pipeline

    Integrates:
    - HumanIK on the primary model
    - HumanID reading the state HumanIK writes into that model
    """

    def __init__(self, urdf: str, ik_config: str, id_config: str = None, dt: float = 0.01, calibrate: bool = True):
        self.model = ArticulatedModel.from_urdf(urdf)
        if not self.model.is_valid():
            raise ValueError(f"{urdf} is not a floating-base model with one-DoF joints")

        self.ik = HumanIK()
        if not self.ik.initialize(ParametersHandler.from_yaml(ik_config), self.model):
            raise RuntimeError(f"Cannot initialize inverse kinematics from {ik_config}")
        self.ik.set_dt(dt)

        self.id = None
        if id_config is not None:
            self.id = HumanID()
            if not self.id.initialize(ParametersHandler.from_yaml(id_config), self.model):
                raise RuntimeError(f"Cannot initialize inverse dynamics from {id_config}")

        self.calibrate = calibrate

    def run(self, recording: dict) -> dict:
        """
        Process every sample of a recording

        Raises:
            RuntimeError: at the first failed cycle
        """
        nodes = [int(n) for n in recording['node_numbers']]
        orientations = recording['orientations']
        angular_velocities = recording.get('angular_velocities')
        contact_nodes = [int(n) for n in recording.get('contact_nodes', [])]
        vertical_forces = recording.get('vertical_forces')
        wrench_frames = [str(f) for f in recording.get('wrench_frames', [])]
        wrenches = recording.get('wrenches')

        num_samples = orientations.shape[0]
        dofs = self.ik.get_dofs_number()
        results = {
            'joint_positions': np.zeros((num_samples, dofs)),
            'joint_velocities': np.zeros((num_samples, dofs)),
            'base_positions': np.zeros((num_samples, 3)),
            'base_orientations': np.zeros((num_samples, 3, 3)),
        }
        if self.id is not None:
            results['joint_torques'] = np.zeros((num_samples, dofs))

        if self.calibrate:
            # Heading of the first sample defines the world yaw of every node
            for i, node in enumerate(nodes):
                if node in self.ik.orientation_tasks and not self.ik.calibrate_world_yaw(node, orientations[0, i]):
                    raise RuntimeError(f"Calibration of node {node} failed")

        for k in range(num_samples):
            readings = {
                node: NodeData(
                    I_R_IMU=orientations[k, i],
                    I_omega_IMU=angular_velocities[k, i] if angular_velocities is not None else np.zeros(3)
                )
                for i, node in enumerate(nodes)
            }
            ok = self.ik.update_orientation_and_gravity_tasks(readings)
            if vertical_forces is not None:
                ok = ok and self.ik.update_floor_contact_tasks(
                    {node: float(vertical_forces[k, j]) for j, node in enumerate(contact_nodes)}
                )
            ok = ok and self.ik.update_joint_regularization_task()
            ok = ok and self.ik.update_joint_constraints_task()
            if not ok or not self.ik.advance():
                raise RuntimeError(f"Inverse kinematics failed at sample {k}")

            self.ik.get_joint_positions(results['joint_positions'][k])
            self.ik.get_joint_velocities(results['joint_velocities'][k])
            self.ik.get_base_position(results['base_positions'][k])
            self.ik.get_base_orientation(results['base_orientations'][k])

            if self.id is not None:
                measured = {}
                if wrenches is not None:
                    measured = {frame: wrenches[k, j] for j, frame in enumerate(wrench_frames)}
                if not self.id.update_ext_wrenches_measurements(measured) or not self.id.solve():
                    raise RuntimeError(f"Inverse dynamics failed at sample {k}")
                results['joint_torques'][k] = self.id.get_joint_torques()

        return results


def main():
    """Main entry point"""
    parser = argparse.ArgumentParser(description='Human Motion Estimation')
    parser.add_argument('--urdf', type=str, required=True, help='Human model URDF')
    parser.add_argument('--ik-config', type=str, default='config/ik_config.yaml',
                        help='Inverse kinematics configuration')
    parser.add_argument('--id-config', type=str, default=None,
                        help='Inverse dynamics configuration (skipped when omitted)')
    parser.add_argument('--data', type=str, required=True, help='Recorded stream (.npz)')
    parser.add_argument('--output', type=str, default='estimation_results.npz', help='Output file')
    parser.add_argument('--dt', type=float, default=0.01, help='Sample period')
    parser.add_argument('--no-calibration', action='store_true', help='Skip the world yaw calibration')
    parser.add_argument('--log-level', type=str, default='INFO', help='Logging level')
    args = parser.parse_args()

    logging.basicConfig(level=args.log_level.upper(), format='%(levelname)s %(name)s: %(message)s')

    print("=" * 60)
    print("Human Motion Estimation")
    print("=" * 60)

    pipeline = EstimationPipeline(
        args.urdf, args.ik_config, args.id_config, dt=args.dt, calibrate=not args.no_calibration
    )
    with np.load(args.data) as data:
        recording = {key: data[key] for key in data.files}

    start_time = time.time()
    results = pipeline.run(recording)
    wall_time = time.time() - start_time

    np.savez(args.output, **results)

    num_samples = results['joint_positions'].shape[0]
    print(f"Samples: {num_samples}")
    print(f"Wall time: {wall_time:.2f} s")
    print(f"Avg cycle time: {1000.0 * wall_time / max(num_samples, 1):.3f} ms/sample")
    print(f"Results: {args.output}")


if __name__ == "__main__":
    main()
