#!/usr/bin/env python3
"""
Sensor-to-body calibration
Per-node rotation offsets correcting unknown IMU mounting
"""

import logging
import numpy as np
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..utils.math_utils import is_rotation_matrix, rotation_matrix_z, yaw_from_rotation


@dataclass
class NodeCalibration:
    """Calibration state of one sensor node"""
    IMU_R_link: np.ndarray = field(default_factory=lambda: np.eye(3))
    calibration: np.ndarray = field(default_factory=lambda: np.eye(3))
    last_reading: Optional[np.ndarray] = None


class CalibrationManager:
    """
    Keeps one calibration rotation C_n per node

    A raw reading I_R_IMU of node n becomes the link orientation
    C_n @ I_R_IMU @ IMU_R_link. C_n is identity until a calibration call
    and stays fixed until the next one (or a clear).
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)
        self.nodes: Dict[int, NodeCalibration] = {}

    def add_node(self, node: int, IMU_R_link: Optional[np.ndarray] = None) -> bool:
        """
        Register a node

        A node shared by several tasks must be registered with the same
        IMU-to-link rotation every time.
        """
        if IMU_R_link is None:
            IMU_R_link = np.eye(3)
        if not is_rotation_matrix(IMU_R_link):
            self.logger.error(f"[CalibrationManager::add_node] Invalid IMU_R_link for node {node}.")
            return False
        IMU_R_link = np.asarray(IMU_R_link, dtype=float)

        if node in self.nodes:
            if not np.allclose(self.nodes[node].IMU_R_link, IMU_R_link):
                self.logger.error(
                    f"[CalibrationManager::add_node] Node {node} is already registered with a "
                    "different IMU to link rotation."
                )
                return False
            return True

        self.nodes[node] = NodeCalibration(IMU_R_link=IMU_R_link)
        return True

    def has_node(self, node: int) -> bool:
        return node in self.nodes

    def node_numbers(self) -> List[int]:
        return sorted(self.nodes.keys())

    def get_calibration_matrix(self, node: int) -> Optional[np.ndarray]:
        if node not in self.nodes:
            return None
        return self.nodes[node].calibration.copy()

    def link_orientation(self, node: int, I_R_IMU: np.ndarray) -> Optional[np.ndarray]:
        """
        Calibrated world orientation of the link of a node

        The reading is remembered for later calibration calls.
        """
        if node not in self.nodes:
            self.logger.error(f"[CalibrationManager::link_orientation] Invalid node number {node}.")
            return None
        data = self.nodes[node]
        data.last_reading = np.array(I_R_IMU, dtype=float)
        return data.calibration @ data.last_reading @ data.IMU_R_link

    def angular_velocity(self, node: int, I_omega_IMU: np.ndarray) -> Optional[np.ndarray]:
        """Angular velocity rotated by the node calibration, None if the input is invalid"""
        prefix = "[CalibrationManager::angular_velocity]"
        if node not in self.nodes:
            self.logger.error(f"{prefix} Invalid node number {node}.")
            return None
        try:
            omega = np.asarray(I_omega_IMU, dtype=float)
        except (TypeError, ValueError):
            omega = None
        if omega is None or omega.shape != (3,) or not np.all(np.isfinite(omega)):
            self.logger.error(f"{prefix} Angular velocity of node {node} must hold 3 finite values.")
            return None
        return self.nodes[node].calibration @ omega

    def _reading(self, node: int, I_R_IMU: Optional[np.ndarray], prefix: str) -> Optional[np.ndarray]:
        if node not in self.nodes:
            self.logger.error(f"{prefix} Invalid node number {node}.")
            return None
        if I_R_IMU is None:
            I_R_IMU = self.nodes[node].last_reading
            if I_R_IMU is None:
                self.logger.error(f"{prefix} No measurement received yet for node {node}.")
                return None
        if not is_rotation_matrix(I_R_IMU):
            self.logger.error(f"{prefix} Invalid rotation for node {node}.")
            return None
        return np.asarray(I_R_IMU, dtype=float)

    def calibrate_world_yaw(self, node: int, I_R_IMU: Optional[np.ndarray] = None) -> bool:
        """
        Remove the world yaw of a node

        After the call the calibrated link orientation of the reading has
        zero heading; roll and pitch are left as measured.

        Args:
            node: Node number
            I_R_IMU: Raw reading; the last received one when omitted

        Returns:
            True on success
        """
        I_R_IMU = self._reading(node, I_R_IMU, "[CalibrationManager::calibrate_world_yaw]")
        if I_R_IMU is None:
            return False

        data = self.nodes[node]
        yaw = yaw_from_rotation(I_R_IMU @ data.IMU_R_link)
        data.calibration = rotation_matrix_z(-yaw)
        self.logger.debug(
            f"[CalibrationManager::calibrate_world_yaw] Node {node} yaw offset {np.degrees(yaw):.2f} deg."
        )
        return True

    def calibrate_all_with_world(
        self,
        node: int,
        world_R_frame: np.ndarray,
        I_R_IMU: Optional[np.ndarray] = None
    ) -> bool:
        """
        Align the node to a reference orientation on all three axes

        C = world_R_frame @ (I_R_IMU @ IMU_R_link)^T
        """
        prefix = "[CalibrationManager::calibrate_all_with_world]"
        I_R_IMU = self._reading(node, I_R_IMU, prefix)
        if I_R_IMU is None:
            return False
        if not is_rotation_matrix(world_R_frame):
            self.logger.error(f"{prefix} Invalid reference orientation.")
            return False

        data = self.nodes[node]
        data.calibration = np.asarray(world_R_frame, dtype=float) @ (I_R_IMU @ data.IMU_R_link).T
        return True

    def clear_calibration_matrices(self):
        """Reset every node calibration to identity"""
        for data in self.nodes.values():
            data.calibration = np.eye(3)
