#!/usr/bin/env python3
"""
Mathematical utilities for human motion estimation
Rotation representations, yaw extraction and spatial force transforms
"""

import numpy as np
from typing import Sequence, Tuple


def rotation_matrix_x(angle: float) -> np.ndarray:
    """Rotation matrix about X axis"""
    c, s = np.cos(angle), np.sin(angle)
    return np.array([
        [1, 0, 0],
        [0, c, -s],
        [0, s, c]
    ])


def rotation_matrix_y(angle: float) -> np.ndarray:
    """Rotation matrix about Y axis"""
    c, s = np.cos(angle), np.sin(angle)
    return np.array([
        [c, 0, s],
        [0, 1, 0],
        [-s, 0, c]
    ])


def rotation_matrix_z(angle: float) -> np.ndarray:
    """Rotation matrix about Z axis"""
    c, s = np.cos(angle), np.sin(angle)
    return np.array([
        [c, -s, 0],
        [s, c, 0],
        [0, 0, 1]
    ])


def euler_to_rotation_matrix(
    roll: float,
    pitch: float,
    yaw: float
) -> np.ndarray:
    """
    Convert roll/pitch/yaw to a rotation matrix

    Uses the ZYX convention R = Rz(yaw) @ Ry(pitch) @ Rx(roll), i.e. yaw is
    always a rotation about the world vertical axis.

    Args:
        roll: Rotation about X axis (radians)
        pitch: Rotation about Y axis (radians)
        yaw: Rotation about Z axis (radians)

    Returns:
        3x3 rotation matrix
    """
    return rotation_matrix_z(yaw) @ rotation_matrix_y(pitch) @ rotation_matrix_x(roll)


def rotation_matrix_to_euler(R: np.ndarray) -> Tuple[float, float, float]:
    """
    Extract roll/pitch/yaw from a rotation matrix (ZYX convention)

    Args:
        R: 3x3 rotation matrix

    Returns:
        Tuple of (roll, pitch, yaw) in radians
    """
    # Handle gimbal lock
    if abs(R[2, 0]) >= 1.0 - 1e-9:
        yaw = 0.0
        if R[2, 0] < 0:
            pitch = np.pi / 2
            roll = np.arctan2(R[0, 1], R[0, 2])
        else:
            pitch = -np.pi / 2
            roll = np.arctan2(-R[0, 1], -R[0, 2])
    else:
        pitch = -np.arcsin(R[2, 0])
        roll = np.arctan2(R[2, 1], R[2, 2])
        yaw = np.arctan2(R[1, 0], R[0, 0])

    return roll, pitch, yaw


def yaw_from_rotation(R: np.ndarray) -> float:
    """Heading of R about the world Z axis"""
    return float(np.arctan2(R[1, 0], R[0, 0]))


def rotation_from_row_major(values: Sequence[float]) -> np.ndarray:
    """
    Build a 3x3 rotation from 9 row-major values

    Raises:
        ValueError: if the input does not hold exactly 9 values
    """
    data = np.asarray(values, dtype=float)
    if data.size != 9:
        raise ValueError(f"Expected 9 values for a rotation matrix, got {data.size}")
    return data.reshape(3, 3)


def is_rotation_matrix(R: np.ndarray, tol: float = 1e-6) -> bool:
    """Check orthonormality and positive determinant"""
    try:
        R = np.asarray(R, dtype=float)
    except (TypeError, ValueError):
        return False
    if R.shape != (3, 3) or not np.all(np.isfinite(R)):
        return False
    return (
        np.allclose(R.T @ R, np.eye(3), atol=tol)
        and abs(np.linalg.det(R) - 1.0) < tol
    )


def skew_symmetric(v: np.ndarray) -> np.ndarray:
    """
    Create skew-symmetric matrix from vector

    Args:
        v: 3D vector

    Returns:
        3x3 skew-symmetric matrix such that skew(v) @ u = v x u
    """
    return np.array([
        [0, -v[2], v[1]],
        [v[2], 0, -v[0]],
        [-v[1], v[0], 0]
    ])


def wrench_transform(R: np.ndarray, p: np.ndarray) -> np.ndarray:
    """
    Compute the 6x6 matrix mapping a wrench from frame B to frame A

    Given A_H_B = (R, p), a wrench [f; tau] expressed in B about the origin
    of B is mapped to [R f; R tau + p x (R f)] expressed in A about the
    origin of A.

    Args:
        R: 3x3 rotation A_R_B
        p: origin of B expressed in A

    Returns:
        6x6 dual adjoint matrix
    """
    X = np.zeros((6, 6))
    X[:3, :3] = R
    X[3:, 3:] = R
    X[3:, :3] = skew_symmetric(p) @ R

    return X


def rotate_wrench(R: np.ndarray, wrench: np.ndarray) -> np.ndarray:
    """Rotate force and torque parts of a wrench without changing the point"""
    return np.concatenate([R @ wrench[:3], R @ wrench[3:6]])
