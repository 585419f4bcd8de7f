#!/usr/bin/env python3
"""
Constraint definitions for the inverse kinematics QP
Joint position/velocity limits and generalized velocity box
"""

import numpy as np
from abc import ABC, abstractmethod
from typing import List, Optional, Tuple


class Constraint(ABC):
    """Abstract base class for IK inequality constraints"""

    def __init__(self, name: str):
        self.name = name
        self.active = True

    @abstractmethod
    def compute(self, nv: int) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """
        Compute constraint matrices

        Returns:
            Tuple of (A, lb, ub) for constraint lb <= A*nu <= ub
        """
        pass


class JointLimitConstraint(Constraint):
    """
    Joint position and velocity limits expressed on joint velocities

    Using a one-step look-ahead:
    s + s_dot*dt stays within [s_min, s_max] and |s_dot| <= v_max
    """

    def __init__(
        self,
        name: str,
        joint_indices: List[int],
        position_lower: np.ndarray,
        position_upper: np.ndarray,
        velocity_limits: np.ndarray
    ):
        super().__init__(name)
        self.joint_indices = list(joint_indices)
        self.position_lower = np.asarray(position_lower, dtype=float)
        self.position_upper = np.asarray(position_upper, dtype=float)
        self.velocity_limits = np.asarray(velocity_limits, dtype=float)

        n = len(self.joint_indices)
        self.lower = -self.velocity_limits.copy()
        self.upper = self.velocity_limits.copy()
        if self.position_lower.shape != (n,) or self.position_upper.shape != (n,):
            raise ValueError("Joint limit vectors must match the number of constrained joints")

    @property
    def num_rows(self) -> int:
        return len(self.joint_indices)

    def update(self, joint_positions: np.ndarray, dt: float):
        """
        Recompute velocity bounds from the current joint positions

        (s_min - s) / dt <= s_dot <= (s_max - s) / dt, clipped by v_max
        """
        s = np.asarray(joint_positions)[self.joint_indices]

        lb_pos = (self.position_lower - s) / dt
        ub_pos = (self.position_upper - s) / dt

        self.lower = np.maximum(-self.velocity_limits, lb_pos)
        self.upper = np.minimum(self.velocity_limits, ub_pos)
        # Keep the interval non-empty for joints far outside their limits
        self.upper = np.maximum(self.upper, np.minimum(0.0, self.lower))
        self.lower = np.minimum(self.lower, self.upper)

    def compute(self, nv: int) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        A = np.zeros((self.num_rows, nv))
        for row, joint in enumerate(self.joint_indices):
            # Joint velocities are in nu after the floating base
            A[row, 6 + joint] = 1.0

        return A, self.lower.copy(), self.upper.copy()


class VelocityBoxConstraint(Constraint):
    """Symmetric bound on every generalized velocity entry"""

    def __init__(self, name: str = "velocity_box", max_velocity: float = 100.0):
        super().__init__(name)
        self.max_velocity = max_velocity

    def compute(self, nv: int) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        return (
            np.eye(nv),
            np.full(nv, -self.max_velocity),
            np.full(nv, self.max_velocity)
        )


class Constraints:
    """Container for all IK inequality constraints"""

    def __init__(self):
        self.constraints: List[Constraint] = []

    def add(self, constraint: Constraint):
        self.constraints.append(constraint)

    def build_constraint_matrices(
        self,
        nv: int,
        extra: Optional[List[Tuple[np.ndarray, np.ndarray, np.ndarray]]] = None
    ) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """
        Stack every active constraint

        Args:
            nv: Number of generalized velocity variables
            extra: Additional (A, lb, ub) blocks, e.g. from tasks

        Returns:
            Tuple of (A, lb, ub) for the full constraint
        """
        blocks = [c.compute(nv) for c in self.constraints if c.active]
        if extra:
            blocks.extend(extra)

        if not blocks:
            return np.zeros((0, nv)), np.zeros(0), np.zeros(0)

        A = np.vstack([b[0] for b in blocks])
        lb = np.concatenate([b[1] for b in blocks])
        ub = np.concatenate([b[2] for b in blocks])

        return A, lb, ub
