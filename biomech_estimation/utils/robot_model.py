#!/usr/bin/env python3
"""
Articulated Body Model Wrapper
Pinocchio-based kinematics and dynamics queries for a floating-base human model
"""

import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterator, List, Optional, Tuple

import numpy as np
import pinocchio as pin


class SensorType(Enum):
    """Sensor types a model can carry"""
    ACCELEROMETER = 'accelerometer'
    GYROSCOPE = 'gyroscope'
    THREE_AXIS_ANGULAR_ACCELEROMETER = 'three_axis_angular_accelerometer'


# Names used by the SENSOR_REMOVAL configuration group
SENSOR_REMOVAL_NAMES: Dict[SensorType, str] = {
    SensorType.ACCELEROMETER: 'ACCELEROMETER_SENSOR',
    SensorType.GYROSCOPE: 'GYROSCOPE_SENSOR',
    SensorType.THREE_AXIS_ANGULAR_ACCELEROMETER: 'THREE_AXIS_ANGULAR_ACCELEROMETER_SENSOR',
}


@dataclass
class Sensor:
    """Sensor rigidly attached to a link frame"""
    name: str
    type: SensorType
    link: str


@dataclass
class SensorsList:
    """Ordered list of model sensors"""
    sensors: List[Sensor] = field(default_factory=list)

    @classmethod
    def from_urdf(cls, urdf_path: str) -> 'SensorsList':
        """
        Parse ``<sensor>`` elements declared at robot level of a URDF

        Expected form::

            <sensor name="pelvis_acc" type="accelerometer">
              <parent link="Pelvis"/>
            </sensor>

        Unknown sensor types are ignored.
        """
        sensors = []
        root = ET.parse(urdf_path).getroot()
        for element in root.findall('sensor'):
            name = element.get('name')
            type_name = element.get('type')
            parent = element.find('parent')
            if name is None or parent is None or parent.get('link') is None:
                continue
            try:
                sensor_type = SensorType(type_name)
            except ValueError:
                continue
            sensors.append(Sensor(name=name, type=sensor_type, link=parent.get('link')))

        return cls(sensors)

    def add_sensor(self, sensor: Sensor):
        self.sensors.append(sensor)

    def remove_sensor(self, sensor_type: SensorType, name: str) -> bool:
        """Remove one sensor by type and name, False if it does not exist"""
        for i, sensor in enumerate(self.sensors):
            if sensor.type == sensor_type and sensor.name == name:
                del self.sensors[i]
                return True
        return False

    def remove_all_sensors_of_type(self, sensor_type: SensorType) -> bool:
        self.sensors = [s for s in self.sensors if s.type != sensor_type]
        return True

    def sensors_of_type(self, sensor_type: SensorType) -> List[Sensor]:
        return [s for s in self.sensors if s.type == sensor_type]

    def copy(self) -> 'SensorsList':
        return SensorsList([Sensor(s.name, s.type, s.link) for s in self.sensors])

    def __iter__(self) -> Iterator[Sensor]:
        return iter(self.sensors)

    def __len__(self) -> int:
        return len(self.sensors)


_REFERENCE_FRAMES = {
    'world': pin.ReferenceFrame.WORLD,
    'local': pin.ReferenceFrame.LOCAL,
    'local_world_aligned': pin.ReferenceFrame.LOCAL_WORLD_ALIGNED,
}


class ArticulatedModel:
    """
    Floating-base rigid body model using Pinocchio

    The model must have a free-flyer root joint followed by one-DoF joints
    only. Configuration and velocity follow the Pinocchio conventions:

    - q = [base position (3), base quaternion xyzw (4), joint positions (D)]
    - nu = [base linear velocity (3), base angular velocity (3),
            joint velocities (D)], base velocities in the base frame

    Provides:
    - Forward kinematics and frame transforms
    - Frame Jacobians and velocities
    - Mass matrix, nonlinear effects, center of mass
    - Joint-name keyed state synchronization between two models
    """

    def __init__(
        self,
        model: 'pin.Model',
        sensors: Optional[SensorsList] = None,
        base_link: Optional[str] = None,
        logger: Optional[logging.Logger] = None
    ):
        """
        Initialize articulated model

        Args:
            model: Pinocchio model with a free-flyer root joint
            sensors: Sensors attached to the model links
            base_link: Floating base link (defaults to the first body of the root joint)
            logger: Logger for diagnostics
        """
        self.logger = logger or logging.getLogger(__name__)
        self.model = model
        self.data = model.createData()
        self.sensors = sensors if sensors is not None else SensorsList()

        self.nq = model.nq
        self.nv = model.nv

        # Joint index maps, root joint excluded
        self._joint_q_index: Dict[str, int] = {}
        self._joint_v_index: Dict[str, int] = {}
        for joint_id in range(2, model.njoints):
            joint = model.joints[joint_id]
            self._joint_q_index[model.names[joint_id]] = joint.idx_q
            self._joint_v_index[model.names[joint_id]] = joint.idx_v

        self.base_link = base_link or self._default_base_link()

        # Allocate state vectors
        self.q = pin.neutral(model)
        self.v = np.zeros(self.nv)
        self._update_kinematics()

    @classmethod
    def from_urdf(
        cls,
        urdf_path: str,
        base_link: Optional[str] = None,
        logger: Optional[logging.Logger] = None
    ) -> 'ArticulatedModel':
        """
        Load a floating-base model and its sensors from a URDF file

        Raises:
            OSError / ValueError: propagated from Pinocchio or the XML parser
        """
        model = pin.buildModelFromUrdf(str(urdf_path), pin.JointModelFreeFlyer())
        sensors = SensorsList.from_urdf(str(urdf_path))
        return cls(model, sensors=sensors, base_link=base_link, logger=logger)

    def _default_base_link(self) -> Optional[str]:
        for frame in self.model.frames:
            if frame.type == pin.FrameType.BODY and frame.parentJoint == 1:
                return frame.name
        return None

    def is_valid(self) -> bool:
        """Check the free-flyer root and one-DoF joint structure"""
        if self.model.njoints < 2 or self.model.joints[1].shortname() != 'JointModelFreeFlyer':
            return False
        if self.nq - 7 != self.nv - 6:
            return False
        if any(self.model.joints[j].nv != 1 for j in range(2, self.model.njoints)):
            return False
        return self.base_link is not None

    # ------------------------------------------------------------------
    # Structure
    # ------------------------------------------------------------------

    @property
    def dofs(self) -> int:
        """Number of internal degrees of freedom"""
        return self.nv - 6

    @property
    def joint_names(self) -> List[str]:
        return [self.model.names[i] for i in range(2, self.model.njoints)]

    @property
    def link_names(self) -> List[str]:
        """Body frames in model order"""
        return [f.name for f in self.model.frames if f.type == pin.FrameType.BODY]

    @property
    def total_mass(self) -> float:
        return float(pin.computeTotalMass(self.model))

    @property
    def gravity(self) -> np.ndarray:
        return self.model.gravity.linear.copy()

    def frame_exists(self, frame_name: str) -> bool:
        return isinstance(frame_name, str) and self.model.existFrame(frame_name)

    def frame_id(self, frame_name: str) -> int:
        return self.model.getFrameId(frame_name)

    def set_floating_base(self, link_name: str) -> bool:
        """Select the floating base link; it must be a body of the root joint"""
        if not self.frame_exists(link_name):
            self.logger.error(f"[ArticulatedModel::set_floating_base] Unknown link {link_name}.")
            return False
        frame = self.model.frames[self.frame_id(link_name)]
        if frame.type != pin.FrameType.BODY or frame.parentJoint != 1:
            self.logger.error(
                f"[ArticulatedModel::set_floating_base] Link {link_name} is not attached "
                "to the floating base joint."
            )
            return False
        self.base_link = link_name
        return True

    def get_joint_limits(self) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Joint position lower/upper limits and velocity limits"""
        return (
            self.model.lowerPositionLimit[7:].copy(),
            self.model.upperPositionLimit[7:].copy(),
            self.model.velocityLimit[6:].copy()
        )

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def set_configuration(self, q: np.ndarray, v: np.ndarray) -> bool:
        """Set the state in Pinocchio convention"""
        q = np.asarray(q, dtype=float)
        v = np.asarray(v, dtype=float)
        if q.shape != (self.nq,) or v.shape != (self.nv,):
            self.logger.error(
                f"[ArticulatedModel::set_configuration] Expected sizes ({self.nq}, {self.nv}), "
                f"got ({q.size}, {v.size})."
            )
            return False
        self.q = q.copy()
        self.v = v.copy()
        self._update_kinematics()
        return True

    def set_state(
        self,
        base_pose: np.ndarray,
        joint_positions: np.ndarray,
        base_twist: np.ndarray,
        joint_velocities: np.ndarray
    ) -> bool:
        """
        Set the state from world-frame quantities

        Args:
            base_pose: 4x4 world transform of the floating base
            joint_positions: Joint positions (D,)
            base_twist: Base [linear, angular] velocity in world coordinates (6,)
            joint_velocities: Joint velocities (D,)
        """
        joint_positions = np.asarray(joint_positions, dtype=float)
        joint_velocities = np.asarray(joint_velocities, dtype=float)
        if joint_positions.shape != (self.dofs,) or joint_velocities.shape != (self.dofs,):
            self.logger.error(
                f"[ArticulatedModel::set_state] Joint vectors must have size {self.dofs}."
            )
            return False

        R = np.asarray(base_pose)[:3, :3]
        q = np.zeros(self.nq)
        q[:3] = np.asarray(base_pose)[:3, 3]
        q[3:7] = pin.Quaternion(R).coeffs()
        q[7:] = joint_positions

        v = np.zeros(self.nv)
        v[:3] = R.T @ np.asarray(base_twist)[:3]
        v[3:6] = R.T @ np.asarray(base_twist)[3:6]
        v[6:] = joint_velocities

        return self.set_configuration(q, v)

    def get_state(self) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
        """
        Get the state as world-frame quantities

        Returns:
            Tuple of (base_pose 4x4, joint positions, base twist world (6,), joint velocities)
        """
        base_pose = self.get_root_transform()
        R = base_pose[:3, :3]
        twist = np.concatenate([R @ self.v[:3], R @ self.v[3:6]])
        return base_pose, self.q[7:].copy(), twist, self.v[6:].copy()

    def get_root_transform(self) -> np.ndarray:
        """World transform of the free-flyer joint"""
        oMi = self.data.oMi[1]
        T = np.eye(4)
        T[:3, :3] = oMi.rotation
        T[:3, 3] = oMi.translation
        return T

    def copy_state_from(self, other: 'ArticulatedModel') -> bool:
        """
        Synchronize this model with another one

        The floating base state is copied as is; joint positions and
        velocities are copied by matching joint name, joints that only
        exist here keep their current value.
        """
        q = self.q.copy()
        v = self.v.copy()
        q[:7] = other.q[:7]
        v[:6] = other.v[:6]
        for name, idx_q in self._joint_q_index.items():
            if name in other._joint_q_index:
                q[idx_q] = other.q[other._joint_q_index[name]]
                v[self._joint_v_index[name]] = other.v[other._joint_v_index[name]]
        return self.set_configuration(q, v)

    def _update_kinematics(self):
        pin.computeJointJacobians(self.model, self.data, self.q)
        pin.forwardKinematics(self.model, self.data, self.q, self.v, np.zeros(self.nv))
        pin.updateFramePlacements(self.model, self.data)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_world_transform(self, frame_name: str) -> np.ndarray:
        """
        Get frame pose in world coordinates

        Args:
            frame_name: Name of the frame

        Returns:
            4x4 homogeneous transformation matrix
        """
        oMf = self.data.oMf[self.frame_id(frame_name)]
        T = np.eye(4)
        T[:3, :3] = oMf.rotation
        T[:3, 3] = oMf.translation
        return T

    def get_base_transform(self) -> np.ndarray:
        return self.get_world_transform(self.base_link)

    def get_frame_jacobian(
        self,
        frame_name: str,
        reference_frame: str = 'local_world_aligned'
    ) -> np.ndarray:
        """
        Compute frame Jacobian

        Args:
            frame_name: Name of the frame
            reference_frame: 'world', 'local' or 'local_world_aligned'

        Returns:
            6 x nv Jacobian matrix, rows [linear, angular]
        """
        return pin.getFrameJacobian(
            self.model, self.data, self.frame_id(frame_name),
            _REFERENCE_FRAMES[reference_frame]
        ).copy()

    def get_frame_velocity(
        self,
        frame_name: str,
        reference_frame: str = 'local_world_aligned'
    ) -> np.ndarray:
        """
        Get frame velocity

        Returns:
            6D velocity vector [linear, angular]
        """
        v = pin.getFrameVelocity(
            self.model, self.data, self.frame_id(frame_name),
            _REFERENCE_FRAMES[reference_frame]
        )
        return np.concatenate([v.linear, v.angular])

    def get_frame_bias_acceleration(
        self,
        frame_name: str,
        reference_frame: str = 'local'
    ) -> np.ndarray:
        """Classical frame acceleration at zero generalized acceleration (Jdot * nu)"""
        a = pin.getFrameClassicalAcceleration(
            self.model, self.data, self.frame_id(frame_name),
            _REFERENCE_FRAMES[reference_frame]
        )
        return np.concatenate([a.linear, a.angular])

    def get_mass_matrix(self) -> np.ndarray:
        """
        Compute joint-space mass matrix M(q)

        Returns:
            nv x nv symmetric mass matrix
        """
        M = pin.crba(self.model, self.data, self.q)
        return np.triu(M) + np.triu(M, 1).T

    def get_nonlinear_effects(self) -> np.ndarray:
        """
        Compute Coriolis, centrifugal, and gravity terms h(q, nu)

        Returns:
            nv-dimensional vector
        """
        return pin.nonLinearEffects(self.model, self.data, self.q, self.v).copy()

    def get_center_of_mass(self) -> np.ndarray:
        """Get center of mass position in world frame"""
        return pin.centerOfMass(self.model, self.data, self.q).copy()
