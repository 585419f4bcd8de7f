#!/usr/bin/env python3
"""
Measurement and unknown-variable layout of the MAP estimators
Sensor ordering with offsets, unknown ranges per estimator variant
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

from ..utils.robot_model import ArticulatedModel, SensorType, SensorsList


class EstimatorVariant(Enum):
    """Unknown-variable layouts"""
    # d = [nu_dot (6+D), f_ext per link (6L), tau (D)], with the equation of motion
    FLOATING_BASE = 'floating_base'
    # d = [f_ext per link (6L)], no dynamics rows
    NON_COLLOCATED_EXT_WRENCHES = 'non_collocated_ext_wrenches'


class MeasurementType(Enum):
    """Measurement types, values are the configuration names"""
    ACCELEROMETER = 'ACCELEROMETER_SENSOR'
    GYROSCOPE = 'GYROSCOPE_SENSOR'
    THREE_AXIS_ANGULAR_ACCELEROMETER = 'THREE_AXIS_ANGULAR_ACCELEROMETER_SENSOR'
    NET_EXT_WRENCH = 'NET_EXT_WRENCH_SENSOR'
    JOINT_ACCELERATION = 'DOF_ACCELERATION_SENSOR'
    RCM = 'RCM_SENSOR'


MEASUREMENT_SIZES: Dict[MeasurementType, int] = {
    MeasurementType.ACCELEROMETER: 3,
    MeasurementType.GYROSCOPE: 3,
    MeasurementType.THREE_AXIS_ANGULAR_ACCELEROMETER: 3,
    MeasurementType.NET_EXT_WRENCH: 6,
    MeasurementType.JOINT_ACCELERATION: 1,
    MeasurementType.RCM: 6,
}

_MODEL_SENSOR_TYPES: Dict[SensorType, MeasurementType] = {
    SensorType.ACCELEROMETER: MeasurementType.ACCELEROMETER,
    SensorType.GYROSCOPE: MeasurementType.GYROSCOPE,
    SensorType.THREE_AXIS_ANGULAR_ACCELEROMETER: MeasurementType.THREE_AXIS_ANGULAR_ACCELEROMETER,
}

RCM_SENSOR_ID = 'RCM_SENSOR'


@dataclass
class MeasurementSlot:
    """One sensor in the measurement vector"""
    type: MeasurementType
    id: str                      # Sensor, link or joint name
    offset: int
    size: int
    link: Optional[str] = None   # Link the sensor is attached to

    @property
    def range(self) -> slice:
        return slice(self.offset, self.offset + self.size)


@dataclass
class EstimatorLayout:
    """
    Fixed sizes and orderings of one estimator

    Built once from the model; never resized afterwards.
    """
    variant: EstimatorVariant
    link_names: List[str]
    joint_names: List[str]
    nv: int
    measurements: List[MeasurementSlot] = field(default_factory=list)

    @classmethod
    def from_model(
        cls,
        model: ArticulatedModel,
        variant: EstimatorVariant,
        sensors: Optional[SensorsList] = None
    ) -> 'EstimatorLayout':
        """
        Derive the layout

        FLOATING_BASE measurements: model sensors in model order, one
        NET_EXT_WRENCH per link, one JOINT_ACCELERATION per joint.
        NON_COLLOCATED_EXT_WRENCHES measurements: one NET_EXT_WRENCH per
        link, then the RCM sensor.
        """
        layout = cls(
            variant=variant,
            link_names=model.link_names,
            joint_names=model.joint_names,
            nv=model.nv
        )

        if variant == EstimatorVariant.FLOATING_BASE:
            for sensor in (sensors if sensors is not None else model.sensors):
                layout._append(_MODEL_SENSOR_TYPES[sensor.type], sensor.name, link=sensor.link)
            for link in layout.link_names:
                layout._append(MeasurementType.NET_EXT_WRENCH, link, link=link)
            for joint in layout.joint_names:
                layout._append(MeasurementType.JOINT_ACCELERATION, joint)
        else:
            for link in layout.link_names:
                layout._append(MeasurementType.NET_EXT_WRENCH, link, link=link)
            layout._append(MeasurementType.RCM, RCM_SENSOR_ID, link=model.base_link)

        return layout

    def _append(self, measurement_type: MeasurementType, id: str, link: Optional[str] = None):
        self.measurements.append(MeasurementSlot(
            type=measurement_type,
            id=id,
            offset=self.num_measurements,
            size=MEASUREMENT_SIZES[measurement_type],
            link=link
        ))

    @property
    def num_dofs(self) -> int:
        return len(self.joint_names)

    @property
    def num_links(self) -> int:
        return len(self.link_names)

    @property
    def num_measurements(self) -> int:
        return sum(slot.size for slot in self.measurements)

    # ------------------------------------------------------------------
    # Unknown ranges
    # ------------------------------------------------------------------

    @property
    def has_dynamics(self) -> bool:
        return self.variant == EstimatorVariant.FLOATING_BASE

    @property
    def acceleration_range(self) -> slice:
        if not self.has_dynamics:
            return slice(0, 0)
        return slice(0, self.nv)

    @property
    def ext_wrenches_range(self) -> slice:
        start = self.acceleration_range.stop
        return slice(start, start + 6 * self.num_links)

    @property
    def torques_range(self) -> slice:
        start = self.ext_wrenches_range.stop
        if not self.has_dynamics:
            return slice(start, start)
        return slice(start, start + self.num_dofs)

    @property
    def num_unknowns(self) -> int:
        return self.torques_range.stop

    def link_wrench_range(self, link: str) -> slice:
        start = self.ext_wrenches_range.start + 6 * self.link_names.index(link)
        return slice(start, start + 6)

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def find(self, measurement_type: MeasurementType, id: str) -> Optional[MeasurementSlot]:
        for slot in self.measurements:
            if slot.type == measurement_type and slot.id == id:
                return slot
        return None

    def find_by_id(self, id: str) -> List[MeasurementSlot]:
        return [slot for slot in self.measurements if slot.id == id]

    def sizes(self) -> Tuple[int, int]:
        """(number of unknowns, number of measurements)"""
        return self.num_unknowns, self.num_measurements
