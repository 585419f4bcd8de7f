#!/usr/bin/env python3
"""
Wrench sources feeding the external wrench estimator
Fixed force/torque sensors and constant (dummy) wrenches
"""

import logging
import numpy as np
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional

from ..utils.math_utils import rotation_from_row_major, is_rotation_matrix, rotate_wrench, wrench_transform
from ..utils.parameters import ParametersHandler
from ..utils.robot_model import ArticulatedModel


def _finite_vector(value, size: int) -> Optional[np.ndarray]:
    if value is None:
        return None
    try:
        vector = np.asarray(value, dtype=float)
    except (TypeError, ValueError):
        return None
    if vector.shape != (size,) or not np.all(np.isfinite(vector)):
        return None
    return vector


class WrenchSourceType(Enum):
    """Wrench source types"""
    FIXED = 'fixed'   # Sensor rigidly attached to the output frame
    DUMMY = 'dummy'   # Constant wrench, world-aligned


@dataclass
class WrenchSource:
    """
    A source of external wrench bound to one link

    FIXED: the raw sensed wrench is mapped to the link with the constant
    offset transform link_H_sensor.
    DUMMY: the configured world-aligned wrench is rotated into the link
    frame at every update.
    """
    name: str
    type: WrenchSourceType
    output_frame: str
    offset_rotation: np.ndarray = field(default_factory=lambda: np.eye(3))
    offset_position: np.ndarray = field(default_factory=lambda: np.zeros(3))
    values: np.ndarray = field(default_factory=lambda: np.zeros(6))
    wrench: np.ndarray = field(default_factory=lambda: np.zeros(6))

    @classmethod
    def from_parameters(
        cls,
        name: str,
        params: ParametersHandler,
        logger: Optional[logging.Logger] = None
    ) -> Optional['WrenchSource']:
        """
        Build a source from its configuration group

        Returns:
            The source, or None (logged) when the group is malformed
        """
        logger = logger or logging.getLogger(__name__)
        prefix = "[WrenchSource::from_parameters]"

        output_frame = params.get_parameter('outputFrame')
        if output_frame is None:
            logger.error(f"{prefix} Parameter outputFrame of the {name} source is missing.")
            return None

        type_name = params.get_parameter('type')
        try:
            source_type = WrenchSourceType(type_name)
        except ValueError:
            logger.error(f"{prefix} Invalid type {type_name} of the {name} source.")
            return None

        source = cls(name=name, type=source_type, output_frame=output_frame)

        if source_type == WrenchSourceType.FIXED:
            position = _finite_vector(params.get_parameter('position'), 3)
            orientation = _finite_vector(params.get_parameter('orientation'), 9)
            if position is None:
                logger.error(f"{prefix} Parameter position of the {name} source must have 3 values.")
                return None
            if orientation is None:
                logger.error(f"{prefix} Parameter orientation of the {name} source must have 9 values.")
                return None
            rotation = rotation_from_row_major(orientation)
            if not is_rotation_matrix(rotation):
                logger.error(f"{prefix} Parameter orientation of the {name} source is not a rotation.")
                return None
            source.offset_rotation = rotation
            source.offset_position = position
        else:
            values = _finite_vector(params.get_parameter('values'), 6)
            if values is None:
                logger.error(f"{prefix} Parameter values of the {name} source must have 6 values.")
                return None
            source.values = values

        return source

    def compute(
        self,
        model: ArticulatedModel,
        wrenches: Dict[str, np.ndarray]
    ) -> Optional[np.ndarray]:
        """
        Wrench applied on the output frame, in the output frame

        Args:
            model: Model giving the current frame orientation
            wrenches: Raw wrenches keyed by output frame (FIXED sources)

        Returns:
            6D wrench [force, torque], or None if a FIXED source has no reading
        """
        if self.type == WrenchSourceType.FIXED:
            raw = _finite_vector(wrenches.get(self.output_frame), 6)
            if raw is None:
                return None
            self.wrench = wrench_transform(self.offset_rotation, self.offset_position) @ raw
        else:
            R = model.get_world_transform(self.output_frame)[:3, :3]
            self.wrench = rotate_wrench(R.T, self.values)

        return self.wrench.copy()
