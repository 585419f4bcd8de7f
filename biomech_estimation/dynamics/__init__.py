"""
Dynamics estimation modules for human motion analysis
Two-stage MAP estimation of external wrenches and joint torques
"""

from .inverse_dynamics import HumanID
from .map_estimator import MAPEstimator, MAPEstimatorParameters
from .sensors import EstimatorLayout, EstimatorVariant, MeasurementSlot, MeasurementType
from .wrench_sources import WrenchSource, WrenchSourceType

__all__ = [
    'HumanID',
    'MAPEstimator',
    'MAPEstimatorParameters',
    'EstimatorLayout',
    'EstimatorVariant',
    'MeasurementSlot',
    'MeasurementType',
    'WrenchSource',
    'WrenchSourceType'
]
