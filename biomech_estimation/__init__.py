"""
Biomechanical Estimation
========================

Human motion analysis from wearable sensors: multi-task inverse
kinematics with online IMU calibration, and two-stage MAP estimation of
external wrenches and joint torques.
"""

__version__ = "0.1.0"
