"""
Motion math for velocity jogging.

- filters: second-order low-pass filters (scalar and per-joint bank)
- kinematics: pseudoinverse, proximity scaling, joint-limit clamping
"""

from jogarm.motion.filters import JointFilterBank, LowPassFilter
from jogarm.motion.kinematics import (
    PseudoInverse,
    clamp_joint_increments,
    moving_toward_singularity,
    proximity_scale,
    pseudo_inverse,
    singularity_scale,
    smallest_singular_value,
)

__all__ = [
    "JointFilterBank",
    "LowPassFilter",
    "PseudoInverse",
    "clamp_joint_increments",
    "moving_toward_singularity",
    "proximity_scale",
    "pseudo_inverse",
    "singularity_scale",
    "smallest_singular_value",
]
