"""
Interface of the external robot model service.

The jog core never computes kinematics or collision distances itself; it
asks an object implementing ``RobotModel``. Joint states handed to the
model are always ordered like ``get_joint_limits()``.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol, runtime_checkable

import numpy as np
from numpy.typing import NDArray

from jogarm.protocol.types import JointBounds, JointState


@runtime_checkable
class RobotModel(Protocol):
    """Kinematics and collision queries for the active joint group."""

    def get_joint_limits(self) -> Sequence[JointBounds]:
        """Bounds of the actuated joints; also defines the joint order."""
        ...

    def get_jacobian(self, joint_state: JointState) -> NDArray[np.float64]:
        """6xN Jacobian (linear rows first) in the planning frame."""
        ...

    def get_min_collision_distance(self, joint_state: JointState) -> float:
        """Minimum distance to collision (m); zero or negative means in collision."""
        ...

    def get_frame_rotation(self, frame: str, joint_state: JointState) -> NDArray[np.float64]:
        """3x3 rotation taking vectors expressed in ``frame`` into the planning frame."""
        ...
