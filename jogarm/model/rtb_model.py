"""
Robot model backed by Robotics Toolbox for Python.

Kinematics come straight from the toolbox robot (``jacob0``, ``fkine``,
``qlim``, ``qdlim``). The toolbox has no collision world, so the minimum
collision distance is delegated to an optional callable; without one the
workspace is treated as free of obstacles.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from typing import Any

import numpy as np
import roboticstoolbox as rtb  # type: ignore[import-untyped]
from numpy.typing import NDArray

from jogarm.protocol.types import JointBounds, JointState

logger = logging.getLogger(__name__)

DistanceFn = Callable[[NDArray[np.float64]], float]


class RoboticsToolboxModel:
    """``RobotModel`` implementation over a ``roboticstoolbox`` robot."""

    def __init__(
        self,
        robot: Any,
        distance_fn: DistanceFn | None = None,
        joint_names: Sequence[str] | None = None,
        default_max_velocity: float = 1.0,
        planning_frame: str = "base_link",
        tool_frame: str = "tool",
    ):
        self.robot = robot
        self._distance_fn = distance_fn
        self.planning_frame = planning_frame
        self.tool_frame = tool_frame
        n = int(robot.n)
        if joint_names is None:
            joint_names = [f"joint_{i + 1}" for i in range(n)]
        if len(joint_names) != n:
            raise ValueError(f"Expected {n} joint names, got {len(joint_names)}")
        self._names = list(joint_names)
        self._bounds = self._build_bounds(default_max_velocity)

    @classmethod
    def from_model_name(cls, name: str, **kwargs: Any) -> RoboticsToolboxModel:
        """Instantiate one of the toolbox's bundled models, e.g. ``"Panda"``."""
        try:
            factory = getattr(rtb.models, name)
        except AttributeError:
            raise ValueError(f"Unknown roboticstoolbox model: {name}") from None
        robot = factory()
        logger.info("Loaded roboticstoolbox model %s (%d joints)", name, robot.n)
        return cls(robot, **kwargs)

    def _build_bounds(self, default_max_velocity: float) -> tuple[JointBounds, ...]:
        n = len(self._names)
        qlim = getattr(self.robot, "qlim", None)
        qlim = np.asarray(qlim, dtype=np.float64) if qlim is not None else None
        qdlim = getattr(self.robot, "qdlim", None)
        qdlim = np.asarray(qdlim, dtype=np.float64).reshape(-1) if qdlim is not None else None

        bounds = []
        for i, name in enumerate(self._names):
            lo, hi = -np.inf, np.inf
            if qlim is not None and qlim.shape == (2, n):
                lo, hi = float(qlim[0, i]), float(qlim[1, i])
            vmax = default_max_velocity
            if qdlim is not None and qdlim.shape == (n,) and np.isfinite(qdlim[i]) and qdlim[i] > 0:
                vmax = float(qdlim[i])
            limited = bool(np.isfinite(lo) and np.isfinite(hi) and lo < hi)
            bounds.append(
                JointBounds(
                    name=name,
                    min_position=lo if limited else 0.0,
                    max_position=hi if limited else 0.0,
                    max_velocity=vmax,
                    has_position_limits=limited,
                )
            )
        return tuple(bounds)

    def _q(self, joint_state: JointState) -> NDArray[np.float64]:
        return np.asarray(joint_state.select(self._names).positions, dtype=np.float64)

    def get_joint_limits(self) -> tuple[JointBounds, ...]:
        return self._bounds

    def get_jacobian(self, joint_state: JointState) -> NDArray[np.float64]:
        return np.asarray(self.robot.jacob0(self._q(joint_state)), dtype=np.float64)

    def get_min_collision_distance(self, joint_state: JointState) -> float:
        if self._distance_fn is None:
            return float("inf")
        return float(self._distance_fn(self._q(joint_state)))

    def get_frame_rotation(self, frame: str, joint_state: JointState) -> NDArray[np.float64]:
        if frame in ("", self.planning_frame):
            return np.eye(3)
        q = self._q(joint_state)
        if frame == self.tool_frame:
            return np.asarray(self.robot.fkine(q).R, dtype=np.float64)
        if frame in getattr(self.robot, "link_dict", {}):
            return np.asarray(self.robot.fkine(q, end=frame).R, dtype=np.float64)
        raise KeyError(f"Unknown frame {frame!r}")
