"""
Message types for the jogarm protocol.

Inbound commands form a tagged union (``VelocityCommand``) that is
decoded in a single pass and dispatched once at ingestion. Outbound
trajectories carry one or more points for the next increment of motion.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from enum import IntEnum, auto
from typing import Annotated, TypeAlias

import msgspec

from jogarm.errors import MalformedCommandError


class MsgType(IntEnum):
    """Message type codes used as msgspec tags on the wire."""

    TWIST = auto()
    JOINT_JOG = auto()
    JOINT_STATE = auto()
    TRAJECTORY = auto()
    WARNING = auto()
    ARRAY = auto()


def _check_finite(label: str, values: list[float]) -> None:
    for v in values:
        if not math.isfinite(v):
            raise MalformedCommandError(f"{label} contains a non-finite value")


class TwistCommand(
    msgspec.Struct, tag=int(MsgType.TWIST), array_like=True, frozen=True
):
    """TWIST: [MsgType.TWIST, linear, angular, frame, stamp]

    ``frame`` empty means the planning frame.
    """

    linear: Annotated[list[float], msgspec.Meta(min_length=3, max_length=3)]
    angular: Annotated[list[float], msgspec.Meta(min_length=3, max_length=3)]
    frame: str = ""
    stamp: float = 0.0

    def __post_init__(self) -> None:
        _check_finite("linear", self.linear)
        _check_finite("angular", self.angular)

    def as_vector(self) -> list[float]:
        return [*self.linear, *self.angular]

    def is_zero(self, tol: float = 0.0) -> bool:
        return all(abs(v) <= tol for v in self.as_vector())


class JointJogCommand(
    msgspec.Struct, tag=int(MsgType.JOINT_JOG), array_like=True, frozen=True
):
    """JOINT_JOG: [MsgType.JOINT_JOG, joint_names, velocities, stamp]"""

    joint_names: list[str]
    velocities: list[float]
    stamp: float = 0.0

    def __post_init__(self) -> None:
        if len(self.joint_names) != len(self.velocities):
            raise MalformedCommandError(
                "Number of joint names must match number of velocities"
            )
        if len(set(self.joint_names)) != len(self.joint_names):
            raise MalformedCommandError("Duplicate joint names in joint jog command")
        _check_finite("velocities", self.velocities)

    def is_zero(self, tol: float = 0.0) -> bool:
        return all(abs(v) <= tol for v in self.velocities)


class JointState(
    msgspec.Struct, tag=int(MsgType.JOINT_STATE), array_like=True, frozen=True
):
    """JOINT_STATE: [MsgType.JOINT_STATE, names, positions, velocities, stamp]

    ``velocities`` may be empty when the source does not report them.
    """

    names: list[str]
    positions: list[float]
    velocities: list[float] = []
    stamp: float = 0.0

    def __post_init__(self) -> None:
        if len(self.names) != len(self.positions):
            raise MalformedCommandError(
                "Number of joint names must match number of positions"
            )
        if self.velocities and len(self.velocities) != len(self.names):
            raise MalformedCommandError(
                "Number of joint velocities must match number of names"
            )

    def select(self, names: Sequence[str]) -> JointState:
        """Return the state of ``names`` in that order; extra joints are dropped.

        Raises:
            MalformedCommandError: if any requested joint is missing
        """
        if list(names) == self.names:
            return self
        index = {n: i for i, n in enumerate(self.names)}
        missing = [n for n in names if n not in index]
        if missing:
            raise MalformedCommandError(
                f"Joint state lacks joints: {', '.join(missing)}"
            )
        idx = [index[n] for n in names]
        return JointState(
            names=list(names),
            positions=[self.positions[i] for i in idx],
            velocities=[self.velocities[i] for i in idx] if self.velocities else [],
            stamp=self.stamp,
        )


class JointBounds(msgspec.Struct, frozen=True):
    """Limits of a single actuated joint (rad, rad/s)."""

    name: str
    min_position: float
    max_position: float
    max_velocity: float
    has_position_limits: bool = True


class TrajectoryPoint(msgspec.Struct, array_like=True, frozen=True):
    """A single waypoint; empty lists mean the field is not reported."""

    positions: list[float] = []
    velocities: list[float] = []
    accelerations: list[float] = []
    time_from_start: float = 0.0


class JointTrajectory(
    msgspec.Struct, tag=int(MsgType.TRAJECTORY), array_like=True, frozen=True
):
    """TRAJECTORY: [MsgType.TRAJECTORY, joint_names, points, stamp, frame_id]"""

    joint_names: list[str]
    points: list[TrajectoryPoint]
    stamp: float = 0.0
    frame_id: str = ""


class WarningMsg(
    msgspec.Struct, tag=int(MsgType.WARNING), array_like=True, frozen=True
):
    """WARNING: [MsgType.WARNING, active]"""

    active: bool


class ArrayMsg(msgspec.Struct, tag=int(MsgType.ARRAY), array_like=True, frozen=True):
    """ARRAY: [MsgType.ARRAY, data] - flat positions or velocities of point 0."""

    data: list[float]


# Tagged union for commands (dispatched once at ingestion)
VelocityCommand: TypeAlias = TwistCommand | JointJogCommand

# Everything the server accepts on its input socket
Inbound: TypeAlias = TwistCommand | JointJogCommand | JointState
