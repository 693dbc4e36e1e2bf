"""Message types and wire encoding for jogarm."""

from jogarm.protocol.types import (
    ArrayMsg,
    JointBounds,
    JointJogCommand,
    JointState,
    JointTrajectory,
    MsgType,
    TrajectoryPoint,
    TwistCommand,
    VelocityCommand,
    WarningMsg,
)

__all__ = [
    "ArrayMsg",
    "JointBounds",
    "JointJogCommand",
    "JointState",
    "JointTrajectory",
    "MsgType",
    "TrajectoryPoint",
    "TwistCommand",
    "VelocityCommand",
    "WarningMsg",
]
