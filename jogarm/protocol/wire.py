"""
Wire protocol for jogarm.

Wire format uses msgpack arrays with integer type codes as the first
element (see ``MsgType``):

- TWIST:       [MsgType.TWIST, linear, angular, frame, stamp]
- JOINT_JOG:   [MsgType.JOINT_JOG, joint_names, velocities, stamp]
- JOINT_STATE: [MsgType.JOINT_STATE, names, positions, velocities, stamp]
- TRAJECTORY:  [MsgType.TRAJECTORY, joint_names, points, stamp, frame_id]
- WARNING:     [MsgType.WARNING, active]
- ARRAY:       [MsgType.ARRAY, data]
"""

from __future__ import annotations

import logging

import msgspec
import numpy as np

from jogarm.protocol.types import (
    ArrayMsg,
    Inbound,
    JointTrajectory,
    WarningMsg,
)

logger = logging.getLogger(__name__)


def _enc_hook(obj: object) -> object:
    """Custom encoder hook for numpy types."""
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    if isinstance(obj, (np.integer, np.floating)):
        return obj.item()  # Convert numpy scalar to Python native type
    raise NotImplementedError(f"Cannot encode {type(obj)}")


# Module-level encoder with numpy support (thread-safe, reusable)
_encoder = msgspec.msgpack.Encoder(enc_hook=_enc_hook)

# Module-level decoders for single-pass decode
_inbound_decoder = msgspec.msgpack.Decoder(Inbound)
_trajectory_decoder = msgspec.msgpack.Decoder(JointTrajectory | WarningMsg | ArrayMsg)

# Pre-packed warning messages
_WARNING_PACKED = {
    True: _encoder.encode(WarningMsg(active=True)),
    False: _encoder.encode(WarningMsg(active=False)),
}


def encode(obj: object) -> bytes:
    """Encode any msgspec struct or Python object to bytes with numpy support."""
    return _encoder.encode(obj)


def decode_inbound(data: bytes) -> Inbound:
    """Decode raw bytes to a typed inbound message.

    Raises:
        msgspec.ValidationError: If data doesn't match any inbound type or fails validation
        msgspec.DecodeError: If data is not valid msgpack
    """
    return _inbound_decoder.decode(data)


def decode_outbound(data: bytes) -> JointTrajectory | WarningMsg | ArrayMsg:
    """Decode bytes produced by the server's output side."""
    return _trajectory_decoder.decode(data)


def pack_warning(active: bool) -> bytes:
    """Pack a warning message: [WARNING, active]."""
    return _WARNING_PACKED[bool(active)]


def pack_trajectory(traj: JointTrajectory) -> bytes:
    """Pack a full trajectory message."""
    return _encoder.encode(traj)


def pack_array(traj: JointTrajectory, use_positions: bool) -> bytes:
    """Pack the positions or velocities of the first point as a flat array."""
    if not traj.points:
        return _encoder.encode(ArrayMsg(data=[]))
    point = traj.points[0]
    data = point.positions if use_positions else point.velocities
    return _encoder.encode(ArrayMsg(data=list(data)))
