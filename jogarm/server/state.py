"""
Shared state exchanged between the ingestion, collision and jog loops.

Fields that change together are grouped into immutable records, each
behind its own lock. Getters hand out the current record (a snapshot that
is never mutated afterwards); setters build a new record and swap it in,
so critical sections only ever copy a reference.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass

from jogarm.protocol.types import JointState, JointTrajectory, VelocityCommand

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CommandRecord:
    """Latest velocity command and when it arrived (monotonic seconds)."""

    command: VelocityCommand | None = None
    received_at: float = 0.0
    zero_command: bool = True


@dataclass(frozen=True, slots=True)
class StatusFlags:
    command_is_stale: bool = True
    warning: bool = False


@dataclass(frozen=True, slots=True)
class OutputRecord:
    """Most recent jog engine output; ``cycle`` increments on every write."""

    trajectory: JointTrajectory | None = None
    ok_to_publish: bool = False
    cycle: int = 0


class SharedState:
    """
    Thread-safe exchange object owned by the jog server.

    Writers: the ingestion side (command, joint state), the collision
    monitor (collision scale) and the jog engine (status, output).
    """

    def __init__(self, zero_command_tolerance: float = 0.0):
        self._zero_tol = float(zero_command_tolerance)

        self._command_lock = threading.Lock()
        self._command = CommandRecord()

        self._joints_lock = threading.Lock()
        self._joint_state: JointState | None = None

        self._scale_lock = threading.Lock()
        self._collision_scale = 1.0

        self._status_lock = threading.Lock()
        self._status = StatusFlags()

        self._output_lock = threading.Lock()
        self._output = OutputRecord()

    # ------------------------------------------------------------------
    # Command
    # ------------------------------------------------------------------

    def set_command(
        self, command: VelocityCommand, received_at: float | None = None
    ) -> CommandRecord:
        """Store a new command, stamping its arrival and zero flag."""
        record = CommandRecord(
            command=command,
            received_at=time.monotonic() if received_at is None else received_at,
            zero_command=command.is_zero(self._zero_tol),
        )
        with self._command_lock:
            self._command = record
        return record

    def get_command(self) -> CommandRecord:
        with self._command_lock:
            return self._command

    # ------------------------------------------------------------------
    # Joint state
    # ------------------------------------------------------------------

    def set_joint_state(self, joint_state: JointState) -> None:
        with self._joints_lock:
            self._joint_state = joint_state

    def get_joint_state(self) -> JointState | None:
        with self._joints_lock:
            return self._joint_state

    # ------------------------------------------------------------------
    # Collision scale
    # ------------------------------------------------------------------

    def set_collision_scale(self, scale: float) -> float:
        """Store the collision velocity scale clamped to [0, 1]; NaN halts."""
        s = float(scale)
        if s != s:
            s = 0.0
        s = min(1.0, max(0.0, s))
        with self._scale_lock:
            self._collision_scale = s
        return s

    def get_collision_scale(self) -> float:
        with self._scale_lock:
            return self._collision_scale

    # ------------------------------------------------------------------
    # Status flags
    # ------------------------------------------------------------------

    def set_status(self, command_is_stale: bool, warning: bool) -> None:
        flags = StatusFlags(command_is_stale=command_is_stale, warning=warning)
        with self._status_lock:
            self._status = flags

    def get_status(self) -> StatusFlags:
        with self._status_lock:
            return self._status

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def set_output(self, trajectory: JointTrajectory, ok_to_publish: bool) -> OutputRecord:
        with self._output_lock:
            self._output = OutputRecord(
                trajectory=trajectory,
                ok_to_publish=ok_to_publish,
                cycle=self._output.cycle + 1,
            )
            return self._output

    def get_output(self) -> OutputRecord:
        with self._output_lock:
            return self._output
