"""
Jog calculation loop.

Each cycle reads the latest command, joint state and collision scale from
``SharedState`` and writes the next joint trajectory increment back:

    twist  -> scale -> frame rotation -> J+ -> singularity scale
           -> collision scale -> joint clamp -> filters -> trajectory
    joints -> scale -> joint clamp -> filters -> trajectory

The watchdog is part of the same cycle: a stale or all-zero command, or
any hard-stop condition, publishes a halt trajectory (measured positions,
zero velocity) and resets the filters so motion resumes without a jump.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from enum import Enum

import numpy as np
from numpy.typing import NDArray

from jogarm.config import TRACE, JogParameters
from jogarm.errors import MalformedCommandError
from jogarm.model.client import RobotModelClient
from jogarm.motion.filters import JointFilterBank
from jogarm.motion.kinematics import (
    clamp_joint_increments,
    pseudo_inverse,
    singularity_scale,
    smallest_singular_value,
)
from jogarm.protocol.types import (
    JointJogCommand,
    JointState,
    JointTrajectory,
    TrajectoryPoint,
    TwistCommand,
)
from jogarm.server.loop_timer import LoopTimer, PhaseTimer, format_hz_summary
from jogarm.server.state import SharedState
from jogarm.utils.throttle import LogThrottle

logger = logging.getLogger(__name__)


class CycleOutcome(Enum):
    """What a single jog cycle did."""

    WAITING = "waiting"  # no usable joint state yet
    REJECTED = "rejected"  # malformed command; output left as it was
    MOTION = "motion"
    STALE = "stale"
    ZERO_COMMAND = "zero_command"
    SINGULARITY = "singularity"
    COLLISION = "collision"
    MODEL_UNAVAILABLE = "model_unavailable"
    BAD_JOINT_STATE = "bad_joint_state"  # holding the last good measurement

    @property
    def is_halt(self) -> bool:
        return self in _HALTS

    @property
    def is_hard_stop(self) -> bool:
        return self in _HARD_STOPS


_HARD_STOPS = frozenset(
    {
        CycleOutcome.SINGULARITY,
        CycleOutcome.COLLISION,
        CycleOutcome.MODEL_UNAVAILABLE,
        CycleOutcome.BAD_JOINT_STATE,
    }
)
_HALTS = _HARD_STOPS | {CycleOutcome.STALE, CycleOutcome.ZERO_COMMAND}


def trajectory_point_count(params: JogParameters) -> int:
    """Points per outgoing trajectory, padding for slow downstream controllers."""
    padded = 0
    if params.controller_period > 0:
        padded = math.ceil(params.controller_period / params.publish_period - 1e-9)
    return max(1, params.min_trajectory_points, padded)


class JogEngine:
    """Turns velocity commands into bounded joint trajectory increments."""

    def __init__(
        self,
        params: JogParameters,
        state: SharedState,
        client: RobotModelClient,
        stop_event: threading.Event | None = None,
    ):
        self._params = params
        self._state = state
        self._client = client
        self._stop_event = stop_event or threading.Event()
        self._thread: threading.Thread | None = None
        self._throttle = LogThrottle(logger)

        bounds = client.get_joint_limits()
        self.joint_names: list[str] = [b.name for b in bounds]
        self._index = {name: i for i, name in enumerate(self.joint_names)}
        n = len(bounds)
        self._min_pos = np.array([b.min_position for b in bounds], dtype=np.float64)
        self._max_pos = np.array([b.max_position for b in bounds], dtype=np.float64)
        self._max_step = (
            np.array([abs(b.max_velocity) for b in bounds], dtype=np.float64)
            * params.publish_period
        )
        self._has_limits = np.array(
            [b.has_position_limits for b in bounds], dtype=np.bool_
        )

        self._vel_filters = JointFilterBank(n, params.low_pass_filter_coeff)
        self._pos_filters = JointFilterBank(n, params.low_pass_filter_coeff)
        self._filters_primed = False
        self._last_good_q: NDArray[np.float64] | None = None
        self._halt_count = 0
        self._num_points = trajectory_point_count(params)
        self._phases = PhaseTimer(["model", "solve", "filter"], params.publish_period)
        self.last_outcome: CycleOutcome | None = None
        self.last_singularity_scale = 1.0

    @property
    def params(self) -> JogParameters:
        return self._params

    # ------------------------------------------------------------------
    # One cycle
    # ------------------------------------------------------------------

    def step(self, now: float | None = None) -> CycleOutcome:
        """Run one calculation cycle; ``now`` is a time.monotonic() value."""
        if now is None:
            now = time.monotonic()
        outcome = self._cycle(now)
        if outcome is not self.last_outcome:
            self._log_transition(outcome)
        self.last_outcome = outcome
        logger.log(TRACE, "jog_cycle outcome=%s", outcome.value)
        return outcome

    def _cycle(self, now: float) -> CycleOutcome:
        p = self._params
        raw = self._state.get_joint_state()
        if raw is None:
            return CycleOutcome.WAITING
        try:
            js = raw.select(self.joint_names)
        except MalformedCommandError as e:
            self._throttle.warning("joint state", "Unusable joint state: %s", e)
            return self._hold_last_good()
        q = np.asarray(js.positions, dtype=np.float64)
        if not np.all(np.isfinite(q)):
            self._throttle.warning("joint state", "Unusable joint state: non-finite positions")
            return self._hold_last_good()
        self._last_good_q = q

        if not self._filters_primed:
            self._reset_filters(q)
            self._filters_primed = True

        record = self._state.get_command()
        if record.command is None or now - record.received_at > p.incoming_command_timeout:
            return self._halt(q, CycleOutcome.STALE)
        if record.zero_command:
            return self._halt(q, CycleOutcome.ZERO_COMMAND)

        cmd = record.command
        try:
            if isinstance(cmd, TwistCommand):
                delta, outcome = self._cartesian_delta(cmd, js, q)
            else:
                delta, outcome = self._joint_delta(cmd), CycleOutcome.MOTION
        except MalformedCommandError as e:
            self._throttle.warning("malformed", "Rejected jog command: %s", e)
            return CycleOutcome.REJECTED

        if delta is None:
            return self._halt(q, outcome)

        return self._move(q, self._clamp(delta, q))

    # ------------------------------------------------------------------
    # Command paths
    # ------------------------------------------------------------------

    def scale_twist(self, cmd: TwistCommand) -> NDArray[np.float64]:
        """Per-cycle Cartesian increment (linear rows first) for a twist."""
        p = self._params
        v = np.asarray(cmd.as_vector(), dtype=np.float64)
        if p.command_in_type == "unitless":
            v[:3] *= p.linear_scale
            v[3:] *= p.rotational_scale
        else:
            v *= p.publish_period
        return v

    def _cartesian_delta(
        self, cmd: TwistCommand, js: JointState, q: NDArray[np.float64]
    ) -> tuple[NDArray[np.float64] | None, CycleOutcome]:
        p = self._params
        v = self.scale_twist(cmd)

        if cmd.frame and cmd.frame != p.planning_frame:
            R = self._client.get_frame_rotation(cmd.frame, js)
            if R is None:
                return None, CycleOutcome.MODEL_UNAVAILABLE
            v[:3] = R @ v[:3]
            v[3:] = R @ v[3:]

        with self._phases.phase("model"):
            J = self._client.get_jacobian(js)
        if J is None:
            return None, CycleOutcome.MODEL_UNAVAILABLE

        with self._phases.phase("solve"):
            pinv = pseudo_inverse(J, p.singularity_epsilon)
            delta = pinv.matrix @ v

        sing = self._singularity_scale(js, q, pinv.sigma_min, delta)
        self.last_singularity_scale = sing
        if sing == 0.0:
            self._throttle.warning(
                "singularity",
                "Very close to a singularity (sigma_min=%.5f); halting",
                pinv.sigma_min,
            )
            return None, CycleOutcome.SINGULARITY

        coll = self._state.get_collision_scale()
        if coll == 0.0:
            return None, CycleOutcome.COLLISION

        return delta * (sing * coll), CycleOutcome.MOTION

    def _singularity_scale(
        self,
        js: JointState,
        q: NDArray[np.float64],
        sigma_min: float,
        delta: NDArray[np.float64],
    ) -> float:
        p = self._params
        if sigma_min >= p.lower_singularity_threshold:
            return 1.0
        # Probe a short step along the commanded motion to see whether it
        # moves toward or away from the singularity
        sigma_ahead: float | None = None
        norm = float(np.linalg.norm(delta))
        if norm > 0.0 and math.isfinite(norm):
            q_ahead = q + (p.singularity_lookahead / norm) * delta
            probe = JointState(
                names=js.names, positions=q_ahead.tolist(), stamp=js.stamp
            )
            with self._phases.phase("model"):
                J_ahead = self._client.get_jacobian(probe)
            if J_ahead is not None:
                sigma_ahead = smallest_singular_value(J_ahead)
        return singularity_scale(
            sigma_min,
            sigma_ahead,
            p.lower_singularity_threshold,
            p.hard_stop_singularity_threshold,
        )

    def _joint_delta(self, cmd: JointJogCommand) -> NDArray[np.float64]:
        p = self._params
        delta = np.zeros(len(self.joint_names), dtype=np.float64)
        for name, velocity in zip(cmd.joint_names, cmd.velocities):
            i = self._index.get(name)
            if i is None:
                raise MalformedCommandError(f"Unknown joint {name!r} in joint jog command")
            delta[i] = velocity
        gain = p.joint_scale if p.command_in_type == "unitless" else p.publish_period
        return delta * gain

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def _reset_filters(self, q: NDArray[np.float64]) -> None:
        self._vel_filters.reset(0.0)
        self._pos_filters.reset(q)

    def _clamp(
        self, delta: NDArray[np.float64], q: NDArray[np.float64]
    ) -> NDArray[np.float64]:
        return clamp_joint_increments(
            delta,
            q,
            self._min_pos,
            self._max_pos,
            self._max_step,
            self._has_limits,
            self._params.joint_limit_margin,
        )

    def _move(self, q: NDArray[np.float64], delta: NDArray[np.float64]) -> CycleOutcome:
        p = self._params
        period = p.publish_period
        with self._phases.phase("filter"):
            # The filters overshoot steps, so their output is clamped again
            step = self._clamp(self._vel_filters.filter(delta / period) * period, q)
            velocities = step / period
            positions = q + step
            if p.publish_joint_positions:
                filtered = self._pos_filters.filter(positions)
                positions = q + self._clamp(filtered - q, q)

        bad = ~(np.isfinite(velocities) & np.isfinite(positions))
        if bad.any():
            velocities[bad] = 0.0
            positions[bad] = q[bad]
            self._vel_filters.reset_channels(bad, 0.0)
            self._pos_filters.reset_channels(bad, q)
            self._throttle.warning(
                "nan",
                "Non-finite output for joints %s; holding them",
                [self.joint_names[i] for i in np.flatnonzero(bad)],
            )

        self._halt_count = 0
        self._state.set_output(self.compose(positions, velocities), True)
        self._state.set_status(command_is_stale=False, warning=False)
        self._phases.tick()
        return CycleOutcome.MOTION

    def _hold_last_good(self) -> CycleOutcome:
        """Halt at the last usable measurement, or wait if there never was one."""
        if self._last_good_q is None:
            return CycleOutcome.WAITING
        return self._halt(self._last_good_q, CycleOutcome.BAD_JOINT_STATE)

    def _halt(self, q: NDArray[np.float64], outcome: CycleOutcome) -> CycleOutcome:
        """Hold the measured position; stop publishing after a few repeats."""
        self._reset_filters(q)
        self._halt_count += 1
        ok_to_publish = self._halt_count <= self._params.num_halt_msgs_to_publish
        self._state.set_output(self.compose(q, np.zeros_like(q)), ok_to_publish)
        self._state.set_status(
            command_is_stale=outcome is CycleOutcome.STALE,
            warning=outcome.is_hard_stop,
        )
        return outcome

    def compose(
        self, positions: NDArray[np.float64], velocities: NDArray[np.float64]
    ) -> JointTrajectory:
        """Build the outgoing trajectory according to the output mode flags."""
        p = self._params
        pos = positions.tolist() if p.publish_joint_positions else []
        vel = velocities.tolist() if p.publish_joint_velocities else []
        acc = [0.0] * len(self.joint_names) if p.publish_joint_accelerations else []
        points = [
            TrajectoryPoint(
                positions=pos,
                velocities=vel,
                accelerations=acc,
                time_from_start=i * p.publish_period,
            )
            for i in range(1, self._num_points + 1)
        ]
        return JointTrajectory(
            joint_names=list(self.joint_names),
            points=points,
            stamp=time.time() + p.publish_delay,
            frame_id=p.planning_frame,
        )

    def _log_transition(self, outcome: CycleOutcome) -> None:
        if outcome is CycleOutcome.WAITING:
            logger.info("Waiting for joint state")
        elif outcome is CycleOutcome.STALE:
            logger.debug("No recent command; halting")
        elif outcome is CycleOutcome.COLLISION:
            logger.warning("Collision proximity hard stop; halting")
        elif outcome is CycleOutcome.MODEL_UNAVAILABLE:
            logger.warning("Robot model unavailable; halting")
        elif outcome is CycleOutcome.BAD_JOINT_STATE:
            logger.warning("Joint state unusable; holding last good position")
        elif outcome is CycleOutcome.MOTION and self.last_outcome in _HARD_STOPS:
            logger.info("Jogging resumed")

    # ------------------------------------------------------------------
    # Thread
    # ------------------------------------------------------------------

    def run(self) -> None:
        """Loop at the publish period until the stop event is set."""
        timer = LoopTimer(self._params.publish_period, self._stop_event)
        timer.start()
        logger.info(
            "Jog engine started: %d joints at %.1f Hz",
            len(self.joint_names),
            1.0 / self._params.publish_period,
        )
        while not self._stop_event.is_set():
            try:
                self.step()
            except Exception as e:
                logger.error("Error in jog loop: %s", e, exc_info=True)
            self._log_periodic(timer)
            if not timer.wait_for_next_tick():
                break
        logger.info("Jog engine stopped")

    def _log_periodic(self, timer: LoopTimer) -> None:
        now = time.perf_counter()
        m = timer.metrics
        should_warn, pct = m.check_degraded(now, 0.25, 3.0)
        if should_warn:
            logger.warning(
                "jog loop overbudget by +%.0f%% (%s)", pct, format_hz_summary(m)
            )
        if m.should_log(now, 3.0):
            logger.debug(
                "jog loop: %s ov=%d phases %s",
                format_hz_summary(m),
                m.overrun_count,
                self._phases.summary(),
            )

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            logger.warning("Jog engine already running")
            return
        self._thread = threading.Thread(target=self.run, name="jogarm-engine", daemon=True)
        self._thread.start()

    def join(self, timeout: float | None = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
