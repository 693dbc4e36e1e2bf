"""
Collision proximity monitor.

Runs on its own thread at ``collision_check_rate`` and is the only writer
of the collision velocity scale in ``SharedState``.
"""

from __future__ import annotations

import logging
import threading
import time

from jogarm.config import JogParameters
from jogarm.errors import MalformedCommandError
from jogarm.model.client import RobotModelClient
from jogarm.motion.kinematics import proximity_scale
from jogarm.server.loop_timer import LoopTimer, format_hz_summary
from jogarm.server.state import SharedState
from jogarm.utils.throttle import LogThrottle

logger = logging.getLogger(__name__)


def collision_scale(
    distance: float | None, lower_threshold: float, hard_stop_threshold: float
) -> float:
    """Velocity scale for a minimum collision distance.

    ``None`` (model unavailable) and distances at or below zero (in
    collision) halt.
    """
    if distance is None or distance <= 0.0:
        return 0.0
    return proximity_scale(distance, lower_threshold, hard_stop_threshold)


class CollisionMonitor:
    """Periodically turns the model's minimum collision distance into a scale."""

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
        self._joint_names = [b.name for b in client.get_joint_limits()]
        self.last_distance: float | None = None
        # Slow loop: sleep the whole interval instead of spinning
        self._timer = LoopTimer(
            params.collision_check_period, self._stop_event, busy_threshold_s=0.0
        )

    def step(self) -> float:
        """Run one check and publish the resulting scale."""
        p = self._params
        if not p.collision_check:
            return self._state.set_collision_scale(1.0)

        js = self._state.get_joint_state()
        if js is None:
            return self._state.get_collision_scale()
        try:
            js = js.select(self._joint_names)
        except MalformedCommandError as e:
            self._throttle.warning("joints", "Collision check skipped: %s", e)
            return self._state.set_collision_scale(0.0)

        distance = self._client.get_min_collision_distance(js)
        self.last_distance = distance
        scale = collision_scale(
            distance,
            p.lower_collision_proximity_threshold,
            p.hard_stop_collision_proximity_threshold,
        )
        if distance is None:
            self._throttle.warning(
                "unavailable", "Collision distance unavailable; halting"
            )
        elif scale == 0.0:
            self._throttle.warning(
                "halt", "Very close to collision (%.4f m); halting", distance
            )
        elif scale < 1.0:
            self._throttle.info(
                "slow", "Close to collision (%.4f m); scaling velocity by %.2f", distance, scale
            )
        return self._state.set_collision_scale(scale)

    def run(self) -> None:
        """Loop until the stop event is set."""
        timer = self._timer
        timer.start()
        logger.info(
            "Collision monitor started at %.1f Hz (checking %s)",
            self._params.collision_check_rate,
            "on" if self._params.collision_check else "off",
        )
        while not self._stop_event.is_set():
            try:
                self.step()
            except Exception as e:
                logger.error("Error in collision monitor loop: %s", e, exc_info=True)
            m = timer.metrics
            if m.should_log(time.perf_counter(), 10.0):
                logger.debug("collision loop: %s", format_hz_summary(m))
            if not timer.wait_for_next_tick():
                break
        logger.info("Collision monitor stopped")

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            logger.warning("Collision monitor already running")
            return
        self._thread = threading.Thread(
            target=self.run, name="jogarm-collision", daemon=True
        )
        self._thread.start()

    def join(self, timeout: float | None = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
