"""
Bounded-time client for the robot model service.

Model queries run on a small pool of daemon threads and are awaited with a
timeout, so a slow or failing model can never stall the jog or collision
loops. A call that never returns cannot block interpreter exit either.
A query that raises, times out or returns a malformed result yields
``None`` ("unavailable"); callers treat that as a hard-stop condition.
"""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Callable
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FuturesTimeoutError
from typing import TypeVar

import numpy as np
from numpy.typing import NDArray

from jogarm.errors import ModelUnavailableError
from jogarm.model.base import RobotModel
from jogarm.protocol.types import JointBounds, JointState
from jogarm.utils.throttle import LogThrottle

logger = logging.getLogger(__name__)

T = TypeVar("T")


class _DaemonPool:
    """Fixed set of daemon worker threads fed from one queue."""

    def __init__(self, max_workers: int, name_prefix: str):
        self._queue: queue.SimpleQueue = queue.SimpleQueue()
        self._threads = [
            threading.Thread(
                target=self._worker, name=f"{name_prefix}-{i}", daemon=True
            )
            for i in range(max_workers)
        ]
        for t in self._threads:
            t.start()

    def submit(self, fn: Callable[..., T], *args: object) -> Future[T]:
        future: Future[T] = Future()
        self._queue.put((future, fn, args))
        return future

    def _worker(self) -> None:
        while True:
            item = self._queue.get()
            if item is None:
                return
            future, fn, args = item
            if not future.set_running_or_notify_cancel():
                continue
            try:
                result = fn(*args)
            except BaseException as e:
                future.set_exception(e)
            else:
                future.set_result(result)

    def shutdown(self) -> None:
        """Cancel queued calls and let idle workers exit; busy ones are abandoned."""
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                break
            if item is not None:
                item[0].cancel()
        for _ in self._threads:
            self._queue.put(None)


class RobotModelClient:
    """
    Owns the robot model handle created at startup. Each call is submitted
    to the pool and awaited for at most ``timeout`` seconds.
    """

    def __init__(self, model: RobotModel, timeout: float, max_workers: int = 4):
        self._model = model
        self._timeout = float(timeout)
        self._max_workers = max_workers
        self._pool: _DaemonPool | None = None
        self._lock = threading.Lock()
        self._throttle = LogThrottle(logger)
        self._limits: tuple[JointBounds, ...] | None = None
        self.failure_count = 0

    @property
    def model(self) -> RobotModel:
        return self._model

    @property
    def timeout(self) -> float:
        return self._timeout

    def _get_pool(self) -> _DaemonPool:
        with self._lock:
            if self._pool is None:
                self._pool = _DaemonPool(self._max_workers, "jogarm-model")
            return self._pool

    def close(self) -> None:
        """Release the worker pool without waiting for hung model calls."""
        with self._lock:
            pool, self._pool = self._pool, None
        if pool is not None:
            pool.shutdown()
            logger.debug("RobotModelClient worker pool shut down")

    def _call(self, what: str, fn: Callable[..., T], *args: object) -> T | None:
        future: Future[T] = self._get_pool().submit(fn, *args)
        try:
            result = future.result(timeout=self._timeout)
        except FuturesTimeoutError:
            future.cancel()
            self.failure_count += 1
            self._throttle.warning(
                what, "Robot model %s timed out after %.3fs", what, self._timeout
            )
            return None
        except Exception as e:
            self.failure_count += 1
            self._throttle.warning(what, "Robot model %s failed: %s", what, e)
            return None
        self._throttle.clear(what)
        return result

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_joint_limits(self) -> tuple[JointBounds, ...]:
        """
        Fetch (once) and cache the joint bounds.

        Raises:
            ModelUnavailableError: if the model cannot report its joints
        """
        if self._limits is not None:
            return self._limits
        limits = self._call("joint limits", self._model.get_joint_limits)
        if not limits:
            raise ModelUnavailableError("Robot model did not report joint limits")
        self._limits = tuple(limits)
        logger.info(
            "Robot model joint group: %s", ", ".join(b.name for b in self._limits)
        )
        return self._limits

    def get_jacobian(self, joint_state: JointState) -> NDArray[np.float64] | None:
        result = self._call("jacobian", self._model.get_jacobian, joint_state)
        if result is None:
            return None
        J = np.asarray(result, dtype=np.float64)
        n = len(joint_state.names)
        if J.shape != (6, n) or not np.all(np.isfinite(J)):
            self._throttle.warning(
                "jacobian shape",
                "Robot model returned an unusable Jacobian of shape %s (expected (6, %d))",
                J.shape,
                n,
            )
            return None
        return J

    def get_min_collision_distance(self, joint_state: JointState) -> float | None:
        result = self._call(
            "collision distance", self._model.get_min_collision_distance, joint_state
        )
        if result is None:
            return None
        distance = float(result)
        if distance != distance:  # NaN
            return None
        return distance

    def get_frame_rotation(
        self, frame: str, joint_state: JointState
    ) -> NDArray[np.float64] | None:
        result = self._call(
            "frame rotation", self._model.get_frame_rotation, frame, joint_state
        )
        if result is None:
            return None
        R = np.asarray(result, dtype=np.float64)
        if R.shape != (3, 3) or not np.all(np.isfinite(R)):
            self._throttle.warning(
                "frame rotation shape",
                "Robot model returned an unusable rotation for frame %s",
                frame,
            )
            return None
        return R
