"""Shared fixtures: a scriptable robot model and engine factories."""

from __future__ import annotations

import time
from collections.abc import Callable

import numpy as np
import pytest

from jogarm.config import JogParameters
from jogarm.model.client import RobotModelClient
from jogarm.protocol.types import JointBounds, JointState
from jogarm.server.jog_engine import JogEngine
from jogarm.server.state import SharedState

JOINT_NAMES = [f"j{i + 1}" for i in range(6)]


def rot_z(angle: float) -> np.ndarray:
    c, s = np.cos(angle), np.sin(angle)
    return np.array([[c, -s, 0.0], [s, c, 0.0], [0.0, 0.0, 1.0]])


def last_joint_singular(q: np.ndarray) -> np.ndarray:
    """Diagonal Jacobian whose smallest singular value is |q[5]|."""
    return np.diag([1.0, 1.0, 1.0, 1.0, 1.0, abs(float(q[5]))])


class FakeRobotModel:
    """
    Six-joint model with an analytic Jacobian.

    By default the Jacobian is the identity (perfectly conditioned), the
    workspace is free (distance 1 m) and every joint is limited to
    [-3, 3] rad at 2 rad/s.
    """

    def __init__(
        self,
        jacobian_fn: Callable[[np.ndarray], np.ndarray] | None = None,
        names: list[str] | None = None,
    ):
        self.names = list(names or JOINT_NAMES)
        self.jacobian_fn = jacobian_fn or (lambda q: np.eye(6, len(q)))
        self.bounds = [
            JointBounds(name=n, min_position=-3.0, max_position=3.0, max_velocity=2.0)
            for n in self.names
        ]
        self.distance: float = 1.0
        self.rotations: dict[str, np.ndarray] = {}
        self.fail_jacobian = False
        self.delay = 0.0
        self.jacobian_calls = 0
        self.distance_calls = 0

    def _maybe_wait(self) -> None:
        if self.delay:
            time.sleep(self.delay)

    def get_joint_limits(self):
        return self.bounds

    def get_jacobian(self, joint_state: JointState) -> np.ndarray:
        self.jacobian_calls += 1
        self._maybe_wait()
        if self.fail_jacobian:
            raise RuntimeError("kinematics solver crashed")
        return self.jacobian_fn(np.asarray(joint_state.positions, dtype=float))

    def get_min_collision_distance(self, joint_state: JointState) -> float:
        self.distance_calls += 1
        self._maybe_wait()
        return self.distance

    def get_frame_rotation(self, frame: str, joint_state: JointState) -> np.ndarray:
        return self.rotations[frame]


TEST_PARAMS = dict(
    publish_period=0.01,
    publish_joint_positions=True,
    publish_joint_velocities=True,
    model_timeout=0.5,
    incoming_command_timeout=0.5,
)


def make_params(**overrides) -> JogParameters:
    values = dict(TEST_PARAMS)
    values.update(overrides)
    return JogParameters(**values).validate()


def joint_state(positions, names: list[str] | None = None) -> JointState:
    return JointState(names=list(names or JOINT_NAMES), positions=[float(p) for p in positions])


@pytest.fixture
def fake_model() -> FakeRobotModel:
    return FakeRobotModel()


@pytest.fixture
def engine_factory():
    """Build (engine, state, model) triples; model clients are closed afterwards."""
    clients: list[RobotModelClient] = []

    def _make(model: FakeRobotModel | None = None, **param_overrides):
        model = model or FakeRobotModel()
        params = make_params(**param_overrides)
        state = SharedState(params.zero_command_tolerance)
        client = RobotModelClient(model, params.model_timeout)
        clients.append(client)
        engine = JogEngine(params, state, client)
        return engine, state, model

    yield _make
    for c in clients:
        c.close()


@pytest.fixture(name="make_params")
def make_params_fixture():
    return make_params


@pytest.fixture(name="joint_state")
def joint_state_fixture():
    return joint_state


@pytest.fixture(name="model_factory")
def model_factory_fixture():
    """FakeRobotModel constructor; ``singular=True`` uses last_joint_singular."""

    def _make(singular: bool = False, **kwargs) -> FakeRobotModel:
        if singular:
            kwargs.setdefault("jacobian_fn", last_joint_singular)
        return FakeRobotModel(**kwargs)

    return _make
