"""Unit tests for jogarm.model.client.RobotModelClient."""

import threading
import time

import numpy as np
import pytest

from jogarm.errors import ModelUnavailableError
from jogarm.model.base import RobotModel
from jogarm.model.client import RobotModelClient


@pytest.fixture
def client_factory():
    clients = []

    def _make(model, timeout=0.5):
        c = RobotModelClient(model, timeout)
        clients.append(c)
        return c

    yield _make
    for c in clients:
        c.close()


class TestRobotModelClient:
    """Bounded-time queries; failures surface as None."""

    def test_fake_model_satisfies_protocol(self, fake_model):
        assert isinstance(fake_model, RobotModel)

    def test_jacobian_passthrough(self, client_factory, fake_model, joint_state):
        client = client_factory(fake_model)
        J = client.get_jacobian(joint_state(np.zeros(6)))
        np.testing.assert_allclose(J, np.eye(6))

    def test_timeout_returns_none(self, client_factory, fake_model, joint_state):
        fake_model.delay = 0.3
        client = client_factory(fake_model, timeout=0.02)
        assert client.get_jacobian(joint_state(np.zeros(6))) is None
        assert client.get_min_collision_distance(joint_state(np.zeros(6))) is None
        assert client.failure_count == 2

    def test_exception_returns_none(self, client_factory, fake_model, joint_state):
        fake_model.fail_jacobian = True
        client = client_factory(fake_model)
        assert client.get_jacobian(joint_state(np.zeros(6))) is None
        assert client.failure_count == 1

    def test_wrong_shape_is_unavailable(self, client_factory, fake_model, joint_state):
        fake_model.jacobian_fn = lambda q: np.eye(5)
        client = client_factory(fake_model)
        assert client.get_jacobian(joint_state(np.zeros(6))) is None

    def test_non_finite_jacobian_is_unavailable(self, client_factory, fake_model, joint_state):
        fake_model.jacobian_fn = lambda q: np.full((6, 6), np.nan)
        client = client_factory(fake_model)
        assert client.get_jacobian(joint_state(np.zeros(6))) is None

    def test_nan_distance_is_unavailable(self, client_factory, fake_model, joint_state):
        fake_model.distance = float("nan")
        client = client_factory(fake_model)
        assert client.get_min_collision_distance(joint_state(np.zeros(6))) is None

    def test_limits_are_cached(self, client_factory, fake_model):
        client = client_factory(fake_model)
        first = client.get_joint_limits()
        fake_model.bounds = []
        assert client.get_joint_limits() is first
        assert [b.name for b in first] == fake_model.names

    def test_missing_limits_raise(self, client_factory, fake_model):
        fake_model.bounds = []
        client = client_factory(fake_model)
        with pytest.raises(ModelUnavailableError):
            client.get_joint_limits()

    def test_frame_rotation_validated(self, client_factory, fake_model, joint_state):
        fake_model.rotations = {"tool": np.eye(3), "bad": np.eye(4)}
        client = client_factory(fake_model)
        js = joint_state(np.zeros(6))
        np.testing.assert_allclose(client.get_frame_rotation("tool", js), np.eye(3))
        assert client.get_frame_rotation("bad", js) is None
        assert client.get_frame_rotation("unknown", js) is None

    def test_recovers_after_failure(self, client_factory, fake_model, joint_state):
        fake_model.fail_jacobian = True
        client = client_factory(fake_model)
        js = joint_state(np.zeros(6))
        assert client.get_jacobian(js) is None
        fake_model.fail_jacobian = False
        assert client.get_jacobian(js) is not None

    def test_workers_are_daemon_threads(self, client_factory, fake_model, joint_state):
        client = client_factory(fake_model)
        assert client.get_jacobian(joint_state(np.zeros(6))) is not None
        workers = [t for t in threading.enumerate() if t.name.startswith("jogarm-model")]
        assert workers
        assert all(t.daemon for t in workers)

    def test_close_does_not_wait_for_hung_call(self, client_factory, fake_model, joint_state):
        release = threading.Event()

        def hang(q):
            release.wait(5.0)
            return np.eye(6)

        fake_model.jacobian_fn = hang
        client = client_factory(fake_model, timeout=0.02)
        try:
            assert client.get_jacobian(joint_state(np.zeros(6))) is None
            start = time.monotonic()
            client.close()
            assert time.monotonic() - start < 0.5
        finally:
            release.set()
