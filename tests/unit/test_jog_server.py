"""Unit tests for JogServer ingestion and publishing (no sockets)."""

from unittest.mock import MagicMock

import msgspec
import pytest

from jogarm.protocol.types import (
    ArrayMsg,
    JointJogCommand,
    JointState,
    JointTrajectory,
    TwistCommand,
    WarningMsg,
)
from jogarm.protocol.wire import decode_outbound, encode
from jogarm.server.jog_server import WARNING_REPEAT_S, JogServer, ServerConfig

OUTPUT = ("127.0.0.1", 6000)


@pytest.fixture
def server_factory(fake_model, make_params):
    servers = []

    def _make(**overrides):
        config = ServerConfig(output_host=OUTPUT[0], output_port=OUTPUT[1], set_priority=False)
        server = JogServer(make_params(**overrides), fake_model, config)
        server.udp_transport = MagicMock()
        server.udp_transport.send.return_value = True
        servers.append(server)
        return server

    yield _make
    for s in servers:
        s.udp_transport = None
        s.stop()


def sent_messages(server):
    return [decode_outbound(c.args[0]) for c in server.udp_transport.send.call_args_list]


class TestIngestion:
    def test_joint_state_and_commands_are_stored(self, server_factory):
        server = server_factory()
        js = JointState(names=["j1"], positions=[0.5])
        assert server.handle_datagram(encode(js), ("127.0.0.1", 1))
        assert server.state.get_joint_state() == js

        twist = TwistCommand(linear=[1.0, 0.0, 0.0], angular=[0.0, 0.0, 0.0])
        assert server.handle_datagram(encode(twist))
        record = server.state.get_command()
        assert record.command == twist
        assert record.zero_command is False

        jog = JointJogCommand(joint_names=["j1"], velocities=[0.0])
        server.handle_datagram(encode(jog))
        assert server.state.get_command().zero_command is True

    def test_latest_command_wins(self, server_factory):
        server = server_factory()
        for x in (0.1, 0.2, 0.3):
            server.handle_datagram(
                encode(TwistCommand(linear=[x, 0.0, 0.0], angular=[0.0, 0.0, 0.0]))
            )
        assert server.state.get_command().command.linear[0] == 0.3

    @pytest.mark.parametrize(
        "data",
        [
            b"\xc1",
            msgspec.msgpack.encode([1, [0.0], [0.0, 0.0, 0.0], "", 0.0]),
            msgspec.msgpack.encode([2, ["a", "b"], [1.0], 0.0]),
            msgspec.msgpack.encode([99, 1, 2]),
        ],
    )
    def test_malformed_datagrams_are_dropped(self, server_factory, data):
        server = server_factory()
        before = server.state.get_command()
        assert server.handle_datagram(data) is False
        assert server.dropped_count == 1
        assert server.state.get_command() is before

    def test_poll_inbound_drains_transport(self, server_factory):
        server = server_factory()
        js = JointState(names=["j1"], positions=[0.5])
        server.udp_transport.poll_receive_all.return_value = [
            (encode(js), ("127.0.0.1", 1)),
            (b"\xc1", ("127.0.0.1", 1)),
        ]
        assert server.poll_inbound() == 2
        assert server.dropped_count == 1
        assert server.state.get_joint_state() == js


class TestPublishing:
    def test_each_cycle_is_published_once(self, server_factory, joint_state):
        server = server_factory()
        server.state.set_joint_state(joint_state([0.0] * 6))
        server.engine.step(100.0)

        server.publish_outputs(now=0.0)
        server.publish_outputs(now=0.1)
        trajectories = [m for m in sent_messages(server) if isinstance(m, JointTrajectory)]
        assert len(trajectories) == 1
        assert server.published_count == 1
        assert server.udp_transport.send.call_args_list[0].args[1] == OUTPUT

    def test_suppressed_halts_are_not_sent(self, server_factory, joint_state):
        server = server_factory(num_halt_msgs_to_publish=1)
        server.state.set_joint_state(joint_state([0.0] * 6))
        server.engine.step(100.0)
        server.publish_outputs(now=0.0)
        server.engine.step(100.01)
        server.publish_outputs(now=0.01)
        assert server.published_count == 1

    def test_array_mode_sends_first_point(self, server_factory, joint_state):
        server = server_factory(command_out_type="array", publish_joint_velocities=False)
        server.state.set_joint_state(joint_state([0.1, 0.2, 0.3, 0.4, 0.5, 0.6]))
        server.engine.step(100.0)
        server.publish_outputs(now=0.0)
        arrays = [m for m in sent_messages(server) if isinstance(m, ArrayMsg)]
        assert arrays == [ArrayMsg(data=[0.1, 0.2, 0.3, 0.4, 0.5, 0.6])]

    def test_warning_sent_on_change_and_repeated(self, server_factory):
        server = server_factory()

        def warnings():
            return [m for m in sent_messages(server) if isinstance(m, WarningMsg)]

        server.publish_outputs(now=10.0)
        assert warnings() == [WarningMsg(active=False)]

        server.publish_outputs(now=10.1)
        assert len(warnings()) == 1

        server.state.set_status(command_is_stale=False, warning=True)
        server.publish_outputs(now=10.2)
        assert warnings()[-1] == WarningMsg(active=True)

        server.publish_outputs(now=10.25 + WARNING_REPEAT_S)
        assert len(warnings()) == 3

    def test_nothing_sent_without_transport(self, server_factory):
        server = server_factory()
        transport = server.udp_transport
        server.udp_transport = None
        server.publish_outputs(now=0.0)
        transport.send.assert_not_called()


def test_ingestion_loop_sleeps_instead_of_spinning(server_factory):
    server = server_factory()
    assert server._timer.busy_threshold == 0.0
