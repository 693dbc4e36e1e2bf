"""Integration fixtures: a live jog server on loopback UDP."""

import socket
import threading
import time

import pytest

from jogarm.server.jog_server import JogServer, ServerConfig
from jogarm.utils.warmup import warmup_jit


@pytest.fixture
def receiver():
    """Socket standing in for the downstream trajectory controller."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    sock.bind(("127.0.0.1", 0))
    sock.settimeout(0.2)
    yield sock
    sock.close()


@pytest.fixture
def sender():
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    yield sock
    sock.close()


@pytest.fixture
def live_server(receiver, fake_model, make_params):
    """Run JogServer.start() on a background thread; yields (server, address)."""
    out_host, out_port = receiver.getsockname()
    config = ServerConfig(
        udp_host="127.0.0.1",
        udp_port=0,
        output_host=out_host,
        output_port=out_port,
        set_priority=False,
    )
    warmup_jit(len(fake_model.get_joint_limits()))
    server = JogServer(make_params(num_halt_msgs_to_publish=3), fake_model, config)
    server.open()
    address = server.udp_transport.bound_address
    thread = threading.Thread(target=server.start, name="jogarm-test-server", daemon=True)
    thread.start()

    deadline = time.monotonic() + 5.0
    while not server.running and time.monotonic() < deadline:
        time.sleep(0.01)
    if not server.running:
        pytest.fail("Jog server did not start within 5s")

    yield server, address

    server.stop()
    thread.join(timeout=2.0)
