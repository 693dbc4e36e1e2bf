"""
Jog server: owns the shared state and runs the three loops.

The calling thread runs the ingestion + publish loop over UDP; the jog
engine and the collision monitor run on their own threads. All three are
stopped through one shared ``threading.Event``.
"""

import logging
import sys
import threading
import time
from dataclasses import dataclass

import msgspec
import psutil  # type: ignore[import-untyped]

from jogarm.config import (
    MAX_POLL_COUNT,
    OUTPUT_IP,
    OUTPUT_PORT,
    SERVER_IP,
    SERVER_PORT,
    TRACE,
    JogParameters,
)
from jogarm.model.base import RobotModel
from jogarm.model.client import RobotModelClient
from jogarm.protocol.types import JointJogCommand, JointState, TwistCommand
from jogarm.protocol.wire import decode_inbound, pack_array, pack_trajectory, pack_warning
from jogarm.server.async_logging import AsyncLogHandler
from jogarm.server.collision_monitor import CollisionMonitor
from jogarm.server.jog_engine import JogEngine
from jogarm.server.loop_timer import EventRateMetrics, LoopTimer, format_hz_summary
from jogarm.server.state import SharedState
from jogarm.server.transports.udp_transport import UDPTransport
from jogarm.utils.throttle import LogThrottle

logger = logging.getLogger("jogarm.server.jog_server")

# Re-send the warning flag this often even when it has not changed (UDP is lossy)
WARNING_REPEAT_S = 1.0


@dataclass
class ServerConfig:
    """Network endpoints of the server."""

    udp_host: str = SERVER_IP
    udp_port: int = SERVER_PORT
    output_host: str = OUTPUT_IP
    output_port: int = OUTPUT_PORT
    set_priority: bool = True


class JogServer:
    """
    Coordinates ingestion, the jog engine and the collision monitor.

    The robot model handle is created once by the caller and shared by
    both worker loops through a single ``RobotModelClient``.
    """

    def __init__(
        self,
        params: JogParameters,
        model: RobotModel,
        config: ServerConfig | None = None,
    ):
        self.params = params.validate()
        self.config = config or ServerConfig()
        self.running = False
        self.shutdown_event = threading.Event()

        self.state = SharedState(self.params.zero_command_tolerance)
        self.client = RobotModelClient(model, self.params.model_timeout)
        self.engine = JogEngine(self.params, self.state, self.client, self.shutdown_event)
        self.collision_monitor = CollisionMonitor(
            self.params, self.state, self.client, self.shutdown_event
        )
        self.udp_transport: UDPTransport | None = None

        # Ingestion only drains sockets, so it sleeps instead of spinning
        self._timer = LoopTimer(
            self.params.publish_period, self.shutdown_event, busy_threshold_s=0.0
        )
        self._cmd_rate = EventRateMetrics()
        self._async_log = AsyncLogHandler()
        self._throttle = LogThrottle(logger)
        self._last_cycle = 0
        self._last_warning: bool | None = None
        self._last_warning_sent = 0.0
        self.published_count = 0
        self.dropped_count = 0

    @property
    def output_address(self) -> tuple[str, int]:
        return (self.config.output_host, self.config.output_port)

    def open(self) -> None:
        """Bind the UDP socket.

        Raises:
            RuntimeError: if the socket cannot be bound
        """
        if self.udp_transport is not None:
            return
        logger.info(
            "Starting jog server on %s:%s -> %s:%s",
            self.config.udp_host,
            self.config.udp_port,
            self.config.output_host,
            self.config.output_port,
        )
        transport = UDPTransport(self.config.udp_host, self.config.udp_port)
        if not transport.create_socket():
            raise RuntimeError("Failed to create UDP socket")
        self.udp_transport = transport

    def start(self) -> None:
        """Start the worker threads and run the ingestion loop until stopped."""
        if self.running:
            logger.warning("Jog server already running")
            return
        self.open()
        if self.config.set_priority:
            self._set_high_priority()
        self.running = True
        self._async_log.start()

        self.collision_monitor.start()
        self.engine.start()

        logger.info("Starting ingestion loop")
        self._main_loop()

    def stop(self) -> None:
        """Stop all loops and release the socket and model workers."""
        logger.info("Stopping jog server...")
        self.running = False
        self.shutdown_event.set()

        self.engine.join(timeout=1.0)
        self.collision_monitor.join(timeout=1.0)
        self.client.close()

        if self.udp_transport:
            self.udp_transport.close_socket()
            self.udp_transport = None

        self._async_log.stop()
        logger.info("Jog server stopped")

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    def _main_loop(self) -> None:
        self._timer.start()
        while self.running and not self.shutdown_event.is_set():
            try:
                self.poll_inbound()
                self.publish_outputs()
                self._log_periodic_status()
            except KeyboardInterrupt:
                logger.info("Keyboard interrupt received")
                break
            except Exception as e:
                logger.error("Error in ingestion loop: %s", e, exc_info=True)
            if not self._timer.wait_for_next_tick():
                break

    def poll_inbound(self) -> int:
        """Drain pending datagrams into the shared state; returns how many."""
        if self.udp_transport is None:
            return 0
        msgs = self.udp_transport.poll_receive_all(max_count=MAX_POLL_COUNT)
        for data, addr in msgs:
            self.handle_datagram(data, addr)
        return len(msgs)

    def handle_datagram(self, data: bytes, addr: tuple[str, int] | None = None) -> bool:
        """Decode one inbound message and store it. Returns False if dropped."""
        try:
            msg = decode_inbound(data)
        except msgspec.DecodeError as e:
            self.dropped_count += 1
            self._throttle.warning(
                "decode", "Dropping malformed message from %s: %s", addr, e
            )
            return False

        match msg:
            case JointState():
                self.state.set_joint_state(msg)
            case TwistCommand() | JointJogCommand():
                self._cmd_rate.record(time.perf_counter())
                self.state.set_command(msg)
                logger.log(TRACE, "cmd_received type=%s from=%s", type(msg).__name__, addr)
        return True

    def publish_outputs(self, now: float | None = None) -> None:
        """Send the newest trajectory (once) and the warning flag."""
        if self.udp_transport is None:
            return
        if now is None:
            now = time.monotonic()
        dest = self.output_address

        out = self.state.get_output()
        if out.cycle != self._last_cycle:
            self._last_cycle = out.cycle
            if out.ok_to_publish and out.trajectory is not None:
                if self.params.command_out_type == "array":
                    payload = pack_array(out.trajectory, self.params.publish_joint_positions)
                else:
                    payload = pack_trajectory(out.trajectory)
                if self.udp_transport.send(payload, dest):
                    self.published_count += 1

        warning = self.state.get_status().warning
        if warning != self._last_warning or now - self._last_warning_sent >= WARNING_REPEAT_S:
            if self.udp_transport.send(pack_warning(warning), dest):
                self._last_warning = warning
                self._last_warning_sent = now

    def _log_periodic_status(self) -> None:
        now = time.perf_counter()
        m = self._timer.metrics
        should_warn, pct = m.check_degraded(now, 0.25, 3.0)
        if should_warn:
            logger.warning("io loop overbudget by +%.0f%% (%s)", pct, format_hz_summary(m))
        if not m.should_log(now, 3.0):
            return
        logger.debug(
            "io loop: %s cmd=%.1fHz published=%d dropped=%d model_failures=%d",
            format_hz_summary(m),
            self._cmd_rate.rate_hz(now, window_s=6.0),
            self.published_count,
            self.dropped_count,
            self.client.failure_count,
        )

    def _set_high_priority(self) -> None:
        """Raise process priority where the platform allows it."""
        try:
            p = psutil.Process()
            if sys.platform == "win32":
                p.nice(psutil.HIGH_PRIORITY_CLASS)
                logger.info("Set process priority to HIGH_PRIORITY_CLASS")
            else:
                try:
                    p.nice(-10)
                    logger.info("Set process nice value to -10")
                except psutil.AccessDenied:
                    logger.debug("Cannot set negative nice value without privileges")
        except psutil.Error as e:
            logger.warning("Failed to set process priority: %s", e)
