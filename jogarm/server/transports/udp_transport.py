"""
UDP transport for the jog server.

One non-blocking socket is bound for inbound commands and joint states;
outbound trajectories and warnings are sent from the same socket to a
configured destination.
"""

from __future__ import annotations

import errno
import logging
import socket
import time

logger = logging.getLogger(__name__)


class UDPTransport:
    """
    Non-blocking UDP endpoint polled from the server's main loop.

    Raw datagrams are returned undecoded; the caller decodes them with
    ``jogarm.protocol.wire``.
    """

    def __init__(
        self, ip: str = "127.0.0.1", port: int = 5011, buffer_size: int = 65536
    ):
        self.ip = ip
        self.port = port
        self.buffer_size = buffer_size
        self.socket: socket.socket | None = None
        self._running = False
        self._rx = bytearray(self.buffer_size)
        self._rxv = memoryview(self._rx)
        self._batch: list[tuple[bytes, tuple[str, int]]] = []

    @property
    def bound_address(self) -> tuple[str, int] | None:
        """Actual (ip, port) after binding; useful when port 0 was requested."""
        if self.socket is None:
            return None
        return self.socket.getsockname()

    def create_socket(self) -> bool:
        """
        Create and bind the socket.

        Returns:
            True if successful, False otherwise
        """
        try:
            sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
            sock.setblocking(False)
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_RCVBUF, 1 << 20)

            # Retry briefly to ride out a transient EADDRINUSE on fast restarts
            attempts = 3
            for i in range(attempts):
                try:
                    sock.bind((self.ip, self.port))
                    break
                except OSError:
                    if i == attempts - 1:
                        sock.close()
                        raise
                    time.sleep(0.1)

            self.socket = sock
            self._running = True
            logger.info("UDP socket bound to %s:%s", *sock.getsockname())
            return True
        except OSError as e:
            logger.error("Failed to create UDP socket on %s:%s: %s", self.ip, self.port, e)
            self.socket = None
            return False

    def close_socket(self) -> None:
        self._running = False
        if self.socket is not None:
            try:
                self.socket.close()
                logger.info("UDP socket closed")
            except OSError as e:
                logger.error("Error closing UDP socket: %s", e)
            finally:
                self.socket = None

    def poll_receive(self) -> tuple[bytes, tuple[str, int]] | None:
        """Non-blocking receive. Returns raw bytes and sender, or None if no data."""
        if self.socket is None or not self._running:
            return None
        try:
            nbytes, address = self.socket.recvfrom_into(self._rxv)
        except BlockingIOError:
            return None
        except OSError as e:
            if e.errno in (errno.EAGAIN, errno.EWOULDBLOCK):
                return None
            logger.error("Socket error in poll_receive: %s", e)
            return None
        if nbytes <= 0:
            return None
        return bytes(self._rxv[:nbytes]), address

    def poll_receive_all(
        self, max_count: int = 16
    ) -> list[tuple[bytes, tuple[str, int]]]:
        """Receive up to ``max_count`` pending datagrams. Reuses an internal list."""
        self._batch.clear()
        for _ in range(max_count):
            msg = self.poll_receive()
            if msg is None:
                break
            self._batch.append(msg)
        return self._batch

    def send(self, data: bytes, address: tuple[str, int]) -> bool:
        """Send raw bytes; returns False (and logs) on failure."""
        if self.socket is None or not self._running:
            logger.warning("Cannot send - socket not available")
            return False
        try:
            self.socket.sendto(data, address)
            return True
        except OSError as e:
            logger.error("Socket error sending to %s: %s", address, e)
            return False

