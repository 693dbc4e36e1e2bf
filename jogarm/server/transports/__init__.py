"""Network transports used by the jog server."""

from .udp_transport import UDPTransport

__all__ = ["UDPTransport"]
