"""HTTP/WebSocket server and progress broadcasting."""

from kairo.server.api_server import KairoAPIServer
from kairo.server.broadcaster import ProgressBroadcaster

__all__ = ["KairoAPIServer", "ProgressBroadcaster"]
