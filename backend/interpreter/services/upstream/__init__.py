"""
Upstream module.

Connection, handshake and wire mapping for the realtime speech provider.
"""
from .bridge import UpstreamBridge
from .channel import WebsocketsUpstreamChannel, connect_upstream

__all__ = ["UpstreamBridge", "WebsocketsUpstreamChannel", "connect_upstream"]
