"""
Connection module.

Adapters that expose transport connections as session channels.
"""
from .channel import WebSocketClientChannel

__all__ = ["WebSocketClientChannel"]
