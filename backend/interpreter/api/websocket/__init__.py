"""
WebSocket API module.

Provides the WebSocket router for live interpretation sessions.
"""
from .router import router

__all__ = ["router"]
