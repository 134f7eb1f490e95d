"""
WebSocket API module.

Provides the WebSocket router for live conversation views.
"""
from .router import router

__all__ = ["router"]
