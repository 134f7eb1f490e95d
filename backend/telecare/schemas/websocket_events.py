"""
WebSocket Event Schemas

Pydantic models for the conversation WebSocket.
"""

from typing import List, Literal, Optional
from pydantic import BaseModel

from telecare.schemas.message import MessageOut


# =============================================================================
# Client -> server
# =============================================================================

class WebSocketEventBase(BaseModel):
    """Base model for all WebSocket events."""
    type: str


class SendMessageEvent(WebSocketEventBase):
    """Send a chat message through the poller (optimistic)."""
    type: Literal["send"] = "send"
    content: str


class RetryMessageEvent(WebSocketEventBase):
    """Retry a message previously marked failed."""
    type: Literal["retry"] = "retry"
    client_message_id: str


class RefreshEvent(WebSocketEventBase):
    """Force an immediate reload of the message list."""
    type: Literal["refresh"] = "refresh"


# =============================================================================
# Server -> client
# =============================================================================

class MessagesSnapshot(WebSocketEventBase):
    """Full ordered message list after any change."""
    type: Literal["messages"] = "messages"
    conversation_id: str
    messages: List[MessageOut]


class ErrorEvent(WebSocketEventBase):
    type: Literal["error"] = "error"
    detail: str
    client_message_id: Optional[str] = None
