"""
Schemas Package

Pydantic models for API payloads, session descriptors and WebSocket events.
"""

from telecare.schemas.session import (
    SessionEndpoints,
    Session,
    Participant,
    SessionCredentials,
)
from telecare.schemas.message import MessageOut, ChannelMessage
from telecare.schemas.conversation import ConversationOut

__all__ = [
    "SessionEndpoints",
    "Session",
    "Participant",
    "SessionCredentials",
    "MessageOut",
    "ChannelMessage",
    "ConversationOut",
]
