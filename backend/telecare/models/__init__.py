"""
Database Models Package

Tables:
1. appointments - Parties allowed on a call + stored session descriptor
2. conversations - Chat threads backed by a messaging channel
3. messages - Chat history per conversation
"""

from .database import (
    engine,
    AsyncSessionLocal,
    Base,
    init_db,
)

from .appointment import Appointment
from .conversation import Conversation, ConversationType, direct_key_for
from .message import Message, MessageStatus

__all__ = [
    # Database utilities
    "engine",
    "AsyncSessionLocal",
    "Base",
    "init_db",

    # Models
    "Appointment",
    "Conversation",
    "ConversationType",
    "direct_key_for",
    "Message",
    "MessageStatus",
]
