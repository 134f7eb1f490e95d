"""
Conversation Model

A chat thread between a fixed set of identities, backed by one
messaging-provider channel.
"""
from sqlalchemy import Column, String, DateTime, JSON
from datetime import datetime
import uuid

from .database import Base


class ConversationType:
    DIRECT = 'direct'
    GROUP = 'group'


def direct_key_for(participant_a: str, participant_b: str) -> str:
    """Order-independent key for a direct conversation between two identities."""
    return "|".join(sorted((participant_a, participant_b)))


class Conversation(Base):
    """Conversation model"""
    __tablename__ = "conversations"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    channel_arn = Column(String(512), nullable=False)
    name = Column(String(200), nullable=False)
    type = Column(String(10), nullable=False, default=ConversationType.DIRECT)

    # Immutable after creation
    participant_ids = Column(JSON, nullable=False)
    other_participant_id = Column(String(128), nullable=True)

    # Set only for direct conversations; enforces one record per pair
    direct_key = Column(String(300), unique=True, nullable=True, index=True)

    last_message_at = Column(DateTime, nullable=True)
    last_message_preview = Column(String(100), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def has_participant(self, user_id: str) -> bool:
        return user_id in (self.participant_ids or [])

    def __repr__(self):
        return f"<Conversation {self.id} ({self.type})>"
