from sqlalchemy import Column, String, DateTime, Text, ForeignKey, UniqueConstraint
from datetime import datetime
import uuid

from .database import Base


class MessageStatus:
    SENDING = 'sending'
    SENT = 'sent'
    DELIVERED = 'delivered'
    FAILED = 'failed'


class Message(Base):
    """Message model for conversation chat history"""
    __tablename__ = "messages"
    __table_args__ = (
        UniqueConstraint("conversation_id", "channel_message_id", name="uq_messages_channel_message"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))

    conversation_id = Column(String, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False, index=True)

    # Provider-assigned id, used for sync with the channel
    channel_message_id = Column(String(128), nullable=True, index=True)
    # Provisional id generated by the sending client
    client_message_id = Column(String(64), nullable=True, index=True)

    sender_id = Column(String(128), nullable=False, index=True)
    sender_name = Column(String(200), nullable=False)

    content = Column(Text, nullable=False)
    type = Column(String(10), nullable=False, default='text')
    status = Column(String(10), nullable=False, default=MessageStatus.SENT)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    def __repr__(self):
        return f"<Message {self.id} in conversation {self.conversation_id}>"
