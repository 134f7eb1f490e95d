from datetime import datetime
from typing import List, Literal, Optional
from pydantic import BaseModel, ConfigDict


class MessageOut(BaseModel):
    """Message as seen by clients; also the local entry kept by MessagePoller."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    conversation_id: str
    channel_message_id: Optional[str] = None
    client_message_id: Optional[str] = None
    sender_id: str
    sender_name: str
    content: str
    type: str = 'text'
    status: Literal['sending', 'sent', 'delivered', 'failed'] = 'sent'
    created_at: datetime


class ChannelMessage(BaseModel):
    """Message as returned by the channel provider."""
    message_id: str
    sender_arn: Optional[str] = None
    sender_id: Optional[str] = None
    content: str
    created_at: Optional[datetime] = None
    metadata: Optional[str] = None


class SendMessageRequest(BaseModel):
    content: str
    client_message_id: Optional[str] = None
    sender_name: Optional[str] = None


class MessageListResponse(BaseModel):
    messages: List[MessageOut]
