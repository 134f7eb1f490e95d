from datetime import datetime
from typing import List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field


class ConversationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    channel_arn: str
    name: str
    type: Literal['direct', 'group']
    participant_ids: List[str]
    other_participant_id: Optional[str] = None
    last_message_at: Optional[datetime] = None
    last_message_preview: Optional[str] = None
    created_at: Optional[datetime] = None


class CreateDirectConversationRequest(BaseModel):
    participant_id: str
    name: str


class CreateGroupConversationRequest(BaseModel):
    participant_ids: List[str] = Field(default_factory=list)
    name: str


class ConversationListResponse(BaseModel):
    conversations: List[ConversationOut]
