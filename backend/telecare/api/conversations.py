"""
Conversations API - chat conversations and their messages

Implements:
- Conversation listing (most recent message first)
- Direct conversation create-or-find (one per participant pair)
- Group conversation creation
- Message history and sending
"""
import logging

from fastapi import APIRouter, Depends, Query

from telecare.api.deps import get_message_service, get_registry
from telecare.api.errors import http_error
from telecare.config.constants import MESSAGE_PAGE_SIZE
from telecare.schemas.conversation import (
    ConversationListResponse,
    ConversationOut,
    CreateDirectConversationRequest,
    CreateGroupConversationRequest,
)
from telecare.schemas.message import MessageListResponse, MessageOut, SendMessageRequest
from telecare.services.core.exceptions import TelecareError
from telecare.services.messaging import ConversationRegistry, MessageService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/conversations", response_model=ConversationListResponse)
async def list_conversations(registry: ConversationRegistry = Depends(get_registry)):
    try:
        conversations = await registry.list_conversations()
    except TelecareError as e:
        raise http_error(e)
    return ConversationListResponse(
        conversations=[ConversationOut.model_validate(c) for c in conversations]
    )


@router.post("/conversations/direct", response_model=ConversationOut)
async def open_direct_conversation(
    req: CreateDirectConversationRequest,
    registry: ConversationRegistry = Depends(get_registry),
):
    """
    Open the caller's direct conversation with ``participant_id``.

    Returns the existing conversation when there is one; repeated or
    concurrent requests never create a second one.
    """
    caller = registry.identity.current_user_id()
    try:
        conversation = await registry.get_or_create_direct_conversation(caller, req.participant_id, req.name)
    except TelecareError as e:
        logger.warning(f"[ConversationsAPI] Direct conversation {caller}/{req.participant_id} failed: {e.kind}")
        raise http_error(e)
    return ConversationOut.model_validate(conversation)


@router.post("/conversations/group", response_model=ConversationOut, status_code=201)
async def create_group_conversation(
    req: CreateGroupConversationRequest,
    registry: ConversationRegistry = Depends(get_registry),
):
    try:
        conversation = await registry.create_group_conversation(req.participant_ids, req.name)
    except TelecareError as e:
        raise http_error(e)
    return ConversationOut.model_validate(conversation)


@router.get("/conversations/{conversation_id}/messages", response_model=MessageListResponse)
async def list_messages(
    conversation_id: str,
    limit: int = Query(MESSAGE_PAGE_SIZE, ge=1, le=MESSAGE_PAGE_SIZE),
    service: MessageService = Depends(get_message_service),
):
    try:
        messages = await service.list_messages(conversation_id, limit)
    except TelecareError as e:
        raise http_error(e)
    return MessageListResponse(messages=messages)


@router.post("/conversations/{conversation_id}/messages", response_model=MessageOut, status_code=201)
async def send_message(
    conversation_id: str,
    req: SendMessageRequest,
    service: MessageService = Depends(get_message_service),
):
    """
    Send a message. Resending with the same ``client_message_id`` returns
    the stored message instead of sending twice.
    """
    try:
        return await service.send_message(
            conversation_id,
            req.content,
            client_message_id=req.client_message_id,
            sender_name=req.sender_name,
        )
    except TelecareError as e:
        logger.warning(f"[ConversationsAPI] Send to {conversation_id} failed: {e.kind}")
        raise http_error(e)
