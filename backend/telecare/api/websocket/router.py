"""
WebSocket Router - live view of one conversation

Each connection runs its own MessagePoller: the merged message list is
pushed to the client after every change, and client ``send`` events go
through the poller so the optimistic entry shows up immediately.
Disconnecting stops the poller.
"""
import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect
from pydantic import ValidationError as EventValidationError

from telecare.api.deps import build_message_service
from telecare.services.auth_service import identity_from_token
from telecare.models.database import AsyncSessionLocal
from telecare.schemas.websocket_events import (
    ErrorEvent,
    MessagesSnapshot,
    RefreshEvent,
    RetryMessageEvent,
    SendMessageEvent,
)
from telecare.services.core.exceptions import TelecareError
from telecare.services.messaging import MessagePoller

logger = logging.getLogger(__name__)

router = APIRouter()

_CLIENT_EVENTS = {
    "send": SendMessageEvent,
    "retry": RetryMessageEvent,
    "refresh": RefreshEvent,
}


@router.websocket("/ws/conversations/{conversation_id}")
async def conversation_ws(
    websocket: WebSocket,
    conversation_id: str,
    token: Optional[str] = Query(None),
    sender_name: Optional[str] = Query(None),
):
    """
    Stream the conversation's messages.

    Query Parameters:
        token: JWT token (required)
        sender_name: Display name attached to messages sent on this socket

    Message Types (JSON, client -> server):
        - send: {"type": "send", "content": "..."}
        - retry: {"type": "retry", "client_message_id": "..."}
        - refresh: {"type": "refresh"}

    Server -> client:
        - messages: full ordered list after every change
        - error: a failed send/retry or a rejected event
    """
    identity = identity_from_token(token)
    if identity is None:
        logger.warning(f"[WebSocket] Invalid or missing token for conversation {conversation_id}")
        await websocket.close(code=1008, reason="Invalid token")
        return

    await websocket.accept()

    session_factory = getattr(websocket.app.state, "session_factory", None) or AsyncSessionLocal
    service = build_message_service(websocket.app, identity, session_factory)
    try:
        await service.registry.get_conversation(conversation_id)
    except TelecareError as e:
        await websocket.send_json(ErrorEvent(detail=str(e)).model_dump(mode="json"))
        await websocket.close(code=1008, reason=e.kind)
        return

    updates: asyncio.Queue = asyncio.Queue()
    poller = MessagePoller(
        service,
        identity,
        sender_name=sender_name,
        on_change=lambda _cid, messages: updates.put_nowait(messages),
    )
    stop_polling = poller.start_polling(conversation_id)
    pusher = asyncio.create_task(_push_snapshots(websocket, conversation_id, updates))
    logger.info(f"[WebSocket] {identity.user_id} watching conversation {conversation_id}")

    try:
        while True:
            data = await websocket.receive_json()
            await _handle_client_event(websocket, poller, conversation_id, data)
    except WebSocketDisconnect:
        logger.info(f"[WebSocket] {identity.user_id} left conversation {conversation_id}")
    finally:
        stop_polling()
        pusher.cancel()


async def _push_snapshots(websocket: WebSocket, conversation_id: str, updates: asyncio.Queue):
    while True:
        messages = await updates.get()
        # Only the newest snapshot matters
        while not updates.empty():
            messages = updates.get_nowait()
        snapshot = MessagesSnapshot(conversation_id=conversation_id, messages=messages)
        await websocket.send_json(snapshot.model_dump(mode="json"))


async def _handle_client_event(websocket: WebSocket, poller: MessagePoller, conversation_id: str, data):
    event_type = data.get("type") if isinstance(data, dict) else None
    event_class = _CLIENT_EVENTS.get(event_type)
    if event_class is None:
        await websocket.send_json(ErrorEvent(detail=f"Unknown event type: {event_type}").model_dump(mode="json"))
        return
    try:
        event = event_class.model_validate(data)
    except EventValidationError as e:
        await websocket.send_json(ErrorEvent(detail=f"Invalid {event_type} event: {e.error_count()} errors").model_dump(mode="json"))
        return

    try:
        if isinstance(event, SendMessageEvent):
            await poller.send_message(conversation_id, event.content)
        elif isinstance(event, RetryMessageEvent):
            await poller.retry_message(event.client_message_id)
        else:
            await poller.refresh()
    except TelecareError as e:
        # The failed entry is already in the next snapshot
        await websocket.send_json(ErrorEvent(
            detail=str(e),
            client_message_id=getattr(event, "client_message_id", None),
        ).model_dump(mode="json"))
