"""
Message Service - send and list conversation messages.

Sending goes to the provider channel first, then the message record is
stored with status ``sent`` and the conversation preview is refreshed.
The preview update is best-effort; a failed record write after the
provider accepted the message raises PersistenceError carrying the
provider message id.
A channel message stored by a concurrent import is returned as the sent
record, so one send never yields two records.
"""
import json
import logging
from datetime import datetime, timezone
from typing import List, Optional

from telecare.config.constants import MESSAGE_PAGE_SIZE, MESSAGE_PREVIEW_MAX_CHARS
from telecare.models.conversation import Conversation
from telecare.models.message import MessageStatus
from telecare.schemas.message import MessageOut
from telecare.services.core.exceptions import PersistenceError, ValidationError
from telecare.services.core.repositories import MessageRepository
from telecare.services.messaging.registry import ConversationRegistry
from telecare.services.metrics import messages_sent
from telecare.services.protocols import MessagingProvider

logger = logging.getLogger(__name__)


def client_message_id_from_metadata(metadata: Optional[str]) -> Optional[str]:
    if not metadata:
        return None
    try:
        value = json.loads(metadata)
    except ValueError:
        return None
    if isinstance(value, dict):
        return value.get("client_message_id")
    return None


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def message_preview(content: str) -> str:
    if len(content) > MESSAGE_PREVIEW_MAX_CHARS:
        return content[:MESSAGE_PREVIEW_MAX_CHARS] + "..."
    return content


class MessageService:
    """Caller-scoped message operations on conversations."""

    def __init__(
        self,
        registry: ConversationRegistry,
        messages: MessageRepository,
        provider: MessagingProvider,
        sync_channel: bool = False,
    ):
        self.registry = registry
        self.messages = messages
        self.provider = provider
        # Import channel messages that were not sent through this service
        self.sync_channel = sync_channel

    async def list_messages(self, conversation_id: str, limit: int = MESSAGE_PAGE_SIZE) -> List[MessageOut]:
        """Latest messages of a conversation the caller is in, oldest first."""
        conversation = await self.registry.get_conversation(conversation_id)
        if self.sync_channel:
            await self.import_channel_messages(conversation)
        records = await self.messages.list_for_conversation(conversation_id, limit)
        return [MessageOut.model_validate(r) for r in records]

    async def send_message(
        self,
        conversation_id: str,
        content: str,
        client_message_id: Optional[str] = None,
        sender_name: Optional[str] = None,
    ) -> MessageOut:
        """
        Send a message as the caller.

        A repeated ``client_message_id`` returns the stored message instead
        of sending it again.
        """
        content = (content or "").strip()
        if not content:
            raise ValidationError("Message content is required")

        conversation = await self.registry.get_conversation(conversation_id)
        sender_id = self.registry.identity.current_user_id()

        if client_message_id:
            existing = await self.messages.get_by_client_message_id(conversation_id, client_message_id)
            if existing is not None:
                logger.info(f"[Messages] Duplicate send of {client_message_id} ignored")
                return MessageOut.model_validate(existing)

        metadata = json.dumps({"client_message_id": client_message_id}) if client_message_id else None
        try:
            channel_message_id = await self.provider.send_channel_message(
                conversation.channel_arn, sender_id, content, metadata=metadata
            )
        except Exception:
            messages_sent.labels(status=MessageStatus.FAILED).inc()
            raise

        sent_at = datetime.utcnow()
        record = await self.messages.create(
            conversation_id=conversation_id,
            sender_id=sender_id,
            sender_name=sender_name or sender_id,
            content=content,
            channel_message_id=channel_message_id,
            client_message_id=client_message_id,
            created_at=sent_at,
            status=MessageStatus.SENT,
        )
        messages_sent.labels(status=MessageStatus.SENT).inc()

        try:
            await self._update_preview(conversation_id, sent_at, content)
        except PersistenceError as e:
            logger.warning(f"[Messages] Conversation preview not updated for {conversation_id}: {e}")

        logger.info(f"[Messages] Message sent: {record.id}")
        return MessageOut.model_validate(record)

    async def _update_preview(self, conversation_id: str, at: datetime, content: str):
        await self.registry.conversations.update_last_message(conversation_id, at, message_preview(content))

    async def import_channel_messages(self, conversation: Conversation) -> int:
        """
        Store channel messages that have no local record yet.

        Returns how many were imported. Provider errors propagate.
        """
        reader_id = self.registry.identity.current_user_id()
        channel_messages = await self.provider.list_channel_messages(conversation.channel_arn, reader_id)
        known = await self.messages.existing_channel_message_ids(
            conversation.id, [m.message_id for m in channel_messages]
        )

        imported = 0
        for channel_message in channel_messages:
            if channel_message.message_id in known:
                continue
            client_message_id = client_message_id_from_metadata(channel_message.metadata)
            if client_message_id and await self.messages.get_by_client_message_id(
                conversation.id, client_message_id
            ):
                continue
            sender_id = channel_message.sender_id or "unknown"
            await self.messages.create(
                conversation_id=conversation.id,
                sender_id=sender_id,
                sender_name=sender_id,
                content=channel_message.content,
                channel_message_id=channel_message.message_id,
                client_message_id=client_message_id,
                created_at=_naive_utc(channel_message.created_at),
                status=MessageStatus.SENT,
            )
            imported += 1

        if imported:
            logger.info(f"[Messages] Imported {imported} channel messages into {conversation.id}")
        return imported
