"""
Repository Layer - Centralized database queries.

Repositories receive a session factory at construction so services never
reach for a module-level client. SQLAlchemy failures are re-raised as
PersistenceError.

Usage:
    from telecare.models import AsyncSessionLocal
    from telecare.services.core.repositories import AppointmentRepository

    appointments = AppointmentRepository(AsyncSessionLocal)
    appointment = await appointments.get("apt-1")
"""

import logging
from datetime import datetime
from typing import List, Optional, Set

from sqlalchemy import select, and_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from telecare.models.appointment import Appointment
from telecare.models.conversation import Conversation, ConversationType, direct_key_for
from telecare.models.message import Message, MessageStatus
from telecare.schemas.session import Session
from .exceptions import PersistenceError, DirectConversationExistsError

logger = logging.getLogger(__name__)


class AppointmentRepository:
    """Appointment lookups and stored session descriptors."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    async def get(self, appointment_id: str) -> Optional[Appointment]:
        try:
            async with self.session_factory() as db:
                result = await db.execute(
                    select(Appointment).where(Appointment.id == appointment_id)
                )
                return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error(f"[Repo] Error loading appointment {appointment_id}: {e}")
            raise PersistenceError(f"Failed to load appointment {appointment_id}") from e

    async def store_session_descriptor(self, appointment_id: str, session: Session) -> None:
        """Persist the session descriptor against the appointment."""
        try:
            async with self.session_factory() as db:
                result = await db.execute(
                    select(Appointment).where(Appointment.id == appointment_id)
                )
                appointment = result.scalar_one_or_none()
                if appointment is None:
                    raise PersistenceError(f"Appointment {appointment_id} not found")
                appointment.meeting_id = session.session_id
                appointment.meeting_config = session.model_dump_json()
                await db.commit()
        except SQLAlchemyError as e:
            logger.error(f"[Repo] Error storing session for appointment {appointment_id}: {e}")
            raise PersistenceError(
                f"Failed to store session for appointment {appointment_id}",
                remote_ref=session.session_id,
            ) from e


class ConversationRepository:
    """Conversation records."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    async def get(self, conversation_id: str) -> Optional[Conversation]:
        try:
            async with self.session_factory() as db:
                result = await db.execute(
                    select(Conversation).where(Conversation.id == conversation_id)
                )
                return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error(f"[Repo] Error loading conversation {conversation_id}: {e}")
            raise PersistenceError(f"Failed to load conversation {conversation_id}") from e

    async def list_for_user(self, user_id: str) -> List[Conversation]:
        """
        All conversations the user participates in, most recent message first.

        Participant sets are JSON lists, so membership is filtered here
        rather than in SQL.
        """
        try:
            async with self.session_factory() as db:
                result = await db.execute(select(Conversation))
                conversations = [c for c in result.scalars().all() if c.has_participant(user_id)]
        except SQLAlchemyError as e:
            logger.error(f"[Repo] Error listing conversations for {user_id}: {e}")
            raise PersistenceError("Failed to list conversations") from e

        conversations.sort(
            key=lambda c: c.last_message_at or datetime.min,
            reverse=True,
        )
        return conversations

    async def create(
        self,
        channel_arn: str,
        name: str,
        conversation_type: str,
        participant_ids: List[str],
        other_participant_id: Optional[str] = None,
    ) -> Conversation:
        direct_key = None
        if conversation_type == ConversationType.DIRECT:
            direct_key = direct_key_for(participant_ids[0], participant_ids[1])

        conversation = Conversation(
            channel_arn=channel_arn,
            name=name,
            type=conversation_type,
            participant_ids=list(participant_ids),
            other_participant_id=other_participant_id,
            direct_key=direct_key,
        )
        try:
            async with self.session_factory() as db:
                db.add(conversation)
                await db.commit()
                await db.refresh(conversation)
                return conversation
        except IntegrityError as e:
            if direct_key is not None:
                raise DirectConversationExistsError(
                    f"Direct conversation {direct_key} already stored",
                    remote_ref=channel_arn,
                ) from e
            raise PersistenceError("Failed to store conversation", remote_ref=channel_arn) from e
        except SQLAlchemyError as e:
            logger.error(f"[Repo] Error storing conversation for channel {channel_arn}: {e}")
            raise PersistenceError("Failed to store conversation", remote_ref=channel_arn) from e

    async def update_last_message(self, conversation_id: str, at: datetime, preview: str) -> None:
        try:
            async with self.session_factory() as db:
                result = await db.execute(
                    select(Conversation).where(Conversation.id == conversation_id)
                )
                conversation = result.scalar_one_or_none()
                if conversation is None:
                    return
                conversation.last_message_at = at
                conversation.last_message_preview = preview
                await db.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to update conversation {conversation_id}") from e


class MessageRepository:
    """Message records."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    async def create(
        self,
        conversation_id: str,
        sender_id: str,
        sender_name: str,
        content: str,
        channel_message_id: Optional[str] = None,
        client_message_id: Optional[str] = None,
        created_at: Optional[datetime] = None,
        status: str = MessageStatus.SENT,
    ) -> Message:
        message = Message(
            conversation_id=conversation_id,
            sender_id=sender_id,
            sender_name=sender_name,
            content=content,
            channel_message_id=channel_message_id,
            client_message_id=client_message_id,
            created_at=created_at or datetime.utcnow(),
            status=status,
        )
        try:
            async with self.session_factory() as db:
                db.add(message)
                await db.commit()
                await db.refresh(message)
                return message
        except IntegrityError as e:
            # Another writer stored the same channel message first
            existing = None
            if channel_message_id:
                existing = await self.get_by_channel_message_id(conversation_id, channel_message_id)
            if existing is not None:
                logger.info(f"[Repo] Channel message {channel_message_id} already stored as {existing.id}")
                return existing
            logger.error(f"[Repo] Error storing message for conversation {conversation_id}: {e}")
            raise PersistenceError(
                "Failed to store message", remote_ref=channel_message_id
            ) from e
        except SQLAlchemyError as e:
            logger.error(f"[Repo] Error storing message for conversation {conversation_id}: {e}")
            raise PersistenceError(
                "Failed to store message", remote_ref=channel_message_id
            ) from e

    async def get_by_client_message_id(self, conversation_id: str, client_message_id: str) -> Optional[Message]:
        try:
            async with self.session_factory() as db:
                result = await db.execute(
                    select(Message).where(
                        and_(
                            Message.conversation_id == conversation_id,
                            Message.client_message_id == client_message_id,
                        )
                    )
                )
                return result.scalars().first()
        except SQLAlchemyError as e:
            raise PersistenceError("Failed to look up message") from e

    async def get_by_channel_message_id(self, conversation_id: str, channel_message_id: str) -> Optional[Message]:
        try:
            async with self.session_factory() as db:
                result = await db.execute(
                    select(Message).where(
                        and_(
                            Message.conversation_id == conversation_id,
                            Message.channel_message_id == channel_message_id,
                        )
                    )
                )
                return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise PersistenceError("Failed to look up message") from e

    async def list_for_conversation(self, conversation_id: str, limit: int = 100) -> List[Message]:
        """Latest ``limit`` messages, oldest first."""
        try:
            async with self.session_factory() as db:
                result = await db.execute(
                    select(Message)
                    .where(Message.conversation_id == conversation_id)
                    .order_by(Message.created_at.desc(), Message.id.desc())
                    .limit(limit)
                )
                messages = list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error(f"[Repo] Error listing messages for conversation {conversation_id}: {e}")
            raise PersistenceError("Failed to list messages") from e

        messages.reverse()
        return messages

    async def existing_channel_message_ids(self, conversation_id: str, channel_message_ids: List[str]) -> Set[str]:
        """Subset of ``channel_message_ids`` already stored for the conversation."""
        if not channel_message_ids:
            return set()
        try:
            async with self.session_factory() as db:
                result = await db.execute(
                    select(Message.channel_message_id).where(
                        and_(
                            Message.conversation_id == conversation_id,
                            Message.channel_message_id.in_(channel_message_ids),
                        )
                    )
                )
                return set(result.scalars().all())
        except SQLAlchemyError as e:
            raise PersistenceError("Failed to look up channel messages") from e
