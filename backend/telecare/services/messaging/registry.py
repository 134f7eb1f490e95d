"""
Conversation Registry - create-or-find chat conversations.

A direct conversation between the same two identities is created at most
once:
- within one process, concurrent requests for a pair are serialized on a
  per-pair lock and the second one finds the first one's record;
- across processes, the provider channel request carries a token derived
  from the pair and the record has a unique pair key, so a losing writer
  returns the winner's record.

If the channel is created but the record write fails, PersistenceError is
raised with the channel ARN in ``remote_ref``. Callers should re-run the
lookup before retrying creation.
"""
import asyncio
import hashlib
import logging
import weakref
from typing import List, MutableMapping, Optional

from telecare.config.constants import MIN_CONVERSATION_PARTICIPANTS
from telecare.models.conversation import Conversation, ConversationType, direct_key_for
from telecare.services.core.exceptions import (
    AuthorizationError,
    DirectConversationExistsError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from telecare.services.core.repositories import ConversationRepository
from telecare.services.metrics import conversations_total
from telecare.services.protocols import IdentityProvider, MessagingProvider

logger = logging.getLogger(__name__)


def channel_request_token(direct_key: str) -> str:
    """Stable provider idempotency token for a participant pair."""
    return hashlib.sha256(direct_key.encode("utf-8")).hexdigest()[:64]


def is_direct_between(conversation: Conversation, participant_a: str, participant_b: str) -> bool:
    return (
        conversation.type == ConversationType.DIRECT
        and set(conversation.participant_ids or []) == {participant_a, participant_b}
    )


class ConversationRegistry:
    """Creates or reuses messaging conversations for the current caller."""

    def __init__(
        self,
        conversations: ConversationRepository,
        provider: MessagingProvider,
        identity: IdentityProvider,
        pair_locks: Optional[MutableMapping[str, asyncio.Lock]] = None,
    ):
        self.conversations = conversations
        self.provider = provider
        self.identity = identity
        # Shared across per-request registries so concurrent requests serialize per pair.
        # Weak values: a lock is dropped once no request holds or waits on it.
        if pair_locks is None:
            pair_locks = weakref.WeakValueDictionary()
        self._pair_locks = pair_locks

    def _caller(self) -> str:
        user_id = self.identity.current_user_id()
        if not user_id:
            raise AuthorizationError("User not authenticated")
        return user_id

    async def list_conversations(self) -> List[Conversation]:
        """Conversations the caller is part of, most recent message first."""
        return await self.conversations.list_for_user(self._caller())

    async def get_conversation(self, conversation_id: str) -> Conversation:
        """Load a conversation the caller participates in."""
        conversation = await self.conversations.get(conversation_id)
        if conversation is None:
            raise NotFoundError(f"Conversation {conversation_id} not found")
        if not conversation.has_participant(self._caller()):
            raise AuthorizationError("You are not a participant in this conversation")
        return conversation

    async def find_direct_conversation(self, participant_a: str, participant_b: str) -> Optional[Conversation]:
        caller = self._caller()
        for conversation in await self.conversations.list_for_user(caller):
            if is_direct_between(conversation, participant_a, participant_b):
                return conversation
        return None

    async def get_or_create_direct_conversation(
        self,
        participant_a: str,
        participant_b: str,
        display_name: str,
    ) -> Conversation:
        """
        Return the direct conversation between the two identities, creating it once.

        Raises:
            ValidationError: fewer than two distinct participants or empty name
            AuthorizationError: caller is not one of the two participants
            ProviderError / NetworkError: channel creation failed
            PersistenceError: channel created but the record could not be stored
        """
        participant_a = (participant_a or "").strip()
        participant_b = (participant_b or "").strip()
        display_name = (display_name or "").strip()
        if not participant_a or not participant_b or participant_a == participant_b:
            raise ValidationError("A direct conversation needs two different participants")
        if not display_name:
            raise ValidationError("Conversation name is required")

        caller = self._caller()
        if caller not in (participant_a, participant_b):
            raise AuthorizationError("You can only open conversations you are part of")

        key = direct_key_for(participant_a, participant_b)
        lock = self._pair_locks.setdefault(key, asyncio.Lock())
        async with lock:
            existing = await self.find_direct_conversation(participant_a, participant_b)
            if existing is not None:
                conversations_total.labels(type=ConversationType.DIRECT, outcome='reused').inc()
                logger.info(f"[Registry] Reusing direct conversation {existing.id}")
                return existing

            channel_arn = await self.provider.create_channel(
                caller,
                display_name,
                [participant_a, participant_b],
                request_token=channel_request_token(key),
            )
            logger.info(f"[Registry] Channel created for direct conversation: {channel_arn}")

            other = participant_b if caller == participant_a else participant_a
            try:
                conversation = await self.conversations.create(
                    channel_arn=channel_arn,
                    name=display_name,
                    conversation_type=ConversationType.DIRECT,
                    participant_ids=[participant_a, participant_b],
                    other_participant_id=other,
                )
            except DirectConversationExistsError:
                winner = await self.find_direct_conversation(participant_a, participant_b)
                if winner is None:
                    raise
                if winner.channel_arn != channel_arn:
                    logger.warning(
                        f"[Registry] Lost create race for {key}; channel {channel_arn} is unused"
                    )
                conversations_total.labels(type=ConversationType.DIRECT, outcome='reused').inc()
                return winner

            conversations_total.labels(type=ConversationType.DIRECT, outcome='created').inc()
            logger.info(f"[Registry] Conversation created: {conversation.id}")
            return conversation

    async def create_group_conversation(self, participant_ids: List[str], name: str) -> Conversation:
        """Create a group conversation including the caller. Not deduplicated."""
        name = (name or "").strip()
        if not name:
            raise ValidationError("Conversation name is required")

        caller = self._caller()
        members: List[str] = []
        for user_id in [caller] + list(participant_ids or []):
            user_id = (user_id or "").strip()
            if user_id and user_id not in members:
                members.append(user_id)
        if len(members) < MIN_CONVERSATION_PARTICIPANTS:
            raise ValidationError(
                f"A conversation needs at least {MIN_CONVERSATION_PARTICIPANTS} participants"
            )

        channel_arn = await self.provider.create_channel(caller, name, members)
        try:
            conversation = await self.conversations.create(
                channel_arn=channel_arn,
                name=name,
                conversation_type=ConversationType.GROUP,
                participant_ids=members,
            )
        except PersistenceError as e:
            logger.error(f"[Registry] Group channel {channel_arn} created but record failed: {e}")
            raise

        conversations_total.labels(type=ConversationType.GROUP, outcome='created').inc()
        return conversation
