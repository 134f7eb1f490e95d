"""
Message Poller - keeps a local, ordered view of one conversation.

How it works:
1. start_polling() schedules one background task for the conversation
2. The task fetches the message list, merges it, then sleeps one interval
3. Ticks and refresh() share a lock, so fetches never overlap
4. A NetworkError during a tick is logged and the next tick retries
5. Any other error stops polling and is kept in ``last_error``

Sending is optimistic: a ``sending`` entry with a provisional id is added
right away and later replaced in place by the stored message (``sent``)
or marked ``failed``. Entries are matched by id, client message id or
channel message id, so a poll racing a send never produces two entries.

Usage:
    poller = MessagePoller(message_service, identity, on_change=push)
    stop = poller.start_polling(conversation_id)
    await poller.send_message(conversation_id, "Hello")
    stop()
"""
import asyncio
import logging
import uuid
from datetime import datetime
from typing import Callable, Dict, List, Optional

from telecare.config.constants import PROVISIONAL_MESSAGE_ID_PREFIX
from telecare.config.settings import settings
from telecare.models.message import MessageStatus
from telecare.schemas.message import MessageOut
from telecare.services.core.exceptions import (
    NetworkError,
    NotFoundError,
    PersistenceError,
    TelecareError,
    ValidationError,
)
from telecare.services.metrics import poll_failures
from telecare.services.protocols import IdentityProvider, MessageSource

logger = logging.getLogger(__name__)

ChangeListener = Callable[[str, List[MessageOut]], None]


def _sort_key(message: MessageOut):
    return (message.created_at, message.id)


def _same_message(a: MessageOut, b: MessageOut) -> bool:
    if a.id == b.id:
        return True
    if a.client_message_id and a.client_message_id == b.client_message_id:
        return True
    return bool(a.channel_message_id and a.channel_message_id == b.channel_message_id)


class MessagePoller:
    """Polls one conversation at a time and owns its optimistic entries."""

    def __init__(
        self,
        source: MessageSource,
        identity: IdentityProvider,
        sender_name: Optional[str] = None,
        interval_ms: Optional[int] = None,
        on_change: Optional[ChangeListener] = None,
    ):
        self.source = source
        self.identity = identity
        self.sender_name = sender_name
        self.interval_ms = interval_ms or settings.MESSAGE_POLL_INTERVAL_MS
        self.on_change = on_change
        self.last_error: Optional[Exception] = None

        self._entries: Dict[str, List[MessageOut]] = {}
        self._conversation_id: Optional[str] = None
        self._task: Optional[asyncio.Task] = None
        self._active = False
        self._generation = 0
        self._fetch_lock = asyncio.Lock()

    @property
    def active(self) -> bool:
        return self._active

    @property
    def conversation_id(self) -> Optional[str]:
        return self._conversation_id

    @property
    def messages(self) -> List[MessageOut]:
        """Local entries of the current conversation, oldest first."""
        return self.messages_for(self._conversation_id)

    def messages_for(self, conversation_id: Optional[str]) -> List[MessageOut]:
        return list(self._entries.get(conversation_id, []))

    # ------------------------------------------------------------------
    # Polling lifecycle
    # ------------------------------------------------------------------

    def start_polling(self, conversation_id: str, interval_ms: Optional[int] = None) -> Callable[[], None]:
        """
        Begin polling ``conversation_id``; returns a function that stops it.

        Starting again (same or another conversation) stops the previous
        loop first. The returned stop function is a no-op once a newer
        loop has been started.
        """
        if not conversation_id:
            raise ValidationError("Conversation ID required")

        self.stop()
        self._conversation_id = conversation_id
        self._active = True
        self.last_error = None
        generation = self._generation
        interval = (interval_ms or self.interval_ms) / 1000

        self._task = asyncio.get_running_loop().create_task(
            self._poll_loop(conversation_id, interval, generation)
        )
        logger.info(f"[Poller] Polling {conversation_id} every {interval:.1f}s")

        def stop_polling() -> None:
            if self._generation == generation:
                self.stop()

        return stop_polling

    def stop(self) -> None:
        """Cancel the poll task. No tick runs or merges after this returns."""
        was_active = self._active
        self._active = False
        self._generation += 1
        if self._task is not None:
            self._task.cancel()
            self._task = None
        if was_active:
            logger.info(f"[Poller] Stopped polling {self._conversation_id}")

    def _is_current(self, generation: int) -> bool:
        return self._active and self._generation == generation

    async def _poll_loop(self, conversation_id: str, interval: float, generation: int):
        while self._is_current(generation):
            try:
                await self._tick(conversation_id, generation)
            except TelecareError as e:
                if self._is_current(generation):
                    self.last_error = e
                    self._active = False
                    poll_failures.labels(kind=e.kind).inc()
                    logger.error(f"[Poller] Polling {conversation_id} stopped: {e}")
                return
            except Exception as e:
                if self._is_current(generation):
                    self.last_error = e
                    self._active = False
                    poll_failures.labels(kind="unexpected").inc()
                    logger.exception(f"[Poller] Polling {conversation_id} stopped by unexpected error")
                return
            await asyncio.sleep(interval)

    async def _tick(self, conversation_id: str, generation: int):
        async with self._fetch_lock:
            if not self._is_current(generation):
                return
            try:
                fetched = await self.source.list_messages(conversation_id)
            except NetworkError as e:
                poll_failures.labels(kind=e.kind).inc()
                logger.warning(f"[Poller] Poll of {conversation_id} failed, retrying next tick: {e}")
                return
            if not self._is_current(generation):
                return
            self._merge(conversation_id, fetched)

    async def refresh(self) -> List[MessageOut]:
        """Fetch and merge right away; errors propagate to the caller."""
        conversation_id = self._conversation_id
        if conversation_id is None:
            return []
        async with self._fetch_lock:
            fetched = await self.source.list_messages(conversation_id)
            self._merge(conversation_id, fetched)
        return self.messages_for(conversation_id)

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    async def send_message(self, conversation_id: str, content: str) -> MessageOut:
        """
        Add an optimistic entry and send it.

        Raises whatever the send raised after marking the entry ``failed``.
        A PersistenceError with a remote reference means the provider has
        the message, so the entry is marked ``sent`` before re-raising.
        """
        content = (content or "").strip()
        if not content:
            raise ValidationError("Message content is required")

        sender_id = self.identity.current_user_id()
        client_message_id = str(uuid.uuid4())
        entry = MessageOut(
            id=f"{PROVISIONAL_MESSAGE_ID_PREFIX}{client_message_id}",
            conversation_id=conversation_id,
            client_message_id=client_message_id,
            sender_id=sender_id,
            sender_name=self.sender_name or sender_id,
            content=content,
            status=MessageStatus.SENDING,
            created_at=datetime.utcnow(),
        )
        self._upsert(conversation_id, entry)
        return await self._deliver(entry)

    async def retry_message(self, client_message_id: str) -> MessageOut:
        """Resend a ``failed`` entry of the current conversation in place."""
        conversation_id = self._conversation_id
        entry = next(
            (m for m in self.messages_for(conversation_id) if m.client_message_id == client_message_id),
            None,
        )
        if entry is None:
            raise NotFoundError(f"Message {client_message_id} not found")
        if entry.status != MessageStatus.FAILED:
            raise ValidationError("Only failed messages can be retried")

        entry = entry.model_copy(update={"status": MessageStatus.SENDING})
        self._upsert(conversation_id, entry)
        return await self._deliver(entry)

    async def _deliver(self, entry: MessageOut) -> MessageOut:
        try:
            stored = await self.source.send_message(
                entry.conversation_id,
                entry.content,
                client_message_id=entry.client_message_id,
                sender_name=entry.sender_name,
            )
        except PersistenceError as e:
            if e.remote_ref:
                self._upsert(entry.conversation_id, entry.model_copy(
                    update={"status": MessageStatus.SENT, "channel_message_id": e.remote_ref}
                ))
            else:
                self._mark_failed(entry)
            raise
        except Exception:
            self._mark_failed(entry)
            raise

        self._upsert(entry.conversation_id, stored, client_message_id=entry.client_message_id)
        return stored

    def _mark_failed(self, entry: MessageOut):
        logger.warning(f"[Poller] Message {entry.client_message_id} failed to send")
        self._upsert(entry.conversation_id, entry.model_copy(update={"status": MessageStatus.FAILED}))

    # ------------------------------------------------------------------
    # Local sequence
    # ------------------------------------------------------------------

    def _upsert(self, conversation_id: str, message: MessageOut, client_message_id: Optional[str] = None):
        entries = self._entries.setdefault(conversation_id, [])
        for index, existing in enumerate(entries):
            if _same_message(existing, message) or (
                client_message_id and existing.client_message_id == client_message_id
            ):
                entries[index] = message
                break
        else:
            entries.append(message)
        entries.sort(key=_sort_key)
        self._notify(conversation_id)

    def _merge(self, conversation_id: str, fetched: List[MessageOut]):
        entries = self._entries.setdefault(conversation_id, [])
        changed = False
        for incoming in fetched:
            for index, existing in enumerate(entries):
                if _same_message(existing, incoming):
                    if existing != incoming:
                        entries[index] = incoming
                        changed = True
                    break
            else:
                entries.append(incoming)
                changed = True
        if changed:
            entries.sort(key=_sort_key)
            self._notify(conversation_id)

    def _notify(self, conversation_id: str):
        if self.on_change is None:
            return
        try:
            self.on_change(conversation_id, self.messages_for(conversation_id))
        except Exception as e:
            logger.error(f"[Poller] Change listener failed: {e}")
