import asyncio
import json

import pytest

from telecare.models import MessageStatus
from telecare.services.core import (
    AuthorizationError,
    ConversationRepository,
    MessageRepository,
    NetworkError,
    PersistenceError,
    ValidationError,
)
from telecare.services.messaging import ConversationRegistry, MessageService, message_preview
from tests.fakes import FakeMessagingProvider


def make_service(session_factory, identity, provider, sync_channel=False, messages=None):
    registry = ConversationRegistry(ConversationRepository(session_factory), provider, identity)
    return MessageService(
        registry=registry,
        messages=messages or MessageRepository(session_factory),
        provider=provider,
        sync_channel=sync_channel,
    )


async def open_conversation(session_factory, identity, provider):
    registry = ConversationRegistry(ConversationRepository(session_factory), provider, identity)
    return await registry.get_or_create_direct_conversation("u1", "u2", "Dr. Smith")


@pytest.mark.asyncio
async def test_send_stores_message_and_updates_preview(session_factory, patient):
    provider = FakeMessagingProvider()
    conv = await open_conversation(session_factory, patient, provider)
    service = make_service(session_factory, patient, provider)

    message = await service.send_message(conv.id, "Hello doctor", client_message_id="cm-1", sender_name="Pat")

    assert message.status == MessageStatus.SENT
    assert message.channel_message_id == "m1"
    assert message.sender_id == "u1"
    assert message.sender_name == "Pat"
    assert json.loads(provider.channel_messages[conv.channel_arn][0].metadata) == {"client_message_id": "cm-1"}

    stored = await ConversationRepository(session_factory).get(conv.id)
    assert stored.last_message_preview == "Hello doctor"
    assert stored.last_message_at is not None


def test_preview_is_truncated():
    assert message_preview("x" * 50) == "x" * 50
    assert message_preview("x" * 51) == "x" * 50 + "..."


@pytest.mark.asyncio
async def test_resend_with_same_client_id_is_not_duplicated(session_factory, patient):
    provider = FakeMessagingProvider()
    conv = await open_conversation(session_factory, patient, provider)
    service = make_service(session_factory, patient, provider)

    first = await service.send_message(conv.id, "Hello", client_message_id="cm-1")
    second = await service.send_message(conv.id, "Hello", client_message_id="cm-1")

    assert first.id == second.id
    assert provider.send_calls == 1
    assert len(await service.list_messages(conv.id)) == 1


@pytest.mark.asyncio
async def test_list_is_oldest_first(session_factory, patient, specialist):
    provider = FakeMessagingProvider()
    conv = await open_conversation(session_factory, patient, provider)
    await make_service(session_factory, patient, provider).send_message(conv.id, "one")
    await make_service(session_factory, specialist, provider).send_message(conv.id, "two")
    await make_service(session_factory, patient, provider).send_message(conv.id, "three")

    messages = await make_service(session_factory, specialist, provider).list_messages(conv.id)
    assert [m.content for m in messages] == ["one", "two", "three"]


@pytest.mark.asyncio
async def test_empty_content_rejected(session_factory, patient):
    provider = FakeMessagingProvider()
    conv = await open_conversation(session_factory, patient, provider)
    with pytest.raises(ValidationError):
        await make_service(session_factory, patient, provider).send_message(conv.id, "   ")
    assert provider.send_calls == 0


@pytest.mark.asyncio
async def test_outsider_cannot_read_or_send(session_factory, patient, outsider):
    provider = FakeMessagingProvider()
    conv = await open_conversation(session_factory, patient, provider)
    service = make_service(session_factory, outsider, provider)

    with pytest.raises(AuthorizationError):
        await service.list_messages(conv.id)
    with pytest.raises(AuthorizationError):
        await service.send_message(conv.id, "hi")


@pytest.mark.asyncio
async def test_provider_failure_propagates_without_record(session_factory, patient):
    provider = FakeMessagingProvider()
    conv = await open_conversation(session_factory, patient, provider)
    service = make_service(session_factory, patient, provider)
    provider.send_error = NetworkError("timed out")

    with pytest.raises(NetworkError):
        await service.send_message(conv.id, "hi")

    provider.send_error = None
    assert await service.list_messages(conv.id) == []


class FailingMessageRepository(MessageRepository):
    async def create(self, conversation_id, sender_id, sender_name, content,
                     channel_message_id=None, client_message_id=None, created_at=None, status=MessageStatus.SENT):
        raise PersistenceError("Failed to store message", remote_ref=channel_message_id)


@pytest.mark.asyncio
async def test_record_failure_after_send_carries_remote_id(session_factory, patient):
    provider = FakeMessagingProvider()
    conv = await open_conversation(session_factory, patient, provider)
    service = make_service(
        session_factory, patient, provider, messages=FailingMessageRepository(session_factory)
    )

    with pytest.raises(PersistenceError) as exc:
        await service.send_message(conv.id, "hi")
    assert exc.value.remote_ref == "m1"


@pytest.mark.asyncio
async def test_channel_messages_are_imported_once(session_factory, patient, specialist):
    provider = FakeMessagingProvider()
    conv = await open_conversation(session_factory, patient, provider)
    await make_service(session_factory, patient, provider, sync_channel=True).send_message(
        conv.id, "sent here", client_message_id="cm-1"
    )
    provider.post_from_elsewhere(conv.channel_arn, "u2", "sent from another device")

    service = make_service(session_factory, specialist, provider, sync_channel=True)
    first = await service.list_messages(conv.id)
    second = await service.list_messages(conv.id)

    assert [m.content for m in first] == ["sent here", "sent from another device"]
    assert first[1].sender_id == "u2"
    assert first[1].channel_message_id == "m2"
    assert [m.id for m in second] == [m.id for m in first]


@pytest.mark.asyncio
async def test_import_racing_a_send_stores_one_record(session_factory, patient, specialist):
    provider = FakeMessagingProvider(ack_delay=0.05)
    conv = await open_conversation(session_factory, patient, provider)
    sender = make_service(session_factory, patient, provider, sync_channel=True)
    reader = make_service(session_factory, specialist, provider, sync_channel=True)

    async def list_while_send_is_pending():
        await asyncio.sleep(0.01)
        return await reader.list_messages(conv.id)

    sent, listed = await asyncio.gather(
        sender.send_message(conv.id, "hello", client_message_id="cm-1"),
        list_while_send_is_pending(),
    )

    assert [m.channel_message_id for m in listed] == ["m1"]
    stored = await MessageRepository(session_factory).list_for_conversation(conv.id)
    assert len(stored) == 1
    assert stored[0].id == sent.id
    assert stored[0].client_message_id == "cm-1"
