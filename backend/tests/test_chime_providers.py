import uuid
from datetime import datetime, timezone

import boto3
import pytest
from botocore.exceptions import EndpointConnectionError
from botocore.stub import ANY, Stubber

from telecare.services.core import ConfigurationError, NetworkError, ProviderError
from telecare.services.providers import ChimeMeetingsProvider, ChimeMessagingProvider
from telecare.services.providers.base import call_aws

APP_INSTANCE_ARN = "arn:aws:chime:us-east-1:123456789012:app-instance/abc"
CHANNEL_ARN = f"{APP_INSTANCE_ARN}/channel/chan-1"


def make_client(service):
    return boto3.client(
        service,
        region_name="us-east-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )


def meeting_response(meeting_id):
    return {
        "Meeting": {
            "MeetingId": meeting_id,
            "ExternalMeetingId": "appointment-apt-1",
            "MediaRegion": "us-east-1",
            "MeetingArn": f"arn:aws:chime:us-east-1:123456789012:meeting/{meeting_id}",
            "MediaPlacement": {
                "AudioHostUrl": "audio.example:3478",
                "AudioFallbackUrl": "wss://audio.example/fallback",
                "SignalingUrl": "wss://signal.example/control",
                "TurnControlUrl": "https://turn.example/control",
                "EventIngestionUrl": "https://events.example",
            },
        }
    }


@pytest.mark.asyncio
async def test_create_session_maps_media_placement():
    client = make_client("chime-sdk-meetings")
    meeting_id = str(uuid.uuid4())
    with Stubber(client) as stub:
        stub.add_response(
            "create_meeting",
            meeting_response(meeting_id),
            {
                "ClientRequestToken": ANY,
                "ExternalMeetingId": "appointment-apt-1",
                "MediaRegion": "us-east-1",
                "MeetingFeatures": {
                    "Audio": {"EchoReduction": "AVAILABLE"},
                    "Video": {"MaxResolution": "HD"},
                    "Content": {"MaxResolution": "FHD"},
                },
            },
        )
        session = await ChimeMeetingsProvider(client=client).create_session("appointment-apt-1", "us-east-1")

    assert session.session_id == meeting_id
    assert session.endpoints.signaling_url == "wss://signal.example/control"
    assert session.endpoints.screen_data_url == ""
    assert session.external_id == "appointment-apt-1"


@pytest.mark.asyncio
async def test_create_participant_and_rejection():
    client = make_client("chime-sdk-meetings")
    meeting_id = str(uuid.uuid4())
    attendee_id = str(uuid.uuid4())
    with Stubber(client) as stub:
        stub.add_response(
            "create_attendee",
            {"Attendee": {"AttendeeId": attendee_id, "ExternalUserId": "user-1", "JoinToken": "join-token-value"}},
            {"MeetingId": meeting_id, "ExternalUserId": "user-1"},
        )
        stub.add_client_error(
            "create_attendee",
            service_error_code="NotFoundException",
            service_message="The meeting was not found",
            http_status_code=404,
        )
        provider = ChimeMeetingsProvider(client=client)

        participant = await provider.create_participant(meeting_id, "user-1")
        with pytest.raises(ProviderError) as exc:
            await provider.create_participant(meeting_id, "user-1")

    assert participant.participant_id == attendee_id
    assert participant.join_token == "join-token-value"
    assert str(exc.value) == "The meeting was not found"
    assert exc.value.code == "NotFoundException"


@pytest.mark.asyncio
async def test_create_channel_adds_other_members():
    client = make_client("chime-sdk-messaging")
    with Stubber(client) as stub:
        stub.add_response(
            "create_channel",
            {"ChannelArn": CHANNEL_ARN},
            {
                "AppInstanceArn": APP_INSTANCE_ARN,
                "ChimeBearer": f"{APP_INSTANCE_ARN}/user/u1",
                "Name": ANY,
                "Mode": "UNRESTRICTED",
                "Privacy": "PRIVATE",
                "Metadata": ANY,
                "MemberArns": [f"{APP_INSTANCE_ARN}/user/u2"],
                "ClientRequestToken": "pair-token",
            },
        )
        provider = ChimeMessagingProvider(client=client, app_instance_arn=APP_INSTANCE_ARN)
        arn = await provider.create_channel("u1", "Dr. Smith", ["u1", "u2"], request_token="pair-token")

    assert arn == CHANNEL_ARN


@pytest.mark.asyncio
async def test_create_channel_requires_app_instance(monkeypatch):
    monkeypatch.setattr("telecare.services.providers.chime_messaging.settings.CHIME_APP_INSTANCE_ARN", None)
    provider = ChimeMessagingProvider(client=make_client("chime-sdk-messaging"))
    with pytest.raises(ConfigurationError):
        await provider.create_channel("u1", "Dr. Smith", ["u1", "u2"])


@pytest.mark.asyncio
async def test_send_and_list_channel_messages():
    client = make_client("chime-sdk-messaging")
    sent_at = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    with Stubber(client) as stub:
        stub.add_response(
            "send_channel_message",
            {"ChannelArn": CHANNEL_ARN, "MessageId": "msg-1"},
            {
                "ChannelArn": CHANNEL_ARN,
                "ChimeBearer": f"{APP_INSTANCE_ARN}/user/u1",
                "Content": "hello",
                "Type": "STANDARD",
                "Persistence": "PERSISTENT",
                "ClientRequestToken": ANY,
                "Metadata": '{"client_message_id": "cm-1"}',
            },
        )
        stub.add_response(
            "list_channel_messages",
            {
                "ChannelArn": CHANNEL_ARN,
                "ChannelMessages": [
                    {"MessageId": "msg-2", "Content": "second", "CreatedTimestamp": sent_at,
                     "Sender": {"Arn": f"{APP_INSTANCE_ARN}/user/u2", "Name": "u2"}},
                    {"MessageId": "msg-1", "Content": "hello", "CreatedTimestamp": sent_at,
                     "Metadata": '{"client_message_id": "cm-1"}',
                     "Sender": {"Arn": f"{APP_INSTANCE_ARN}/user/u1", "Name": "u1"}},
                ],
            },
            {
                "ChannelArn": CHANNEL_ARN,
                "ChimeBearer": f"{APP_INSTANCE_ARN}/user/u2",
                "SortOrder": "DESCENDING",
                "MaxResults": 50,
            },
        )
        provider = ChimeMessagingProvider(client=client, app_instance_arn=APP_INSTANCE_ARN)

        message_id = await provider.send_channel_message(
            CHANNEL_ARN, "u1", "hello", metadata='{"client_message_id": "cm-1"}'
        )
        messages = await provider.list_channel_messages(CHANNEL_ARN, "u2")

    assert message_id == "msg-1"
    assert [m.message_id for m in messages] == ["msg-1", "msg-2"]
    assert messages[0].sender_id == "u1"
    assert messages[0].metadata == '{"client_message_id": "cm-1"}'


@pytest.mark.asyncio
async def test_transport_failure_is_network_error():
    def unreachable(**kwargs):
        raise EndpointConnectionError(endpoint_url="https://meetings-chime.us-east-1.amazonaws.com")

    with pytest.raises(NetworkError):
        await call_aws(unreachable, MeetingId="x")
