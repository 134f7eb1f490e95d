"""
Chime SDK Meetings provider - meetings and attendees.

Meetings are created with echo reduction available, HD camera video and
FHD content sharing. Attendees are created with the caller's user id as
ExternalUserId so presence events can be mapped back to identities.
"""
import logging
import uuid
from typing import Optional

import boto3

from telecare.config.settings import settings
from telecare.schemas.session import Participant, Session, SessionEndpoints
from telecare.services.core.exceptions import ProviderError
from telecare.services.providers.base import call_aws

logger = logging.getLogger(__name__)

# MediaPlacement key -> SessionEndpoints field
_ENDPOINT_FIELDS = {
    "AudioHostUrl": "audio_host_url",
    "AudioFallbackUrl": "audio_fallback_url",
    "SignalingUrl": "signaling_url",
    "TurnControlUrl": "turn_control_url",
    "ScreenDataUrl": "screen_data_url",
    "ScreenViewingUrl": "screen_viewing_url",
    "ScreenSharingUrl": "screen_sharing_url",
    "EventIngestionUrl": "event_ingestion_url",
}

MEETING_FEATURES = {
    "Audio": {"EchoReduction": "AVAILABLE"},
    "Video": {"MaxResolution": "HD"},
    "Content": {"MaxResolution": "FHD"},
}


def session_from_meeting(meeting: dict) -> Session:
    placement = meeting.get("MediaPlacement") or {}
    endpoints = SessionEndpoints(**{
        field: placement.get(key) or ""
        for key, field in _ENDPOINT_FIELDS.items()
    })
    return Session(
        session_id=meeting.get("MeetingId") or "",
        region=meeting.get("MediaRegion") or "",
        endpoints=endpoints,
        session_arn=meeting.get("MeetingArn"),
        external_id=meeting.get("ExternalMeetingId"),
    )


class ChimeMeetingsProvider:
    """SessionProvider over the ``chime-sdk-meetings`` API."""

    def __init__(self, client=None, region: Optional[str] = None):
        self.client = client or boto3.client(
            "chime-sdk-meetings", region_name=region or settings.AWS_REGION
        )

    async def create_session(self, external_id: str, region: str) -> Session:
        response = await call_aws(
            self.client.create_meeting,
            ClientRequestToken=str(uuid.uuid4()),
            ExternalMeetingId=external_id,
            MediaRegion=region,
            MeetingFeatures=MEETING_FEATURES,
        )
        meeting = response.get("Meeting")
        if not meeting:
            raise ProviderError("Failed to create meeting: no meeting returned")
        session = session_from_meeting(meeting)
        logger.info(f"[Chime] Meeting created: {session.session_id} ({session.region})")
        return session

    async def create_participant(self, session_id: str, user_id: str) -> Participant:
        response = await call_aws(
            self.client.create_attendee,
            MeetingId=session_id,
            ExternalUserId=user_id,
        )
        attendee = response.get("Attendee")
        if not attendee:
            raise ProviderError("Failed to create attendee: no attendee returned")
        logger.info(f"[Chime] Attendee {attendee.get('AttendeeId')} created in meeting {session_id}")
        return Participant(
            participant_id=attendee["AttendeeId"],
            join_token=attendee["JoinToken"],
            external_user_id=attendee.get("ExternalUserId") or user_id,
        )
