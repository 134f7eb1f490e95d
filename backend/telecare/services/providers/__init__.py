"""
Provider adapters over the AWS Chime SDK (boto3).

- ChimeMeetingsProvider: SessionProvider (meetings, attendees)
- ChimeMessagingProvider: MessagingProvider (channels, channel messages)
"""
from .chime_meetings import ChimeMeetingsProvider, session_from_meeting
from .chime_messaging import ChimeMessagingProvider, channel_message_from_summary, user_id_from_arn

__all__ = [
    "ChimeMeetingsProvider",
    "session_from_meeting",
    "ChimeMessagingProvider",
    "channel_message_from_summary",
    "user_id_from_arn",
]
