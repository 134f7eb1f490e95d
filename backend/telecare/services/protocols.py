"""
Protocol definitions for the external collaborators.

This module defines interfaces (Python Protocols) that allow:
- Swapping providers (Chime SDK -> any other meeting/messaging backend)
- Testing without real AWS credentials
- Clear contracts between the coordination layer and the outside world

Usage:
    from telecare.services.protocols import SessionProvider

    async def join(provider: SessionProvider, session_id: str, user_id: str):
        participant = await provider.create_participant(session_id, user_id)
"""

from typing import Any, List, Optional, Protocol

from telecare.schemas.message import ChannelMessage, MessageOut
from telecare.schemas.session import Participant, Session


class SessionProvider(Protocol):
    """
    Interface for the remote meeting service.

    Implementations raise NetworkError on transport failure and
    ProviderError when the service rejects the request.
    """

    async def create_session(self, external_id: str, region: str) -> Session:
        """Create a new meeting for ``external_id`` in ``region``."""
        ...

    async def create_participant(self, session_id: str, user_id: str) -> Participant:
        """Create a join credential for ``user_id`` in an existing meeting."""
        ...


class MessagingProvider(Protocol):
    """Interface for the remote channel/messaging service."""

    async def create_channel(
        self,
        owner_id: str,
        name: str,
        participant_ids: List[str],
        request_token: Optional[str] = None,
    ) -> str:
        """
        Create a channel owned by ``owner_id`` with every participant as a member.

        Repeating a request with the same ``request_token`` returns the same
        channel. Returns the channel ARN.
        """
        ...

    async def send_channel_message(
        self,
        channel_arn: str,
        sender_id: str,
        content: str,
        metadata: Optional[str] = None,
    ) -> str:
        """Send ``content`` to the channel; returns the provider message id."""
        ...

    async def list_channel_messages(self, channel_arn: str, reader_id: str) -> List[ChannelMessage]:
        """List messages currently stored in the channel."""
        ...


class IdentityProvider(Protocol):
    """Returns the stable identifier of the current caller."""

    def current_user_id(self) -> str:
        ...


class MediaSession(Protocol):
    """
    Client-side audio/video session bound to one participant credential.

    Observers receive:
        attendee_presence_changed(attendee_id, external_user_id, present)
        video_tile_did_update(tile_id, attendee_id, external_user_id, is_local)
        video_tile_was_removed(tile_id)
        audio_video_did_stop(reason)
    """

    def add_observer(self, observer: Any) -> None:
        ...

    def remove_observer(self, observer: Any) -> None:
        ...

    async def start(self) -> None:
        ...

    def stop(self) -> None:
        ...

    def realtime_mute_local_audio(self) -> None:
        ...

    def realtime_unmute_local_audio(self) -> None:
        ...

    async def start_local_video_tile(self) -> None:
        ...

    def stop_local_video_tile(self) -> None:
        ...


class MediaSessionFactory(Protocol):
    """Builds a MediaSession from negotiated credentials."""

    def __call__(self, credentials) -> MediaSession:
        ...


class MessageSource(Protocol):
    """What MessagePoller reads from and sends through (MessageService in the app)."""

    async def list_messages(self, conversation_id: str) -> List[MessageOut]:
        ...

    async def send_message(
        self,
        conversation_id: str,
        content: str,
        client_message_id: Optional[str] = None,
        sender_name: Optional[str] = None,
    ) -> MessageOut:
        ...
