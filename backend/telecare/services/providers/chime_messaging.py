"""
Chime SDK Messaging provider - channels and channel messages.

Every call is made as a Chime app instance user; the bearer ARN is
``<app-instance-arn>/user/<user-id>``. Channels are PRIVATE and
UNRESTRICTED, so every member can post. Messages are STANDARD and
PERSISTENT; the metadata string carries the client message id.
"""
import json
import logging
import secrets
import time
import uuid
from datetime import datetime
from typing import List, Optional

import boto3

from telecare.config.constants import CHANNEL_NAME_PREFIX, MESSAGE_PAGE_SIZE
from telecare.config.settings import settings
from telecare.schemas.message import ChannelMessage
from telecare.services.core.exceptions import ConfigurationError, ProviderError
from telecare.services.providers.base import call_aws

logger = logging.getLogger(__name__)

# ListChannelMessages page size limit
_LIST_PAGE_MAX = 50


def user_id_from_arn(arn: Optional[str]) -> Optional[str]:
    """``.../user/<user-id>`` -> ``<user-id>``"""
    if not arn or "/user/" not in arn:
        return None
    return arn.rsplit("/user/", 1)[1]


def channel_message_from_summary(summary: dict) -> ChannelMessage:
    created = summary.get("CreatedTimestamp")
    if created is not None and not isinstance(created, datetime):
        created = None
    sender = summary.get("Sender") or {}
    return ChannelMessage(
        message_id=summary["MessageId"],
        sender_arn=sender.get("Arn"),
        sender_id=user_id_from_arn(sender.get("Arn")),
        content=summary.get("Content") or "",
        created_at=created,
        metadata=summary.get("Metadata") or None,
    )


class ChimeMessagingProvider:
    """MessagingProvider over the ``chime-sdk-messaging`` API."""

    def __init__(self, client=None, app_instance_arn: Optional[str] = None, region: Optional[str] = None):
        self.client = client or boto3.client(
            "chime-sdk-messaging", region_name=region or settings.AWS_REGION
        )
        self.app_instance_arn = app_instance_arn or settings.CHIME_APP_INSTANCE_ARN

    def _require_app_instance(self) -> str:
        if not self.app_instance_arn:
            raise ConfigurationError("CHIME_APP_INSTANCE_ARN is not configured")
        return self.app_instance_arn

    def bearer_arn(self, user_id: str, app_instance_arn: Optional[str] = None) -> str:
        return f"{app_instance_arn or self._require_app_instance()}/user/{user_id}"

    async def create_channel(
        self,
        owner_id: str,
        name: str,
        participant_ids: List[str],
        request_token: Optional[str] = None,
    ) -> str:
        app_instance_arn = self._require_app_instance()
        channel_name = f"{CHANNEL_NAME_PREFIX}-{int(time.time() * 1000)}-{secrets.token_hex(3)}"
        members = [
            self.bearer_arn(user_id, app_instance_arn)
            for user_id in participant_ids
            if user_id != owner_id
        ]
        metadata = json.dumps({
            "name": name,
            "participantIds": list(participant_ids),
            "createdAt": datetime.utcnow().isoformat(),
        })

        response = await call_aws(
            self.client.create_channel,
            AppInstanceArn=app_instance_arn,
            ChimeBearer=self.bearer_arn(owner_id, app_instance_arn),
            Name=channel_name,
            Mode="UNRESTRICTED",
            Privacy="PRIVATE",
            Metadata=metadata,
            MemberArns=members,
            ClientRequestToken=request_token or str(uuid.uuid4()),
        )
        channel_arn = response.get("ChannelArn")
        if not channel_arn:
            raise ProviderError("Failed to create channel: no channel ARN returned")
        logger.info(f"[Chime] Channel created: {channel_arn} ({len(members) + 1} members)")
        return channel_arn

    async def send_channel_message(
        self,
        channel_arn: str,
        sender_id: str,
        content: str,
        metadata: Optional[str] = None,
    ) -> str:
        # Channel ARNs look like <app-instance-arn>/channel/<id>
        app_instance_arn = self.app_instance_arn or channel_arn.rsplit("/channel/", 1)[0]
        params = dict(
            ChannelArn=channel_arn,
            ChimeBearer=self.bearer_arn(sender_id, app_instance_arn),
            Content=content,
            Type="STANDARD",
            Persistence="PERSISTENT",
            ClientRequestToken=str(uuid.uuid4()),
        )
        if metadata:
            params["Metadata"] = metadata

        response = await call_aws(self.client.send_channel_message, **params)
        message_id = response.get("MessageId")
        if not message_id:
            raise ProviderError("Failed to send message: no message id returned")
        return message_id

    async def list_channel_messages(self, channel_arn: str, reader_id: str) -> List[ChannelMessage]:
        """Latest messages in the channel, oldest first."""
        app_instance_arn = self.app_instance_arn or channel_arn.rsplit("/channel/", 1)[0]
        bearer = self.bearer_arn(reader_id, app_instance_arn)

        summaries: List[dict] = []
        next_token = None
        while len(summaries) < MESSAGE_PAGE_SIZE:
            params = dict(
                ChannelArn=channel_arn,
                ChimeBearer=bearer,
                SortOrder="DESCENDING",
                MaxResults=min(_LIST_PAGE_MAX, MESSAGE_PAGE_SIZE - len(summaries)),
            )
            if next_token:
                params["NextToken"] = next_token
            response = await call_aws(self.client.list_channel_messages, **params)
            summaries.extend(response.get("ChannelMessages") or [])
            next_token = response.get("NextToken")
            if not next_token:
                break

        summaries.reverse()
        return [channel_message_from_summary(s) for s in summaries]
