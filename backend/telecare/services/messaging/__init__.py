"""
Messaging Module

Chat conversations between appointment parties:
- ConversationRegistry: create-or-find direct and group conversations
- MessageService: send and list messages through the provider channel
- MessagePoller: local ordered view with optimistic sends
"""
from .registry import ConversationRegistry, channel_request_token, is_direct_between
from .service import MessageService, message_preview
from .poller import MessagePoller

__all__ = [
    "ConversationRegistry",
    "channel_request_token",
    "is_direct_between",
    "MessageService",
    "message_preview",
    "MessagePoller",
]
