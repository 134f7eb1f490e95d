"""
Request dependencies: caller identity and services wired from app.state.

Providers and the session factory are built once in the application
lifespan and stored on ``app.state``; services are cheap per-request
objects over them. Tests replace providers on ``app.state`` or override
these dependencies.
"""
from typing import Optional
import logging

from fastapi import Depends, Header, HTTPException, Request, status

from telecare.config.settings import settings
from telecare.models.database import AsyncSessionLocal
from telecare.services.auth_service import StaticIdentity, identity_from_token
from telecare.services.call import SessionNegotiator
from telecare.services.core import AppointmentRepository, ConversationRepository, MessageRepository
from telecare.services.messaging import ConversationRegistry, MessageService

logger = logging.getLogger(__name__)


async def get_identity(authorization: Optional[str] = Header(None)) -> StaticIdentity:
    if not authorization:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing Authorization header")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid Authorization header")
    identity = identity_from_token(token)
    if identity is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    return identity


def get_session_factory(request: Request):
    return getattr(request.app.state, "session_factory", None) or AsyncSessionLocal


def get_negotiator(
    request: Request,
    identity: StaticIdentity = Depends(get_identity),
    session_factory=Depends(get_session_factory),
) -> SessionNegotiator:
    return SessionNegotiator(
        appointments=AppointmentRepository(session_factory),
        provider=request.app.state.session_provider,
        identity=identity,
    )


def build_registry(app, identity, session_factory) -> ConversationRegistry:
    return ConversationRegistry(
        conversations=ConversationRepository(session_factory),
        provider=app.state.messaging_provider,
        identity=identity,
        pair_locks=app.state.conversation_locks,
    )


def build_message_service(app, identity, session_factory) -> MessageService:
    return MessageService(
        registry=build_registry(app, identity, session_factory),
        messages=MessageRepository(session_factory),
        provider=app.state.messaging_provider,
        sync_channel=settings.MESSAGE_SYNC_FROM_CHANNEL,
    )


def get_registry(
    request: Request,
    identity: StaticIdentity = Depends(get_identity),
    session_factory=Depends(get_session_factory),
) -> ConversationRegistry:
    return build_registry(request.app, identity, session_factory)


def get_message_service(
    request: Request,
    identity: StaticIdentity = Depends(get_identity),
    session_factory=Depends(get_session_factory),
) -> MessageService:
    return build_message_service(request.app, identity, session_factory)
