"""
Auth Service - caller identity from bearer tokens.

Tokens are issued by the identity provider (Cognito user pool in
production); the ``sub`` claim is the caller's stable identifier and is
what appointments, conversations and participants are keyed by.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from jose import jwt, JWTError

from telecare.config.settings import settings


@dataclass(frozen=True)
class StaticIdentity:
    """IdentityProvider bound to one already-authenticated caller."""
    user_id: str

    def current_user_id(self) -> str:
        return self.user_id


def create_access_token(subject: str, expires_delta: Optional[timedelta] = None) -> str:
    if expires_delta is None:
        expires_delta = timedelta(hours=1)
    expire = datetime.utcnow() + expires_delta
    to_encode = {"sub": subject, "exp": int(expire.timestamp())}
    return jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> Optional[dict]:
    try:
        return jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        return None


def identity_from_token(token: Optional[str]) -> Optional[StaticIdentity]:
    if not token:
        return None
    payload = decode_token(token)
    if not payload or not payload.get("sub"):
        return None
    return StaticIdentity(user_id=payload["sub"])
