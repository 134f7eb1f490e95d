"""
Core Infrastructure Module

Shared building blocks for the call and messaging services:
- Error taxonomy (AuthorizationError, NetworkError, ...)
- Repositories: database access behind an injected session factory

Usage:
    from telecare.services.core import AppointmentRepository, NetworkError
"""

from telecare.services.core.exceptions import (
    TelecareError,
    AuthorizationError,
    ConfigurationError,
    NetworkError,
    ValidationError,
    ProviderError,
    PersistenceError,
    DirectConversationExistsError,
    NotFoundError,
)
from telecare.services.core.repositories import (
    AppointmentRepository,
    ConversationRepository,
    MessageRepository,
)

__all__ = [
    # Errors
    "TelecareError",
    "AuthorizationError",
    "ConfigurationError",
    "NetworkError",
    "ValidationError",
    "ProviderError",
    "PersistenceError",
    "DirectConversationExistsError",
    "NotFoundError",
    # Repositories
    "AppointmentRepository",
    "ConversationRepository",
    "MessageRepository",
]
