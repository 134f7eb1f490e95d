"""
Session Negotiation - obtain a joinable meeting for an appointment.

Single Responsibility: turn an appointment id into a session + participant
credential pair, reusing the meeting stored against the appointment when
it is still usable.

Flow:
1. Authorize the caller against the appointment's two parties
2. Stored descriptor parses and has all required endpoints -> new participant in it
3. Otherwise (or if the provider rejects that participant) -> new session,
   store its descriptor (best-effort), new participant
"""
import logging
from typing import Optional

from pydantic import ValidationError as DescriptorValidationError

from telecare.config.constants import REQUIRED_SESSION_ENDPOINTS, SESSION_EXTERNAL_ID_PREFIX
from telecare.config.settings import settings
from telecare.models.appointment import Appointment
from telecare.schemas.session import Session, SessionCredentials
from telecare.services.core.exceptions import (
    AuthorizationError,
    ConfigurationError,
    PersistenceError,
    ProviderError,
    ValidationError,
)
from telecare.services.core.repositories import AppointmentRepository
from telecare.services.metrics import sessions_total, session_persist_failures
from telecare.services.protocols import IdentityProvider, SessionProvider

logger = logging.getLogger(__name__)


def parse_session_descriptor(raw: Optional[str]) -> Optional[Session]:
    """
    Parse a stored descriptor.

    Returns None when nothing is stored, the JSON doesn't validate, or a
    required endpoint is empty.
    """
    if not raw:
        return None
    try:
        session = Session.model_validate_json(raw)
    except DescriptorValidationError as e:
        logger.warning(f"[Negotiator] Stored session descriptor is malformed: {e.error_count()} errors")
        return None
    missing = session.endpoints.missing(REQUIRED_SESSION_ENDPOINTS)
    if missing:
        logger.warning(f"[Negotiator] Stored session {session.session_id} lacks endpoints {missing}")
        return None
    return session


class SessionNegotiator:
    """
    Obtains or creates a remote session and a participant credential.

    Collaborators are injected; nothing here reaches for a global client.
    """

    def __init__(
        self,
        appointments: AppointmentRepository,
        provider: SessionProvider,
        identity: IdentityProvider,
        region: Optional[str] = None,
    ):
        self.appointments = appointments
        self.provider = provider
        self.identity = identity
        self.region = region or settings.MEDIA_REGION
        # Last best-effort persistence failure, kept for callers and tests
        self.last_persistence_error: Optional[PersistenceError] = None

    async def authorize(self, appointment_id: str) -> Appointment:
        """
        Check the caller is the patient or the specialist on the appointment.

        Raises:
            ValidationError if appointment_id is empty
            AuthorizationError if the appointment is missing or the caller isn't a party
        """
        if not appointment_id:
            raise ValidationError("Appointment ID required")

        user_id = self.identity.current_user_id()
        if not user_id:
            raise AuthorizationError("You must be logged in to join a video call")

        appointment = await self.appointments.get(appointment_id)
        if appointment is None:
            logger.warning(f"[Negotiator] Appointment not found: {appointment_id}")
            raise AuthorizationError("You are not authorized to access this appointment")

        if not appointment.is_party(user_id):
            logger.warning(f"[Negotiator] User {user_id} is not a party to appointment {appointment_id}")
            raise AuthorizationError("You are not authorized to access this appointment")

        return appointment

    async def obtain_session(self, appointment_id: str) -> SessionCredentials:
        """
        Get session credentials for the appointment.

        Raises:
            AuthorizationError, ValidationError: caller/appointment checks
            NetworkError: transport failure talking to the provider
            ProviderError: provider rejected creating a new session/participant
            ConfigurationError: provider returned a session missing required endpoints
        """
        appointment = await self.authorize(appointment_id)
        user_id = self.identity.current_user_id()

        stored = parse_session_descriptor(appointment.meeting_config)
        if stored is not None:
            try:
                participant = await self.provider.create_participant(stored.session_id, user_id)
            except ProviderError as e:
                # Stale or deleted meeting: only discovered here
                logger.info(
                    f"[Negotiator] Stored session {stored.session_id} rejected participant "
                    f"for appointment {appointment_id}: {e}. Creating a new session"
                )
            else:
                sessions_total.labels(outcome='reused').inc()
                logger.info(f"[Negotiator] Reusing session {stored.session_id} for appointment {appointment_id}")
                return SessionCredentials(session=stored, participant=participant, reused=True)

        session = await self.provider.create_session(
            external_id=f"{SESSION_EXTERNAL_ID_PREFIX}{appointment_id}",
            region=self.region,
        )
        missing = session.endpoints.missing(REQUIRED_SESSION_ENDPOINTS)
        if not session.session_id or missing:
            raise ConfigurationError(
                f"Session descriptor incomplete: missing {missing or ['session_id']}"
            )

        await self._store_descriptor(appointment_id, session)

        participant = await self.provider.create_participant(session.session_id, user_id)
        sessions_total.labels(outcome='created').inc()
        logger.info(f"[Negotiator] Created session {session.session_id} for appointment {appointment_id}")
        return SessionCredentials(session=session, participant=participant, reused=False)

    async def _store_descriptor(self, appointment_id: str, session: Session) -> None:
        """Best-effort: the session already exists, so a failed write doesn't abort setup."""
        try:
            await self.appointments.store_session_descriptor(appointment_id, session)
            self.last_persistence_error = None
        except PersistenceError as e:
            self.last_persistence_error = e
            session_persist_failures.inc()
            logger.warning(
                f"[Negotiator] Could not store session {session.session_id} "
                f"for appointment {appointment_id}: {e}"
            )
