"""
Sessions API - video session credentials for an appointment

Implements:
- Session negotiation (reuse the stored meeting or create one)
"""
import logging

from fastapi import APIRouter, Depends

from telecare.api.deps import get_negotiator
from telecare.api.errors import http_error
from telecare.schemas.session import SessionCredentials
from telecare.services.call import SessionNegotiator
from telecare.services.core.exceptions import TelecareError

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/sessions/{appointment_id}", response_model=SessionCredentials)
async def obtain_session(
    appointment_id: str,
    negotiator: SessionNegotiator = Depends(get_negotiator),
):
    """
    Get credentials to join the appointment's video call.

    Only the appointment's patient or specialist may join. Returns the
    meeting descriptor and a fresh participant join token; ``reused`` is
    true when the meeting stored against the appointment was reused.
    """
    try:
        return await negotiator.obtain_session(appointment_id)
    except TelecareError as e:
        logger.warning(f"[SessionsAPI] Session for appointment {appointment_id} failed: {e.kind}")
        raise http_error(e)
