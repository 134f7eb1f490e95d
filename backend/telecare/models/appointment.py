"""
Appointment Model

Only the fields the call layer needs: the two parties allowed to join
and the stored session descriptor that is reused across reconnects.
"""
from sqlalchemy import Column, String, DateTime, Text
from datetime import datetime
import uuid

from .database import Base


class Appointment(Base):
    """Booked appointment between a patient and a specialist"""
    __tablename__ = "appointments"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # The two identities allowed to join the call
    user_id = Column(String(128), nullable=False, index=True)  # patient
    specialist_id = Column(String(128), nullable=False, index=True)
    specialist_name = Column(String(200), nullable=True)

    status = Column(String(20), nullable=False, default='confirmed')  # confirmed, cancelled, completed

    # Stored session descriptor (JSON) reused across reconnect attempts
    meeting_id = Column(String(64), nullable=True)
    meeting_config = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def is_party(self, user_id: str) -> bool:
        """True if user_id is the patient or the specialist."""
        return bool(user_id) and user_id in (self.user_id, self.specialist_id)

    def __repr__(self):
        return f"<Appointment {self.id}>"
