from typing import Optional
from pydantic import BaseModel


class SessionEndpoints(BaseModel):
    audio_host_url: str = ""
    audio_fallback_url: str = ""
    signaling_url: str = ""
    turn_control_url: str = ""
    screen_data_url: str = ""
    screen_viewing_url: str = ""
    screen_sharing_url: str = ""
    event_ingestion_url: str = ""

    def missing(self, required) -> list:
        return [name for name in required if not getattr(self, name, "")]


class Session(BaseModel):
    """Remote audio/video meeting. Serialized as the stored session descriptor."""
    session_id: str
    region: str
    endpoints: SessionEndpoints
    session_arn: Optional[str] = None
    external_id: Optional[str] = None


class Participant(BaseModel):
    participant_id: str
    join_token: str
    external_user_id: str


class SessionCredentials(BaseModel):
    session: Session
    participant: Participant
    reused: bool = False
