"""
Call State Machine - video call lifecycle for one appointment.

All transitions go through ``reduce_call_state(state, event)``, a pure
function over explicit event types. ``CallStateMachine`` is the driver: it
runs authorization and session negotiation, starts the media session,
turns media observer callbacks into events, and owns teardown.

    initializing -> authorizing -> connecting -> connected <-> waiting-for-peer
                                                     \\-> disconnected
    any -> error (terminal until the machine is discarded)

Presence and tile events may arrive before the session has started. They
are recorded as facts in any non-terminal state and the connected/waiting
status is derived from those facts once the session is running, so the
result does not depend on arrival order.

Known gap: the call is 1:1. When more than one remote attendee shows up,
only the identity behind the most recently bound remote tile is exposed.
"""
import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from telecare.schemas.session import SessionCredentials
from telecare.services.call.negotiator import SessionNegotiator
from telecare.services.core.exceptions import TelecareError
from telecare.services.metrics import call_state_transitions
from telecare.services.protocols import MediaSession, MediaSessionFactory

logger = logging.getLogger(__name__)


class CallStatus(str, Enum):
    INITIALIZING = "initializing"
    AUTHORIZING = "authorizing"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    WAITING_FOR_PEER = "waiting-for-peer"
    DISCONNECTED = "disconnected"
    ERROR = "error"


TERMINAL_STATUSES = frozenset({CallStatus.DISCONNECTED, CallStatus.ERROR})
LIVE_STATUSES = frozenset({CallStatus.CONNECTING, CallStatus.CONNECTED, CallStatus.WAITING_FOR_PEER})


@dataclass(frozen=True)
class RemoteAttendee:
    attendee_id: str
    external_user_id: Optional[str] = None


@dataclass(frozen=True)
class CallState:
    status: CallStatus = CallStatus.INITIALIZING
    error_message: Optional[str] = None
    error_kind: Optional[str] = None
    retryable: bool = False
    remote_attendee: Optional[RemoteAttendee] = None

    # Reconciliation facts
    self_attendee_id: Optional[str] = None
    session_started: bool = False
    present_attendees: Tuple[str, ...] = ()  # arrival order, most recent last
    remote_tiles: Tuple[Tuple[int, str], ...] = ()  # (tile_id, attendee_id), bind order
    external_ids: Dict[str, str] = field(default_factory=dict)
    local_tile_id: Optional[int] = None

    # Local media toggles (not rolled back if the provider call fails)
    audio_muted: bool = False
    video_enabled: bool = True

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "error_message": self.error_message,
            "error_kind": self.error_kind,
            "retryable": self.retryable,
            "remote_attendee": (
                {
                    "attendee_id": self.remote_attendee.attendee_id,
                    "external_user_id": self.remote_attendee.external_user_id,
                }
                if self.remote_attendee else None
            ),
            "audio_muted": self.audio_muted,
            "video_enabled": self.video_enabled,
        }


# =============================================================================
# Events
# =============================================================================

@dataclass(frozen=True)
class AuthorizationStarted:
    pass


@dataclass(frozen=True)
class AuthorizationGranted:
    pass


@dataclass(frozen=True)
class SessionNegotiated:
    self_attendee_id: str


@dataclass(frozen=True)
class SessionStarted:
    pass


@dataclass(frozen=True)
class AttendeePresenceChanged:
    attendee_id: str
    present: bool
    external_user_id: Optional[str] = None


@dataclass(frozen=True)
class VideoTileBound:
    tile_id: int
    attendee_id: Optional[str]
    external_user_id: Optional[str] = None
    is_local: bool = False


@dataclass(frozen=True)
class VideoTileRemoved:
    tile_id: int


@dataclass(frozen=True)
class SessionStopped:
    reason: Optional[str] = None


@dataclass(frozen=True)
class HangUp:
    pass


@dataclass(frozen=True)
class CallFailed:
    message: str
    kind: str = "error"
    retryable: bool = False


@dataclass(frozen=True)
class AudioToggled:
    muted: bool


@dataclass(frozen=True)
class VideoToggled:
    enabled: bool


# =============================================================================
# Reducer
# =============================================================================

def _without(items: Tuple[str, ...], value: str) -> Tuple[str, ...]:
    return tuple(i for i in items if i != value)


def _derive(state: CallState) -> CallState:
    """Recompute remote_attendee and, once the session runs, connected vs waiting."""
    remote = None
    if state.remote_tiles:
        attendee_id = state.remote_tiles[-1][1]
        remote = RemoteAttendee(attendee_id, state.external_ids.get(attendee_id))
    elif state.present_attendees:
        attendee_id = state.present_attendees[-1]
        remote = RemoteAttendee(attendee_id, state.external_ids.get(attendee_id))

    status = state.status
    if state.session_started and status in LIVE_STATUSES:
        status = CallStatus.CONNECTED if state.present_attendees else CallStatus.WAITING_FOR_PEER

    return replace(state, status=status, remote_attendee=remote)


def _remember_external_id(state: CallState, attendee_id: str, external_user_id: Optional[str]) -> Dict[str, str]:
    if not external_user_id:
        return state.external_ids
    return {**state.external_ids, attendee_id: external_user_id}


def reduce_call_state(state: CallState, event) -> CallState:
    """Return the state after ``event``. Never mutates ``state``."""
    if state.is_terminal:
        return state

    if isinstance(event, CallFailed):
        return replace(
            state,
            status=CallStatus.ERROR,
            error_message=event.message,
            error_kind=event.kind,
            retryable=event.retryable,
            remote_attendee=None,
        )

    if isinstance(event, (HangUp, SessionStopped)):
        return replace(state, status=CallStatus.DISCONNECTED, remote_attendee=None)

    if isinstance(event, AuthorizationStarted):
        if state.status == CallStatus.INITIALIZING:
            return replace(state, status=CallStatus.AUTHORIZING)
        return state

    if isinstance(event, AuthorizationGranted):
        if state.status == CallStatus.AUTHORIZING:
            return replace(state, status=CallStatus.CONNECTING)
        return state

    if isinstance(event, SessionNegotiated):
        self_id = event.self_attendee_id
        return _derive(replace(
            state,
            self_attendee_id=self_id,
            present_attendees=_without(state.present_attendees, self_id),
            remote_tiles=tuple(t for t in state.remote_tiles if t[1] != self_id),
        ))

    if isinstance(event, SessionStarted):
        return _derive(replace(state, session_started=True))

    if isinstance(event, AttendeePresenceChanged):
        if event.attendee_id == state.self_attendee_id:
            return state
        present = _without(state.present_attendees, event.attendee_id)
        tiles = state.remote_tiles
        if event.present:
            present = present + (event.attendee_id,)
        else:
            tiles = tuple(t for t in tiles if t[1] != event.attendee_id)
        return _derive(replace(
            state,
            present_attendees=present,
            remote_tiles=tiles,
            external_ids=_remember_external_id(state, event.attendee_id, event.external_user_id),
        ))

    if isinstance(event, VideoTileBound):
        if event.is_local or (event.attendee_id and event.attendee_id == state.self_attendee_id):
            return replace(state, local_tile_id=event.tile_id)
        if not event.attendee_id:
            return state
        tiles = tuple(t for t in state.remote_tiles if t[0] != event.tile_id)
        tiles = tiles + ((event.tile_id, event.attendee_id),)
        present = _without(state.present_attendees, event.attendee_id) + (event.attendee_id,)
        return _derive(replace(
            state,
            remote_tiles=tiles,
            present_attendees=present,
            external_ids=_remember_external_id(state, event.attendee_id, event.external_user_id),
        ))

    if isinstance(event, VideoTileRemoved):
        if event.tile_id == state.local_tile_id:
            return replace(state, local_tile_id=None)
        removed = [t for t in state.remote_tiles if t[0] == event.tile_id]
        if not removed:
            return state
        tiles = tuple(t for t in state.remote_tiles if t[0] != event.tile_id)
        present = state.present_attendees
        if not tiles:
            # Last remote tile gone: treat its attendee as left until presence says otherwise
            present = _without(present, removed[0][1])
        return _derive(replace(state, remote_tiles=tiles, present_attendees=present))

    if isinstance(event, AudioToggled):
        return replace(state, audio_muted=event.muted)

    if isinstance(event, VideoToggled):
        return replace(state, video_enabled=event.enabled)

    logger.warning(f"[CallState] Unknown event ignored: {event!r}")
    return state


# =============================================================================
# Driver
# =============================================================================

class _CallObserver:
    """Media observer that forwards provider callbacks as events."""

    def __init__(self, machine: "CallStateMachine"):
        self.machine = machine

    def attendee_presence_changed(self, attendee_id: str, external_user_id: Optional[str], present: bool):
        self.machine.dispatch(AttendeePresenceChanged(attendee_id, present, external_user_id))

    def video_tile_did_update(self, tile_id: Optional[int], attendee_id: Optional[str],
                              external_user_id: Optional[str] = None, is_local: bool = False):
        if tile_id is None:
            return
        self.machine.dispatch(VideoTileBound(tile_id, attendee_id, external_user_id, is_local))

    def video_tile_was_removed(self, tile_id: int):
        self.machine.dispatch(VideoTileRemoved(tile_id))

    def audio_video_did_stop(self, reason: Optional[str] = None):
        self.machine.dispatch(SessionStopped(reason))


class CallStateMachine:
    """
    Drives one call view's lifecycle.

    Usage:
        machine = CallStateMachine("apt-1", negotiator, media_factory)
        machine.subscribe(render)
        await machine.start()
        ...
        machine.teardown()  # view unmounted
    """

    def __init__(
        self,
        appointment_id: str,
        negotiator: SessionNegotiator,
        media_factory: MediaSessionFactory,
    ):
        self.appointment_id = appointment_id
        self.negotiator = negotiator
        self.media_factory = media_factory
        self.credentials: Optional[SessionCredentials] = None

        self._state = CallState()
        self._mounted = True
        self._listeners: List[Callable[[CallState], None]] = []
        self._media: Optional[MediaSession] = None
        self._observer: Optional[_CallObserver] = None

    @property
    def state(self) -> CallState:
        return self._state

    @property
    def mounted(self) -> bool:
        return self._mounted

    def subscribe(self, listener: Callable[[CallState], None]) -> Callable[[], None]:
        """Register a listener called after every state change; returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def dispatch(self, event) -> CallState:
        """Apply an event. Ignored once the view has been torn down."""
        if not self._mounted:
            logger.debug(f"[CallState] {self.appointment_id}: dropped {type(event).__name__} after teardown")
            return self._state

        previous = self._state
        self._state = reduce_call_state(previous, event)
        if self._state == previous:
            return self._state

        if self._state.status != previous.status:
            call_state_transitions.labels(status=self._state.status.value).inc()
            logger.info(
                f"[CallState] {self.appointment_id}: {previous.status.value} -> {self._state.status.value}"
            )

        for listener in list(self._listeners):
            try:
                listener(self._state)
            except Exception as e:
                logger.error(f"[CallState] Listener error: {e}")
        return self._state

    async def start(self) -> CallState:
        """Authorize, negotiate, start media. Any failure ends in the error state."""
        try:
            self.dispatch(AuthorizationStarted())
            await self.negotiator.authorize(self.appointment_id)
            if self._abandoned():
                return self._state
            self.dispatch(AuthorizationGranted())

            credentials = await self.negotiator.obtain_session(self.appointment_id)
            if self._abandoned():
                return self._state
            self.credentials = credentials
            self.dispatch(SessionNegotiated(credentials.participant.participant_id))

            media = self.media_factory(credentials)
            observer = _CallObserver(self)
            self._media = media
            self._observer = observer
            media.add_observer(observer)

            await media.start()
            if self._abandoned(media):
                return self._state
            self.dispatch(SessionStarted())

            await self._enable_local_media(media)
        except TelecareError as e:
            logger.error(f"[CallState] {self.appointment_id}: {e.kind} error: {e}")
            self.dispatch(CallFailed(str(e), e.kind, e.retryable))
        except Exception as e:
            logger.exception(f"[CallState] {self.appointment_id}: call setup failed")
            self.dispatch(CallFailed(str(e) or "Failed to start video call"))
        return self._state

    def _abandoned(self, media: Optional[MediaSession] = None) -> bool:
        """Whether start() must stop here because the call ended or ``media`` was released."""
        if not self._mounted or self._state.is_terminal:
            return True
        return media is not None and self._media is not media

    async def _enable_local_media(self, media: MediaSession):
        """Unmute and start the local tile; failures here don't fail the call."""
        try:
            media.realtime_unmute_local_audio()
        except Exception as e:
            logger.error(f"[CallState] Error enabling audio: {e}")
        try:
            await media.start_local_video_tile()
        except Exception as e:
            logger.error(f"[CallState] Error enabling video: {e}")

    def toggle_audio(self) -> bool:
        """Flip local mute; returns the new muted flag."""
        if self._media is None or self._state.is_terminal:
            return self._state.audio_muted
        muted = not self._state.audio_muted
        self.dispatch(AudioToggled(muted))
        try:
            if muted:
                self._media.realtime_mute_local_audio()
            else:
                self._media.realtime_unmute_local_audio()
        except Exception as e:
            logger.error(f"[CallState] Error toggling audio: {e}")
        return muted

    async def toggle_video(self) -> bool:
        """Flip the local video tile; returns the new enabled flag."""
        if self._media is None or self._state.is_terminal:
            return self._state.video_enabled
        enabled = not self._state.video_enabled
        self.dispatch(VideoToggled(enabled))
        try:
            if enabled:
                await self._media.start_local_video_tile()
            else:
                self._media.stop_local_video_tile()
        except Exception as e:
            logger.error(f"[CallState] Error toggling video: {e}")
        return enabled

    def hang_up(self) -> CallState:
        """Explicit user hang-up: leave the session and go to disconnected."""
        logger.info(f"[CallState] {self.appointment_id}: ending call")
        self.dispatch(HangUp())
        self._release_media()
        return self._state

    def teardown(self):
        """
        The call view is going away.

        Stops local capture, leaves the session and deregisters the observer
        synchronously; late callbacks are dropped by the liveness flag.
        """
        logger.info(f"[CallState] {self.appointment_id}: cleaning up")
        self._mounted = False
        self._release_media()
        self._listeners.clear()

    def _release_media(self):
        media, observer = self._media, self._observer
        self._media = None
        self._observer = None
        if media is None:
            return
        try:
            media.stop_local_video_tile()
        except Exception as e:
            logger.error(f"[CallState] Error stopping local video: {e}")
        try:
            media.stop()
        except Exception as e:
            logger.error(f"[CallState] Error leaving session: {e}")
        if observer is not None:
            try:
                media.remove_observer(observer)
            except Exception as e:
                logger.error(f"[CallState] Error removing observer: {e}")
