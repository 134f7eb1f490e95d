import asyncio
import itertools

import pytest

from telecare.services.call import CallStateMachine, CallState, CallStatus, SessionNegotiator, reduce_call_state
from telecare.services.call.state_machine import (
    AttendeePresenceChanged,
    AuthorizationGranted,
    AuthorizationStarted,
    CallFailed,
    HangUp,
    SessionNegotiated,
    SessionStarted,
    VideoTileBound,
    VideoTileRemoved,
)
from telecare.services.core import AppointmentRepository, NetworkError
from tests.fakes import FakeSessionProvider, MediaFactory


def run(events, state=None):
    state = state or CallState()
    for event in events:
        state = reduce_call_state(state, event)
    return state


SETUP = [AuthorizationStarted(), AuthorizationGranted(), SessionNegotiated("self"), SessionStarted()]


# =============================================================================
# Reducer
# =============================================================================

def test_setup_without_peer_waits():
    state = run(SETUP)
    assert state.status == CallStatus.WAITING_FOR_PEER
    assert state.remote_attendee is None


def test_peer_joins_and_leaves():
    state = run(SETUP)
    state = reduce_call_state(state, AttendeePresenceChanged("peer", True, "u2"))
    assert state.status == CallStatus.CONNECTED
    assert state.remote_attendee.attendee_id == "peer"
    assert state.remote_attendee.external_user_id == "u2"

    state = reduce_call_state(state, AttendeePresenceChanged("peer", False))
    assert state.status == CallStatus.WAITING_FOR_PEER
    assert state.remote_attendee is None


def test_own_presence_is_not_a_peer():
    state = run(SETUP + [AttendeePresenceChanged("self", True, "u1")])
    assert state.status == CallStatus.WAITING_FOR_PEER


def test_presence_before_session_started_is_applied_afterwards():
    state = run([
        AuthorizationStarted(),
        AuthorizationGranted(),
        AttendeePresenceChanged("peer", True, "u2"),
    ])
    assert state.status == CallStatus.CONNECTING

    state = run([SessionNegotiated("self"), SessionStarted()], state)
    assert state.status == CallStatus.CONNECTED
    assert state.remote_attendee.external_user_id == "u2"


def test_self_presence_before_negotiation_is_discarded():
    state = run([
        AuthorizationStarted(),
        AuthorizationGranted(),
        AttendeePresenceChanged("self", True, "u1"),
        SessionNegotiated("self"),
        SessionStarted(),
    ])
    assert state.status == CallStatus.WAITING_FOR_PEER


@pytest.mark.parametrize("order", list(itertools.permutations(range(3))))
def test_outcome_does_not_depend_on_event_order(order):
    peer_events = [
        AttendeePresenceChanged("peer", True, "u2"),
        VideoTileBound(7, "peer", "u2"),
        SessionStarted(),
    ]
    events = [AuthorizationStarted(), AuthorizationGranted(), SessionNegotiated("self")]
    events += [peer_events[i] for i in order]

    state = run(events)
    assert state.status == CallStatus.CONNECTED
    assert state.remote_attendee.attendee_id == "peer"


@pytest.mark.parametrize("order", list(itertools.permutations(range(3))))
def test_peer_that_left_ends_waiting_in_any_order(order):
    # Presence off must come after presence on for the same attendee
    sequences = [
        [AttendeePresenceChanged("peer", True), AttendeePresenceChanged("peer", False)],
        [SessionStarted()],
        [AttendeePresenceChanged("other", True), AttendeePresenceChanged("other", False)],
    ]
    events = [AuthorizationStarted(), AuthorizationGranted(), SessionNegotiated("self")]
    for i in order:
        events += sequences[i]

    assert run(events).status == CallStatus.WAITING_FOR_PEER


def test_remote_tile_binds_peer_identity():
    state = run(SETUP + [VideoTileBound(3, "peer", "u2")])
    assert state.status == CallStatus.CONNECTED
    assert state.remote_attendee.external_user_id == "u2"


def test_local_tile_is_not_a_peer():
    state = run(SETUP + [VideoTileBound(1, "self", "u1", is_local=True)])
    assert state.status == CallStatus.WAITING_FOR_PEER
    assert state.local_tile_id == 1


def test_last_remote_tile_removed_drops_peer():
    state = run(SETUP + [VideoTileBound(3, "peer", "u2")])
    state = reduce_call_state(state, VideoTileRemoved(3))
    assert state.status == CallStatus.WAITING_FOR_PEER
    assert state.remote_attendee is None

    state = reduce_call_state(state, AttendeePresenceChanged("peer", True, "u2"))
    assert state.status == CallStatus.CONNECTED


def test_error_is_terminal():
    state = run(SETUP + [CallFailed("Connection lost", "network", True)])
    assert state.status == CallStatus.ERROR
    assert state.error_message == "Connection lost"
    assert state.retryable is True

    state = run([AttendeePresenceChanged("peer", True), SessionStarted(), HangUp()], state)
    assert state.status == CallStatus.ERROR


def test_hang_up_disconnects():
    state = run(SETUP + [AttendeePresenceChanged("peer", True), HangUp()])
    assert state.status == CallStatus.DISCONNECTED
    assert reduce_call_state(state, AttendeePresenceChanged("peer", True)).status == CallStatus.DISCONNECTED


def test_reducer_does_not_mutate_input():
    state = run(SETUP)
    reduce_call_state(state, AttendeePresenceChanged("peer", True))
    assert state.present_attendees == ()


# =============================================================================
# Driver
# =============================================================================

def make_machine(session_factory, identity, media_factory=None, provider=None):
    negotiator = SessionNegotiator(
        appointments=AppointmentRepository(session_factory),
        provider=provider or FakeSessionProvider(),
        identity=identity,
    )
    return CallStateMachine("apt-1", negotiator, media_factory or MediaFactory())


@pytest.mark.asyncio
async def test_start_waits_then_connects_then_waits(session_factory, patient):
    media_factory = MediaFactory()
    machine = make_machine(session_factory, patient, media_factory)
    statuses = []

    def record(state):
        if not statuses or statuses[-1] != state.status:
            statuses.append(state.status)

    machine.subscribe(record)

    state = await machine.start()
    assert state.status == CallStatus.WAITING_FOR_PEER
    assert statuses[:3] == [CallStatus.AUTHORIZING, CallStatus.CONNECTING, CallStatus.WAITING_FOR_PEER]

    media = media_factory.sessions[0]
    assert media.started
    assert media.muted is False
    assert media.local_video is True

    media.presence("p-remote", True, "u2")
    assert machine.state.status == CallStatus.CONNECTED
    media.presence("p-remote", False, "u2")
    assert machine.state.status == CallStatus.WAITING_FOR_PEER


@pytest.mark.asyncio
async def test_events_fired_during_start_are_not_lost(session_factory, patient):
    media_factory = MediaFactory()
    machine = make_machine(session_factory, patient, media_factory)

    # The peer is already in the meeting and shows up before start() returns
    def fire_presence_on_create(media):
        original_start = media.start

        async def start_with_early_event():
            media.presence("p-remote", True, "u2")
            await original_start()

        media.start = start_with_early_event

    media_factory.on_create = fire_presence_on_create
    state = await machine.start()

    assert state.status == CallStatus.CONNECTED
    assert state.remote_attendee.external_user_id == "u2"


@pytest.mark.asyncio
async def test_authorization_failure_is_fatal(session_factory, outsider):
    media_factory = MediaFactory()
    machine = make_machine(session_factory, outsider, media_factory)

    state = await machine.start()

    assert state.status == CallStatus.ERROR
    assert state.error_kind == "authorization"
    assert state.retryable is False
    assert media_factory.sessions == []


@pytest.mark.asyncio
async def test_network_failure_is_retryable(session_factory, patient):
    provider = FakeSessionProvider()
    provider.fail_next_create_session = NetworkError("timed out")
    machine = make_machine(session_factory, patient, provider=provider)

    state = await machine.start()

    assert state.status == CallStatus.ERROR
    assert state.error_message == "timed out"
    assert state.retryable is True


@pytest.mark.asyncio
async def test_media_start_failure_ends_in_error(session_factory, patient):
    media_factory = MediaFactory()
    media_factory.on_create = lambda media: setattr(media, "start_error", RuntimeError("camera busy"))
    machine = make_machine(session_factory, patient, media_factory)

    state = await machine.start()
    assert state.status == CallStatus.ERROR
    assert state.error_message == "camera busy"


@pytest.mark.asyncio
async def test_teardown_releases_media_and_drops_late_events(session_factory, patient):
    media_factory = MediaFactory()
    machine = make_machine(session_factory, patient, media_factory)
    await machine.start()
    media = media_factory.sessions[0]
    observer = media.observers[0]

    machine.teardown()

    assert media.calls == ["stop_local_video_tile", "stop", "remove_observer"]
    assert media.observers == []
    assert machine.mounted is False

    before = machine.state
    observer.attendee_presence_changed("p-remote", "u2", True)
    assert machine.state is before


@pytest.mark.asyncio
async def test_hang_up_disconnects_and_leaves(session_factory, patient):
    media_factory = MediaFactory()
    machine = make_machine(session_factory, patient, media_factory)
    await machine.start()

    state = machine.hang_up()

    assert state.status == CallStatus.DISCONNECTED
    assert media_factory.sessions[0].stopped



@pytest.mark.asyncio
async def test_hang_up_during_media_start_keeps_media_off(session_factory, patient):
    media_factory = MediaFactory()
    release = asyncio.Event()
    joining = asyncio.Event()

    def hold_start(media):
        original_start = media.start

        async def slow_start():
            joining.set()
            await release.wait()
            await original_start()

        media.start = slow_start

    media_factory.on_create = hold_start
    machine = make_machine(session_factory, patient, media_factory)

    start = asyncio.create_task(machine.start())
    await joining.wait()
    machine.hang_up()
    release.set()
    state = await start

    media = media_factory.sessions[0]
    assert state.status == CallStatus.DISCONNECTED
    assert media.stopped
    assert media.local_video is False
    assert media.muted is True


@pytest.mark.asyncio
async def test_toggles(session_factory, patient):
    media_factory = MediaFactory()
    machine = make_machine(session_factory, patient, media_factory)
    await machine.start()
    media = media_factory.sessions[0]

    assert machine.toggle_audio() is True
    assert media.muted is True
    assert machine.state.audio_muted is True
    assert machine.toggle_audio() is False
    assert media.muted is False

    assert await machine.toggle_video() is False
    assert media.local_video is False
    assert await machine.toggle_video() is True
    assert media.local_video is True
