"""
Call Module

Video-call coordination for an appointment:
- SessionNegotiator: obtain or reuse a meeting + participant credential
- CallStateMachine: lifecycle reducer and driver over media events
- CallStatusPublisher: Redis fan-out of state changes
"""
from .negotiator import SessionNegotiator, parse_session_descriptor
from .state_machine import (
    CallStateMachine,
    CallState,
    CallStatus,
    RemoteAttendee,
    reduce_call_state,
)
from .status_publisher import CallStatusPublisher, call_status_channel

__all__ = [
    "SessionNegotiator",
    "parse_session_descriptor",
    "CallStateMachine",
    "CallState",
    "CallStatus",
    "RemoteAttendee",
    "reduce_call_state",
    "CallStatusPublisher",
    "call_status_channel",
]
