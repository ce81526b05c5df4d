"""Realtime speech-to-speech session over WebRTC.

`AiortcTransport` lives in `mock_interviewer.realtime.aiortc_transport` and is
imported on first connect so aiortc/PyAV stay out of import time.
"""

from mock_interviewer.realtime.controller import (
    RealtimeConfig,
    RealtimeSessionController,
    RealtimeStatus,
)
from mock_interviewer.realtime.events import (
    RealtimeEvent,
    RealtimeEventBus,
    RealtimeEventType,
    parse_wire_event,
)
from mock_interviewer.realtime.signaling import RealtimeSignaler
from mock_interviewer.realtime.transport import PeerTransport, TransportCallbacks

__all__ = [
    "PeerTransport",
    "RealtimeConfig",
    "RealtimeEvent",
    "RealtimeEventBus",
    "RealtimeEventType",
    "RealtimeSessionController",
    "RealtimeSignaler",
    "RealtimeStatus",
    "TransportCallbacks",
    "parse_wire_event",
]
