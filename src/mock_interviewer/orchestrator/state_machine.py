"""
Session state reducer.

``transition`` is a pure function: it never performs side effects, and
returns ``None`` for events that do not apply in the current state so the
caller can ignore them. The orchestrator is its only caller.
"""

from __future__ import annotations

from dataclasses import dataclass, replace

from mock_interviewer.orchestrator.schemas import (
    ACTIVE_STATES,
    EndReason,
    SessionEvent,
    SessionState,
)

_TERMINAL_EVENTS: dict[SessionEvent, EndReason] = {
    SessionEvent.TIMER_EXPIRED: EndReason.TIMER,
    SessionEvent.MANUAL_END: EndReason.MANUAL,
    SessionEvent.POLICY_TERMINATION: EndReason.POLICY,
    SessionEvent.CONNECTION_FAILED: EndReason.CONNECTION_ERROR,
    SessionEvent.DEVICE_FAILED: EndReason.DEVICE_ERROR,
}

# (event, allowed source states, target)
_ACTIVITY: dict[SessionEvent, tuple[frozenset[SessionState], SessionState]] = {
    SessionEvent.USER_SPEECH_DETECTED: (
        frozenset({SessionState.IDLE, SessionState.SPEAKING, SessionState.PROCESSING}),
        SessionState.LISTENING,
    ),
    SessionEvent.USER_SPEECH_ABORTED: (
        frozenset({SessionState.LISTENING}),
        SessionState.IDLE,
    ),
    SessionEvent.UTTERANCE_FINALIZED: (
        frozenset({SessionState.LISTENING, SessionState.IDLE}),
        SessionState.PROCESSING,
    ),
    SessionEvent.RESPONSE_BEGINS: (
        frozenset({SessionState.IDLE, SessionState.LISTENING, SessionState.PROCESSING}),
        SessionState.SPEAKING,
    ),
    SessionEvent.RESPONSE_COMPLETE: (
        frozenset({SessionState.SPEAKING, SessionState.PROCESSING}),
        SessionState.IDLE,
    ),
}


@dataclass(frozen=True)
class SessionSnapshot:
    state: SessionState = SessionState.NOT_STARTED
    # Active state to return to on resume; only set while paused.
    resume_state: SessionState | None = None
    end_reason: EndReason | None = None


def transition(snapshot: SessionSnapshot, event: SessionEvent) -> SessionSnapshot | None:
    """Apply ``event`` to ``snapshot``. Returns None when the event is ignored."""
    state = snapshot.state

    if state is SessionState.ENDED:
        return None

    if event in _TERMINAL_EVENTS:
        return SessionSnapshot(state=SessionState.ENDED, end_reason=_TERMINAL_EVENTS[event])

    if event is SessionEvent.START:
        if state is SessionState.NOT_STARTED:
            return SessionSnapshot(state=SessionState.CONNECTING)
        return None

    if event is SessionEvent.CONNECTED:
        if state is SessionState.CONNECTING:
            return SessionSnapshot(state=SessionState.IDLE)
        return None

    if event is SessionEvent.PAUSE:
        if state in ACTIVE_STATES:
            return SessionSnapshot(state=SessionState.PAUSED, resume_state=state)
        return None

    if event is SessionEvent.RESUME:
        if state is SessionState.PAUSED:
            return SessionSnapshot(state=snapshot.resume_state or SessionState.IDLE)
        return None

    sources, target = _ACTIVITY[event]
    if state is SessionState.PAUSED:
        # Late events from the transport move the state we return to.
        if snapshot.resume_state in sources:
            return replace(snapshot, resume_state=target)
        return None
    if state in sources:
        return SessionSnapshot(state=target)
    return None
