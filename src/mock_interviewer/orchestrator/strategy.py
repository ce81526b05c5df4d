"""Voice session strategy interface.

A strategy owns the path between the microphone and the interviewer model.
Two variants exist: the realtime transport and the segment-based
record/transcribe loop. Both emit the same closed set of events, so the
orchestrator never needs to know which one it drives.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Protocol

from mock_interviewer.media.devices import MediaHandle


class StrategyEventType(str, Enum):
    CONNECTED = "connected"
    USER_SPEECH_STARTED = "user_speech_started"
    # Speech onset that turned out too short to be an utterance.
    USER_SPEECH_ABORTED = "user_speech_aborted"
    USER_UTTERANCE_FINALIZED = "user_utterance_finalized"
    # Text for an utterance already finalized without one.
    USER_TRANSCRIPT = "user_transcript"
    RESPONSE_STARTED = "response_started"
    RESPONSE_DELTA = "response_delta"
    INTERVIEWER_TRANSCRIPT = "interviewer_transcript"
    RESPONSE_COMPLETED = "response_completed"
    POLICY_TERMINATION = "policy_termination"
    TRANSPORT_ERROR = "transport_error"
    # The microphone stream ended underneath the strategy.
    MEDIA_LOST = "media_lost"
    WARNING = "warning"


@dataclass(frozen=True)
class StrategyEvent:
    type: StrategyEventType
    text: str | None = None
    # The text was already stored server-side (conversation endpoint).
    persisted: bool = False


StrategyEventHandler = Callable[[StrategyEvent], None]


class VoiceSessionStrategy(Protocol):
    def set_event_handler(self, handler: StrategyEventHandler) -> None: ...

    async def connect(self, media: MediaHandle | None, *, prior_turns: int = 0) -> None: ...

    async def disconnect(self) -> None: ...

    async def set_paused(self, paused: bool) -> None: ...

    async def replace_media(self, media: MediaHandle) -> None: ...
