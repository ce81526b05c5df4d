"""
Realtime side-channel events.

Wire messages arrive as JSON over the data channel. They are parsed into a
small closed set of typed events and dispatched through `RealtimeEventBus`;
anything unrecognised is dropped at the parser.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

logger = logging.getLogger(__name__)


class RealtimeEventType(str, Enum):
    RESPONSE_CREATED = "response_created"
    AUDIO_DELTA = "audio_delta"
    TRANSCRIPT_DELTA = "transcript_delta"
    INTERVIEWER_TRANSCRIPT_DONE = "interviewer_transcript_done"
    USER_TRANSCRIPT_DONE = "user_transcript_done"
    SPEECH_STARTED = "speech_started"
    SPEECH_STOPPED = "speech_stopped"
    RESPONSE_DONE = "response_done"
    ERROR = "error"


WIRE_EVENT_TYPES: dict[str, RealtimeEventType] = {
    "response.created": RealtimeEventType.RESPONSE_CREATED,
    "response.audio.delta": RealtimeEventType.AUDIO_DELTA,
    "response.audio_transcript.delta": RealtimeEventType.TRANSCRIPT_DELTA,
    "response.audio_transcript.done": RealtimeEventType.INTERVIEWER_TRANSCRIPT_DONE,
    "conversation.item.input_audio_transcription.completed": RealtimeEventType.USER_TRANSCRIPT_DONE,
    "input_audio_buffer.speech_started": RealtimeEventType.SPEECH_STARTED,
    "input_audio_buffer.speech_stopped": RealtimeEventType.SPEECH_STOPPED,
    "response.done": RealtimeEventType.RESPONSE_DONE,
    "error": RealtimeEventType.ERROR,
}


@dataclass(frozen=True)
class RealtimeEvent:
    type: RealtimeEventType
    text: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)


def parse_wire_event(message: str | bytes) -> RealtimeEvent | None:
    """Parse one data-channel message. Returns None for unknown or malformed input."""
    try:
        payload = json.loads(message)
    except (TypeError, ValueError) as e:
        logger.debug(f"[REALTIME] dropping malformed event: {e}")
        return None
    if not isinstance(payload, dict):
        return None

    event_type = WIRE_EVENT_TYPES.get(str(payload.get("type", "")))
    if event_type is None:
        return None

    text: str | None = None
    if event_type in (RealtimeEventType.INTERVIEWER_TRANSCRIPT_DONE, RealtimeEventType.USER_TRANSCRIPT_DONE):
        text = (payload.get("transcript") or "").strip()
    elif event_type is RealtimeEventType.TRANSCRIPT_DELTA:
        text = payload.get("delta") or ""
    elif event_type is RealtimeEventType.ERROR:
        error = payload.get("error")
        if isinstance(error, dict):
            text = error.get("message") or error.get("code") or "unknown error"
        else:
            text = str(error or "unknown error")
    return RealtimeEvent(type=event_type, text=text, raw=payload)


def response_create(instructions: str | None = None) -> dict[str, Any]:
    """Ask the remote model for a spoken response."""
    response: dict[str, Any] = {"modalities": ["audio", "text"]}
    if instructions:
        response["instructions"] = instructions
    return {"type": "response.create", "response": response}


def response_cancel() -> dict[str, Any]:
    return {"type": "response.cancel"}


RealtimeEventHandler = Callable[[RealtimeEvent], None]


class RealtimeEventBus:
    """Synchronous fan-out of parsed events. A failing handler never stops the others."""

    def __init__(self) -> None:
        self._handlers: list[RealtimeEventHandler] = []

    def subscribe(self, handler: RealtimeEventHandler) -> Callable[[], None]:
        self._handlers.append(handler)

        def _unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return _unsubscribe

    def publish(self, event: RealtimeEvent) -> None:
        for handler in list(self._handlers):
            try:
                handler(event)
            except Exception as e:
                logger.warning(f"[REALTIME] event handler failed for {event.type.value}: {e}")
