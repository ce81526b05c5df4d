"""
Pydantic schemas for the orchestrator module.

Defines the session configuration, states, events, transcript entries and the
session outcome.
"""

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


def _now_utc() -> datetime:
    """Get current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)


class SessionState(str, Enum):
    """Lifecycle states of a voice interview session."""

    NOT_STARTED = "not-started"
    CONNECTING = "connecting"
    IDLE = "idle"
    LISTENING = "listening"
    PROCESSING = "processing"
    SPEAKING = "speaking"
    PAUSED = "paused"
    ENDED = "ended"


ACTIVE_STATES = frozenset(
    {SessionState.IDLE, SessionState.LISTENING, SessionState.PROCESSING, SessionState.SPEAKING}
)


class SessionEvent(str, Enum):
    """Inputs to the session reducer."""

    START = "start"
    CONNECTED = "connected"
    USER_SPEECH_DETECTED = "user_speech_detected"
    USER_SPEECH_ABORTED = "user_speech_aborted"
    UTTERANCE_FINALIZED = "utterance_finalized"
    RESPONSE_BEGINS = "response_begins"
    RESPONSE_COMPLETE = "response_complete"
    PAUSE = "pause"
    RESUME = "resume"
    TIMER_EXPIRED = "timer_expired"
    MANUAL_END = "manual_end"
    POLICY_TERMINATION = "policy_termination"
    CONNECTION_FAILED = "connection_failed"
    DEVICE_FAILED = "device_failed"


class EndReason(str, Enum):
    """Why a session reached ``ended``."""

    TIMER = "timer"
    MANUAL = "manual"
    POLICY = "policy"
    CONNECTION_ERROR = "connection_error"
    DEVICE_ERROR = "device_error"

    @property
    def is_error(self) -> bool:
        return self in (EndReason.CONNECTION_ERROR, EndReason.DEVICE_ERROR)


class TranscriptRole(str, Enum):
    """Speaker of a transcript entry (wire values of the transcript endpoint)."""

    USER = "user"
    INTERVIEWER = "interviewer"


class SessionConfig(BaseModel):
    """Immutable per-attempt session configuration."""

    model_config = ConfigDict(frozen=True)

    interview_id: str = Field(..., description="Interview identifier")
    duration_seconds: int = Field(default=300, gt=0, description="Total interview time budget")
    job_title: str = Field(default="", description="Role being interviewed for (display only)")
    company_name: str = Field(default="", description="Company name (display only)")
    voice: str = Field(default="verse", description="Selected AI voice identifier")


class TranscriptEntry(BaseModel):
    """One append-only transcript row."""

    model_config = ConfigDict(frozen=True)

    role: TranscriptRole = Field(..., description="Who spoke")
    text: str = Field(..., description="Finalized text")
    timestamp: datetime = Field(default_factory=_now_utc, description="Arrival time")


class SessionOutcome(BaseModel):
    """Result reported once a session has ended."""

    interview_id: str = Field(..., description="Interview identifier")
    end_reason: EndReason = Field(..., description="Why the session ended")
    completed: bool = Field(..., description="The completion endpoint was notified")
    early_termination: bool = Field(
        default=False,
        description="Ended early by the content-safety guard or the interviewer",
    )
    error: str | None = Field(default=None, description="User-facing failure message")
    transcript: list[TranscriptEntry] = Field(default_factory=list, description="Entries seen this session")
    warnings: list[str] = Field(default_factory=list, description="Non-fatal transport warnings")
    ended_at: datetime = Field(default_factory=_now_utc, description="When teardown finished")
