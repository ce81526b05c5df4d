"""Session orchestration: state machine, timer, transcript and the top-level controller."""

from mock_interviewer.orchestrator.schemas import (
    EndReason,
    SessionConfig,
    SessionEvent,
    SessionOutcome,
    SessionState,
    TranscriptEntry,
    TranscriptRole,
)
from mock_interviewer.orchestrator.state_machine import SessionSnapshot, transition
from mock_interviewer.orchestrator.strategy import (
    StrategyEvent,
    StrategyEventType,
    VoiceSessionStrategy,
)
from mock_interviewer.orchestrator.timer import InterviewTimer, TimerState
from mock_interviewer.orchestrator.transcript import ApiTranscriptStore, TranscriptLog, TranscriptStore
from mock_interviewer.orchestrator.voice_orchestrator import VoiceInterfaceOrchestrator

__all__ = [
    "ApiTranscriptStore",
    "EndReason",
    "InterviewTimer",
    "SessionConfig",
    "SessionEvent",
    "SessionOutcome",
    "SessionSnapshot",
    "SessionState",
    "StrategyEvent",
    "StrategyEventType",
    "TimerState",
    "TranscriptEntry",
    "TranscriptLog",
    "TranscriptRole",
    "TranscriptStore",
    "VoiceInterfaceOrchestrator",
    "VoiceSessionStrategy",
    "transition",
]
