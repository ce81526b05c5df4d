"""Local voice pipeline for the segment-based session strategy.

mic -> VAD -> recorder -> STT -> conversation endpoint -> TTS -> speaker
"""

from mock_interviewer.voice.recorder import Utterance, UtteranceRecorder
from mock_interviewer.voice.segment_strategy import SegmentStrategyConfig, SegmentVoiceStrategy
from mock_interviewer.voice.stt import (
    ApiSTT,
    STTConfig,
    STTProvider,
    TranscriptionResult,
    WhisperSTT,
)
from mock_interviewer.voice.tts import ApiTTS, TTSConfig, TTSProvider
from mock_interviewer.voice.vad import (
    VADConfig,
    VADEvent,
    VADEventType,
    VADRuntimeState,
    VoiceActivityDetector,
)

__all__ = [
    "ApiSTT",
    "ApiTTS",
    "STTConfig",
    "STTProvider",
    "SegmentStrategyConfig",
    "SegmentVoiceStrategy",
    "TTSConfig",
    "TTSProvider",
    "TranscriptionResult",
    "Utterance",
    "UtteranceRecorder",
    "VADConfig",
    "VADEvent",
    "VADEventType",
    "VADRuntimeState",
    "VoiceActivityDetector",
    "WhisperSTT",
]
