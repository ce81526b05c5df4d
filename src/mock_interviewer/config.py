"""
Application configuration using pydantic-settings.

Loads configuration from environment variables and .env files.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Interview web API (session, transcript, end, conversation, stt, tts)
    api_base_url: str = Field(
        default="http://localhost:3000",
        description="Base URL of the interview web API",
    )
    api_timeout: float = Field(
        default=30.0,
        description="Timeout in seconds for interview API requests",
    )
    api_token: str = Field(
        default="",
        description="Bearer token forwarded to the interview API (empty to omit)",
    )

    # Realtime speech-to-speech endpoint
    realtime_base_url: str = Field(
        default="https://api.openai.com/v1/realtime",
        description="Signaling endpoint for the SDP offer/answer exchange",
    )
    realtime_model: str = Field(
        default="gpt-4o-realtime-preview-2024-10-01",
        description="Realtime model name passed as the `model` query parameter",
    )
    realtime_voice: str = Field(
        default="verse",
        description="AI voice requested when issuing the session credential",
    )
    greeting_delay_s: float = Field(
        default=1.0,
        description="Settling delay before asking the AI for its opening turn",
    )
    turn_detection_threshold: float = Field(
        default=0.6,
        description="Server-side VAD sensitivity (0.0-1.0, higher = less sensitive)",
    )
    turn_detection_prefix_padding_ms: int = Field(
        default=300,
        description="Audio kept before detected speech (server VAD)",
    )
    turn_detection_silence_ms: int = Field(
        default=1200,
        description="Silence before the server assumes the user is done",
    )

    # Audio devices
    sample_rate: int = Field(default=48000, description="Microphone sample rate for realtime sessions")
    segment_sample_rate: int = Field(default=16000, description="Microphone sample rate for segment sessions")
    channels: int = Field(default=1, description="Microphone channel count")
    frame_ms: int = Field(default=20, description="Microphone frame length in milliseconds")
    tts_voice: str = Field(default="nova", description="Voice used by the TTS endpoint in segment mode")

    # Local voice activity detection (segment mode)
    vad_min_threshold: float = Field(default=5.0, description="Lower clamp for the adaptive threshold")
    vad_max_threshold: float = Field(default=20.0, description="Upper clamp for the adaptive threshold")
    vad_initial_threshold: float = Field(default=8.0, description="Threshold used until calibration completes")
    vad_noise_multiplier: float = Field(default=2.5, description="Ambient noise multiplier for the threshold")
    vad_calibration_frames: int = Field(default=30, description="Frames averaged to learn the noise floor")
    vad_history_size: int = Field(default=5, description="Moving-average window for volume smoothing")
    vad_silence_duration_s: float = Field(default=2.0, description="Trailing silence that closes an utterance")
    vad_min_speech_duration_s: float = Field(default=0.5, description="Minimum speech for an utterance to count")
    vad_max_utterance_s: float = Field(default=30.0, description="Hard cap on a single utterance")
    vad_band_energy_floor: float = Field(default=30.0, description="Speech-band energy floor (0-255 scale)")
    vad_soft_speech_ratio: float = Field(default=0.7, description="Threshold ratio for soft speech with band energy")

    # Interview
    default_duration_minutes: int = Field(default=5, description="Interview length when none is given")
    timer_tick_s: float = Field(default=1.0, description="Scheduler tick for the interview timer")
    min_user_transcript_chars: int = Field(default=3, description="Shorter user transcripts are ignored")
    pause_timer_while_processing: bool = Field(
        default=True,
        description="Hold the interview timer while a user turn is transcribed and answered (segment mode)",
    )
    policy_end_delay_s: float = Field(
        default=2.0,
        description="Delay between a policy early-termination message and session teardown",
    )

    # Application
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode",
    )


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings.

    Returns:
        Settings: Application settings instance.
    """
    return Settings()
