"""Speech-to-text for recorded utterances.

`ApiSTT` posts the utterance to the interview API. `WhisperSTT` runs
`faster-whisper` locally when installed (``pip install -e '.[whisper]'``).
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

import numpy as np

from mock_interviewer.api.client import InterviewApiClient
from mock_interviewer.voice.recorder import Utterance

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class STTConfig:
    model_size: str = "small"
    # Default to CPU to avoid hard crashes when CUDA/cuDNN aren't present.
    device: str = "cpu"  # cpu|cuda|auto
    compute_type: str | None = None  # e.g. int8, float16
    language: str | None = "en"
    vad_filter: bool = False


@dataclass(frozen=True)
class TranscriptionResult:
    text: str
    avg_logprob: float | None = None
    no_speech_prob: float | None = None


class STTProvider:
    async def transcribe(self, utterance: Utterance) -> TranscriptionResult:
        raise NotImplementedError


class ApiSTT(STTProvider):
    """Transcription through the interview API's STT endpoint."""

    def __init__(self, client: InterviewApiClient, interview_id: str) -> None:
        self._client = client
        self._interview_id = interview_id

    async def transcribe(self, utterance: Utterance) -> TranscriptionResult:
        text = await self._client.transcribe(self._interview_id, utterance.to_wav())
        return TranscriptionResult(text=text)


class WhisperSTT(STTProvider):
    """faster-whisper wrapper. Expects 16 kHz mono utterances."""

    def __init__(self, config: STTConfig | None = None) -> None:
        self._config = config or STTConfig()
        self._model = None

    @property
    def config(self) -> STTConfig:
        return self._config

    def _load_model(self):
        if self._model is not None:
            return self._model

        try:
            from faster_whisper import WhisperModel  # type: ignore
        except Exception as e:  # pragma: no cover
            raise RuntimeError(
                "faster-whisper is required for local STT. Install with: pip install -e '.[whisper]'"
            ) from e

        device = self._config.device
        if device == "auto":
            device = "cpu"

        kwargs = {}
        if self._config.compute_type:
            kwargs["compute_type"] = self._config.compute_type

        self._model = WhisperModel(self._config.model_size, device=device, **kwargs)
        return self._model

    async def transcribe(self, utterance: Utterance) -> TranscriptionResult:
        if utterance.sample_rate != 16000:
            logger.warning(f"[STT] whisper expects 16 kHz audio, got {utterance.sample_rate} Hz")
        audio = utterance.audio.astype(np.float32) / 32768.0

        def _run() -> TranscriptionResult:
            model = self._load_model()
            segments, info = model.transcribe(
                audio,
                language=self._config.language,
                vad_filter=self._config.vad_filter,
            )
            text_parts: list[str] = []
            for s in segments:
                if s.text:
                    text_parts.append(s.text.strip())
            text = " ".join(t for t in text_parts if t).strip()
            avg_logprob = getattr(info, "avg_logprob", None)
            no_speech_prob = getattr(info, "no_speech_prob", None)
            return TranscriptionResult(text=text, avg_logprob=avg_logprob, no_speech_prob=no_speech_prob)

        return await asyncio.to_thread(_run)
