"""Text-to-speech for interviewer replies in segment mode."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from mock_interviewer.api.client import InterviewApiClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TTSConfig:
    voice: str = "nova"
    max_chars_per_chunk: int = 350


class TTSProvider:
    async def synthesize(self, text: str) -> list[bytes]:
        """Render text to one WAV clip per chunk, in speaking order."""
        raise NotImplementedError


def chunk_text(text: str, max_chars: int) -> list[str]:
    t = (text or "").strip()
    if not t:
        return []

    # Split on sentence-ish boundaries, then re-pack into chunks.
    parts = [p.strip() for p in re.split(r"(?<=[.!?])\s+", t) if p.strip()]
    chunks: list[str] = []
    current = ""
    for p in parts:
        if not current:
            current = p
            continue
        if len(current) + 1 + len(p) <= max_chars:
            current = current + " " + p
        else:
            chunks.append(current)
            current = p
    if current:
        chunks.append(current)

    # Fallback if there were no sentence boundaries.
    if not chunks and t:
        for i in range(0, len(t), max_chars):
            chunks.append(t[i : i + max_chars])

    return chunks


class ApiTTS(TTSProvider):
    """Synthesis through the interview API's TTS endpoint."""

    def __init__(
        self,
        client: InterviewApiClient,
        interview_id: str,
        config: TTSConfig | None = None,
    ) -> None:
        self._client = client
        self._interview_id = interview_id
        self._config = config or TTSConfig()

    @property
    def config(self) -> TTSConfig:
        return self._config

    async def synthesize(self, text: str) -> list[bytes]:
        clips: list[bytes] = []
        for chunk in chunk_text(text, self._config.max_chars_per_chunk):
            clips.append(await self._client.synthesize(self._interview_id, chunk, self._config.voice))
        logger.debug(f"[TTS] synthesized chunks={len(clips)} chars={len(text)}")
        return clips
