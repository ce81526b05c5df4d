"""Utterance recording driven by VAD boundaries."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from mock_interviewer.media.wav import encode_wav
from mock_interviewer.voice.vad import VADEvent, VADEventType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Utterance:
    audio: np.ndarray  # int16, mono
    sample_rate: int
    duration_s: float
    forced: bool = False

    @property
    def num_bytes(self) -> int:
        return int(self.audio.nbytes)

    def to_wav(self) -> bytes:
        return encode_wav(self.audio, self.sample_rate)


class UtteranceRecorder:
    """
    Buffers microphone frames between ``SPEECH_STARTED`` and ``SPEECH_ENDED``.

    Nothing is kept before the first start event. Empty results are dropped
    instead of emitted, and the recorder is ready for the next utterance as
    soon as one is returned.
    """

    def __init__(self, sample_rate: int) -> None:
        self._sample_rate = sample_rate
        self._chunks: list[np.ndarray] = []
        self._recording = False
        self.discarded = 0

    @property
    def recording(self) -> bool:
        return self._recording

    @property
    def buffered_samples(self) -> int:
        return sum(c.shape[0] for c in self._chunks)

    def begin(self) -> None:
        self._chunks = []
        self._recording = True

    def append(self, chunk: np.ndarray) -> None:
        if not self._recording:
            return
        if chunk.ndim > 1:
            chunk = chunk[:, 0]
        self._chunks.append(np.asarray(chunk, dtype=np.int16))

    def discard(self) -> None:
        if self._recording:
            self.discarded += 1
        self._chunks = []
        self._recording = False

    def finalize(self, *, forced: bool = False) -> Utterance | None:
        """Close the current utterance. Returns None when nothing was captured."""
        if not self._recording:
            return None
        chunks, self._chunks = self._chunks, []
        self._recording = False

        audio = np.concatenate(chunks) if chunks else np.zeros(0, dtype=np.int16)
        if audio.nbytes == 0:
            self.discarded += 1
            logger.debug("[VAD] empty recording dropped")
            return None
        return Utterance(
            audio=audio,
            sample_rate=self._sample_rate,
            duration_s=audio.shape[0] / float(self._sample_rate),
            forced=forced,
        )

    def feed(self, frame: np.ndarray, events: list[VADEvent]) -> Utterance | None:
        """Apply one analysed frame and its VAD events."""
        for event in events:
            if event.type is VADEventType.SPEECH_STARTED:
                self.begin()

        self.append(frame)

        result: Utterance | None = None
        for event in events:
            if event.type is VADEventType.SPEECH_ENDED:
                result = self.finalize(forced=event.forced)
            elif event.type is VADEventType.SPEECH_DISCARDED:
                self.discard()
        return result
