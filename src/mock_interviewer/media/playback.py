"""Speaker playback for remote audio frames and synthesized clips."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import numpy as np

from mock_interviewer.media.devices import require_sounddevice
from mock_interviewer.media.wav import decode_wav

logger = logging.getLogger(__name__)


class AudioPlayback:
    """
    Output side of the session.

    Streams remote frames through a lazily opened output stream, and plays
    whole WAV clips for the segment strategy. Muting drops frames instead of
    buffering them, so resuming does not replay stale audio.
    """

    def __init__(self, *, device: int | str | None = None) -> None:
        self._device = device
        self._stream: Any = None
        self._stream_format: tuple[int, int] | None = None
        self._muted = False
        self._clip_playing = False
        self._interrupted = False

    @property
    def muted(self) -> bool:
        return self._muted

    def set_muted(self, muted: bool) -> None:
        self._muted = muted
        if muted:
            self.stop()

    def _ensure_stream(self, sample_rate: int, channels: int) -> Any:
        if self._stream is not None and self._stream_format == (sample_rate, channels):
            return self._stream
        self._close_stream()
        sd = require_sounddevice()
        stream = sd.OutputStream(
            samplerate=sample_rate,
            channels=channels,
            dtype="int16",
            device=self._device,
        )
        stream.start()
        self._stream = stream
        self._stream_format = (sample_rate, channels)
        return stream

    async def write(self, frame: np.ndarray, *, sample_rate: int) -> None:
        """Write one int16 frame of shape [samples, channels] (or [samples])."""
        if self._muted:
            return
        if frame.ndim == 1:
            frame = frame[:, None]
        stream = self._ensure_stream(sample_rate, frame.shape[1])
        await asyncio.to_thread(stream.write, np.ascontiguousarray(frame, dtype=np.int16))

    async def play_wav_bytes(self, data: bytes, *, timeout_s: float = 60.0) -> bool:
        """Play a WAV clip. Returns True if :meth:`stop` interrupted playback."""
        if self._muted or not data:
            return False
        sd = require_sounddevice()

        audio, sr = decode_wav(data)
        audio_f32 = audio.astype(np.float32) / 32768.0
        if audio_f32.shape[1] == 1:
            audio_f32 = audio_f32.squeeze(-1)

        self._interrupted = False
        self._clip_playing = True
        sd.play(audio_f32, samplerate=sr, blocking=False)
        try:
            await asyncio.wait_for(asyncio.to_thread(sd.wait), timeout=timeout_s)
        except asyncio.TimeoutError:
            logger.warning("[MEDIA] playback timed out after %.1fs", timeout_s)
            sd.stop()
        finally:
            self._clip_playing = False
        return self._interrupted

    def stop(self) -> None:
        """Interrupt the clip currently playing, if any."""
        if not self._clip_playing:
            return
        self._interrupted = True
        try:
            require_sounddevice().stop()
        except Exception as e:
            logger.debug(f"[MEDIA] stop playback failed: {e}")

    def _close_stream(self) -> None:
        stream, self._stream = self._stream, None
        self._stream_format = None
        if stream is None:
            return
        try:
            stream.stop()
            stream.close()
        except Exception as e:
            logger.warning(f"[MEDIA] error while closing output stream: {e}")

    async def close(self) -> None:
        self.stop()
        await asyncio.to_thread(self._close_stream)
