"""Voice activity detection with an adaptive noise floor.

Each microphone frame is reduced to two features:

- RMS volume on a 0-100 scale
- average speech-band (300-3400 Hz) energy on the 0-255 byte scale of a
  Blackman-windowed spectrum mapped from -100..-30 dB

Volume is smoothed with a short moving average. The first frames analysed
while no utterance is open calibrate the noise floor, and the speech threshold
becomes ``clamp(noise * multiplier, min, max)``.

Per-frame work is bounded (one FFT of one frame) so the analysis loop can share
the event loop with the transport and the timer.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

import numpy as np

from mock_interviewer.config import Settings
from mock_interviewer.media.devices import FrameSubscription

logger = logging.getLogger(__name__)

SPEECH_BAND_HZ = (300.0, 3400.0)
_MIN_DB = -100.0
_MAX_DB = -30.0


@dataclass(frozen=True)
class VADConfig:
    min_threshold: float = 5.0
    max_threshold: float = 20.0
    initial_threshold: float = 8.0
    noise_multiplier: float = 2.5
    calibration_frames: int = 30
    history_size: int = 5
    silence_duration_s: float = 2.0
    min_speech_duration_s: float = 0.5
    max_utterance_s: float = 30.0
    band_energy_floor: float = 30.0
    soft_speech_ratio: float = 0.7

    @classmethod
    def from_settings(cls, settings: Settings) -> "VADConfig":
        return cls(
            min_threshold=settings.vad_min_threshold,
            max_threshold=settings.vad_max_threshold,
            initial_threshold=settings.vad_initial_threshold,
            noise_multiplier=settings.vad_noise_multiplier,
            calibration_frames=settings.vad_calibration_frames,
            history_size=settings.vad_history_size,
            silence_duration_s=settings.vad_silence_duration_s,
            min_speech_duration_s=settings.vad_min_speech_duration_s,
            max_utterance_s=settings.vad_max_utterance_s,
            band_energy_floor=settings.vad_band_energy_floor,
            soft_speech_ratio=settings.vad_soft_speech_ratio,
        )


class VADEventType(str, Enum):
    SPEECH_STARTED = "speech_started"
    SPEECH_ENDED = "speech_ended"
    # Utterance closed by silence before reaching the minimum speech duration.
    SPEECH_DISCARDED = "speech_discarded"


@dataclass(frozen=True)
class VADEvent:
    type: VADEventType
    timestamp: float
    duration_s: float = 0.0
    speech_s: float = 0.0
    forced: bool = False


@dataclass(frozen=True)
class FrameFeatures:
    volume: float
    band_energy: float


@dataclass
class VADRuntimeState:
    history_size: int = 5
    threshold: float = 8.0
    noise_level: float = 0.0
    noise_samples: int = 0
    volume_history: deque = field(default_factory=deque)
    recording: bool = False
    speech_start: float | None = None
    last_speech: float | None = None
    silence_start: float | None = None

    def __post_init__(self) -> None:
        self.volume_history = deque(self.volume_history, maxlen=self.history_size)

    def reset_utterance(self) -> None:
        self.recording = False
        self.speech_start = None
        self.last_speech = None
        self.silence_start = None


def frame_features(samples: np.ndarray, sample_rate: int) -> FrameFeatures:
    """Compute RMS volume and speech-band energy for one frame of audio."""
    x = np.asarray(samples)
    if x.ndim > 1:
        x = x[:, 0]
    if x.dtype.kind == "i":
        x = x.astype(np.float32) / 32768.0
    else:
        x = x.astype(np.float32)
    n = x.shape[0]
    if n == 0:
        return FrameFeatures(volume=0.0, band_energy=0.0)

    volume = float(np.sqrt(np.mean(x * x)) * 100.0)

    spectrum = np.abs(np.fft.rfft(x * np.blackman(n))) / n
    bins = spectrum[: max(n // 2, 1)]
    db = 20.0 * np.log10(np.maximum(bins, 1e-12))
    scaled = np.clip((db - _MIN_DB) * 255.0 / (_MAX_DB - _MIN_DB), 0.0, 255.0)
    freqs = np.arange(bins.shape[0]) / bins.shape[0] * (sample_rate / 2.0)
    mask = (freqs >= SPEECH_BAND_HZ[0]) & (freqs <= SPEECH_BAND_HZ[1])
    band_energy = float(scaled[mask].sum() / bins.shape[0])
    return FrameFeatures(volume=volume, band_energy=band_energy)


FrameSink = Callable[[np.ndarray, list[VADEvent]], "bool | None"]


class VoiceActivityDetector:
    """
    Turns a stream of frames into utterance boundary events.

    ``process_frame`` is the synchronous per-frame step and can be driven
    directly. ``start`` runs it over a media subscription in a task and hands
    each frame plus its events to a sink; the sink returning ``False`` ends the
    loop.
    """

    def __init__(
        self,
        config: VADConfig | None = None,
        *,
        sample_rate: int = 16000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config or VADConfig()
        self._sample_rate = sample_rate
        self._clock = clock
        self._state = self._fresh_state()
        self._task: asyncio.Task | None = None
        self._running = False
        self._source_ended = False
        self.failed_frames = 0

    def _fresh_state(self) -> VADRuntimeState:
        return VADRuntimeState(
            history_size=self._config.history_size,
            threshold=self._config.initial_threshold,
        )

    @property
    def config(self) -> VADConfig:
        return self._config

    @property
    def state(self) -> VADRuntimeState:
        return self._state

    @property
    def threshold(self) -> float:
        return self._state.threshold

    @property
    def in_utterance(self) -> bool:
        return self._state.recording

    @property
    def running(self) -> bool:
        return self._running

    @property
    def source_ended(self) -> bool:
        """The last analysis loop stopped because its subscription closed."""
        return self._source_ended

    def reset(self) -> None:
        """Forget the noise calibration and any open utterance."""
        self._state = self._fresh_state()

    def process_frame(self, samples: np.ndarray, now: float | None = None) -> list[VADEvent]:
        features = frame_features(samples, self._sample_rate)
        return self.process_features(features.volume, features.band_energy, now)

    def process_features(self, volume: float, band_energy: float, now: float | None = None) -> list[VADEvent]:
        cfg = self._config
        st = self._state
        now = self._clock() if now is None else now

        st.volume_history.append(volume)
        smoothed = sum(st.volume_history) / len(st.volume_history)

        if not st.recording and st.noise_samples < cfg.calibration_frames:
            st.noise_level = (st.noise_level * st.noise_samples + volume) / (st.noise_samples + 1)
            st.noise_samples += 1
            if st.noise_samples == cfg.calibration_frames:
                st.threshold = max(cfg.min_threshold, min(cfg.max_threshold, st.noise_level * cfg.noise_multiplier))
                logger.debug(f"[VAD] calibrated noise={st.noise_level:.2f} threshold={st.threshold:.2f}")

        is_speech = smoothed > st.threshold or (
            band_energy > cfg.band_energy_floor and smoothed > st.threshold * cfg.soft_speech_ratio
        )

        events: list[VADEvent] = []
        if is_speech:
            st.last_speech = now
            if not st.recording:
                st.recording = True
                st.speech_start = now
                st.silence_start = None
                logger.debug(f"[VAD] speech started volume={smoothed:.1f} energy={band_energy:.1f}")
                events.append(VADEvent(VADEventType.SPEECH_STARTED, now))
            elif st.silence_start is not None:
                st.silence_start = None
        elif st.recording:
            if st.silence_start is None:
                st.silence_start = now
            else:
                silence = now - st.silence_start
                speech = (st.last_speech or now) - (st.speech_start or now)
                if silence > cfg.silence_duration_s:
                    if speech > cfg.min_speech_duration_s:
                        events.append(self._close(now, VADEventType.SPEECH_ENDED))
                    else:
                        events.append(self._close(now, VADEventType.SPEECH_DISCARDED))
                    return events

        if st.recording and st.speech_start is not None and now - st.speech_start >= cfg.max_utterance_s:
            logger.info(f"[VAD] utterance hit the {cfg.max_utterance_s:.0f}s cap")
            events.append(self._close(now, VADEventType.SPEECH_ENDED, forced=True))
        return events

    def _close(self, now: float, kind: VADEventType, *, forced: bool = False) -> VADEvent:
        st = self._state
        start = st.speech_start if st.speech_start is not None else now
        last = st.last_speech if st.last_speech is not None else start
        event = VADEvent(kind, now, duration_s=now - start, speech_s=last - start, forced=forced)
        st.reset_utterance()
        if kind is VADEventType.SPEECH_DISCARDED:
            logger.debug(f"[VAD] discarded short utterance speech={event.speech_s:.2f}s")
        else:
            logger.debug(f"[VAD] speech ended duration={event.duration_s:.2f}s forced={forced}")
        return event

    def flush(self, now: float | None = None) -> list[VADEvent]:
        """Close the open utterance, if any, as an explicit end."""
        if not self._state.recording:
            return []
        now = self._clock() if now is None else now
        return [self._close(now, VADEventType.SPEECH_ENDED, forced=True)]

    def start(self, subscription: FrameSubscription, on_frame: FrameSink | None = None) -> asyncio.Task:
        """Run the detector over ``subscription`` in a background task."""
        self.stop()
        self._running = True
        self._source_ended = False
        self._task = asyncio.create_task(self._run(subscription, on_frame))
        return self._task

    async def _run(self, subscription: FrameSubscription, on_frame: FrameSink | None) -> None:
        logger.debug("[VAD] analysis loop started")
        while self._running:
            frame = await subscription.read()
            if not self._running:
                break
            if frame is None:
                self._source_ended = True
                logger.info("[VAD] frame source closed")
                break
            try:
                events = self.process_frame(frame)
                if on_frame is not None and on_frame(frame, events) is False:
                    break
            except Exception as e:
                self.failed_frames += 1
                logger.debug(f"[VAD] frame skipped: {e}")
        self._running = False
        logger.debug("[VAD] analysis loop stopped")

    def stop(self) -> None:
        """
        Cancel the analysis loop and drop any partial utterance.

        Safe when the loop never started or the device already went away.
        After this returns no further frame reaches the sink.
        """
        self._running = False
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
        self._state.reset_utterance()
