"""Segment-based voice session loop (fallback strategy).

This module orchestrates:
mic -> VAD -> recorder -> STT -> guard -> conversation endpoint -> TTS -> playback

Used when the realtime transport is unavailable. It emits the same strategy
events as the realtime controller, so the orchestrator drives both the same
way.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable

import httpx
import numpy as np

from mock_interviewer.api.client import InterviewApiClient
from mock_interviewer.config import Settings
from mock_interviewer.errors import ApiError, DeviceAccessError
from mock_interviewer.media.devices import FrameSubscription, MediaHandle
from mock_interviewer.media.playback import AudioPlayback
from mock_interviewer.orchestrator.strategy import StrategyEvent, StrategyEventHandler, StrategyEventType
from mock_interviewer.safety.guard import ContentSafetyGuard
from mock_interviewer.safety.rules import GuardAction
from mock_interviewer.voice.recorder import Utterance, UtteranceRecorder
from mock_interviewer.voice.stt import STTProvider
from mock_interviewer.voice.tts import TTSProvider
from mock_interviewer.voice.vad import VADConfig, VADEvent, VADEventType, VoiceActivityDetector

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SegmentStrategyConfig:
    sample_rate: int = 16000
    min_transcript_chars: int = 3
    tts_enabled: bool = True

    @classmethod
    def from_settings(cls, settings: Settings) -> "SegmentStrategyConfig":
        return cls(
            sample_rate=settings.segment_sample_rate,
            min_transcript_chars=settings.min_user_transcript_chars,
        )


class SegmentVoiceStrategy:
    """
    Turn-based voice session: one recorded utterance per conversation request.

    The conversation endpoint stores both sides of every turn it serves, so
    those transcript events are marked ``persisted``. Only text it never saw
    (the canned content-safety replies and the answers that triggered them)
    goes through the transcript endpoint.
    """

    def __init__(
        self,
        interview_id: str,
        *,
        api: InterviewApiClient,
        stt: STTProvider,
        tts: TTSProvider,
        playback: AudioPlayback,
        config: SegmentStrategyConfig | None = None,
        vad: VoiceActivityDetector | None = None,
        guard: ContentSafetyGuard | None = None,
        time_remaining: Callable[[], float] | None = None,
    ) -> None:
        self._interview_id = interview_id
        self._api = api
        self._stt = stt
        self._tts = tts
        self._playback = playback
        self._config = config or SegmentStrategyConfig()
        self._vad = vad or VoiceActivityDetector(VADConfig(), sample_rate=self._config.sample_rate)
        self._recorder = UtteranceRecorder(self._config.sample_rate)
        self._guard = guard or ContentSafetyGuard()
        self._time_remaining = time_remaining

        self._handler: StrategyEventHandler | None = None
        self._subscription: FrameSubscription | None = None
        self._turn_task: asyncio.Task | None = None
        self._connected = False
        self._closing = False
        self._paused = False
        self.connect_count = 0

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def vad(self) -> VoiceActivityDetector:
        return self._vad

    @property
    def recorder(self) -> UtteranceRecorder:
        return self._recorder

    @property
    def turn_task(self) -> asyncio.Task | None:
        return self._turn_task

    def set_event_handler(self, handler: StrategyEventHandler) -> None:
        self._handler = handler

    def set_time_source(self, time_remaining: Callable[[], float] | None) -> None:
        self._time_remaining = time_remaining

    def _emit(self, type: StrategyEventType, text: str | None = None, *, persisted: bool = False) -> None:
        if self._handler is not None:
            self._handler(StrategyEvent(type=type, text=text, persisted=persisted))

    def _remaining_seconds(self) -> int | None:
        if self._time_remaining is None:
            return None
        return int(self._time_remaining())

    async def connect(self, media: MediaHandle | None, *, prior_turns: int = 0) -> None:
        if self._connected:
            return
        if media is None:
            raise DeviceAccessError("Segment sessions need a microphone handle")

        self.connect_count += 1
        self._closing = False
        self._subscription = media.subscribe()
        self._connected = True
        logger.info(f"[SESSION] segment strategy ready interview={self._interview_id}")
        self._emit(StrategyEventType.CONNECTED)

        if prior_turns == 0:
            self._turn_task = asyncio.create_task(self._opening_turn())
        else:
            self._start_listening()

    async def disconnect(self) -> None:
        if not self._connected and self._subscription is None:
            return
        self._closing = True
        self._connected = False
        self._vad.stop()
        self._recorder.discard()

        task, self._turn_task = self._turn_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        self._playback.stop()

        sub, self._subscription = self._subscription, None
        if sub is not None:
            sub.unsubscribe()
        logger.info("[SESSION] segment strategy stopped")

    async def set_paused(self, paused: bool) -> None:
        if paused == self._paused:
            return
        self._paused = paused
        if paused:
            self._vad.stop()
            self._recorder.discard()
            self._playback.stop()
            return
        if self._turn_task is None or self._turn_task.done():
            self._start_listening()

    async def replace_media(self, media: MediaHandle) -> None:
        """Move onto a re-acquired microphone handle and resume listening."""
        if self._closing:
            return
        self._vad.stop()
        self._recorder.discard()
        old, self._subscription = self._subscription, media.subscribe()
        if old is not None:
            old.unsubscribe()
        logger.info("[SESSION] segment strategy moved to a new microphone handle")
        if self._turn_task is None or self._turn_task.done():
            self._start_listening()

    def _start_listening(self) -> None:
        if self._closing or self._paused or self._subscription is None:
            return
        if self._subscription.closed:
            self._emit(StrategyEventType.MEDIA_LOST, "microphone stream ended")
            return
        self._recorder.discard()
        task = self._vad.start(self._subscription, on_frame=self._on_frame)
        task.add_done_callback(self._on_listen_done)
        logger.debug("[SESSION] listening")

    def _on_listen_done(self, task: asyncio.Task) -> None:
        if task.cancelled() or self._closing or not self._vad.source_ended:
            return
        logger.warning("[SESSION] microphone stream ended while listening")
        self._emit(StrategyEventType.MEDIA_LOST, "microphone stream ended")

    def _on_frame(self, frame: np.ndarray, events: list[VADEvent]) -> bool | None:
        for event in events:
            if event.type is VADEventType.SPEECH_STARTED:
                self._emit(StrategyEventType.USER_SPEECH_STARTED)
            elif event.type is VADEventType.SPEECH_DISCARDED:
                self._emit(StrategyEventType.USER_SPEECH_ABORTED)

        utterance = self._recorder.feed(frame, events)
        if utterance is None:
            return None
        self._emit(StrategyEventType.USER_UTTERANCE_FINALIZED)
        self._turn_task = asyncio.create_task(self._handle_utterance(utterance))
        return False

    async def _opening_turn(self) -> None:
        try:
            reply = await self._api.request_turn(
                self._interview_id,
                is_first_question=True,
                time_remaining_seconds=self._remaining_seconds(),
            )
        except (ApiError, httpx.HTTPError) as e:
            logger.warning(f"[SESSION] opening turn failed: {e}")
            self._emit(StrategyEventType.WARNING, f"opening turn failed: {e}")
        else:
            await self._speak(reply.message, persisted=True)
            if reply.should_end_interview:
                self._emit(StrategyEventType.POLICY_TERMINATION, reply.message)
                return
        self._start_listening()

    async def _handle_utterance(self, utterance: Utterance) -> None:
        logger.debug(f"[SESSION] utterance duration={utterance.duration_s:.2f}s forced={utterance.forced}")
        try:
            result = await self._stt.transcribe(utterance)
        except Exception as e:
            logger.warning(f"[SESSION] transcription failed: {e}")
            self._emit(StrategyEventType.WARNING, f"transcription failed: {e}")
            self._finish_turn()
            return

        text = (result.text or "").strip()
        if len(text) < self._config.min_transcript_chars:
            logger.info(f"[SESSION] transcript too short, ignoring: {text!r}")
            self._finish_turn()
            return

        decision = self._guard.evaluate(text)
        if decision.action is not GuardAction.ALLOW:
            self._emit(StrategyEventType.USER_TRANSCRIPT, text)
            await self._speak(decision.message or "")
            if decision.action is GuardAction.END_INTERVIEW:
                self._emit(StrategyEventType.POLICY_TERMINATION, decision.message)
                return
            self._start_listening()
            return

        try:
            reply = await self._api.request_turn(
                self._interview_id,
                user_message=text,
                time_remaining_seconds=self._remaining_seconds(),
            )
        except (ApiError, httpx.HTTPError) as e:
            logger.warning(f"[SESSION] conversation turn failed: {e}")
            self._emit(StrategyEventType.WARNING, f"conversation turn failed: {e}")
            self._emit(StrategyEventType.USER_TRANSCRIPT, text)
            self._finish_turn()
            return

        self._emit(StrategyEventType.USER_TRANSCRIPT, text, persisted=True)
        await self._speak(reply.message, persisted=True)
        if reply.should_end_interview:
            self._emit(StrategyEventType.POLICY_TERMINATION, reply.message)
            return
        self._start_listening()

    def _finish_turn(self) -> None:
        self._emit(StrategyEventType.RESPONSE_COMPLETED)
        self._start_listening()

    async def _speak(self, text: str, *, persisted: bool = False) -> None:
        text = (text or "").strip()
        if not text:
            self._emit(StrategyEventType.RESPONSE_COMPLETED)
            return
        self._emit(StrategyEventType.RESPONSE_STARTED)
        self._emit(StrategyEventType.INTERVIEWER_TRANSCRIPT, text, persisted=persisted)

        if self._config.tts_enabled:
            try:
                clips = await self._tts.synthesize(text)
                for clip in clips:
                    if self._closing or self._paused:
                        break
                    if await self._playback.play_wav_bytes(clip):
                        break
            except Exception as e:
                logger.warning(f"[TTS] playback failed; continuing without audio: {e}")
                self._emit(StrategyEventType.WARNING, f"speech playback failed: {e}")
        self._emit(StrategyEventType.RESPONSE_COMPLETED)
