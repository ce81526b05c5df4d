"""
Realtime voice session controller.

Owns one bidirectional WebRTC session with the speech-to-speech endpoint:

    credential -> offer/answer -> mic track out, interviewer audio in
                                -> side-channel events -> strategy events

It is the realtime variant of the voice session strategy. The orchestrator
sees only `StrategyEvent`s; raw side-channel events are also published on
`RealtimeEventBus` for anything else that wants them.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from functools import partial
from typing import Any, Awaitable, Callable

import httpx

from mock_interviewer.api.client import InterviewApiClient, SessionCredential
from mock_interviewer.config import Settings, get_settings
from mock_interviewer.errors import ApiError, DeviceAccessError, RealtimeConnectionError, TransportError
from mock_interviewer.media.devices import DeviceConfig, MediaHandle, MediaStreamManager
from mock_interviewer.media.playback import AudioPlayback
from mock_interviewer.orchestrator.strategy import StrategyEvent, StrategyEventHandler, StrategyEventType
from mock_interviewer.realtime.events import (
    RealtimeEvent,
    RealtimeEventBus,
    RealtimeEventType,
    parse_wire_event,
    response_cancel,
    response_create,
)
from mock_interviewer.realtime.signaling import RealtimeSignaler
from mock_interviewer.realtime.transport import PeerTransport, TransportCallbacks, TransportFactory
from mock_interviewer.safety.guard import ContentSafetyGuard
from mock_interviewer.safety.rules import GuardAction

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RealtimeConfig:
    voice: str = "verse"
    greeting_delay_s: float = 1.0
    turn_detection_threshold: float = 0.6
    turn_detection_prefix_padding_ms: int = 300
    turn_detection_silence_ms: int = 1200
    min_user_transcript_chars: int = 3

    @classmethod
    def from_settings(cls, settings: Settings, *, voice: str | None = None) -> "RealtimeConfig":
        return cls(
            voice=voice or settings.realtime_voice,
            greeting_delay_s=settings.greeting_delay_s,
            turn_detection_threshold=settings.turn_detection_threshold,
            turn_detection_prefix_padding_ms=settings.turn_detection_prefix_padding_ms,
            turn_detection_silence_ms=settings.turn_detection_silence_ms,
            min_user_transcript_chars=settings.min_user_transcript_chars,
        )

    def turn_detection(self) -> dict[str, Any]:
        return {
            "type": "server_vad",
            "threshold": self.turn_detection_threshold,
            "prefix_padding_ms": self.turn_detection_prefix_padding_ms,
            "silence_duration_ms": self.turn_detection_silence_ms,
        }


class RealtimeStatus(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    LISTENING = "listening"
    SPEAKING = "speaking"
    ERROR = "error"


def _default_transport_factory(callbacks: TransportCallbacks, playback: AudioPlayback | None) -> PeerTransport:
    # aiortc and PyAV are heavy; import them only when a real session starts.
    from mock_interviewer.realtime.aiortc_transport import AiortcTransport

    return AiortcTransport(callbacks, playback)


class RealtimeSessionController:
    """
    Realtime variant of the voice session strategy.

    Turn boundaries come from the in-order server VAD events
    (``speech_started`` / ``speech_stopped`` / ``response.*``). Final user
    transcripts arrive asynchronously, often after the reply has started, so
    they only feed the transcript and the content-safety guard and never move
    the session state.
    """

    def __init__(
        self,
        interview_id: str,
        *,
        api: InterviewApiClient,
        config: RealtimeConfig | None = None,
        signaler: RealtimeSignaler | None = None,
        media_manager: MediaStreamManager | None = None,
        playback: AudioPlayback | None = None,
        guard: ContentSafetyGuard | None = None,
        transport_factory: TransportFactory | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._interview_id = interview_id
        self._api = api
        self._config = config or RealtimeConfig.from_settings(get_settings())
        self._owns_signaler = signaler is None
        self._signaler = signaler or RealtimeSignaler()
        self._media_manager = media_manager
        self._playback = playback
        self._guard = guard or ContentSafetyGuard()
        self._transport_factory = transport_factory or _default_transport_factory
        self._sleep = sleep

        self._bus = RealtimeEventBus()
        self._bus.subscribe(self._handle_event)
        self._handler: StrategyEventHandler | None = None

        self._status = RealtimeStatus.IDLE
        self._transport: PeerTransport | None = None
        self._owned_media: MediaStreamManager | None = None
        self._connected = False
        self._closing = False
        self._prior_turns = 0
        self._greeting_sent = False
        self._greeting_task: asyncio.Task | None = None
        self._last_final: tuple[str, str] | None = None
        self._paused = False
        self.connect_count = 0

    @property
    def status(self) -> RealtimeStatus:
        return self._status

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def bus(self) -> RealtimeEventBus:
        return self._bus

    def set_event_handler(self, handler: StrategyEventHandler) -> None:
        self._handler = handler

    def _emit(self, type: StrategyEventType, text: str | None = None) -> None:
        if self._handler is not None:
            self._handler(StrategyEvent(type=type, text=text))

    def _set_status(self, status: RealtimeStatus) -> None:
        if status is not self._status:
            logger.debug(f"[REALTIME] status {self._status.value} -> {status.value}")
            self._status = status

    async def connect(self, media: MediaHandle | None = None, *, prior_turns: int = 0) -> None:
        """
        Negotiate the realtime session.

        Args:
            media: Microphone handle owned by the caller. When omitted the
                controller opens (and later closes) its own.
            prior_turns: Transcript entries already recorded; a resumed
                interview does not get a second greeting.

        Raises:
            DeviceAccessError: If the controller had to open the microphone and could not.
            RealtimeConnectionError: If the credential or negotiation failed.
        """
        if self._connected:
            logger.warning("[REALTIME] connect() called while connected; ignoring")
            return

        self.connect_count += 1
        self._closing = False
        self._prior_turns = prior_turns
        self._greeting_sent = False
        self._last_final = None
        self._set_status(RealtimeStatus.CONNECTING)

        try:
            if media is None:
                manager = self._media_manager or MediaStreamManager(DeviceConfig.from_settings(get_settings()))
                self._owned_media = manager
                media = await manager.acquire()

            try:
                credential = await self._api.create_session(
                    self._interview_id,
                    voice=self._config.voice,
                    turn_detection=self._config.turn_detection(),
                )
            except (ApiError, httpx.HTTPError, ValueError) as e:
                raise RealtimeConnectionError(f"Could not obtain a session credential: {e}") from e

            callbacks = TransportCallbacks(
                on_message=self._on_message,
                on_channel_open=self._on_channel_open,
                on_connection_state=self._on_connection_state,
                on_media_ended=self._on_media_ended,
            )
            self._transport = self._transport_factory(callbacks, self._playback)
            try:
                await self._transport.negotiate(media, partial(self._exchange, credential=credential))
            except RealtimeConnectionError:
                raise
            except Exception as e:
                raise RealtimeConnectionError(f"Negotiation failed: {e}") from e
        except (DeviceAccessError, RealtimeConnectionError) as e:
            logger.error(f"[REALTIME] connect failed: {e}")
            await self._teardown()
            self._set_status(RealtimeStatus.ERROR)
            raise

        self._connected = True
        self._set_status(RealtimeStatus.IDLE)
        logger.info(f"[REALTIME] connected interview={self._interview_id}")
        self._emit(StrategyEventType.CONNECTED)

    async def _exchange(self, offer_sdp: str, *, credential: SessionCredential) -> str:
        return await self._signaler.exchange(offer_sdp, credential)

    async def disconnect(self) -> None:
        """Close the transport. Safe to call repeatedly or without a connection."""
        await self._teardown()
        self._set_status(RealtimeStatus.IDLE)

    async def _teardown(self) -> None:
        self._closing = True
        self._connected = False

        task, self._greeting_task = self._greeting_task, None
        if task is not None and not task.done():
            task.cancel()

        transport, self._transport = self._transport, None
        if transport is not None:
            try:
                await transport.close()
            except Exception as e:
                logger.warning(f"[REALTIME] error while closing transport: {e}")
            logger.info("[REALTIME] disconnected")

        owned, self._owned_media = self._owned_media, None
        if owned is not None:
            await owned.release()

        if self._owns_signaler:
            await self._signaler.close()

    async def set_paused(self, paused: bool) -> None:
        """Mute both directions without touching the transport."""
        self._paused = paused
        if self._transport is not None:
            self._transport.set_muted(paused)
        if self._playback is not None:
            self._playback.set_muted(paused)

    def send(self, payload: dict[str, Any]) -> bool:
        if self._transport is None:
            return False
        try:
            self._transport.send(payload)
            return True
        except TransportError as e:
            logger.warning(f"[REALTIME] send failed type={payload.get('type')}: {e.detail}")
            self._emit(StrategyEventType.WARNING, f"send failed: {e.detail}")
            return False

    # Transport callbacks

    def _on_message(self, message: str) -> None:
        event = parse_wire_event(message)
        if event is not None:
            self._bus.publish(event)

    def _on_channel_open(self) -> None:
        if self._prior_turns > 0 or self._greeting_sent or self._greeting_task is not None:
            return
        self._greeting_task = asyncio.create_task(self._send_greeting())

    async def _send_greeting(self) -> None:
        await self._sleep(self._config.greeting_delay_s)
        if self._closing or self._greeting_sent:
            return
        if self.send(response_create()):
            self._greeting_sent = True
            logger.info("[REALTIME] requested opening turn")

    def _on_connection_state(self, state: str) -> None:
        if self._closing:
            return
        if state in ("failed", "disconnected"):
            self._set_status(RealtimeStatus.ERROR)
            logger.warning(f"[REALTIME] transport {state}")
            self._emit(StrategyEventType.TRANSPORT_ERROR, f"connection {state}")

    def _on_media_ended(self) -> None:
        if self._closing:
            return
        logger.warning("[REALTIME] microphone track ended")
        self._emit(StrategyEventType.MEDIA_LOST, "microphone stream ended")

    async def replace_media(self, media: MediaHandle) -> None:
        """Feed the outbound track from a re-acquired microphone handle."""
        if self._transport is None or self._closing:
            return
        await self._transport.replace_media(media)
        logger.info("[REALTIME] outbound track moved to a new microphone handle")

    # Side-channel events

    def _is_duplicate(self, role: str, text: str) -> bool:
        key = (role, text)
        if self._last_final == key:
            logger.debug(f"[REALTIME] duplicate {role} transcript dropped")
            return True
        self._last_final = key
        return False

    def _handle_event(self, event: RealtimeEvent) -> None:
        kind = event.type

        if kind is RealtimeEventType.RESPONSE_CREATED:
            self._set_status(RealtimeStatus.SPEAKING)
            self._emit(StrategyEventType.RESPONSE_STARTED)

        elif kind in (RealtimeEventType.AUDIO_DELTA, RealtimeEventType.TRANSCRIPT_DELTA):
            if self._status is not RealtimeStatus.SPEAKING:
                self._set_status(RealtimeStatus.SPEAKING)
                self._emit(StrategyEventType.RESPONSE_DELTA)

        elif kind is RealtimeEventType.INTERVIEWER_TRANSCRIPT_DONE:
            text = event.text or ""
            if text and not self._is_duplicate("interviewer", text):
                self._emit(StrategyEventType.INTERVIEWER_TRANSCRIPT, text)

        elif kind is RealtimeEventType.USER_TRANSCRIPT_DONE:
            text = event.text or ""
            if len(text) < self._config.min_user_transcript_chars:
                return
            if self._is_duplicate("user", text):
                return
            self._emit(StrategyEventType.USER_TRANSCRIPT, text)
            self._apply_guard(text)

        elif kind is RealtimeEventType.SPEECH_STARTED:
            self._set_status(RealtimeStatus.LISTENING)
            self._emit(StrategyEventType.USER_SPEECH_STARTED)

        elif kind is RealtimeEventType.SPEECH_STOPPED:
            self._set_status(RealtimeStatus.IDLE)
            self._emit(StrategyEventType.USER_UTTERANCE_FINALIZED)

        elif kind is RealtimeEventType.RESPONSE_DONE:
            self._set_status(RealtimeStatus.IDLE)
            self._emit(StrategyEventType.RESPONSE_COMPLETED)

        elif kind is RealtimeEventType.ERROR:
            logger.warning(f"[REALTIME] remote error: {event.text}")
            self._emit(StrategyEventType.WARNING, event.text)

    def _apply_guard(self, text: str) -> None:
        decision = self._guard.evaluate(text)
        if decision.action is GuardAction.ALLOW:
            return
        # The remote model already heard the audio; replace whatever it was
        # about to say with the canned reply.
        self.send(response_cancel())
        if decision.action is GuardAction.REDIRECT:
            self.send(response_create(f'Say exactly: "{decision.message}" Then continue the interview.'))
            return
        self.send(response_create(f'Say exactly: "{decision.message}" Do not ask any further questions.'))
        self._emit(StrategyEventType.POLICY_TERMINATION, decision.message)
