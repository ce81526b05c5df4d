"""
Voice interview orchestrator.

Composes microphone ownership, a voice session strategy, the interview timer
and the transcript log behind one state machine. The orchestrator is the only
writer of the session state: strategies and the timer emit events, and every
change goes through the pure reducer in ``state_machine``.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable

import httpx

from mock_interviewer.api.client import InterviewApiClient
from mock_interviewer.config import get_settings
from mock_interviewer.errors import ApiError, DeviceAccessError, RealtimeConnectionError
from mock_interviewer.media.devices import MediaStreamManager
from mock_interviewer.orchestrator.schemas import (
    EndReason,
    SessionConfig,
    SessionEvent,
    SessionOutcome,
    SessionState,
    TranscriptRole,
)
from mock_interviewer.orchestrator.state_machine import SessionSnapshot, transition
from mock_interviewer.orchestrator.strategy import StrategyEvent, StrategyEventType, VoiceSessionStrategy
from mock_interviewer.orchestrator.timer import InterviewTimer
from mock_interviewer.orchestrator.transcript import ApiTranscriptStore, TranscriptLog

StateChangeCallback = Callable[[SessionState, SessionState], None]

_STRATEGY_TRANSITIONS: dict[StrategyEventType, SessionEvent] = {
    StrategyEventType.CONNECTED: SessionEvent.CONNECTED,
    StrategyEventType.USER_SPEECH_STARTED: SessionEvent.USER_SPEECH_DETECTED,
    StrategyEventType.USER_SPEECH_ABORTED: SessionEvent.USER_SPEECH_ABORTED,
    StrategyEventType.USER_UTTERANCE_FINALIZED: SessionEvent.UTTERANCE_FINALIZED,
    StrategyEventType.RESPONSE_STARTED: SessionEvent.RESPONSE_BEGINS,
    StrategyEventType.RESPONSE_DELTA: SessionEvent.RESPONSE_BEGINS,
    StrategyEventType.RESPONSE_COMPLETED: SessionEvent.RESPONSE_COMPLETE,
}


class VoiceInterfaceOrchestrator:
    """
    Top-level controller for one voice interview attempt.

    Lifecycle: ``start()`` acquires the microphone and connects the strategy,
    ``pause()``/``resume()`` mute without tearing anything down, and any of
    timer expiry, ``end()`` or a policy termination runs the single teardown
    sequence (disconnect, release, flush, completion notice). A microphone that
    goes away mid-session is re-acquired and handed back to the strategy;
    while paused that waits for ``resume()``.
    """

    def __init__(
        self,
        config: SessionConfig,
        *,
        strategy: VoiceSessionStrategy,
        media: MediaStreamManager,
        api: InterviewApiClient | None = None,
        transcript: TranscriptLog | None = None,
        timer: InterviewTimer | None = None,
        hold_timer_while_processing: bool = False,
        prior_turns: int = 0,
        timer_tick_s: float | None = None,
        policy_end_delay_s: float | None = None,
        max_policy_wait_s: float = 30.0,
        on_state_change: StateChangeCallback | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            config: Immutable session configuration.
            strategy: Realtime or segment voice strategy.
            media: Owner of the microphone device.
            api: Interview API client for transcript appends and the completion notice.
            transcript: Transcript log (defaults to one writing through ``api``).
            timer: Interview timer (defaults to one sized from ``config``).
            hold_timer_while_processing: Stop the clock while a user turn is processed.
            prior_turns: Transcript entries recorded by an earlier attempt.
            timer_tick_s: Expiry polling interval.
            policy_end_delay_s: Pause between an early-termination message and teardown.
            max_policy_wait_s: Longest wait for the closing message to finish playing.
            on_state_change: Called with ``(old, new)`` after every transition.
            clock: Monotonic clock used by the default timer.
            sleep: Awaitable sleep, replaceable in tests.
        """
        settings = get_settings()
        self._logger = logging.getLogger(__name__)
        self._config = config
        self._strategy = strategy
        self._media = media
        self._api = api
        if transcript is None:
            store = ApiTranscriptStore(api, config.interview_id) if api is not None else None
            transcript = TranscriptLog(store)
        self._transcript = transcript
        self._timer = timer or InterviewTimer(config.duration_seconds, clock=clock)
        self._timer.set_on_expired(self._on_timer_expired)
        self._hold_while_processing = hold_timer_while_processing
        self._prior_turns = prior_turns
        self._tick_s = timer_tick_s if timer_tick_s is not None else settings.timer_tick_s
        self._policy_delay_s = policy_end_delay_s if policy_end_delay_s is not None else settings.policy_end_delay_s
        self._max_policy_wait_s = max_policy_wait_s
        self._on_state_change = on_state_change
        self._sleep = sleep

        self._snapshot = SessionSnapshot()
        self._warnings: list[str] = []
        self._error: str | None = None
        self._outcome: SessionOutcome | None = None
        self._ended = asyncio.Event()
        self._not_speaking = asyncio.Event()
        self._not_speaking.set()
        self._teardown_task: asyncio.Task | None = None
        self._policy_task: asyncio.Task | None = None
        self._media_task: asyncio.Task | None = None
        self._media_lost = False
        self.teardown_count = 0

        self._strategy.set_event_handler(self._on_strategy_event)

    @property
    def config(self) -> SessionConfig:
        return self._config

    @property
    def state(self) -> SessionState:
        return self._snapshot.state

    @property
    def snapshot(self) -> SessionSnapshot:
        return self._snapshot

    @property
    def timer(self) -> InterviewTimer:
        return self._timer

    @property
    def transcript(self) -> TranscriptLog:
        return self._transcript

    @property
    def warnings(self) -> list[str]:
        return list(self._warnings)

    @property
    def outcome(self) -> SessionOutcome | None:
        return self._outcome

    @property
    def is_active(self) -> bool:
        return self.state not in (SessionState.NOT_STARTED, SessionState.ENDED)

    # State machine

    def _dispatch(self, event: SessionEvent) -> bool:
        new = transition(self._snapshot, event)
        if new is None:
            self._logger.debug(f"[SESSION] ignored {event.value} in {self.state.value}")
            return False
        old = self._snapshot
        self._snapshot = new
        if old.state is not new.state:
            self._logger.info(f"[SESSION] {old.state.value} -> {new.state.value} ({event.value})")
            if self._on_state_change is not None:
                try:
                    self._on_state_change(old.state, new.state)
                except Exception as e:
                    self._logger.warning(f"[SESSION] state change callback failed: {e}")
        self._on_enter(old, new)
        return True

    def _on_enter(self, old: SessionSnapshot, new: SessionSnapshot) -> None:
        if new.state is SessionState.SPEAKING:
            self._not_speaking.clear()
        else:
            self._not_speaking.set()

        if new.state is SessionState.IDLE and not self._timer.started:
            self._timer.start()
            self._timer.start_ticker(self._tick_s)

        if self._hold_while_processing:
            if new.state is SessionState.PROCESSING:
                self._timer.pause("processing")
            else:
                self._timer.resume("processing")

        if new.state is SessionState.ENDED and self._teardown_task is None:
            self._teardown_task = asyncio.create_task(self._teardown(new.end_reason or EndReason.MANUAL))

    # Public operations

    async def start(self) -> None:
        """
        Acquire the microphone and connect the strategy.

        Raises:
            DeviceAccessError: The microphone could not be opened.
            RealtimeConnectionError: The credential or negotiation failed.
        """
        if not self._dispatch(SessionEvent.START):
            self._logger.warning(f"[SESSION] start() ignored in state {self.state.value}")
            return

        try:
            handle = await self._media.acquire()
            await self._strategy.connect(handle, prior_turns=self._prior_turns)
        except DeviceAccessError as e:
            await self._fail(SessionEvent.DEVICE_FAILED, e)
            raise
        except RealtimeConnectionError as e:
            await self._fail(SessionEvent.CONNECTION_FAILED, e)
            raise
        except Exception as e:
            await self._fail(SessionEvent.CONNECTION_FAILED, e)
            raise RealtimeConnectionError(f"Session start failed: {e}") from e

        if self.state is SessionState.ENDED:
            # Ended while connecting; make sure the late connection is closed too.
            await self._strategy.disconnect()
            return
        if self.state is SessionState.CONNECTING:
            self._dispatch(SessionEvent.CONNECTED)

    async def _fail(self, event: SessionEvent, error: Exception) -> None:
        self._error = str(error)
        self._logger.error(f"[SESSION] session could not start: {error}")
        self._dispatch(event)
        await self.wait_until_ended()

    async def pause(self) -> None:
        """Pause the session. The transport and microphone stay open."""
        if not self._dispatch(SessionEvent.PAUSE):
            return
        self._timer.pause("user")
        await self._strategy.set_paused(True)

    async def resume(self) -> None:
        """Resume into the state held before pausing."""
        if not self._dispatch(SessionEvent.RESUME):
            return
        self._timer.resume("user")
        if self._media_lost and self._media_task is None:
            await self._recover_media()
            if self.state is SessionState.ENDED:
                return
        await self._strategy.set_paused(False)
        self._timer.remaining_seconds()

    async def end(self) -> SessionOutcome:
        """End the session manually. Safe to call repeatedly or after another ending."""
        self._dispatch(SessionEvent.MANUAL_END)
        return await self.wait_until_ended()

    async def wait_until_ended(self) -> SessionOutcome:
        await self._ended.wait()
        if self._outcome is None:
            raise RuntimeError("Session ended without an outcome")
        return self._outcome

    async def run(self) -> SessionOutcome:
        """Start and wait for the session to end."""
        await self.start()
        return await self.wait_until_ended()

    # Event sources

    def _on_timer_expired(self) -> None:
        self._dispatch(SessionEvent.TIMER_EXPIRED)

    def _on_strategy_event(self, event: StrategyEvent) -> None:
        kind = event.type
        if self.state is SessionState.ENDED:
            return

        session_event = _STRATEGY_TRANSITIONS.get(kind)
        if session_event is not None:
            self._dispatch(session_event)

        if kind in (StrategyEventType.USER_UTTERANCE_FINALIZED, StrategyEventType.USER_TRANSCRIPT):
            if event.text:
                self._transcript.append(TranscriptRole.USER, event.text, persisted=event.persisted)
        elif kind is StrategyEventType.INTERVIEWER_TRANSCRIPT:
            if event.text:
                self._transcript.append(TranscriptRole.INTERVIEWER, event.text, persisted=event.persisted)
        elif kind is StrategyEventType.POLICY_TERMINATION:
            if self._policy_task is None:
                self._logger.info("[SESSION] early termination requested")
                self._policy_task = asyncio.create_task(self._end_after_policy())
        elif kind in (StrategyEventType.TRANSPORT_ERROR, StrategyEventType.WARNING):
            message = event.text or kind.value
            self._warnings.append(message)
            self._logger.warning(f"[SESSION] {kind.value}: {message}")
        elif kind is StrategyEventType.MEDIA_LOST:
            self._warnings.append(event.text or "microphone stream ended")
            self._logger.warning("[SESSION] microphone stream ended; re-acquiring")
            self._media_lost = True
            if self.state is not SessionState.PAUSED and self._media_task is None:
                self._media_task = asyncio.create_task(self._recover_media())

    async def _recover_media(self) -> None:
        try:
            handle = await self._media.ensure_active()
            await self._strategy.replace_media(handle)
        except DeviceAccessError as e:
            self._error = str(e)
            self._logger.error(f"[SESSION] microphone could not be re-acquired: {e}")
            self._dispatch(SessionEvent.DEVICE_FAILED)
            return
        finally:
            self._media_task = None
        self._media_lost = False
        self._logger.info("[SESSION] microphone re-acquired")

    async def _end_after_policy(self) -> None:
        await self._sleep(self._policy_delay_s)
        if not self._not_speaking.is_set():
            # Let the closing message finish before hanging up.
            try:
                await asyncio.wait_for(self._not_speaking.wait(), timeout=self._max_policy_wait_s)
            except asyncio.TimeoutError:
                self._logger.warning("[SESSION] closing message did not finish; ending anyway")
            await self._sleep(self._policy_delay_s)
        self._dispatch(SessionEvent.POLICY_TERMINATION)

    # Teardown

    async def _teardown(self, reason: EndReason) -> None:
        self.teardown_count += 1
        self._logger.info(f"[SESSION] ending reason={reason.value}")
        self._timer.stop_ticker()
        self._timer.pause("ended")

        for task in (self._policy_task, self._media_task):
            if task is not None and not task.done() and task is not asyncio.current_task():
                task.cancel()

        try:
            await self._strategy.disconnect()
        except Exception as e:
            self._logger.warning(f"[SESSION] strategy disconnect failed: {e}")
        try:
            await self._media.release()
        except Exception as e:
            self._logger.warning(f"[SESSION] media release failed: {e}")
        await self._transcript.flush()

        completed = False
        if not reason.is_error and self._api is not None:
            try:
                await self._api.complete_interview(self._config.interview_id)
                completed = True
            except (ApiError, httpx.HTTPError) as e:
                self._logger.error(f"[SESSION] completion notice failed: {e}")

        self._outcome = SessionOutcome(
            interview_id=self._config.interview_id,
            end_reason=reason,
            completed=completed,
            early_termination=reason is EndReason.POLICY,
            error=self._error,
            transcript=self._transcript.entries,
            warnings=list(self._warnings),
        )
        self._ended.set()
        self._logger.info(f"[SESSION] ended reason={reason.value} completed={completed}")
