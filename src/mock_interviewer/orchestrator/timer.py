"""
Interview countdown timer.

Remaining time is always recomputed from clock deltas:

    remaining = max(0, budget - (now - start - total_paused))

so a stalled or bursty ticker can neither freeze nor fast-forward it. The
ticker task exists only to notice expiry while nobody is polling.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import dataclass
from typing import Callable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TimerState:
    start_epoch: float | None
    total_paused_seconds: float
    pause_start_epoch: float | None


class InterviewTimer:
    """
    Pause-aware countdown against a fixed budget.

    Every public method may be called in any order. Pauses are tracked per
    reason (``"user"``, ``"processing"``) so overlapping holds only resume the
    clock once all of them are released. The expiry callback fires exactly
    once.
    """

    def __init__(
        self,
        duration_seconds: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        on_expired: Callable[[], None] | None = None,
    ) -> None:
        self._budget = float(duration_seconds)
        self._clock = clock
        self._on_expired = on_expired
        self._start: float | None = None
        self._total_paused = 0.0
        self._pause_start: float | None = None
        self._holds: set[str] = set()
        self._expired = False
        self._ticker: asyncio.Task | None = None

    @property
    def duration_seconds(self) -> float:
        return self._budget

    @property
    def started(self) -> bool:
        return self._start is not None

    @property
    def paused(self) -> bool:
        return bool(self._holds)

    @property
    def expired(self) -> bool:
        return self._expired

    @property
    def state(self) -> TimerState:
        return TimerState(
            start_epoch=self._start,
            total_paused_seconds=self._total_paused,
            pause_start_epoch=self._pause_start,
        )

    def set_on_expired(self, callback: Callable[[], None] | None) -> None:
        self._on_expired = callback

    def start(self) -> None:
        if self._start is not None:
            return
        now = self._clock()
        self._start = now
        if self._holds:
            self._pause_start = now
        logger.info(f"[TIMER] started budget={self._budget:.0f}s")

    def pause(self, reason: str = "user") -> None:
        if reason in self._holds:
            return
        self._holds.add(reason)
        if self._start is not None and self._pause_start is None:
            self._pause_start = self._clock()
            logger.debug(f"[TIMER] paused reason={reason} remaining={self._remaining_at(self._pause_start):.1f}s")

    def resume(self, reason: str = "user") -> None:
        if reason not in self._holds:
            return
        self._holds.discard(reason)
        if self._holds or self._pause_start is None:
            return
        now = self._clock()
        self._total_paused += now - self._pause_start
        self._pause_start = None
        logger.debug(f"[TIMER] resumed reason={reason} paused_total={self._total_paused:.1f}s")

    def elapsed_seconds(self) -> float:
        if self._start is None:
            return 0.0
        end = self._pause_start if self._pause_start is not None else self._clock()
        return max(0.0, end - self._start - self._total_paused)

    def _remaining_at(self, now: float) -> float:
        if self._start is None:
            return self._budget
        end = self._pause_start if self._pause_start is not None else now
        return max(0.0, self._budget - (end - self._start - self._total_paused))

    def remaining_seconds(self) -> float:
        """Seconds left, never negative. Signals expiry the first time it reads 0."""
        if self._expired:
            return 0.0
        remaining = self._remaining_at(self._clock())
        if remaining <= 0.0 and self._start is not None:
            self._fire_expired()
            return 0.0
        return remaining

    def format_remaining(self) -> str:
        """Render the remaining time as ``M:SS``."""
        total = int(math.ceil(self.remaining_seconds()))
        return f"{total // 60}:{total % 60:02d}"

    def _fire_expired(self) -> None:
        if self._expired:
            return
        self._expired = True
        logger.info("[TIMER] time budget exhausted")
        if self._on_expired is not None:
            self._on_expired()

    def start_ticker(self, tick_s: float = 1.0) -> asyncio.Task:
        """Poll in the background so expiry is noticed without callers."""
        if self._ticker is None or self._ticker.done():
            self._ticker = asyncio.create_task(self._tick(tick_s))
        return self._ticker

    async def _tick(self, tick_s: float) -> None:
        while not self._expired:
            self.remaining_seconds()
            if self._expired:
                break
            await asyncio.sleep(tick_s)

    def stop_ticker(self) -> None:
        task, self._ticker = self._ticker, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
