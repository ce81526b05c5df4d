"""Microphone ownership (LLM-agnostic).

This module is intentionally "dumb hardware I/O": it knows nothing about the
interview, the transport, or speech detection.

It provides:
- a single-owner microphone stream (acquire/release, safely re-acquirable)
- an opaque `MediaHandle` that other components subscribe to
- bounded per-subscriber frame queues

Only `MediaStreamManager` closes the device. Subscribers read frames and
unsubscribe; they never stop the stream themselves.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable

import numpy as np

from mock_interviewer.config import Settings
from mock_interviewer.errors import DeviceAccessError

logger = logging.getLogger(__name__)


def require_sounddevice():
    try:
        import sounddevice as sd  # type: ignore

        return sd
    except Exception as e:  # pragma: no cover
        raise DeviceAccessError(
            "sounddevice is required for microphone and speaker access. "
            "If you see 'PortAudio library not found', install PortAudio (Debian/Ubuntu: sudo apt-get install portaudio19-dev)."
        ) from e


@dataclass(frozen=True)
class DeviceConfig:
    sample_rate: int = 48000
    channels: int = 1
    dtype: str = "int16"  # sounddevice dtype
    frame_ms: int = 20
    device: int | str | None = None
    subscriber_queue_size: int = 50

    @property
    def frame_samples(self) -> int:
        return self.sample_rate * self.frame_ms // 1000

    @classmethod
    def from_settings(cls, settings: Settings, *, sample_rate: int | None = None) -> "DeviceConfig":
        return cls(
            sample_rate=sample_rate or settings.sample_rate,
            channels=settings.channels,
            frame_ms=settings.frame_ms,
        )


class FrameSubscription:
    """A bounded, read-only view of the frames published on a `MediaHandle`."""

    def __init__(self, handle: "MediaHandle", maxsize: int) -> None:
        self._handle = handle
        self._queue: asyncio.Queue[np.ndarray | None] = asyncio.Queue(maxsize=maxsize)
        self._closed = False
        self.dropped_frames = 0

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def handle_id(self) -> int:
        return self._handle.handle_id

    def deliver(self, frame: np.ndarray) -> None:
        if self._closed:
            return
        if self._queue.full():
            # Slow reader: drop the oldest frame so per-frame work stays bounded.
            self._queue.get_nowait()
            self.dropped_frames += 1
        self._queue.put_nowait(frame)

    async def read(self) -> np.ndarray | None:
        """Return the next frame, or None once the subscription is closed."""
        if self._closed:
            return None
        frame = await self._queue.get()
        if self._closed:
            return None
        return frame

    def unsubscribe(self) -> None:
        self._handle.remove_subscriber(self)
        self.close()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        while not self._queue.empty():
            self._queue.get_nowait()
        # Wake a reader blocked in read().
        self._queue.put_nowait(None)


class MediaHandle:
    """
    Opaque ownership wrapper around one live microphone stream.

    Borrowers call :meth:`subscribe`; only the owning `MediaStreamManager`
    ends the handle.
    """

    def __init__(
        self,
        handle_id: int,
        config: DeviceConfig,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self._handle_id = handle_id
        self._config = config
        self._loop = loop
        self._subscribers: list[FrameSubscription] = []
        self._live = True

    @property
    def handle_id(self) -> int:
        return self._handle_id

    @property
    def sample_rate(self) -> int:
        return self._config.sample_rate

    @property
    def channels(self) -> int:
        return self._config.channels

    @property
    def frame_samples(self) -> int:
        return self._config.frame_samples

    @property
    def is_live(self) -> bool:
        return self._live

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self, maxsize: int | None = None) -> FrameSubscription:
        if not self._live:
            raise DeviceAccessError(f"Media handle {self._handle_id} has been released")
        sub = FrameSubscription(self, maxsize or self._config.subscriber_queue_size)
        self._subscribers.append(sub)
        return sub

    def remove_subscriber(self, subscription: FrameSubscription) -> None:
        if subscription in self._subscribers:
            self._subscribers.remove(subscription)

    def publish(self, frame: np.ndarray) -> None:
        """Fan a frame out to every subscriber. Must run on the event loop thread."""
        if not self._live:
            return
        for sub in list(self._subscribers):
            sub.deliver(frame)

    def publish_threadsafe(self, frame: np.ndarray) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        try:
            loop.call_soon_threadsafe(self.publish, frame)
        except RuntimeError:
            # Loop shut down between the check and the call.
            pass

    def end(self) -> None:
        """Mark the handle dead and close every subscription. Idempotent."""
        if not self._live:
            return
        self._live = False
        subs, self._subscribers = self._subscribers, []
        for sub in subs:
            sub.close()
        logger.debug(f"[MEDIA] handle {self._handle_id} ended ({len(subs)} subscriber(s) closed)")

    def end_threadsafe(self) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            self._live = False
            return
        try:
            loop.call_soon_threadsafe(self.end)
        except RuntimeError:
            self._live = False


StreamFactory = Callable[[DeviceConfig, Callable[..., None], Callable[[], None]], Any]


def sounddevice_input_stream(
    config: DeviceConfig,
    callback: Callable[..., None],
    finished_callback: Callable[[], None],
) -> Any:
    sd = require_sounddevice()
    return sd.InputStream(
        samplerate=config.sample_rate,
        channels=config.channels,
        dtype=config.dtype,
        blocksize=config.frame_samples,
        device=config.device,
        callback=callback,
        finished_callback=finished_callback,
    )


class MediaStreamManager:
    """Single owner of the microphone device stream."""

    def __init__(
        self,
        config: DeviceConfig | None = None,
        *,
        stream_factory: StreamFactory | None = None,
    ) -> None:
        self._config = config or DeviceConfig()
        self._stream_factory = stream_factory or sounddevice_input_stream
        self._stream: Any = None
        self._handle: MediaHandle | None = None
        self._next_id = 1
        self._lock = asyncio.Lock()
        self.acquire_count = 0

    @property
    def config(self) -> DeviceConfig:
        return self._config

    @property
    def handle(self) -> MediaHandle | None:
        return self._handle

    async def acquire(self) -> MediaHandle:
        """
        Return the live handle, opening the microphone if needed.

        A handle whose device went away (unplugged, suspended) is replaced by
        a fresh one, so callers can always re-acquire after a release.

        Raises:
            DeviceAccessError: If the device cannot be opened.
        """
        async with self._lock:
            if self._handle is not None and self._handle.is_live:
                return self._handle

            if self._handle is not None:
                logger.info(f"[MEDIA] handle {self._handle.handle_id} is no longer live; re-acquiring")
                self._handle.end()
                self._handle = None
                await self._close_stream()

            loop = asyncio.get_running_loop()
            handle = MediaHandle(self._next_id, self._config, loop)
            self._next_id += 1
            channels = self._config.channels

            def callback(indata, frames, time, status):  # noqa: ANN001
                if status:
                    logger.debug(f"Input status: {status}")
                frame = indata[:, 0].copy() if channels == 1 else indata.copy()
                handle.publish_threadsafe(frame)

            try:
                stream = self._stream_factory(self._config, callback, handle.end_threadsafe)
                await asyncio.to_thread(stream.start)
            except DeviceAccessError:
                raise
            except Exception as e:
                raise DeviceAccessError(f"Could not open microphone: {e}") from e

            self._stream = stream
            self._handle = handle
            self.acquire_count += 1
            logger.info(
                "[MEDIA] microphone acquired handle=%s rate=%s channels=%s",
                handle.handle_id,
                self._config.sample_rate,
                channels,
            )
            return handle

    async def ensure_active(self) -> MediaHandle:
        """Return a live handle, reopening the device if its stream ended underneath the session."""
        return await self.acquire()

    async def release(self) -> None:
        """Close every subscription and the device. Safe to call repeatedly."""
        async with self._lock:
            handle, self._handle = self._handle, None
            if handle is not None:
                handle.end()
                logger.info(f"[MEDIA] microphone released handle={handle.handle_id}")
            await self._close_stream()

    async def _close_stream(self) -> None:
        stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            await asyncio.to_thread(stream.stop)
            await asyncio.to_thread(stream.close)
        except Exception as e:
            logger.warning(f"[MEDIA] error while closing input stream: {e}")
