import asyncio

import numpy as np
import pytest

from mock_interviewer.errors import DeviceAccessError
from mock_interviewer.media.devices import DeviceConfig, MediaStreamManager


class FakeInputStream:
    def __init__(self, config, callback, finished_callback, *, fail_start: bool = False) -> None:
        self.config = config
        self.callback = callback
        self.finished_callback = finished_callback
        self.fail_start = fail_start
        self.started = False
        self.stopped = False
        self.closed = False

    def start(self) -> None:
        if self.fail_start:
            raise OSError("Permission denied")
        self.started = True

    def stop(self) -> None:
        self.stopped = True

    def close(self) -> None:
        self.closed = True

    def push(self, value: int) -> None:
        """Simulate the audio thread delivering one block."""
        block = np.full((self.config.frame_samples, self.config.channels), value, dtype=np.int16)
        self.callback(block, self.config.frame_samples, None, None)


class StreamFactory:
    def __init__(self, *, fail_start: bool = False) -> None:
        self.fail_start = fail_start
        self.streams: list[FakeInputStream] = []

    def __call__(self, config, callback, finished_callback):
        stream = FakeInputStream(config, callback, finished_callback, fail_start=self.fail_start)
        self.streams.append(stream)
        return stream


async def _drain() -> None:
    for _ in range(3):
        await asyncio.sleep(0)


@pytest.fixture
def factory() -> StreamFactory:
    return StreamFactory()


@pytest.fixture
def manager(factory) -> MediaStreamManager:
    return MediaStreamManager(DeviceConfig(sample_rate=16000, subscriber_queue_size=3), stream_factory=factory)


@pytest.mark.asyncio
class TestMediaStreamManager:
    async def test_acquire_opens_stream_once(self, manager, factory):
        first = await manager.acquire()
        second = await manager.acquire()
        assert first is second
        assert len(factory.streams) == 1
        assert factory.streams[0].started
        assert manager.acquire_count == 1
        assert first.frame_samples == 320
        await manager.release()

    async def test_frames_reach_subscribers(self, manager, factory):
        handle = await manager.acquire()
        a = handle.subscribe()
        b = handle.subscribe()
        factory.streams[0].push(7)
        await _drain()

        frame_a = await a.read()
        frame_b = await b.read()
        assert frame_a.shape == (320,)
        assert int(frame_a[0]) == 7
        assert int(frame_b[-1]) == 7
        await manager.release()

    async def test_no_frames_after_release(self, manager, factory):
        handle = await manager.acquire()
        sub = handle.subscribe()
        stream = factory.streams[0]
        await manager.release()

        stream.push(1)
        await _drain()
        assert await sub.read() is None
        assert sub.closed
        assert not handle.is_live
        assert stream.stopped and stream.closed

    async def test_release_is_idempotent(self, manager, factory):
        await manager.release()
        await manager.acquire()
        await manager.release()
        await manager.release()
        assert manager.handle is None
        assert factory.streams[0].closed

    async def test_reacquire_after_release_opens_new_handle(self, manager, factory):
        first = await manager.acquire()
        await manager.release()
        second = await manager.acquire()
        assert second is not first
        assert second.handle_id != first.handle_id
        assert second.is_live
        assert len(factory.streams) == 2
        with pytest.raises(DeviceAccessError):
            first.subscribe()
        await manager.release()

    async def test_dead_device_is_replaced_on_acquire(self, manager, factory):
        first = await manager.acquire()
        sub = first.subscribe()
        # Device unplugged: the audio thread reports the stream finished.
        factory.streams[0].finished_callback()
        await _drain()
        assert not first.is_live
        assert await sub.read() is None

        second = await manager.ensure_active()
        assert second is not first
        assert factory.streams[0].closed
        await manager.release()

    async def test_open_failure_raises_device_access_error(self):
        manager = MediaStreamManager(DeviceConfig(), stream_factory=StreamFactory(fail_start=True))
        with pytest.raises(DeviceAccessError):
            await manager.acquire()
        assert manager.handle is None
        assert manager.acquire_count == 0

    async def test_slow_subscriber_drops_oldest_frames(self, manager, factory):
        handle = await manager.acquire()
        sub = handle.subscribe()
        for value in range(5):
            factory.streams[0].push(value)
        await _drain()

        assert sub.dropped_frames == 2
        frames = [int((await sub.read())[0]) for _ in range(3)]
        assert frames == [2, 3, 4]
        await manager.release()

    async def test_unsubscribe_stops_delivery(self, manager, factory):
        handle = await manager.acquire()
        sub = handle.subscribe()
        sub.unsubscribe()
        assert handle.subscriber_count == 0
        factory.streams[0].push(1)
        await _drain()
        assert await sub.read() is None
        assert handle.is_live
        await manager.release()


@pytest.mark.asyncio
class TestAudioPlayback:
    async def test_muted_playback_never_touches_the_device(self, monkeypatch):
        from mock_interviewer.media import playback as playback_module

        def no_device():
            raise AssertionError("device opened while muted")

        monkeypatch.setattr(playback_module, "require_sounddevice", no_device)
        out = playback_module.AudioPlayback()
        out.set_muted(True)

        await out.write(np.zeros(480, dtype=np.int16), sample_rate=48000)
        assert await out.play_wav_bytes(b"RIFF") is False
        assert out.muted

    async def test_stop_without_clip_is_noop(self):
        from mock_interviewer.media.playback import AudioPlayback

        out = AudioPlayback()
        out.stop()
        await out.close()
