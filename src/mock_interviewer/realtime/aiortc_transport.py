"""WebRTC transport on aiortc.

One peer connection carries the local microphone track out and the remote
interviewer audio in; a data channel carries JSON events both ways.
"""

from __future__ import annotations

import asyncio
import fractions
import json
import logging
from typing import Any, Callable

import av
import numpy as np
from aiortc import MediaStreamTrack, RTCPeerConnection, RTCSessionDescription
from aiortc.mediastreams import MediaStreamError

from mock_interviewer.errors import TransportError
from mock_interviewer.media.devices import FrameSubscription, MediaHandle
from mock_interviewer.media.playback import AudioPlayback
from mock_interviewer.realtime.transport import SdpExchange, TransportCallbacks

logger = logging.getLogger(__name__)

DATA_CHANNEL_LABEL = "oai-events"


class MicrophoneTrack(MediaStreamTrack):
    """
    Outbound audio track fed from a media handle subscription.

    When the subscription ends underneath it (device unplugged) the track
    reports it once through ``on_source_lost`` and keeps the RTP sender alive
    with paced silence until ``replace_subscription`` hands it a new source.
    Only ``stop()`` ends the track.
    """

    kind = "audio"

    def __init__(
        self,
        subscription: FrameSubscription,
        sample_rate: int,
        *,
        frame_ms: int = 20,
        on_source_lost: Callable[[], None] | None = None,
    ) -> None:
        super().__init__()
        self._subscription = subscription
        self._sample_rate = sample_rate
        self._frame_samples = sample_rate * frame_ms // 1000
        self._time_base = fractions.Fraction(1, sample_rate)
        self._pts = 0
        self._on_source_lost = on_source_lost
        self._source_lost = False
        self.muted = False

    @property
    def source_lost(self) -> bool:
        return self._source_lost

    def replace_subscription(self, subscription: FrameSubscription) -> None:
        self._subscription = subscription
        self._source_lost = False

    async def recv(self) -> av.AudioFrame:
        if self.readyState != "live":
            raise MediaStreamError

        frame = await self._subscription.read()
        if frame is None:
            if not self._source_lost:
                self._source_lost = True
                if self._on_source_lost is not None:
                    self._on_source_lost()
            await asyncio.sleep(self._frame_samples / self._sample_rate)
            if self.readyState != "live":
                raise MediaStreamError
            frame = np.zeros(self._frame_samples, dtype=np.int16)

        samples = np.asarray(frame, dtype=np.int16).reshape(1, -1)
        if self.muted:
            samples = np.zeros_like(samples)

        audio_frame = av.AudioFrame.from_ndarray(samples, format="s16", layout="mono")
        audio_frame.sample_rate = self._sample_rate
        audio_frame.pts = self._pts
        audio_frame.time_base = self._time_base
        self._pts += samples.shape[1]
        return audio_frame


class AiortcTransport:
    def __init__(
        self,
        callbacks: TransportCallbacks,
        playback: AudioPlayback | None = None,
        *,
        channel_label: str = DATA_CHANNEL_LABEL,
    ) -> None:
        self._callbacks = callbacks
        self._playback = playback
        self._channel_label = channel_label
        self._pc: RTCPeerConnection | None = None
        self._channel: Any = None
        self._track: MicrophoneTrack | None = None
        self._subscription: FrameSubscription | None = None
        self._remote_task: asyncio.Task | None = None
        self._closed = False

    async def negotiate(self, media: MediaHandle, exchange: SdpExchange) -> None:
        pc = RTCPeerConnection()
        self._pc = pc

        self._subscription = media.subscribe()
        self._track = MicrophoneTrack(self._subscription, media.sample_rate, on_source_lost=self._on_source_lost)
        pc.addTrack(self._track)

        @pc.on("track")
        def on_track(track: MediaStreamTrack) -> None:
            if track.kind == "audio":
                logger.debug("[REALTIME] remote audio track received")
                self._remote_task = asyncio.create_task(self._pump_remote_audio(track))

        @pc.on("connectionstatechange")
        async def on_connectionstatechange() -> None:
            logger.debug(f"[REALTIME] connection state {pc.connectionState}")
            if not self._closed:
                self._callbacks.on_connection_state(pc.connectionState)

        channel = pc.createDataChannel(self._channel_label)
        self._channel = channel

        @channel.on("open")
        def on_open() -> None:
            logger.debug(f"[REALTIME] data channel '{self._channel_label}' open")
            self._callbacks.on_channel_open()

        @channel.on("message")
        def on_message(message: str | bytes) -> None:
            if isinstance(message, bytes):
                message = message.decode("utf-8", errors="replace")
            self._callbacks.on_message(message)

        offer = await pc.createOffer()
        await pc.setLocalDescription(offer)
        answer_sdp = await exchange(pc.localDescription.sdp)
        await pc.setRemoteDescription(RTCSessionDescription(sdp=answer_sdp, type="answer"))

    async def _pump_remote_audio(self, track: MediaStreamTrack) -> None:
        while True:
            try:
                frame = await track.recv()
            except MediaStreamError:
                break
            if self._playback is None:
                continue
            channels = len(frame.layout.channels)
            samples = frame.to_ndarray().reshape(-1, channels)
            try:
                await self._playback.write(samples, sample_rate=frame.sample_rate)
            except Exception as e:
                logger.warning(f"[REALTIME] remote audio playback failed: {e}")
                self._playback = None

    def send(self, payload: dict[str, Any]) -> None:
        channel = self._channel
        if channel is None or channel.readyState != "open":
            raise TransportError("data channel is not open")
        channel.send(json.dumps(payload))

    def set_muted(self, muted: bool) -> None:
        if self._track is not None:
            self._track.muted = muted

    def _on_source_lost(self) -> None:
        if not self._closed and self._callbacks.on_media_ended is not None:
            self._callbacks.on_media_ended()

    async def replace_media(self, media: MediaHandle) -> None:
        if self._closed or self._track is None:
            return
        old, self._subscription = self._subscription, media.subscribe()
        self._track.replace_subscription(self._subscription)
        if old is not None:
            old.unsubscribe()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True

        task, self._remote_task = self._remote_task, None
        if task is not None and not task.done():
            task.cancel()
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
        if self._track is not None:
            self._track.stop()
        if self._pc is not None:
            await self._pc.close()
            self._pc = None
        self._channel = None
