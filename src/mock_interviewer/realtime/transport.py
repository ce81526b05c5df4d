"""Peer transport interface used by the realtime controller."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Protocol

from mock_interviewer.media.devices import MediaHandle
from mock_interviewer.media.playback import AudioPlayback

# Sends the local offer SDP, returns the remote answer SDP.
SdpExchange = Callable[[str], Awaitable[str]]


@dataclass(frozen=True)
class TransportCallbacks:
    on_message: Callable[[str], None]
    on_channel_open: Callable[[], None]
    on_connection_state: Callable[[str], None]
    # Outbound microphone track ran out of frames (device went away).
    on_media_ended: Callable[[], None] | None = None


class PeerTransport(Protocol):
    async def negotiate(self, media: MediaHandle, exchange: SdpExchange) -> None: ...

    def send(self, payload: dict[str, Any]) -> None: ...

    def set_muted(self, muted: bool) -> None: ...

    async def replace_media(self, media: MediaHandle) -> None: ...

    async def close(self) -> None: ...


TransportFactory = Callable[[TransportCallbacks, AudioPlayback | None], PeerTransport]
