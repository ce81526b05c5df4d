"""
Runtime capability probe.

Inspects the host for what a voice interview needs (microphone capture,
audio processing, playback, utterance recording, realtime transport) and
returns a structured verdict the caller can show before starting a session.
"""

from __future__ import annotations

import importlib.util
import logging
import platform
import sys
from typing import Any, Callable

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class CompatibilityReport(BaseModel):
    """Structured support verdict."""

    microphone_access: bool = Field(..., description="An input device can be opened")
    audio_processing: bool = Field(..., description="Frame analysis (numpy) is available")
    audio_playback: bool = Field(..., description="An output device is available")
    audio_recording: bool = Field(..., description="At least one recording format can be encoded")
    realtime_transport: bool = Field(..., description="The WebRTC stack (aiortc + av) is importable")
    recording_formats: list[str] = Field(default_factory=list, description="Encodable recording formats")
    platform_name: str = Field(default="", description="Host operating system")
    platform_version: str = Field(default="", description="Host operating system release")
    is_mobile: bool = Field(default=False, description="Running on a mobile platform")
    unsupported_features: list[str] = Field(default_factory=list, description="Human-readable missing features")
    recommendation: str | None = Field(default=None, description="What to do about the missing features")

    @property
    def is_supported(self) -> bool:
        return not self.unsupported_features


def _query_sounddevices() -> list[dict[str, Any]]:
    import sounddevice as sd  # type: ignore

    return [dict(d) for d in sd.query_devices()]


class BrowserCompatibilityProbe:
    """Checks runtime capabilities without opening any device."""

    def __init__(
        self,
        *,
        find_spec: Callable[[str], Any] | None = None,
        device_lister: Callable[[], list[dict[str, Any]]] | None = None,
        platform_info: Callable[[], tuple[str, str]] | None = None,
    ) -> None:
        self._find_spec = find_spec or importlib.util.find_spec
        self._device_lister = device_lister or _query_sounddevices
        self._platform_info = platform_info or (lambda: (platform.system(), platform.release()))

    def _has_module(self, name: str) -> bool:
        try:
            return self._find_spec(name) is not None
        except (ImportError, ValueError):
            return False

    def _list_devices(self) -> list[dict[str, Any]]:
        if not self._has_module("sounddevice"):
            return []
        try:
            return self._device_lister()
        except Exception as e:
            # PortAudio missing or the host audio service is down.
            logger.info(f"[MEDIA] device query failed: {e}")
            return []

    def check(self, *, require_realtime: bool = True) -> CompatibilityReport:
        """
        Probe the runtime.

        Args:
            require_realtime: Whether a missing WebRTC stack counts as unsupported.
                The segment strategy works without it.

        Returns:
            The compatibility report.
        """
        unsupported: list[str] = []
        recommendation: str | None = None

        devices = self._list_devices()
        microphone = any(int(d.get("max_input_channels", 0)) > 0 for d in devices)
        playback = any(int(d.get("max_output_channels", 0)) > 0 for d in devices)
        processing = self._has_module("numpy")
        realtime = self._has_module("aiortc") and self._has_module("av")

        # Utterances are buffered as numpy frames and encoded by `media.wav`.
        recording = processing
        formats = ["audio/wav"] if recording else []

        if not microphone:
            unsupported.append("Microphone Access (no input device)")
        if not processing:
            unsupported.append("Audio Processing (numpy)")
        if not playback:
            unsupported.append("Audio Playback (no output device)")
        if require_realtime and not realtime:
            unsupported.append("Realtime Voice Transport (aiortc/av)")

        name, version = self._platform_info()
        is_mobile = sys.platform in ("ios", "android") or "android" in version.lower()

        if not self._has_module("sounddevice"):
            recommendation = "Install sounddevice and the PortAudio system library to enable audio devices."
        elif not microphone or not playback:
            recommendation = "Connect a microphone and speakers or headphones, then retry."
        elif require_realtime and not realtime:
            recommendation = "Install aiortc for low-latency voice, or use the segment-based session."

        report = CompatibilityReport(
            microphone_access=microphone,
            audio_processing=processing,
            audio_playback=playback,
            audio_recording=recording,
            realtime_transport=realtime,
            recording_formats=formats,
            platform_name=name,
            platform_version=version,
            is_mobile=is_mobile,
            unsupported_features=unsupported,
            recommendation=recommendation,
        )
        if unsupported:
            logger.warning(f"[MEDIA] unsupported features: {', '.join(unsupported)}")
        return report
