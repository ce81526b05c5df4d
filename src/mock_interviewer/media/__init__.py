"""
Local audio devices: microphone ownership, speaker playback, capability probe.

The media layer is the only place that opens or closes devices.
"""

from mock_interviewer.media.compat import BrowserCompatibilityProbe, CompatibilityReport
from mock_interviewer.media.devices import (
    DeviceConfig,
    FrameSubscription,
    MediaHandle,
    MediaStreamManager,
)
from mock_interviewer.media.playback import AudioPlayback
from mock_interviewer.media.wav import decode_wav, encode_wav

__all__ = [
    "AudioPlayback",
    "BrowserCompatibilityProbe",
    "CompatibilityReport",
    "DeviceConfig",
    "FrameSubscription",
    "MediaHandle",
    "MediaStreamManager",
    "decode_wav",
    "encode_wav",
]
