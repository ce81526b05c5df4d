"""
Error taxonomy for the voice session subsystem.

Device and connection errors abort session start; transport errors are
surfaced as a non-fatal status. Policy early-termination is not an error and
is reported through ``EndReason.POLICY`` instead.
"""


class VoiceSessionError(Exception):
    """Base class for voice session failures."""


class DeviceAccessError(VoiceSessionError):
    """Microphone permission or hardware failure. The session cannot start."""


class RealtimeConnectionError(VoiceSessionError):
    """Credential retrieval or offer/answer negotiation failed."""


class TransportError(VoiceSessionError):
    """The live transport dropped mid-session."""

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class ApiError(VoiceSessionError):
    """The interview API answered with a non-success status or an unusable body."""

    def __init__(self, message: str, status_code: int | None = None, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body
