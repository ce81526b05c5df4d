"""
Interview web API client.

Thin async wrapper over the server-side endpoints the voice session talks to:
session credentials, transcript appends, interview completion, conversation
turns, and speech-to-text / text-to-speech for the segment strategy.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import BaseModel, Field

from mock_interviewer.config import get_settings
from mock_interviewer.errors import ApiError

logger = logging.getLogger(__name__)


class SessionCredential(BaseModel):
    """Short-lived access credential for the realtime voice endpoint."""

    value: str = Field(..., description="Ephemeral bearer key")
    expires_at: int | None = Field(default=None, description="Expiry as a unix timestamp, if reported")
    system_instruction: str | None = Field(
        default=None,
        description="Interviewer instructions the session was created with",
    )


class ConversationReply(BaseModel):
    """Interviewer reply produced by the conversation endpoint."""

    message: str = Field(..., description="Interviewer text")
    should_end_interview: bool = Field(
        default=False,
        description="Server asked for the interview to end after this message",
    )
    conversation_id: str | None = Field(default=None, description="Stored conversation row id")


class InterviewApiClient:
    """
    Client for the interview web API.

    The underlying ``httpx.AsyncClient`` is created lazily and must be
    released with :meth:`close`.
    """

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        token: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize the API client.

        Args:
            base_url: API base URL (uses config if not provided).
            timeout: Request timeout in seconds (uses config if not provided).
            token: Bearer token (uses config if not provided).
            transport: Optional httpx transport, used by tests.
        """
        settings = get_settings()
        self._base_url = base_url or settings.api_base_url
        self._timeout = timeout or settings.api_timeout
        self._token = settings.api_token if token is None else token
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            headers = {"Authorization": f"Bearer {self._token}"} if self._token else {}
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                headers=headers,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _post(self, path: str, **kwargs: Any) -> httpx.Response:
        client = await self._get_client()
        response = await client.post(path, **kwargs)
        if not response.is_success:
            raise ApiError(
                f"POST {path} failed with status {response.status_code}",
                status_code=response.status_code,
                body=response.text,
            )
        return response

    async def create_session(
        self,
        interview_id: str,
        *,
        voice: str | None = None,
        turn_detection: dict[str, Any] | None = None,
    ) -> SessionCredential:
        """
        Request a short-lived realtime credential for an interview.

        Args:
            interview_id: Interview identifier.
            voice: Requested AI voice.
            turn_detection: Server VAD sensitivity settings.

        Returns:
            The issued credential.

        Raises:
            ApiError: If the endpoint fails or its body holds no usable key.
        """
        body: dict[str, Any] = {}
        if voice:
            body["voice"] = voice
        if turn_detection:
            body["turn_detection"] = turn_detection

        response = await self._post(f"/api/interview/{interview_id}/session", json=body)
        try:
            data = response.json()
        except ValueError as e:
            raise ApiError("Session response was not JSON", response.status_code, response.text) from e
        if not isinstance(data, dict):
            raise ApiError("Session response was not a JSON object", response.status_code, response.text)
        secret = data.get("client_secret") or {}
        if isinstance(secret, str):
            secret = {"value": secret}
        if not secret.get("value"):
            raise ApiError("Session response did not include a client secret", response.status_code, response.text)

        return SessionCredential(
            value=secret["value"],
            expires_at=secret.get("expires_at"),
            system_instruction=data.get("system_instruction"),
        )

    async def append_transcript(self, interview_id: str, role: str, message: str) -> None:
        """Append one transcript row (`role` is ``user`` or ``interviewer``)."""
        await self._post(
            f"/api/interview/{interview_id}/transcript",
            json={"role": role, "message": message},
        )

    async def complete_interview(self, interview_id: str) -> None:
        """Mark the interview as completed server-side."""
        await self._post(f"/api/interview/{interview_id}/end")

    async def request_turn(
        self,
        interview_id: str,
        *,
        user_message: str | None = None,
        is_first_question: bool = False,
        time_remaining_seconds: int | None = None,
    ) -> ConversationReply:
        """
        Ask the conversation endpoint for the next interviewer message.

        The endpoint answers with JSON for the first question and may stream
        plain text for follow-ups; both are accepted.
        """
        body: dict[str, Any] = {"isFirstQuestion": is_first_question}
        if user_message is not None:
            body["userMessage"] = user_message
        if time_remaining_seconds is not None:
            body["timeRemainingSeconds"] = time_remaining_seconds

        response = await self._post(f"/api/interview/{interview_id}/conversation", json=body)
        content_type = response.headers.get("content-type", "")
        if "application/json" in content_type:
            data = response.json()
            return ConversationReply(
                message=(data.get("message") or "").strip(),
                should_end_interview=bool(data.get("shouldEndInterview", False)),
                conversation_id=data.get("conversationId"),
            )
        return ConversationReply(message=response.text.strip())

    async def transcribe(self, interview_id: str, wav_bytes: bytes) -> str:
        """Transcribe one recorded utterance through the STT endpoint."""
        response = await self._post(
            f"/api/interview/{interview_id}/stt",
            files={"audio": ("audio.wav", wav_bytes, "audio/wav")},
        )
        return (response.json().get("text") or "").strip()

    async def synthesize(self, interview_id: str, text: str, voice: str | None = None) -> bytes:
        """Render interviewer text to WAV audio through the TTS endpoint."""
        body: dict[str, Any] = {"text": text, "format": "wav"}
        if voice:
            body["voice"] = voice
        response = await self._post(f"/api/interview/{interview_id}/tts", json=body)
        return response.content
