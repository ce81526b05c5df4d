"""SDP offer/answer exchange with the realtime voice endpoint."""

from __future__ import annotations

import logging

import httpx

from mock_interviewer.api.client import SessionCredential
from mock_interviewer.config import get_settings
from mock_interviewer.errors import RealtimeConnectionError

logger = logging.getLogger(__name__)


class RealtimeSignaler:
    """
    Posts the local offer as ``application/sdp`` and returns the answer.

    Authenticated with the short-lived session credential, never with the
    long-lived API token.
    """

    def __init__(
        self,
        base_url: str | None = None,
        model: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        self._base_url = base_url or settings.realtime_base_url
        self._model = model or settings.realtime_model
        self._timeout = timeout or settings.api_timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout, transport=self._transport)
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def exchange(self, offer_sdp: str, credential: SessionCredential) -> str:
        """
        Exchange an offer for an answer.

        Raises:
            RealtimeConnectionError: On a network failure or non-success status.
        """
        client = await self._get_client()
        try:
            response = await client.post(
                self._base_url,
                params={"model": self._model},
                content=offer_sdp.encode("utf-8"),
                headers={
                    "Authorization": f"Bearer {credential.value}",
                    "Content-Type": "application/sdp",
                },
            )
        except httpx.HTTPError as e:
            raise RealtimeConnectionError(f"SDP exchange failed: {e}") from e

        if not response.is_success:
            raise RealtimeConnectionError(
                f"SDP exchange failed with status {response.status_code}: {response.text[:200]}"
            )
        answer = response.text
        if not answer.strip():
            raise RealtimeConnectionError("SDP exchange returned an empty answer")
        logger.debug(f"[REALTIME] SDP answer received ({len(answer)} bytes)")
        return answer
