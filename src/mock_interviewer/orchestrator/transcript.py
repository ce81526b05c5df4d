"""Transcript capture.

`TranscriptLog` keeps arrival order in memory and forwards each entry to a
`TranscriptStore`, except entries the conversation endpoint already stored.
Writes are fire-and-forget: they run as background tasks, failures are
logged and never retried, and ``flush`` waits for whatever is still in flight.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

from mock_interviewer.api.client import InterviewApiClient
from mock_interviewer.orchestrator.schemas import TranscriptEntry, TranscriptRole

logger = logging.getLogger(__name__)


class TranscriptStore(Protocol):
    async def append(self, entry: TranscriptEntry) -> None: ...


class ApiTranscriptStore:
    """Appends transcript rows through the interview API."""

    def __init__(self, client: InterviewApiClient, interview_id: str) -> None:
        self._client = client
        self._interview_id = interview_id

    async def append(self, entry: TranscriptEntry) -> None:
        await self._client.append_transcript(self._interview_id, entry.role.value, entry.text)


class TranscriptLog:
    def __init__(self, store: TranscriptStore | None = None) -> None:
        self._store = store
        self._entries: list[TranscriptEntry] = []
        self._pending: set[asyncio.Task] = set()
        self.failed_writes = 0

    @property
    def entries(self) -> list[TranscriptEntry]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def append(self, role: TranscriptRole, text: str, *, persisted: bool = False) -> TranscriptEntry:
        entry = TranscriptEntry(role=role, text=text)
        self._entries.append(entry)
        label = "Candidate" if role is TranscriptRole.USER else "Interviewer"
        logger.info(f"[SESSION] [{label}] {text}")
        if self._store is not None and not persisted:
            task = asyncio.create_task(self._write(entry))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
        return entry

    async def _write(self, entry: TranscriptEntry) -> None:
        try:
            await self._store.append(entry)  # type: ignore[union-attr]
        except Exception as e:
            self.failed_writes += 1
            logger.warning(f"[SESSION] transcript append failed role={entry.role.value}: {e}")

    async def flush(self) -> None:
        """Wait for in-flight writes. Never raises."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
