"""Per-session transfer driving and URL resolution with bounded retry."""
from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from ..exceptions import ResolutionError, TransferError
from ..models import FileSource, TransferOutcome, TransferProgress, UploadConfig
from ..protocols import IBlobStorageClient

if TYPE_CHECKING:
    from .core import UploadOrchestrator

logger = logging.getLogger(__name__)


async def resolve_with_retry(
    storage: IBlobStorageClient,
    key: str,
    attempts: int = 3,
    backoff: float = 0.5,
) -> str:
    """
    Resolve key to a download URL, retrying transient failures.

    Raises:
        ResolutionError: when every attempt failed
    """
    attempts = max(1, attempts)
    last_exception = None

    for attempt in range(attempts):
        try:
            return await storage.resolve_download_url(key)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            last_exception = exc
            logger.warning(f"[resolve] Attempt {attempt + 1}/{attempts} failed for {key}: {exc}")
            if attempt < attempts - 1 and backoff > 0:
                await asyncio.sleep(backoff * (attempt + 1))

    raise ResolutionError(key, attempts, last_exception)


class TransferRunner:
    """
    Drives one session's transfer against the storage client.

    Feeds every progress event into the orchestrator's ingestion hooks
    and finishes with exactly one terminal call.
    """

    def __init__(self, orchestrator: "UploadOrchestrator", storage: IBlobStorageClient, config: UploadConfig):
        self._orchestrator = orchestrator
        self._storage = storage
        self._config = config

    async def run(self, session_id: str, key: str, source: FileSource) -> None:
        if not await self._orchestrator._mark_transferring(session_id, source.size):
            return
        outcome = await self._transfer(session_id, key, source)
        await self._orchestrator.on_terminal(session_id, outcome)

    async def _transfer(self, session_id: str, key: str, source: FileSource) -> TransferOutcome:
        try:
            # issued once per session, never re-issued
            task = self._storage.begin_upload(key, source.data, content_type=source.media_type)
            async for event in task:
                if isinstance(event, TransferProgress):
                    await self._orchestrator.on_progress(session_id, event.bytes_transferred, event.total_bytes)
                elif isinstance(event, TransferOutcome):
                    return event
                else:
                    logger.debug(f"[transfer] Ignoring unknown event {event!r} for {session_id}")
        except TransferError as exc:
            logger.error(f"[transfer] Upload failed for {session_id} ({source.name}): {exc}")
            return TransferOutcome.failure(str(exc))
        except Exception as exc:
            error = TransferError(f"{type(exc).__name__}: {exc}", key=key)
            logger.error(f"[transfer] Upload failed for {session_id} ({source.name}): {error}")
            return TransferOutcome.failure(str(error))

        return TransferOutcome.failure("transfer ended without a terminal event")
