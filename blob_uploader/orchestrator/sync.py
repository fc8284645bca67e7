"""Remote Listing Synchronizer - reconciles the local view with the remote object list."""
import asyncio
import logging
from typing import List, Optional

from ..exceptions import ListingError
from ..models import UploadConfig, UploadedObject
from ..protocols import IBlobStorageClient
from .transfer import resolve_with_retry

logger = logging.getLogger(__name__)


class RemoteListingSynchronizer:
    """
    Lists every object under a prefix and resolves each to a URL.

    Returns the full set, not a diff. Any failure (listing or a single
    resolution) fails the whole call with ListingError so callers never
    merge a partial listing.
    """

    def __init__(self, storage: IBlobStorageClient, config: Optional[UploadConfig] = None):
        self._storage = storage
        self._config = config or UploadConfig()

    async def sync(self, prefix: Optional[str] = None) -> List[UploadedObject]:
        prefix = self._config.prefix if prefix is None else prefix
        logger.info(f"[sync] Listing objects under {prefix!r}")

        try:
            keys = await self._storage.list_objects(prefix)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"[sync] Listing failed for {prefix!r}: {e}")
            raise ListingError(prefix, e) from e

        # a listing may repeat a key; keep the first occurrence
        keys = list(dict.fromkeys(keys))

        semaphore = asyncio.Semaphore(max(1, self._config.max_parallel))

        async def resolve(key: str) -> str:
            async with semaphore:
                return await resolve_with_retry(
                    self._storage,
                    key,
                    attempts=self._config.resolve_attempts,
                    backoff=self._config.resolve_backoff,
                )

        tasks = [asyncio.create_task(resolve(key)) for key in keys]
        try:
            urls = await asyncio.gather(*tasks)
        except Exception as e:
            logger.error(f"[sync] URL resolution failed under {prefix!r}: {e}")
            raise ListingError(prefix, e) from e
        finally:
            # one failure abandons the whole listing
            pending = [task for task in tasks if not task.done()]
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        logger.info(f"[sync] Found {len(keys)} object(s) under {prefix!r}")
        return [UploadedObject(key=key, resolved_url=url) for key, url in zip(keys, urls)]
