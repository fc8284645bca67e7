"""
Blob Storage Service - HTTP adapter for the blob storage backend.

Endpoints (relative to base_url):
    PUT  /objects/{key}        upload bytes
    GET  /objects/{key}/url    -> {"url": "..."}
    GET  /objects?prefix=...   -> {"keys": [...], "next": cursor | null}

Implements IBlobStorageClient protocol.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Dict, List, Optional
from urllib.parse import quote

import httpx

from ..models import TransferOutcome, TransferProgress

logger = logging.getLogger(__name__)


def _object_path(key: str) -> str:
    return f"/objects/{quote(key, safe='/')}"


class HTTPTransferTask:
    """
    One PUT upload, streamed in chunks.

    Iterating starts the request and yields TransferProgress as chunks are
    handed to the transport, then exactly one TransferOutcome.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        key: str,
        data: bytes,
        chunk_size: int = 64 * 1024,
        content_type: str = "application/octet-stream",
    ):
        self._client = client
        self._key = key
        self._data = data
        self._chunk_size = chunk_size
        self._content_type = content_type

    @property
    def key(self) -> str:
        return self._key

    async def __aiter__(self) -> AsyncIterator[Any]:
        queue: asyncio.Queue = asyncio.Queue()
        total = len(self._data)

        async def body():
            sent = 0
            for start in range(0, total, self._chunk_size):
                piece = self._data[start:start + self._chunk_size]
                yield piece
                sent += len(piece)
                queue.put_nowait(TransferProgress(sent, total))

        async def send():
            try:
                response = await self._client.put(
                    _object_path(self._key),
                    content=body(),
                    headers={
                        "Content-Length": str(total),
                        "Content-Type": self._content_type,
                    },
                )
                if response.status_code >= 400:
                    outcome = TransferOutcome.failure(
                        f"HTTP {response.status_code} on PUT {self._key}: {response.text}"
                    )
                else:
                    outcome = TransferOutcome.success(self._key)
            except httpx.HTTPError as exc:
                outcome = TransferOutcome.failure(f"{type(exc).__name__}: {exc}")
            except Exception as exc:
                logger.error(f"[storage] Unexpected upload error for {self._key}: {exc}", exc_info=True)
                outcome = TransferOutcome.failure(str(exc))
            queue.put_nowait(outcome)

        queue.put_nowait(TransferProgress(0, total))
        task = asyncio.create_task(send())
        try:
            while True:
                event = await queue.get()
                yield event
                if isinstance(event, TransferOutcome):
                    return
        finally:
            if not task.done():
                task.cancel()


class HTTPBlobStorageClient:
    """
    HTTP client adapter for the blob storage service.

    Usage:
        async with HTTPBlobStorageClient(base_url, token) as storage:
            async for event in storage.begin_upload("uploads/a.png", data):
                ...
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: int = 60,
        max_retries: int = 3,
        retry_backoff: float = 0.5,
        chunk_size: int = 64 * 1024,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._timeout = timeout
        self._max_retries = max_retries
        self._retry_backoff = retry_backoff
        self._chunk_size = chunk_size
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        await self.open()
        return self

    async def __aexit__(self, *args):
        await self.close()

    async def open(self) -> None:
        if self._client is not None:
            return
        headers: Dict[str, str] = {}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            headers=headers,
            transport=self._transport,
        )

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    def _require_client(self) -> httpx.AsyncClient:
        if not self._client:
            raise RuntimeError("HTTPBlobStorageClient not initialized. Use 'async with' context.")
        return self._client

    def begin_upload(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> HTTPTransferTask:
        return HTTPTransferTask(
            self._require_client(),
            key,
            data,
            chunk_size=self._chunk_size,
            content_type=content_type,
        )

    async def resolve_download_url(self, key: str) -> str:
        response = await self._get(f"{_object_path(key)}/url")
        url = response.json().get("url")
        if not url:
            raise RuntimeError(f"API returned no url for {key}")
        return url

    async def list_objects(self, prefix: str) -> List[str]:
        keys: List[str] = []
        cursor = None
        while True:
            params = {"prefix": prefix}
            if cursor:
                params["cursor"] = cursor
            payload = (await self._get("/objects", params=params)).json()
            keys.extend(payload.get("keys", []))
            cursor = payload.get("next")
            if not cursor:
                return keys

    async def _get(self, endpoint: str, params: Optional[Dict[str, str]] = None) -> httpx.Response:
        client = self._require_client()
        last_exception = None

        for attempt in range(self._max_retries):
            try:
                response = await client.get(endpoint, params=params)

                if response.status_code >= 500 and attempt < self._max_retries - 1:
                    await asyncio.sleep(self._retry_backoff * (attempt + 1))
                    continue

                if response.status_code >= 400:
                    try:
                        error_detail = response.json()
                    except Exception:
                        error_detail = response.text
                    raise RuntimeError(
                        f"API error {response.status_code} on GET {endpoint}: {error_detail}"
                    )

                return response
            except (httpx.RequestError, httpx.TimeoutException) as exc:
                last_exception = exc
                if attempt < self._max_retries - 1:
                    await asyncio.sleep(self._retry_backoff * (attempt + 1))
                    continue
                raise

        if last_exception:
            raise last_exception
        raise RuntimeError(f"Failed to GET {endpoint} after {self._max_retries} attempts")
