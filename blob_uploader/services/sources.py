"""Building FileSources from local files, picked documents and pasted URLs."""
from __future__ import annotations

from pathlib import Path
from typing import Optional
from urllib.parse import unquote, urlparse
import mimetypes

import httpx

from ..models import FileSource

URL_FALLBACK_NAME = "url-file"


def guess_media_type(name: str) -> str:
    mimetype, _ = mimetypes.guess_type(name)
    return mimetype or "application/octet-stream"


def is_url(value: str) -> bool:
    return urlparse(str(value)).scheme in ("http", "https")


def from_path(path: Path) -> FileSource:
    """Read a local file into a FileSource."""
    path = Path(path)
    return FileSource(name=path.name, data=path.read_bytes(), media_type=guess_media_type(path.name))


def from_bytes(name: str, data: bytes, media_type: Optional[str] = None) -> FileSource:
    """FileSource for content handed over by a document picker or any other caller."""
    return FileSource(name=name, data=bytes(data), media_type=media_type or guess_media_type(name))


def name_from_url(url: str) -> str:
    segment = unquote(urlparse(url).path.rstrip("/").rsplit("/", 1)[-1])
    return segment or URL_FALLBACK_NAME


async def from_url(
    url: str,
    client: Optional[httpx.AsyncClient] = None,
    timeout: int = 60,
) -> FileSource:
    """
    Download a pasted URL into a FileSource.

    Raises:
        httpx.HTTPError: on transport failure or non-2xx status
    """
    if client is None:
        async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as owned:
            return await from_url(url, owned)

    response = await client.get(url)
    response.raise_for_status()
    name = name_from_url(str(response.url))
    content_type = response.headers.get("content-type", "").split(";", 1)[0].strip()
    return FileSource(
        name=name,
        data=response.content,
        media_type=content_type or guess_media_type(name),
    )
