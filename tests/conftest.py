"""Shared fixtures: a scripted in-memory blob storage."""
import asyncio
import struct
import zlib
from collections import Counter
from typing import Dict, List, Optional

import pytest

from blob_uploader.models import FileSource, TransferOutcome, TransferProgress, UploadConfig

CDN = "https://cdn.example.test"


class FakeTransferTask:
    """Replays scripted events; waits on gate (if any) before the first one."""

    def __init__(self, events: list, gate: Optional[asyncio.Event] = None):
        self._events = events
        self._gate = gate

    async def __aiter__(self):
        if self._gate is not None:
            await self._gate.wait()
        for event in self._events:
            await asyncio.sleep(0)
            if isinstance(event, Exception):
                raise event
            yield event


class FakeBlobStorage:
    """
    In-memory IBlobStorageClient.

    Uploads are scripted per source name; unscripted uploads succeed in
    one progress step under the requested key.
    """

    def __init__(self):
        self.scripts: Dict[str, list] = {}
        self.gates: Dict[str, asyncio.Event] = {}
        self.issued: List[str] = []
        self.content_types: Dict[str, str] = {}
        self.listing: List[str] = []
        self.list_error: Optional[Exception] = None
        self.resolve_failures: Dict[str, int] = {}
        self.resolve_calls: Counter = Counter()

    def script(self, name: str, events: list, gate: Optional[asyncio.Event] = None):
        self.scripts[name] = events
        if gate is not None:
            self.gates[name] = gate

    @staticmethod
    def source_name(key: str) -> str:
        # keys look like "uploads/<session id>_<name>"
        return key.rsplit("/", 1)[-1].split("_", 1)[-1]

    def begin_upload(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> FakeTransferTask:
        self.issued.append(key)
        self.content_types[key] = content_type
        name = self.source_name(key)
        events = self.scripts.get(name)
        if events is None:
            events = [TransferProgress(len(data), len(data)), TransferOutcome.success(key)]
        return FakeTransferTask(events, self.gates.get(name))

    async def resolve_download_url(self, key: str) -> str:
        self.resolve_calls[key] += 1
        remaining = self.resolve_failures.get(key, 0)
        if remaining:
            self.resolve_failures[key] = remaining - 1
            raise RuntimeError("transient resolve failure")
        return f"{CDN}/{key}"

    async def list_objects(self, prefix: str) -> List[str]:
        if self.list_error is not None:
            raise self.list_error
        return [key for key in self.listing if key.startswith(prefix)]


@pytest.fixture
def storage():
    return FakeBlobStorage()


@pytest.fixture
def config():
    return UploadConfig(resolve_backoff=0)


def make_source(name: str, size: int = 10, media_type: str = "text/plain") -> FileSource:
    return FileSource(name=name, data=b"x" * size, media_type=media_type)


async def until(predicate, timeout: float = 2.0):
    """Yield to the loop until predicate() holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0)


def oversized_png(width: int = 20000, height: int = 20000) -> bytes:
    """PNG header (no pixel data) declaring dimensions past Pillow's bomb limit."""
    def chunk(kind: bytes, body: bytes) -> bytes:
        return struct.pack(">I", len(body)) + kind + body + struct.pack(">I", zlib.crc32(kind + body) & 0xFFFFFFFF)

    header = struct.pack(">IIBBBBB", width, height, 8, 2, 0, 0, 0)
    return b"\x89PNG\r\n\x1a\n" + chunk(b"IHDR", header) + chunk(b"IDAT", zlib.compress(b"")) + chunk(b"IEND", b"")
