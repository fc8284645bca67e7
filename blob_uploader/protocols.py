"""
Protocols (Interfaces) for Dependency Inversion.

The orchestrator only talks to the blob storage backend through these,
so the transfer subsystem is swappable.
"""
from typing import AsyncIterator, List, Protocol, Union, runtime_checkable

from .models import TransferOutcome, TransferProgress

TransferEvent = Union[TransferProgress, TransferOutcome]


@runtime_checkable
class ITransferTask(Protocol):
    """
    One issued upload.

    Iterating yields TransferProgress events in non-decreasing order,
    followed by exactly one TransferOutcome.
    """

    def __aiter__(self) -> AsyncIterator[TransferEvent]:
        ...


@runtime_checkable
class IBlobStorageClient(Protocol):
    """Interface for the blob storage service."""

    def begin_upload(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> ITransferTask:
        """Issue an upload stored with content_type; does not block."""
        ...

    async def resolve_download_url(self, key: str) -> str:
        """Retrievable URL for a stored key. May fail transiently."""
        ...

    async def list_objects(self, prefix: str) -> List[str]:
        """Keys currently stored under prefix."""
        ...
