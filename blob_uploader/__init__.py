"""
blob_uploader - Upload orchestration for blob storage.

Tracks N concurrent file transfers, aggregates their progress, reconciles
local state with the remote object listing and exposes a consistent
snapshot of what is uploading and what is done.

Usage:
    from blob_uploader import UploadOrchestrator, HTTPBlobStorageClient, sources

    storage = HTTPBlobStorageClient(base_url, token)
    async with UploadOrchestrator(storage, owns_storage=True) as uploader:
        await uploader.refresh()
        uploader.submit([sources.from_path(path)])
        state = await uploader.wait()
        for obj in state.uploaded:
            print(obj.key, obj.resolved_url)
"""
from .orchestrator import UploadOrchestrator, RemoteListingSynchronizer
from .models import (
    FileSource,
    PreviewRef,
    SessionStatus,
    TransferOutcome,
    TransferProgress,
    UploadConfig,
    UploadSession,
    UploadState,
    UploadedObject,
)
from .exceptions import (
    InvalidTransitionError,
    ListingError,
    ResolutionError,
    TransferError,
    UploaderError,
)
from .services import HTTPBlobStorageClient, PreviewCache, sources

__version__ = "0.1.0"
__all__ = [
    # Main
    "UploadOrchestrator",
    "RemoteListingSynchronizer",
    # Models
    "FileSource",
    "PreviewRef",
    "SessionStatus",
    "TransferOutcome",
    "TransferProgress",
    "UploadConfig",
    "UploadSession",
    "UploadState",
    "UploadedObject",
    # Errors
    "UploaderError",
    "TransferError",
    "ResolutionError",
    "ListingError",
    "InvalidTransitionError",
    # Services
    "HTTPBlobStorageClient",
    "PreviewCache",
    "sources",
]
