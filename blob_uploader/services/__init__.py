"""Services for blob_uploader module."""
from .preview import PreviewCache
from .storage import HTTPBlobStorageClient, HTTPTransferTask
from . import sources

__all__ = [
    "PreviewCache",
    "HTTPBlobStorageClient",
    "HTTPTransferTask",
    "sources",
]
