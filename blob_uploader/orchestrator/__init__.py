"""Orchestrator package - coordinates upload sessions."""
from .core import UploadOrchestrator
from .store import SessionStore, UploadedIndex
from .sync import RemoteListingSynchronizer
from .transfer import TransferRunner, resolve_with_retry

__all__ = [
    "UploadOrchestrator",
    "RemoteListingSynchronizer",
    "SessionStore",
    "UploadedIndex",
    "TransferRunner",
    "resolve_with_retry",
]
