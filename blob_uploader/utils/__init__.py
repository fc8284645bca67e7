"""Utilities for blob_uploader."""
from .events import EventEmitter

__all__ = ["EventEmitter"]
