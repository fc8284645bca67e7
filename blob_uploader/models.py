"""
Models for blob_uploader.

Immutable dataclasses: state changes produce new instances, so a snapshot
handed to an observer can never be modified underneath it.
"""
from dataclasses import dataclass, field, replace
from typing import Optional, Tuple
from enum import Enum
import os
import uuid

from .exceptions import InvalidTransitionError


class SessionStatus(Enum):
    """Upload session status."""
    PENDING = "pending"
    TRANSFERRING = "transferring"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.SUCCEEDED, SessionStatus.FAILED)


_ALLOWED = {
    SessionStatus.PENDING: {SessionStatus.TRANSFERRING},
    SessionStatus.TRANSFERRING: {SessionStatus.SUCCEEDED, SessionStatus.FAILED},
    SessionStatus.SUCCEEDED: set(),
    SessionStatus.FAILED: set(),
}


def new_session_id() -> str:
    return uuid.uuid4().hex[:12]


@dataclass(frozen=True)
class FileSource:
    """A selected file: local file, downloaded URL or picked document."""
    name: str
    data: bytes = field(repr=False)
    media_type: str = "application/octet-stream"

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def is_image(self) -> bool:
        return self.media_type.startswith("image/")


@dataclass(frozen=True)
class UploadSession:
    """
    Immutable state of one file transfer.

    Transition methods return a new session and raise
    InvalidTransitionError on an illegal move.
    """
    id: str
    source_name: str
    key: str
    status: SessionStatus = SessionStatus.PENDING
    bytes_transferred: int = 0
    total_bytes: Optional[int] = None
    result_url: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None  # transfer | resolution | cancelled

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def succeeded(self) -> bool:
        return self.status == SessionStatus.SUCCEEDED

    @property
    def percent(self) -> Optional[float]:
        """Progress in [0, 100]; None while the total is unknown."""
        if not self.total_bytes:
            if self.total_bytes == 0 and self.is_terminal:
                return 100.0
            return None
        value = self.bytes_transferred / self.total_bytes * 100
        return max(0.0, min(100.0, value))

    def _moved(self, status: SessionStatus, **changes) -> "UploadSession":
        if status not in _ALLOWED[self.status]:
            raise InvalidTransitionError(self.id, self.status.value, status.value)
        return replace(self, status=status, **changes)

    def start(self, total_bytes: Optional[int] = None) -> "UploadSession":
        if self.status == SessionStatus.TRANSFERRING:
            return self
        total = total_bytes if total_bytes is not None else self.total_bytes
        return self._moved(SessionStatus.TRANSFERRING, total_bytes=total)

    def with_progress(self, bytes_transferred: int, total_bytes: Optional[int]) -> "UploadSession":
        """Apply a progress event; regressions are dropped and bytes are clamped to the total."""
        if self.is_terminal:
            raise InvalidTransitionError(self.id, self.status.value, SessionStatus.TRANSFERRING.value)
        session = self.start()
        total = total_bytes if total_bytes is not None else session.total_bytes
        done = max(session.bytes_transferred, int(bytes_transferred))
        if total is not None:
            # bytes never regress, so a shrinking total is raised to what was already counted
            total = max(int(total), session.bytes_transferred)
            done = min(done, total)
        return replace(session, bytes_transferred=done, total_bytes=total)

    def succeed(self, result_url: str) -> "UploadSession":
        done = self.bytes_transferred
        if self.total_bytes is not None:
            done = self.total_bytes
        return self._moved(
            SessionStatus.SUCCEEDED,
            result_url=result_url,
            bytes_transferred=done,
        )

    def fail(self, error: str, kind: str = "transfer") -> "UploadSession":
        return self._moved(SessionStatus.FAILED, error=error, error_kind=kind)


@dataclass(frozen=True)
class UploadedObject:
    """An object resident in remote storage."""
    key: str
    resolved_url: str

    @property
    def name(self) -> str:
        return self.key.rsplit("/", 1)[-1]


@dataclass(frozen=True)
class PreviewRef:
    """Ephemeral local handle used to render a file before it is stored remotely."""
    key: str
    uri: str
    source_name: str
    media_type: str
    size: int
    thumbnail: Optional[bytes] = field(default=None, repr=False)


@dataclass(frozen=True)
class TransferProgress:
    """Progress notification from a transfer."""
    bytes_transferred: int
    total_bytes: Optional[int] = None


@dataclass(frozen=True)
class TransferOutcome:
    """Terminal notification from a transfer."""
    ok: bool
    key: Optional[str] = None
    url: Optional[str] = None
    reason: Optional[str] = None
    kind: str = "transfer"

    @classmethod
    def success(cls, key: str, url: Optional[str] = None):
        return cls(ok=True, key=key, url=url)

    @classmethod
    def failure(cls, reason: str, kind: str = "transfer"):
        return cls(ok=False, reason=reason, kind=kind)


@dataclass(frozen=True)
class UploadState:
    """Point-in-time snapshot for presentation."""
    sessions: Tuple[UploadSession, ...] = ()
    uploaded: Tuple[UploadedObject, ...] = ()

    @property
    def active(self) -> Tuple[UploadSession, ...]:
        return tuple(s for s in self.sessions if not s.is_terminal)

    @property
    def is_uploading(self) -> bool:
        return bool(self.active)

    def session(self, session_id: str) -> Optional[UploadSession]:
        for s in self.sessions:
            if s.id == session_id:
                return s
        return None


@dataclass(frozen=True)
class UploadConfig:
    """Immutable configuration for upload operations."""
    prefix: str = "uploads"
    max_parallel: int = 3
    resolve_attempts: int = 3
    resolve_backoff: float = 0.5  # seconds, multiplied by attempt number
    unique_keys: bool = True
    release_previews_on_submit: bool = True
    thumbnail_size: int = 100

    @classmethod
    def from_env(cls, **overrides) -> "UploadConfig":
        values = {}
        prefix = os.getenv("BLOB_UPLOADER_PREFIX")
        if prefix:
            values["prefix"] = prefix.strip("/")
        max_parallel = os.getenv("BLOB_UPLOADER_MAX_PARALLEL")
        if max_parallel:
            values["max_parallel"] = max(1, int(max_parallel))
        attempts = os.getenv("BLOB_UPLOADER_RESOLVE_ATTEMPTS")
        if attempts:
            values["resolve_attempts"] = max(1, int(attempts))
        values.update(overrides)
        return cls(**values)

    def object_key(self, session_id: str, name: str) -> str:
        """Storage key for a session's object under the configured prefix."""
        safe = name.replace("\\", "/").rsplit("/", 1)[-1].strip() or "file"
        if self.unique_keys:
            safe = f"{session_id}_{safe}"
        prefix = self.prefix.strip("/")
        return f"{prefix}/{safe}" if prefix else safe
