"""Owned orchestrator state: upload sessions and the published uploaded-object list."""
from typing import Dict, Iterable, List, Optional, Tuple

from ..models import UploadedObject, UploadSession


class SessionStore:
    """Upload sessions in creation order."""

    def __init__(self):
        self._sessions: Dict[str, UploadSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def add(self, session: UploadSession) -> None:
        if session.id in self._sessions:
            raise KeyError(f"duplicate session id: {session.id}")
        self._sessions[session.id] = session

    def get(self, session_id: str) -> Optional[UploadSession]:
        return self._sessions.get(session_id)

    def put(self, session: UploadSession) -> None:
        """Replace an existing session with its next state."""
        if session.id not in self._sessions:
            raise KeyError(session.id)
        self._sessions[session.id] = session

    def remove(self, session_id: str) -> Optional[UploadSession]:
        return self._sessions.pop(session_id, None)

    def ids(self) -> List[str]:
        return list(self._sessions)

    def snapshot(self) -> Tuple[UploadSession, ...]:
        return tuple(self._sessions.values())


class UploadedIndex:
    """
    Published uploaded objects, de-duplicated by key.

    A key keeps its first position; a later write for the same key
    replaces the URL (last write wins).
    """

    def __init__(self):
        self._objects: Dict[str, UploadedObject] = {}

    def __len__(self) -> int:
        return len(self._objects)

    def __contains__(self, key: str) -> bool:
        return key in self._objects

    def add(self, obj: UploadedObject) -> bool:
        """Insert or update obj. Returns True if the key was new."""
        is_new = obj.key not in self._objects
        self._objects[obj.key] = obj
        return is_new

    def merge(self, objects: Iterable[UploadedObject]) -> int:
        """Merge a listing result. Returns the number of new keys."""
        return sum(1 for obj in list(objects) if self.add(obj))

    def snapshot(self) -> Tuple[UploadedObject, ...]:
        return tuple(self._objects.values())
