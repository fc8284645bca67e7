"""
Preview Cache - Single Responsibility: local previews for pending uploads.

Previews are derived from the in-memory source only (no network), live
for the process lifetime at most, and are released when superseded.
Image sources get a small JPEG thumbnail generated with Pillow.
"""
from io import BytesIO
from typing import Dict, Optional
import logging
import uuid

from PIL import Image

from ..models import FileSource, PreviewRef, UploadConfig

logger = logging.getLogger(__name__)


class PreviewCache:
    """
    Maps a correlation key (session id) to its PreviewRef.

    Usage:
        cache = PreviewCache()
        ref = cache.register(session_id, source)
        ...
        cache.release(session_id)
    """

    def __init__(self, config: Optional[UploadConfig] = None):
        self._config = config or UploadConfig()
        self._refs: Dict[str, PreviewRef] = {}

    def __len__(self) -> int:
        return len(self._refs)

    def __contains__(self, key: str) -> bool:
        return key in self._refs

    def register(self, key: str, source: FileSource) -> PreviewRef:
        """Derive a local preview for source. Replaces any previous preview under key."""
        if key in self._refs:
            self.release(key)

        ref = PreviewRef(
            key=key,
            uri=f"preview://{uuid.uuid4().hex}",
            source_name=source.name,
            media_type=source.media_type,
            size=source.size,
            thumbnail=self._make_thumbnail(source) if source.is_image else None,
        )
        self._refs[key] = ref
        logger.debug(f"[preview] Registered {ref.uri} for {source.name}")
        return ref

    def get(self, key: str) -> Optional[PreviewRef]:
        return self._refs.get(key)

    def is_valid(self, ref: PreviewRef) -> bool:
        """True while ref is the live preview for its key."""
        return self._refs.get(ref.key) is ref

    def release(self, key: str) -> None:
        """Invalidate and free the preview for key. Unknown keys are ignored."""
        ref = self._refs.pop(key, None)
        if ref is not None:
            logger.debug(f"[preview] Released {ref.uri}")

    def release_all(self) -> None:
        for key in list(self._refs):
            self.release(key)

    def _make_thumbnail(self, source: FileSource) -> Optional[bytes]:
        size = self._config.thumbnail_size
        try:
            with Image.open(BytesIO(source.data)) as img:
                img.thumbnail((size, size))
                out = BytesIO()
                img.convert("RGB").save(out, format="JPEG", quality=85)
                return out.getvalue()
        except Exception as e:
            logger.debug(f"[preview] No thumbnail for {source.name}: {e}")
            return None
