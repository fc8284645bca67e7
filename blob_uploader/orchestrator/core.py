"""Core orchestrator - owns upload sessions and the published uploaded-object list."""
import asyncio
import logging
from typing import Callable, Dict, Iterable, List, Optional

from ..exceptions import ListingError, ResolutionError
from ..models import (
    FileSource,
    PreviewRef,
    SessionStatus,
    TransferOutcome,
    UploadConfig,
    UploadedObject,
    UploadSession,
    UploadState,
    new_session_id,
)
from ..protocols import IBlobStorageClient
from ..services.preview import PreviewCache
from ..utils.events import EventEmitter
from .store import SessionStore, UploadedIndex
from .sync import RemoteListingSynchronizer
from .transfer import TransferRunner, resolve_with_retry

logger = logging.getLogger(__name__)


class UploadOrchestrator:
    """
    Orchestrates concurrent uploads against an injected blob storage client.

    All state is mutated by the orchestrator's own ingestion methods, each
    applying a whole transition before its first await, so get_state()
    never observes a half-applied update.

    Usage:
        async with UploadOrchestrator(storage) as uploader:
            uploader.on_session_update(lambda s: print(s.source_name, s.percent))
            await uploader.refresh()
            ids = uploader.submit([source_a, source_b])
            state = await uploader.wait()
    """

    def __init__(
        self,
        storage: IBlobStorageClient,
        config: Optional[UploadConfig] = None,
        preview_cache: Optional[PreviewCache] = None,
        synchronizer: Optional[RemoteListingSynchronizer] = None,
        owns_storage: bool = False,
    ):
        """
        Initialize orchestrator with dependencies.

        Args:
            storage: Blob storage client
            config: Upload configuration
            preview_cache: Preview cache (a fresh one by default)
            synchronizer: Listing synchronizer (built on storage by default)
            owns_storage: Open/close storage with the orchestrator context
        """
        self._storage = storage
        self._config = config or UploadConfig()
        self._owns_storage = owns_storage
        self._previews = preview_cache or PreviewCache(self._config)
        self._synchronizer = synchronizer or RemoteListingSynchronizer(storage, self._config)
        self._runner = TransferRunner(self, storage, self._config)
        self._events = EventEmitter()

        self._sessions = SessionStore()
        self._uploaded = UploadedIndex()
        self._tasks: Dict[str, asyncio.Task] = {}
        self._semaphore = asyncio.Semaphore(max(1, self._config.max_parallel))

    async def __aenter__(self):
        if self._owns_storage:
            open_ = getattr(self._storage, "open", None)
            if callable(open_):
                await open_()
        return self

    async def __aexit__(self, *args):
        try:
            await self.wait()
        finally:
            if self._owns_storage:
                close = getattr(self._storage, "close", None)
                if callable(close):
                    await close()

    @property
    def config(self) -> UploadConfig:
        return self._config

    @property
    def previews(self) -> PreviewCache:
        return self._previews

    # Event subscription methods
    def on_session_update(self, callback: Callable[[UploadSession], None]):
        """Called after every session change. Receives the new UploadSession."""
        self._events.on("session_update", callback)

    def on_listing_sync(self, callback: Callable[[List[UploadedObject]], None]):
        """Called after a successful listing merge. Receives the published list."""
        self._events.on("listing_sync", callback)

    def on_sync_failed(self, callback: Callable[[ListingError], None]):
        """Called when a listing sync fails. Receives the ListingError."""
        self._events.on("sync_failed", callback)

    # Commands
    def submit(self, sources: Iterable[FileSource]) -> List[str]:
        """
        Create one Pending session per source and schedule its transfer.

        Does not wait for any transfer. Must be called with a running event loop.

        Returns:
            Session ids, in source order
        """
        loop = asyncio.get_running_loop()
        sources = list(sources)

        if self._config.release_previews_on_submit:
            self._previews.release_all()

        created = []
        for source in sources:
            session_id = new_session_id()
            while session_id in self._sessions or session_id in self._previews:
                session_id = new_session_id()
            try:
                self._previews.register(session_id, source)
            except Exception:
                for session, _ in created:
                    self._previews.release(session.id)
                raise
            session = UploadSession(
                id=session_id,
                source_name=source.name,
                key=self._config.object_key(session_id, source.name),
            )
            created.append((session, source))

        # every preview exists before any session becomes visible
        for session, source in created:
            self._sessions.add(session)
            task = loop.create_task(self._run_session(session.id, session.key, source))
            self._tasks[session.id] = task
            task.add_done_callback(lambda t, sid=session.id: self._forget_task(sid, t))

        logger.info(f"Submitted {len(created)} file(s)")
        return [session.id for session, _ in created]

    async def wait(self) -> UploadState:
        """Wait for every outstanding transfer, then return the final state."""
        while True:
            pending = [t for t in self._tasks.values() if not t.done()]
            if not pending:
                return self.get_state()
            await asyncio.gather(*pending, return_exceptions=True)

    async def cancel(self, session_id: str) -> bool:
        """Cancel one in-flight session. Returns False if it is unknown or already terminal."""
        session = self._sessions.get(session_id)
        if session is None or session.is_terminal:
            return False

        task = self._tasks.get(session_id)
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        # the task may have been cancelled before it ever ran
        session = self._sessions.get(session_id)
        if session is not None and not session.is_terminal:
            await self.on_terminal(session_id, TransferOutcome.failure("upload cancelled", kind="cancelled"))
        return True

    def evict(self, session_id: str) -> bool:
        """Drop a terminal session from the working set and release its preview."""
        session = self._sessions.get(session_id)
        if session is None or not session.is_terminal:
            return False
        self._sessions.remove(session_id)
        self._previews.release(session_id)
        return True

    def clear_finished(self) -> int:
        """Evict every terminal session. Returns how many were removed."""
        return sum(1 for session_id in self._sessions.ids() if self.evict(session_id))

    async def refresh(self, prefix: Optional[str] = None) -> List[UploadedObject]:
        """
        Sync the remote listing into the published list.

        Raises:
            ListingError: listing failed; published list is unchanged
        """
        try:
            objects = await self._synchronizer.sync(prefix)
        except ListingError as e:
            logger.warning(f"Listing sync failed, keeping {len(self._uploaded)} published object(s): {e}")
            await self._events.emit("sync_failed", e)
            raise

        added = self._uploaded.merge(objects)
        logger.info(f"Listing sync merged {len(objects)} object(s), {added} new")
        await self._events.emit("listing_sync", list(self._uploaded.snapshot()))
        return objects

    # Queries
    def get_state(self) -> UploadState:
        return UploadState(
            sessions=self._sessions.snapshot(),
            uploaded=self._uploaded.snapshot(),
        )

    def preview_for(self, session_id: str) -> Optional[PreviewRef]:
        return self._previews.get(session_id)

    # Event ingestion
    async def on_progress(self, session_id: str, bytes_transferred: int, total_bytes: Optional[int] = None) -> None:
        """Apply a progress event. Unknown (evicted) sessions are logged and ignored."""
        session = self._sessions.get(session_id)
        if session is None:
            logger.warning(f"Progress for unknown session {session_id} ignored")
            return
        if session.is_terminal:
            logger.debug(f"Progress for finished session {session_id} ignored")
            return

        updated = session.with_progress(bytes_transferred, total_bytes)
        if updated == session:
            return
        self._sessions.put(updated)
        await self._events.emit("session_update", updated)

    async def on_terminal(self, session_id: str, outcome: TransferOutcome) -> None:
        """
        Apply the terminal event of a session.

        A success without a URL is resolved first, with bounded retry; if
        resolution keeps failing the session fails with error_kind "resolution".
        """
        session = self._sessions.get(session_id)
        if session is None:
            logger.warning(f"Terminal event for unknown session {session_id} ignored")
            return
        if session.is_terminal:
            logger.warning(f"Duplicate terminal event for session {session_id} ignored")
            return

        key = outcome.key or session.key
        url = outcome.url
        if outcome.ok and url is None:
            try:
                url = await resolve_with_retry(
                    self._storage,
                    key,
                    attempts=self._config.resolve_attempts,
                    backoff=self._config.resolve_backoff,
                )
            except ResolutionError as e:
                logger.error(f"Stored {key} but {e}")
                outcome = TransferOutcome.failure(str(e), kind="resolution")

            # state may have moved on while resolving
            session = self._sessions.get(session_id)
            if session is None or session.is_terminal:
                return

        started = None
        if session.status == SessionStatus.PENDING:
            # a queued or cancelled-before-start session still passes through Transferring
            started = session = session.start()

        if outcome.ok:
            updated = session.succeed(url)
            self._sessions.put(updated)
            self._uploaded.add(UploadedObject(key=key, resolved_url=url))
            logger.info(f"Uploaded {session.source_name} -> {key}")
        else:
            updated = session.fail(outcome.reason or "upload failed", kind=outcome.kind)
            self._sessions.put(updated)
            logger.error(f"Failed {session.source_name}: {updated.error}")

        if started is not None:
            await self._events.emit("session_update", started)
        await self._events.emit("session_update", updated)

    # Internal methods
    async def _run_session(self, session_id: str, key: str, source: FileSource) -> None:
        try:
            session = self._sessions.get(session_id)
            if session is not None:
                await self._events.emit("session_update", session)
            async with self._semaphore:
                await self._runner.run(session_id, key, source)
        except asyncio.CancelledError:
            session = self._sessions.get(session_id)
            if session is not None and not session.is_terminal:
                await self.on_terminal(session_id, TransferOutcome.failure("upload cancelled", kind="cancelled"))
            raise

    async def _mark_transferring(self, session_id: str, total_bytes: Optional[int]) -> bool:
        session = self._sessions.get(session_id)
        if session is None or session.is_terminal:
            return False
        updated = session.start(total_bytes)
        self._sessions.put(updated)
        await self._events.emit("session_update", updated)
        return True

    def _forget_task(self, session_id: str, task: asyncio.Task) -> None:
        if self._tasks.get(session_id) is task:
            del self._tasks[session_id]
