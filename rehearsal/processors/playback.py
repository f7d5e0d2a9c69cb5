import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import AsyncIterator, Dict, Optional

import aiofiles
import aiofiles.os
import structlog

from ..core.config import Settings
from ..core.exceptions import PlaybackHandleExhausted
from ..storage.blob_store import BlobStore
from .format_inspector import CanonicalFormat, detect_format, file_extension, is_preferred_format, mime_type_for
from .transcoder import Transcoder

logger = structlog.get_logger(__name__)


@dataclass
class PlaybackHandle:
    """Temporary file view onto a stored recording."""
    token: str
    session_id: str
    path: Path
    format: CanonicalFormat
    mime_type: str
    converted: bool = False
    released: bool = field(default=False, repr=False)

    @property
    def filename(self) -> str:
        return f"interview-{self.session_id}.{file_extension(self.format)}"


class PlaybackHandlePool:
    """
    Hands out a bounded number of playback handles.

    Every handle must go back through :meth:`release`; :meth:`open` does that
    automatically. When all slots are taken, :meth:`acquire` raises
    :class:`PlaybackHandleExhausted` instead of waiting.
    """
    def __init__(
        self,
        store: BlobStore,
        directory: str | Path,
        limit: int = 8,
        transcoder: Optional[Transcoder] = None,
    ):
        self.store = store
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self.limit = limit
        self.transcoder = transcoder
        self._handles: Dict[str, PlaybackHandle] = {}
        self._pending = 0

    @classmethod
    def from_settings(cls, settings: Settings, store: BlobStore, transcoder: Optional[Transcoder] = None) -> "PlaybackHandlePool":
        return cls(store, settings.PLAYBACK_DIR, limit=settings.PLAYBACK_HANDLE_LIMIT, transcoder=transcoder)

    @property
    def active_count(self) -> int:
        return len(self._handles) + self._pending

    async def acquire(self, session_id: str) -> Optional[PlaybackHandle]:
        """Materialize a playable file for a session, or None if nothing is stored."""
        if self.active_count >= self.limit:
            raise PlaybackHandleExhausted(self.limit)

        # Hold the slot while the blob is read and possibly converted
        self._pending += 1
        try:
            record = await self.store.get(session_id)
            if record is None:
                return None

            data = record.blob
            fmt = detect_format(record.metadata.declared_format, record.metadata.mime_type)
            converted = False
            if not is_preferred_format(fmt) and self.transcoder is not None:
                result = await self.transcoder.convert(data, fmt)
                if result.ok:
                    data, fmt, converted = result.value, CanonicalFormat.MP4, True
                else:
                    logger.warning("playback_using_original", session_id=session_id, reason=result.error.message)

            token = uuid.uuid4().hex
            path = self.directory / f"{token}.{file_extension(fmt)}"
            try:
                async with aiofiles.open(path, "wb") as f:
                    await f.write(data)
            except BaseException:
                path.unlink(missing_ok=True)
                raise

            handle = PlaybackHandle(
                token=token,
                session_id=session_id,
                path=path,
                format=fmt,
                mime_type=mime_type_for(fmt),
                converted=converted,
            )
            self._handles[token] = handle
        finally:
            self._pending -= 1

        logger.debug("playback_handle_acquired", session_id=session_id, token=token, active=self.active_count)
        return handle

    async def release(self, handle: PlaybackHandle) -> None:
        """Give a handle back. Releasing twice is harmless."""
        if handle.released:
            return
        handle.released = True
        self._handles.pop(handle.token, None)
        try:
            await aiofiles.os.remove(handle.path)
        except FileNotFoundError:
            pass
        logger.debug("playback_handle_released", session_id=handle.session_id, token=handle.token)

    async def release_all(self) -> None:
        for handle in list(self._handles.values()):
            await self.release(handle)

    @asynccontextmanager
    async def open(self, session_id: str) -> AsyncIterator[Optional[PlaybackHandle]]:
        handle = await self.acquire(session_id)
        try:
            yield handle
        finally:
            if handle is not None:
                await self.release(handle)
