"""Quota-enforced local storage for interview recordings.

Each session owns one directory named after the SHA-256 of its id, holding
the raw payload (``video.bin``) and a JSON sidecar (``metadata.json``).
Files are written under a ``.tmp`` suffix and renamed into place, sidecar
last, so a record exists exactly when its sidecar does.
"""
import asyncio
import hashlib
from pathlib import Path
from typing import Dict, List, Optional

import aiofiles
import aiofiles.os
import structlog
from pydantic import ValidationError

from ..core.config import Settings
from ..core.exceptions import (
    AlreadyExists,
    ClearNotConfirmed,
    QuotaExceeded,
    RecordNotFound,
    StorageError,
    StorageIOError,
)
from ..core.locks import KeyedLock
from ..core.results import Result
from ..processors.format_inspector import detect_format, file_extension, mime_type_for, sniff_mime_type
from .models import (
    AIFeedback,
    ExportedVideo,
    RecordingDetails,
    StorageStats,
    Transcription,
    VideoMetadata,
    VideoRecord,
)
from .quota import GIB, StorageQuota, format_size

logger = structlog.get_logger(__name__)


class BlobStore:
    VIDEO_FILE = "video.bin"
    METADATA_FILE = "metadata.json"
    TMP_SUFFIX = ".tmp"

    def __init__(self, base_path: str | Path, capacity_bytes: int = GIB):
        """
        Initialize the store.

        Args:
            base_path: Directory holding one sub-directory per recording
            capacity_bytes: Hard ceiling enforced on every write
        """
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)
        self.quota = StorageQuota(capacity_bytes=capacity_bytes)
        self._locks = KeyedLock()
        # Payload sizes keyed by record directory name
        self._sizes: Dict[str, int] = {}

    @classmethod
    def from_settings(cls, settings: Settings) -> "BlobStore":
        return cls(settings.STORAGE_DIR, capacity_bytes=settings.STORAGE_CAPACITY_BYTES)

    def _record_dir(self, session_id: str) -> Path:
        return self.base_path / hashlib.sha256(session_id.encode("utf-8")).hexdigest()

    async def initialize(self) -> None:
        """Rebuild the size index from disk and reconcile the quota counter.

        Leftover temporary files and directories without a sidecar come from
        interrupted writes and are removed. A sidecar that cannot be parsed is
        left alone together with its payload, which still counts against the
        quota. A sidecar whose size disagrees with its payload is rewritten
        with the real size.
        """
        sizes: Dict[str, int] = {}
        for entry in await aiofiles.os.listdir(self.base_path):
            record_dir = self.base_path / entry
            if not await aiofiles.os.path.isdir(record_dir):
                continue

            for name in await aiofiles.os.listdir(record_dir):
                if name.endswith(self.TMP_SUFFIX):
                    await aiofiles.os.remove(record_dir / name)

            if not await aiofiles.os.path.exists(record_dir / self.METADATA_FILE):
                logger.warning("orphaned_record_removed", path=str(record_dir))
                await self._remove_dir(record_dir)
                continue

            metadata = await self._read_metadata(record_dir)
            if metadata is None:
                sizes[entry] = await self._payload_size(record_dir)
                logger.error("unreadable_record_kept", path=str(record_dir), size_bytes=sizes[entry])
                continue

            try:
                stat = await aiofiles.os.stat(record_dir / self.VIDEO_FILE)
            except FileNotFoundError:
                logger.warning("record_without_payload_removed", session_id=metadata.session_id)
                await self._remove_dir(record_dir)
                continue

            if stat.st_size != metadata.size_bytes:
                logger.warning(
                    "sidecar_size_corrected",
                    session_id=metadata.session_id,
                    recorded=metadata.size_bytes,
                    actual=stat.st_size,
                )
                metadata.size_bytes = stat.st_size
                await self._write_metadata(record_dir, metadata)
            sizes[entry] = metadata.size_bytes

        total = sum(sizes.values())
        if total != self.quota.used_bytes:
            logger.warning("quota_drift_detected", cached=self.quota.used_bytes, scanned=total)
        self._sizes = sizes
        self.quota.reset(total)
        if total > self.quota.capacity_bytes:
            logger.warning("store_over_capacity", used=format_size(total), capacity=format_size(self.quota.capacity_bytes))
        logger.info("blob_store_initialized", records=len(sizes), used=format_size(total))

    async def put(
        self,
        session_id: str,
        blob: bytes | bytearray | memoryview,
        details: Optional[RecordingDetails] = None,
    ) -> Result[VideoMetadata, StorageError]:
        """Store a new recording. Existing records are never overwritten."""
        data = bytes(blob)
        size = len(data)
        details = details or RecordingDetails()

        async with self._locks.hold(session_id):
            record_dir = self._record_dir(session_id)
            if await aiofiles.os.path.exists(record_dir / self.METADATA_FILE):
                return Result.failure(AlreadyExists(session_id))

            # No suspension between the capacity check and the reservation
            if not self.quota.reserve(size):
                logger.warning(
                    "quota_exceeded",
                    session_id=session_id,
                    requested=format_size(size),
                    available=format_size(self.quota.available_bytes),
                )
                return Result.failure(
                    QuotaExceeded(session_id, size, self.quota.used_bytes, self.quota.capacity_bytes)
                )

            metadata = VideoMetadata(
                **details.model_dump(),
                session_id=session_id,
                size_bytes=size,
            )
            if metadata.mime_type is None:
                metadata.mime_type = sniff_mime_type(data)

            try:
                await self._write_record(record_dir, data, metadata)
            except OSError as e:
                self.quota.release(size)
                logger.error("video_store_failed", session_id=session_id, error=str(e))
                try:
                    await self._remove_dir(record_dir)
                except OSError as cleanup_error:
                    logger.warning("partial_record_left", session_id=session_id, error=str(cleanup_error))
                return Result.failure(StorageIOError(f"Failed to store video: {e}", session_id=session_id))
            except asyncio.CancelledError:
                # Partial files are swept up by the next initialize()
                self.quota.release(size)
                raise

            self._sizes[record_dir.name] = size

        logger.info("video_stored", session_id=session_id, size=format_size(size), format=metadata.mime_type)
        return Result.success(metadata)

    async def get(self, session_id: str) -> Optional[VideoRecord]:
        """Return the stored recording, or None when there is none."""
        async with self._locks.hold(session_id):
            record_dir = self._record_dir(session_id)
            metadata = await self._read_metadata(record_dir)
            if metadata is None:
                return None
            try:
                async with aiofiles.open(record_dir / self.VIDEO_FILE, "rb") as f:
                    data = await f.read()
            except FileNotFoundError:
                logger.warning("video_payload_missing", session_id=session_id)
                return None
        return VideoRecord(session_id=session_id, blob=data, metadata=metadata)

    async def delete(self, session_id: str) -> Result[None, StorageError]:
        """Delete a recording. Deleting a missing key succeeds."""
        async with self._locks.hold(session_id):
            record_dir = self._record_dir(session_id)
            if not await aiofiles.os.path.exists(record_dir):
                self._sizes.pop(record_dir.name, None)
                return Result.success()
            try:
                await self._remove_dir(record_dir)
            except OSError as e:
                logger.error("video_delete_failed", session_id=session_id, error=str(e))
                return Result.failure(StorageIOError(f"Failed to delete video: {e}", session_id=session_id))

            # Records written out-of-band and never scanned were never counted
            size = self._sizes.pop(record_dir.name, None)
            if size is not None:
                self.quota.release(size)

        logger.info("video_deleted", session_id=session_id)
        return Result.success()

    async def list(self) -> List[VideoMetadata]:
        """Metadata of every stored recording, newest first."""
        records = []
        for entry in await aiofiles.os.listdir(self.base_path):
            record_dir = self.base_path / entry
            if not await aiofiles.os.path.isdir(record_dir):
                continue
            metadata = await self._read_metadata(record_dir)
            if metadata is not None:
                records.append(metadata)
        records.sort(key=lambda m: m.timestamp, reverse=True)
        return records

    async def stats(self) -> StorageStats:
        records = await self.list()
        if not records:
            return StorageStats(count=0, total_bytes=0, average_bytes=0.0, oldest=None, newest=None)

        total = sum(m.size_bytes for m in records)
        timestamps = [m.timestamp for m in records]
        return StorageStats(
            count=len(records),
            total_bytes=total,
            average_bytes=total / len(records),
            oldest=min(timestamps),
            newest=max(timestamps),
        )

    async def clear_all(self, *, confirm: bool = False) -> Result[None, StorageError]:
        """Delete every recording. Irreversible, so it must be confirmed."""
        if not confirm:
            return Result.failure(ClearNotConfirmed())

        first_error: Optional[StorageError] = None
        records = await self.list()
        for metadata in records:
            result = await self.delete(metadata.session_id)
            if not result.ok and first_error is None:
                first_error = result.error

        if first_error is not None:
            return Result.failure(first_error)
        logger.warning("all_videos_cleared", count=len(records))
        return Result.success()

    async def export(self, session_id: str) -> Result[ExportedVideo, StorageError]:
        """Return an independent copy of a recording with a download filename."""
        record = await self.get(session_id)
        if record is None:
            return Result.failure(RecordNotFound(session_id))

        fmt = detect_format(record.metadata.declared_format, record.metadata.mime_type)
        return Result.success(
            ExportedVideo(
                blob=bytes(bytearray(record.blob)),
                suggested_filename=f"interview-{session_id}.{file_extension(fmt)}",
                mime_type=mime_type_for(fmt),
            )
        )

    async def update_metadata(
        self,
        session_id: str,
        *,
        transcription: Optional[Transcription] = None,
        ai_feedback: Optional[AIFeedback] = None,
    ) -> Result[VideoMetadata, StorageError]:
        """Attach computed transcription or feedback to a stored recording."""
        async with self._locks.hold(session_id):
            record_dir = self._record_dir(session_id)
            metadata = await self._read_metadata(record_dir)
            if metadata is None:
                return Result.failure(RecordNotFound(session_id))

            if transcription is not None:
                metadata.transcription = transcription
            if ai_feedback is not None:
                metadata.ai_feedback = ai_feedback
            try:
                await self._write_metadata(record_dir, metadata)
            except OSError as e:
                logger.error("metadata_update_failed", session_id=session_id, error=str(e))
                return Result.failure(StorageIOError(f"Failed to update metadata: {e}", session_id=session_id))
        return Result.success(metadata)

    async def _read_metadata(self, record_dir: Path) -> Optional[VideoMetadata]:
        try:
            async with aiofiles.open(record_dir / self.METADATA_FILE, "rb") as f:
                raw = await f.read()
        except FileNotFoundError:
            return None
        try:
            return VideoMetadata.model_validate_json(raw)
        except (ValidationError, UnicodeDecodeError) as e:
            logger.error("corrupt_sidecar", path=str(record_dir), error=str(e))
            return None

    async def _payload_size(self, record_dir: Path) -> int:
        try:
            return (await aiofiles.os.stat(record_dir / self.VIDEO_FILE)).st_size
        except FileNotFoundError:
            return 0

    async def _write_record(self, record_dir: Path, data: bytes, metadata: VideoMetadata) -> None:
        await aiofiles.os.makedirs(record_dir, exist_ok=True)
        video_tmp = record_dir / (self.VIDEO_FILE + self.TMP_SUFFIX)
        async with aiofiles.open(video_tmp, "wb") as f:
            await f.write(data)
        await aiofiles.os.replace(video_tmp, record_dir / self.VIDEO_FILE)
        await self._write_metadata(record_dir, metadata)

    async def _write_metadata(self, record_dir: Path, metadata: VideoMetadata) -> None:
        metadata_tmp = record_dir / (self.METADATA_FILE + self.TMP_SUFFIX)
        async with aiofiles.open(metadata_tmp, "w") as f:
            await f.write(metadata.model_dump_json(indent=2))
        await aiofiles.os.replace(metadata_tmp, record_dir / self.METADATA_FILE)

    async def _remove_dir(self, record_dir: Path) -> None:
        if not await aiofiles.os.path.exists(record_dir):
            return
        for name in await aiofiles.os.listdir(record_dir):
            await aiofiles.os.remove(record_dir / name)
        await aiofiles.os.rmdir(record_dir)
