from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile, status
from fastapi.responses import FileResponse, Response
from starlette.types import Receive, Scope, Send

from rehearsal.core.exceptions import (
    AlreadyExists,
    ClearNotConfirmed,
    ConversionFailed,
    PlaybackHandleExhausted,
    QuotaExceeded,
    RecordNotFound,
    RehearsalError,
)
from rehearsal.core.logging import session_context
from rehearsal.processors.format_inspector import detect_format
from rehearsal.processors.playback import PlaybackHandle, PlaybackHandlePool
from rehearsal.processors.transcoder import Transcoder
from rehearsal.storage import BlobStore, RecordingDetails, VideoMetadata, format_size

router = APIRouter(prefix="/videos", tags=["videos"])

STATUS_CODES = {
    QuotaExceeded.code: status.HTTP_507_INSUFFICIENT_STORAGE,
    AlreadyExists.code: status.HTTP_409_CONFLICT,
    RecordNotFound.code: status.HTTP_404_NOT_FOUND,
    ClearNotConfirmed.code: status.HTTP_400_BAD_REQUEST,
    PlaybackHandleExhausted.code: status.HTTP_503_SERVICE_UNAVAILABLE,
    ConversionFailed.code: status.HTTP_422_UNPROCESSABLE_ENTITY,
}


def get_blob_store(request: Request) -> BlobStore:
    return request.app.state.blob_store


def get_playback_pool(request: Request) -> PlaybackHandlePool:
    return request.app.state.playback_pool


def get_transcoder(request: Request) -> Transcoder:
    return request.app.state.transcoder


def raise_for_error(error: RehearsalError) -> None:
    raise HTTPException(
        status_code=STATUS_CODES.get(error.code, status.HTTP_500_INTERNAL_SERVER_ERROR),
        detail=error.to_dict(),
    )


class PlaybackFileResponse(FileResponse):
    """FileResponse that returns its playback handle once the ASGI call ends.

    The release also runs for error replies Starlette builds itself (bad or
    unsatisfiable ``Range``) and for client disconnects.
    """
    def __init__(self, handle: PlaybackHandle, pool: PlaybackHandlePool):
        super().__init__(
            handle.path,
            media_type=handle.mime_type,
            filename=handle.filename,
            content_disposition_type="inline",
        )
        self.handle = handle
        self.pool = pool

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            await self.pool.release(self.handle)


@router.get("", response_model=List[VideoMetadata])
async def list_videos(store: BlobStore = Depends(get_blob_store)):
    """Metadata of every stored recording, newest first."""
    return await store.list()


@router.get("/stats")
async def storage_stats(store: BlobStore = Depends(get_blob_store)):
    stats = await store.stats()
    return {
        "count": stats.count,
        "total_bytes": stats.total_bytes,
        "average_bytes": stats.average_bytes,
        "oldest": stats.oldest,
        "newest": stats.newest,
        "total_size": format_size(stats.total_bytes),
        "capacity_bytes": store.quota.capacity_bytes,
        "capacity": format_size(store.quota.capacity_bytes),
        "usage_ratio": store.quota.usage_ratio,
    }


@router.post("/{session_id}", status_code=status.HTTP_201_CREATED, response_model=VideoMetadata)
async def upload_video(
    session_id: str,
    video: UploadFile = File(...),
    duration_seconds: float = Form(0.0),
    declared_format: Optional[str] = Form(None),
    has_audio: bool = Form(True),
    store: BlobStore = Depends(get_blob_store),
    transcoder: Transcoder = Depends(get_transcoder),
):
    """Store a finished recording handed over by the capture side.

    Without a duration from the client, FFprobe is asked for one; if FFprobe
    fails the duration stays at zero.
    """
    content = await video.read()
    declared_format = declared_format or video.content_type or "video/webm"
    if duration_seconds <= 0:
        media_info = await transcoder.read_metadata(content, detect_format(declared_format, video.content_type))
        if media_info.ok:
            duration_seconds = media_info.value.duration_seconds
    details = RecordingDetails(
        duration_seconds=duration_seconds,
        declared_format=declared_format,
        mime_type=video.content_type,
        has_audio=has_audio,
    )
    with session_context(session_id):
        result = await store.put(session_id, content, details)
    if not result.ok:
        raise_for_error(result.error)
    return result.value


@router.get("/{session_id}/export")
async def export_video(session_id: str, store: BlobStore = Depends(get_blob_store)):
    result = await store.export(session_id)
    if not result.ok:
        raise_for_error(result.error)
    exported = result.value
    return Response(
        content=exported.blob,
        media_type=exported.mime_type,
        headers={"Content-Disposition": f'attachment; filename="{exported.suggested_filename}"'},
    )


@router.get("/{session_id}/audio")
async def extract_audio(
    session_id: str,
    store: BlobStore = Depends(get_blob_store),
    transcoder: Transcoder = Depends(get_transcoder),
):
    """Audio track as 16 kHz mono WAV for transcription."""
    record = await store.get(session_id)
    if record is None:
        raise_for_error(RecordNotFound(session_id))

    fmt = detect_format(record.metadata.declared_format, record.metadata.mime_type)
    with session_context(session_id):
        result = await transcoder.extract_audio(record.blob, fmt)
    if not result.ok:
        raise_for_error(result.error)
    return Response(content=result.value, media_type="audio/wav")


@router.get("/{session_id}/playback")
async def play_video(session_id: str, pool: PlaybackHandlePool = Depends(get_playback_pool)):
    """Serve a playable file, converted to MP4 when possible. The handle is released after sending."""
    try:
        with session_context(session_id):
            handle = await pool.acquire(session_id)
    except PlaybackHandleExhausted as e:
        raise_for_error(e)
    if handle is None:
        raise_for_error(RecordNotFound(session_id))

    return PlaybackFileResponse(handle, pool)


@router.delete("/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_video(session_id: str, store: BlobStore = Depends(get_blob_store)):
    result = await store.delete(session_id)
    if not result.ok:
        raise_for_error(result.error)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete("", status_code=status.HTTP_204_NO_CONTENT)
async def clear_videos(confirm: bool = False, store: BlobStore = Depends(get_blob_store)):
    """Delete every recording. Requires ``?confirm=true``."""
    result = await store.clear_all(confirm=confirm)
    if not result.ok:
        raise_for_error(result.error)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
