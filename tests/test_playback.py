import os
import sys

import pytest

from rehearsal.core.exceptions import PlaybackHandleExhausted
from rehearsal.processors.format_inspector import CanonicalFormat
from rehearsal.processors.playback import PlaybackHandlePool
from rehearsal.processors.transcoder import Transcoder
from rehearsal.storage import RecordingDetails

MP4_BYTES = b"\x00\x00\x00\x18ftypmp42" + b"\x00" * 32
WEBM_BYTES = b"\x1a\x45\xdf\xa3" + b"\x01" * 32


@pytest.fixture
def pool(blob_store, tmp_path):
    return PlaybackHandlePool(blob_store, tmp_path / "playback", limit=2)


@pytest.mark.asyncio
async def test_handle_materializes_and_release_removes_file(blob_store, pool):
    await blob_store.put("sess-1", MP4_BYTES, RecordingDetails(declared_format="video/mp4"))

    handle = await pool.acquire("sess-1")
    assert handle.path.read_bytes() == MP4_BYTES
    assert handle.format is CanonicalFormat.MP4
    assert handle.filename == "interview-sess-1.mp4"
    assert pool.active_count == 1

    await pool.release(handle)
    await pool.release(handle)
    assert not handle.path.exists()
    assert pool.active_count == 0


@pytest.mark.asyncio
async def test_missing_recording_gives_no_handle(pool):
    assert await pool.acquire("nope") is None
    assert pool.active_count == 0


@pytest.mark.asyncio
async def test_pool_is_bounded(blob_store, pool):
    await blob_store.put("sess-1", MP4_BYTES)
    first = await pool.acquire("sess-1")
    second = await pool.acquire("sess-1")

    with pytest.raises(PlaybackHandleExhausted):
        await pool.acquire("sess-1")

    await pool.release(first)
    third = await pool.acquire("sess-1")
    assert third is not None
    await pool.release_all()
    assert pool.active_count == 0
    assert not second.path.exists()


@pytest.mark.asyncio
async def test_scoped_handle_released_on_error(blob_store, pool):
    await blob_store.put("sess-1", MP4_BYTES)

    with pytest.raises(RuntimeError):
        async with pool.open("sess-1") as handle:
            path = handle.path
            raise RuntimeError("player crashed")

    assert not path.exists()
    assert pool.active_count == 0


@pytest.mark.asyncio
async def test_failed_conversion_serves_original(blob_store, tmp_path):
    await blob_store.put("sess-1", WEBM_BYTES, RecordingDetails(declared_format="video/webm"))
    pool = PlaybackHandlePool(
        blob_store,
        tmp_path / "playback",
        transcoder=Transcoder(ffmpeg_binary=str(tmp_path / "missing-ffmpeg")),
    )

    async with pool.open("sess-1") as handle:
        assert not handle.converted
        assert handle.format is CanonicalFormat.WEBM
        assert handle.mime_type == "video/webm"
        assert handle.path.read_bytes() == WEBM_BYTES


@pytest.mark.skipif(sys.platform == "win32", reason="fake ffmpeg script needs a POSIX shell")
@pytest.mark.asyncio
async def test_non_preferred_recording_is_converted(blob_store, tmp_path):
    script = tmp_path / "ffmpeg"
    script.write_text('#!/bin/sh\nfor last; do :; done\nprintf converted > "$last"\n')
    os.chmod(script, 0o755)
    await blob_store.put("sess-1", WEBM_BYTES, RecordingDetails(declared_format="video/webm"))
    pool = PlaybackHandlePool(blob_store, tmp_path / "playback", transcoder=Transcoder(ffmpeg_binary=str(script)))

    async with pool.open("sess-1") as handle:
        assert handle.converted
        assert handle.format is CanonicalFormat.MP4
        assert handle.path.read_bytes() == b"converted"

    # The stored original is untouched
    assert (await blob_store.get("sess-1")).blob == WEBM_BYTES
