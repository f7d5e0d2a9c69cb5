# tests/test_api.py
import sys

import pytest
from fastapi import status

MP4_BYTES = b"\x00\x00\x00\x18ftypmp42" + b"\x00" * 2048
WEBM_BYTES = b"\x1a\x45\xdf\xa3" + b"\x01" * 2048


def upload(client, session_id, content=MP4_BYTES, content_type="video/mp4", **form):
    return client.post(
        f"/api/videos/{session_id}",
        files={"video": ("recording", content, content_type)},
        data=form,
    )


def test_health_check(client):
    """Test health check endpoint."""
    response = client.get("/api/health")
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["status"] == "ok"
    assert response.json()["app_name"] == "Interview Rehearsal Test"
    assert response.json()["storage"]["used_bytes"] == 0
    assert response.json()["playback_handles"]["active"] == 0


def test_upload_list_and_stats(client):
    response = upload(client, "sess-1", duration_seconds="42.5")
    assert response.status_code == status.HTTP_201_CREATED
    body = response.json()
    assert body["session_id"] == "sess-1"
    assert body["size_bytes"] == len(MP4_BYTES)
    assert body["duration_seconds"] == 42.5

    listing = client.get("/api/videos").json()
    assert [item["session_id"] for item in listing] == ["sess-1"]

    stats = client.get("/api/videos/stats").json()
    assert stats["count"] == 1
    assert stats["total_bytes"] == len(MP4_BYTES)
    assert stats["capacity"] == "10.00 MB"


def test_duplicate_upload_conflicts(client):
    assert upload(client, "sess-1").status_code == status.HTTP_201_CREATED
    response = upload(client, "sess-1")
    assert response.status_code == status.HTTP_409_CONFLICT
    assert response.json()["detail"]["code"] == "already_exists"


def test_upload_over_quota_is_rejected(client):
    response = upload(client, "too-big", content=b"\x00" * (10 * 1024 * 1024 + 1))
    assert response.status_code == status.HTTP_507_INSUFFICIENT_STORAGE
    assert response.json()["detail"]["code"] == "quota_exceeded"
    assert client.get("/api/videos/stats").json()["count"] == 0


def test_export_uses_detected_format(client):
    # Mislabeled capture: declared as mp4, the blob itself is webm
    upload(client, "sess-1", content=WEBM_BYTES, content_type="video/webm", declared_format="video/mp4")
    response = client.get("/api/videos/sess-1/export")
    assert response.status_code == status.HTTP_200_OK
    assert response.content == WEBM_BYTES
    assert response.headers["content-type"] == "video/webm"
    assert 'filename="interview-sess-1.webm"' in response.headers["content-disposition"]


def test_export_missing_video(client):
    response = client.get("/api/videos/nope/export")
    assert response.status_code == status.HTTP_404_NOT_FOUND


def test_playback_serves_file_and_releases_handle(client, app):
    upload(client, "sess-1")
    response = client.get("/api/videos/sess-1/playback")
    assert response.status_code == status.HTTP_200_OK
    assert response.content == MP4_BYTES
    assert response.headers["content-type"] == "video/mp4"
    assert app.state.playback_pool.active_count == 0


def test_playback_handle_released_on_unsatisfiable_range(client, app, settings):
    upload(client, "sess-1")
    pool = app.state.playback_pool

    for _ in range(pool.limit + 1):
        response = client.get("/api/videos/sess-1/playback", headers={"Range": "bytes=999999-"})
        assert response.status_code != status.HTTP_503_SERVICE_UNAVAILABLE

    assert pool.active_count == 0
    assert list(settings.PLAYBACK_DIR.iterdir()) == []


def test_playback_falls_back_to_original_when_conversion_fails(client, app):
    upload(client, "sess-1", content=WEBM_BYTES, content_type="video/webm")
    response = client.get("/api/videos/sess-1/playback")
    assert response.status_code == status.HTTP_200_OK
    assert response.content == WEBM_BYTES
    assert response.headers["content-type"] == "video/webm"


def test_delete_is_idempotent(client):
    upload(client, "sess-1")
    assert client.delete("/api/videos/sess-1").status_code == status.HTTP_204_NO_CONTENT
    assert client.delete("/api/videos/sess-1").status_code == status.HTTP_204_NO_CONTENT
    assert client.get("/api/videos").json() == []


def test_clear_requires_confirmation(client):
    upload(client, "sess-1")
    upload(client, "sess-2")

    response = client.delete("/api/videos")
    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert len(client.get("/api/videos").json()) == 2

    response = client.delete("/api/videos", params={"confirm": "true"})
    assert response.status_code == status.HTTP_204_NO_CONTENT
    assert client.get("/api/videos").json() == []


def test_incomplete_session_lookup(client):
    response = client.get("/api/sessions/incomplete", params={"user_id": "user-1"})
    assert response.status_code == status.HTTP_200_OK
    assert response.json() == {"session_id": None}


def test_upload_without_duration_keeps_zero_when_ffprobe_missing(client):
    response = upload(client, "sess-1")
    assert response.status_code == status.HTTP_201_CREATED
    assert response.json()["duration_seconds"] == 0.0


@pytest.mark.skipif(sys.platform == "win32", reason="fake ffprobe is a shell script")
def test_upload_without_duration_uses_ffprobe(client, app, tmp_path):
    script = tmp_path / "fake-ffprobe"
    script.write_text('#!/bin/sh\necho \'{"streams": [], "format": {"duration": "12.250000"}}\'\n')
    script.chmod(0o755)
    app.state.transcoder.ffprobe_binary = str(script)

    response = upload(client, "sess-1", content=WEBM_BYTES, content_type="video/webm")
    assert response.status_code == status.HTTP_201_CREATED
    assert response.json()["duration_seconds"] == 12.25


def test_audio_missing_video(client):
    response = client.get("/api/videos/nope/audio")
    assert response.status_code == status.HTTP_404_NOT_FOUND


def test_audio_extraction_failure_is_reported(client):
    upload(client, "sess-1")
    response = client.get("/api/videos/sess-1/audio")
    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
    assert response.json()["detail"]["code"] == "conversion_failed"
