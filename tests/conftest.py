# tests/conftest.py
import asyncio
import os
from typing import Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

from rehearsal.application.feedback import AnalysisRecord, SessionSummary
from rehearsal.application.interview_session import QuestionResponse, RemoteSession
from rehearsal.application.session_recovery import SessionRecoveryManager
from rehearsal.application.session_store import SessionStore
from rehearsal.core.interfaces import AnalysisSource, RemoteInterviewStore
from rehearsal.storage.blob_store import BlobStore


class FakeRemoteStore(RemoteInterviewStore):
    """In-memory stand-in for the remote interview tables."""

    def __init__(self):
        self.sessions: Dict[str, RemoteSession] = {}
        self.saved: List[tuple] = []
        self.completed: List[str] = []
        self.fail_writes = False
        self.delays: Dict[int, float] = {}
        self.write_delay = 0.0

    async def fetch_interview_session(self, session_id: str) -> Optional[RemoteSession]:
        return self.sessions.get(session_id)

    async def save_response(self, session_id: str, response: QuestionResponse) -> str:
        delay = self.delays.get(response.question_id, self.write_delay)
        if delay:
            await asyncio.sleep(delay)
        if self.fail_writes:
            raise ConnectionError("remote store unavailable")
        self.saved.append((session_id, response.question_id, response.answer_text))
        return response.response_id or f"resp-{session_id}-{response.question_id}"

    async def complete_session(self, session_id: str) -> None:
        if self.fail_writes:
            raise ConnectionError("remote store unavailable")
        self.completed.append(session_id)


class FakeAnalysisSource(AnalysisSource):
    def __init__(
        self,
        analyses: Optional[List[AnalysisRecord]] = None,
        summary: Optional[SessionSummary] = None,
        fail_analyses: bool = False,
        fail_summary: bool = False,
        delay: float = 0.0,
    ):
        self.analyses = analyses or []
        self.summary = summary
        self.fail_analyses = fail_analyses
        self.fail_summary = fail_summary
        self.delay = delay

    async def get_session_analyses(self, session_id: str) -> List[AnalysisRecord]:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_analyses:
            raise ConnectionError("analysis table unreachable")
        return list(self.analyses)

    async def get_summary_by_session(self, session_id: str) -> Optional[SessionSummary]:
        if self.fail_summary:
            raise ConnectionError("summary table unreachable")
        return self.summary


@pytest.fixture
def test_env_vars():
    """Set up test environment variables."""
    os.environ["ENVIRONMENT"] = "testing"
    os.environ["DEBUG"] = "true"
    os.environ["APP_NAME"] = "Interview Rehearsal Test"
    yield
    # Clean up
    os.environ.pop("ENVIRONMENT", None)
    os.environ.pop("DEBUG", None)
    os.environ.pop("APP_NAME", None)


@pytest.fixture
def settings(test_env_vars, tmp_path):
    """Test settings with all local data under a temporary directory."""
    from rehearsal.core.config import Settings
    return Settings(
        DATA_DIR=tmp_path / "data",
        FFMPEG_BINARY=str(tmp_path / "missing-ffmpeg"),
        FFPROBE_BINARY=str(tmp_path / "missing-ffprobe"),
        STORAGE_CAPACITY_BYTES=10 * 1024 * 1024,
    )


@pytest.fixture
def app(settings):
    """Create test app instance."""
    from rehearsal.interface.api.main import create_app
    return create_app(settings)


@pytest.fixture
def client(app):
    """Create test client."""
    return TestClient(app)


@pytest.fixture
def blob_store(tmp_path):
    return BlobStore(tmp_path / "videos", capacity_bytes=1000)


@pytest.fixture
def remote():
    return FakeRemoteStore()


@pytest.fixture
def session_store(tmp_path):
    return SessionStore(tmp_path / "sessions")


@pytest.fixture
def manager(session_store, remote):
    return SessionRecoveryManager(session_store, remote=remote, remote_timeout_seconds=1.0)


@pytest.fixture
def analysis_source():
    """Factory for fake analysis sources."""
    return FakeAnalysisSource
