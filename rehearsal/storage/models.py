from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Transcription(BaseModel):
    text: str
    confidence: float
    duration_seconds: float


class AIFeedback(BaseModel):
    overall_score: float
    strengths: List[str] = Field(default_factory=list)
    improvements: List[str] = Field(default_factory=list)
    detailed_feedback: str = ""


class RecordingDetails(BaseModel):
    """What the capture side knows about a recording when it hands it over."""
    timestamp: datetime = Field(default_factory=utcnow)
    duration_seconds: float = 0.0
    declared_format: str = "video/webm"
    mime_type: Optional[str] = None
    has_audio: bool = True


class VideoMetadata(RecordingDetails):
    """JSON sidecar stored next to every recording."""
    session_id: str
    size_bytes: int
    transcription: Optional[Transcription] = None
    ai_feedback: Optional[AIFeedback] = None


@dataclass
class VideoRecord:
    session_id: str
    blob: bytes
    metadata: VideoMetadata


@dataclass
class StorageStats:
    count: int
    total_bytes: int
    average_bytes: float
    oldest: Optional[datetime]
    newest: Optional[datetime]


@dataclass
class ExportedVideo:
    blob: bytes
    suggested_filename: str
    mime_type: str
