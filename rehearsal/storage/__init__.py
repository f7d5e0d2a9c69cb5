from .blob_store import BlobStore
from .models import AIFeedback, ExportedVideo, RecordingDetails, StorageStats, Transcription, VideoMetadata, VideoRecord
from .quota import StorageQuota, format_size

__all__ = [
    "AIFeedback",
    "BlobStore",
    "ExportedVideo",
    "RecordingDetails",
    "StorageQuota",
    "StorageStats",
    "Transcription",
    "VideoMetadata",
    "VideoRecord",
    "format_size",
]
