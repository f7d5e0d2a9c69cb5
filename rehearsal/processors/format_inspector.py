"""Container format detection for stored recordings.

The format label written at capture time is not trusted on its own: some
browsers label a WebM stream as ``video/mp4`` or drop the type entirely. The
blob's own MIME type (or, failing that, its magic bytes) decides, and the
declared label only fills in when the blob type says nothing useful.
"""
from enum import Enum
from typing import Optional

import structlog

logger = structlog.get_logger(__name__)

EBML_MAGIC = b"\x1a\x45\xdf\xa3"
MP4_BOX_TYPE = b"ftyp"

MP4_CONTAINERS = ("mp4", "quicktime")
WEBM_CONTAINERS = ("webm", "matroska")

# Codec hints count only for video codecs
MP4_VIDEO_CODECS = ("avc1", "h264", "hevc", "hvc1")
WEBM_VIDEO_CODECS = ("vp8", "vp9", "av01")


class CanonicalFormat(str, Enum):
    MP4 = "MP4"
    WEBM = "WebM"
    UNKNOWN = "Unknown"


MIME_TYPES = {
    CanonicalFormat.MP4: "video/mp4",
    CanonicalFormat.WEBM: "video/webm",
}

EXTENSIONS = {
    CanonicalFormat.MP4: "mp4",
    CanonicalFormat.WEBM: "webm",
}


def classify_label(label: Optional[str]) -> CanonicalFormat:
    """Classify a single MIME type or format label such as ``video/webm;codecs=vp9``."""
    if not label:
        return CanonicalFormat.UNKNOWN

    normalized = label.strip().lower()
    container, _, params = normalized.partition(";")

    # The container part outranks codec hints
    if any(marker in container for marker in MP4_CONTAINERS):
        return CanonicalFormat.MP4
    if any(marker in container for marker in WEBM_CONTAINERS):
        return CanonicalFormat.WEBM

    if any(marker in params for marker in MP4_VIDEO_CODECS):
        return CanonicalFormat.MP4
    if any(marker in params for marker in WEBM_VIDEO_CODECS):
        return CanonicalFormat.WEBM
    return CanonicalFormat.UNKNOWN


def detect_format(declared_format: Optional[str], blob_mime_type: Optional[str]) -> CanonicalFormat:
    """Return the canonical format of a recording.

    Args:
        declared_format: Label recorded at capture time.
        blob_mime_type: Type reported by the blob itself.

    Returns:
        ``MP4`` or ``WebM`` when either source is conclusive, otherwise ``Unknown``.
    """
    from_blob = classify_label(blob_mime_type)
    from_label = classify_label(declared_format)

    if from_blob is CanonicalFormat.UNKNOWN:
        return from_label

    if from_label is not CanonicalFormat.UNKNOWN and from_label is not from_blob:
        logger.warning(
            "format_label_mismatch",
            declared_format=declared_format,
            blob_mime_type=blob_mime_type,
            detected=from_blob.value,
        )
    return from_blob


def is_preferred_format(fmt: CanonicalFormat) -> bool:
    return fmt is CanonicalFormat.MP4


def sniff_mime_type(data: bytes) -> Optional[str]:
    """Guess a MIME type from the first bytes of a payload."""
    if data[:4] == EBML_MAGIC:
        return MIME_TYPES[CanonicalFormat.WEBM]
    if data[4:8] == MP4_BOX_TYPE:
        return MIME_TYPES[CanonicalFormat.MP4]
    return None


def mime_type_for(fmt: CanonicalFormat) -> str:
    # Unknown payloads are served as WebM, the capture default
    return MIME_TYPES.get(fmt, MIME_TYPES[CanonicalFormat.WEBM])


def file_extension(fmt: CanonicalFormat) -> str:
    return EXTENSIONS.get(fmt, EXTENSIONS[CanonicalFormat.WEBM])
