"""Error taxonomy for the media store, session recovery and result loading.

Invariant violations are not raised at the call site; they travel inside a
:class:`~rehearsal.core.results.Result` so callers must look at them. Each
class carries a stable ``code`` that the HTTP layer maps to a status.
"""
from typing import Optional


class RehearsalError(Exception):
    code = "error"

    def __init__(self, message: str, *, session_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.session_id = session_id

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, "session_id": self.session_id}


# Storage


class StorageError(RehearsalError):
    code = "storage_error"


class QuotaExceeded(StorageError):
    """A write would push the store past its capacity. Recoverable by deleting old videos."""
    code = "quota_exceeded"

    def __init__(self, session_id: str, requested_bytes: int, used_bytes: int, capacity_bytes: int):
        super().__init__(
            f"Storing {requested_bytes} bytes would exceed capacity "
            f"({used_bytes}/{capacity_bytes} bytes used)",
            session_id=session_id,
        )
        self.requested_bytes = requested_bytes
        self.used_bytes = used_bytes
        self.capacity_bytes = capacity_bytes


class AlreadyExists(StorageError):
    code = "already_exists"

    def __init__(self, session_id: str):
        super().__init__(f"A recording already exists for session {session_id}", session_id=session_id)


class RecordNotFound(StorageError):
    code = "record_not_found"

    def __init__(self, session_id: str):
        super().__init__(f"No recording stored for session {session_id}", session_id=session_id)


class ClearNotConfirmed(StorageError):
    code = "clear_not_confirmed"

    def __init__(self):
        super().__init__("Clearing all recordings requires explicit confirmation")


class StorageIOError(StorageError):
    code = "storage_io_error"


# Session recovery


class RecoveryError(RehearsalError):
    code = "recovery_error"


class SessionNotFound(RecoveryError):
    code = "session_not_found"

    def __init__(self, session_id: str):
        super().__init__(f"Unknown interview session {session_id}", session_id=session_id)


class SessionClosed(RecoveryError):
    code = "session_closed"

    def __init__(self, session_id: str, state: str):
        super().__init__(f"Session {session_id} is {state} and no longer accepts changes", session_id=session_id)
        self.state = state


class UnknownQuestion(RecoveryError):
    code = "unknown_question"

    def __init__(self, session_id: str, question_id: int):
        super().__init__(f"Question {question_id} is not part of session {session_id}", session_id=session_id)
        self.question_id = question_id


class AlreadyAnswered(RecoveryError):
    code = "already_answered"

    def __init__(self, session_id: str, question_id: int):
        super().__init__(f"Question {question_id} already has a response in session {session_id}", session_id=session_id)
        self.question_id = question_id


class NotAnswered(RecoveryError):
    code = "not_answered"

    def __init__(self, session_id: str, question_id: int):
        super().__init__(f"Question {question_id} has no response to edit in session {session_id}", session_id=session_id)
        self.question_id = question_id


class IncompleteResponses(RecoveryError):
    code = "incomplete_responses"

    def __init__(self, session_id: str, missing_question_ids: list):
        super().__init__(
            f"Cannot complete session {session_id}: questions {missing_question_ids} have no response",
            session_id=session_id,
        )
        self.missing_question_ids = missing_question_ids


# Media


class ConversionError(RehearsalError):
    code = "conversion_error"


class ConversionFailed(ConversionError):
    """Transcoding did not produce output. The original blob stays usable."""
    code = "conversion_failed"


class ConversionNotRequired(ConversionError):
    code = "conversion_not_required"


class PlaybackHandleExhausted(RehearsalError):
    code = "playback_handles_exhausted"

    def __init__(self, limit: int):
        super().__init__(f"All {limit} playback handles are in use")
        self.limit = limit


# Result loading


class LoadTimeout(RehearsalError):
    """Loading remote results took longer than the bounded wait. Safe to retry."""
    code = "load_timeout"
    retryable = True

    def __init__(self, session_id: str, timeout_seconds: float):
        super().__init__(
            f"Loading results for session {session_id} timed out after {timeout_seconds:g}s",
            session_id=session_id,
        )
        self.timeout_seconds = timeout_seconds
