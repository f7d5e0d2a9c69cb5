from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from ..storage.models import utcnow


class SessionState(str, Enum):
    CREATED = "created"
    ACTIVE = "active"
    COMPLETE = "complete"
    SYNCED = "synced"


class AnalysisHint(BaseModel):
    """Locally estimated delivery metrics, shown until the server analysis lands."""
    confidence: Optional[float] = None
    speaking_rate: Optional[float] = None
    filler_word_count: Optional[int] = None


class Answer(BaseModel):
    question_text: str = ""
    answer_text: str = ""
    duration_seconds: float = 0.0
    analysis_hint: AnalysisHint = Field(default_factory=AnalysisHint)


class QuestionResponse(BaseModel):
    response_id: Optional[str] = None
    question_id: int
    question_text: str = ""
    answer_text: str = ""
    duration_seconds: float = 0.0
    analysis_hint: AnalysisHint = Field(default_factory=AnalysisHint)
    answered_at: datetime = Field(default_factory=utcnow)

    @property
    def synced(self) -> bool:
        return self.response_id is not None


class InterviewSession(BaseModel):
    session_id: str
    user_id: Optional[str] = None
    question_ids: List[int]
    question_texts: Dict[int, str] = Field(default_factory=dict)
    responses: Dict[int, QuestionResponse] = Field(default_factory=dict)
    response_order: List[int] = Field(default_factory=list)
    state: SessionState = SessionState.CREATED
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    synced_at: Optional[datetime] = None

    @property
    def is_complete(self) -> bool:
        return not self.missing_question_ids()

    def missing_question_ids(self) -> List[int]:
        return [qid for qid in self.question_ids if qid not in self.responses]

    def ordered_responses(self) -> List[QuestionResponse]:
        """Responses in the order they were given."""
        return [self.responses[qid] for qid in self.response_order]

    def unsynced_responses(self) -> List[QuestionResponse]:
        return [r for r in self.ordered_responses() if not r.synced]


# Shapes returned by the remote store when hydrating a session


class RemoteQuestion(BaseModel):
    question_id: int
    question_text: str = ""


class RemoteResponse(BaseModel):
    id: str
    question_id: int
    response_text: str = ""
    duration_seconds: float = 0.0


class RemoteSession(BaseModel):
    questions: List[RemoteQuestion] = Field(default_factory=list)
    responses: List[RemoteResponse] = Field(default_factory=list)
