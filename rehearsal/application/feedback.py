from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from .interview_session import AnalysisHint


class CommunicationScores(BaseModel):
    clarity: float
    structure: float
    conciseness: float


class ContentScores(BaseModel):
    relevance: float
    depth: float
    specificity: float


class FillerWords(BaseModel):
    words: List[str] = Field(default_factory=list)
    counts: Dict[str, int] = Field(default_factory=dict)
    total: int = 0


class AnalysisRecord(BaseModel):
    """Server-computed analysis of one answer. Read-only on this side."""
    id: str
    interview_response_id: Optional[str] = None
    question_id: int
    overall_score: Optional[float] = Field(default=None, ge=0, le=100)
    strengths: List[str] = Field(default_factory=list)
    improvements: List[str] = Field(default_factory=list)
    communication_scores: Optional[CommunicationScores] = None
    content_scores: Optional[ContentScores] = None
    actionable_feedback: Optional[str] = None
    improved_example: Optional[str] = None
    confidence_score: Optional[float] = None
    filler_words: Optional[FillerWords] = None


class SessionSummary(BaseModel):
    """Server-computed roll-up for a whole session."""
    session_id: str
    average_score: Optional[float] = None
    overall_strengths: Optional[List[str]] = None
    overall_improvements: Optional[List[str]] = None
    readiness_level: Optional[str] = None
    readiness_score: Optional[float] = None
    next_steps: Optional[List[str]] = None
    role_specific_feedback: Optional[str] = None


class MatchKind(str, Enum):
    RESPONSE_ID = "response_id"
    QUESTION_ID = "question_id"
    POSITION = "position"
    NONE = "none"


@dataclass
class ReconciledResponse:
    question_id: int
    question_text: str
    answer_text: str
    duration_seconds: float
    analysis_hint: AnalysisHint
    response_id: Optional[str] = None
    score: Optional[float] = None
    strengths: List[str] = field(default_factory=list)
    improvements: List[str] = field(default_factory=list)
    communication_scores: Optional[CommunicationScores] = None
    content_scores: Optional[ContentScores] = None
    actionable_feedback: Optional[str] = None
    improved_example: Optional[str] = None
    analysis_id: Optional[str] = None
    match: MatchKind = MatchKind.NONE

    @property
    def is_provisional(self) -> bool:
        return self.match is MatchKind.NONE


@dataclass
class AggregateFeedback:
    overall_score: Optional[float] = None
    strengths: List[str] = field(default_factory=list)
    improvements: List[str] = field(default_factory=list)
    readiness_level: Optional[str] = None
    readiness_score: Optional[float] = None
    next_steps: List[str] = field(default_factory=list)
    detailed_feedback: Optional[str] = None
    is_provisional: bool = True

    @property
    def performance_badge(self) -> str:
        if self.overall_score is None:
            return "Good"
        if self.overall_score >= 80:
            return "Excellent"
        if self.overall_score >= 70:
            return "Good"
        if self.overall_score >= 60:
            return "Fair"
        return "Needs Improvement"
