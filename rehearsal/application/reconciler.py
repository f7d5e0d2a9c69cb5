"""Pairs server analyses with the locally held answers of a session.

Matching runs tier by tier over the whole response list:

1. ``interview_response_id`` equals the response's remote id,
2. ``question_id`` equals the response's question,
3. same ordinal position (optional),

and each analysis is used at most once. Running a full pass per tier means
a lower tier of an early response can never take an analysis that a later
response claims through a higher tier.
"""
from collections import deque
from typing import Deque, Dict, List, Optional, Sequence, Tuple

import structlog

from ..core.config import Settings
from ..storage.models import AIFeedback
from .feedback import AggregateFeedback, AnalysisRecord, MatchKind, ReconciledResponse, SessionSummary
from .interview_session import AnalysisHint, QuestionResponse

logger = structlog.get_logger(__name__)

Assignment = Optional[Tuple[int, MatchKind]]


def provisional_score(hint: AnalysisHint) -> Optional[float]:
    """Placeholder score derived from the local confidence estimate."""
    if hint.confidence is None:
        return None
    return float(round(min(max(hint.confidence, 0.0), 1.0) * 100))


class AnalysisReconciler:
    def __init__(self, positional_fallback: bool = True):
        self.positional_fallback = positional_fallback

    @classmethod
    def from_settings(cls, settings: Settings) -> "AnalysisReconciler":
        return cls(positional_fallback=settings.RECONCILE_POSITIONAL_FALLBACK)

    def reconcile(
        self,
        responses: Sequence[QuestionResponse],
        analyses: Sequence[AnalysisRecord],
    ) -> List[ReconciledResponse]:
        """
        Merge analyses onto responses.

        Args:
            responses: Local responses in the order they were given
            analyses: Analyses as returned by the remote store

        Returns:
            One entry per response, in the same order. Unmatched responses keep
            only their provisional data.
        """
        assignments: List[Assignment] = [None] * len(responses)
        consumed = set()

        by_response_id: Dict[str, int] = {}
        by_question_id: Dict[int, Deque[int]] = {}
        for index, analysis in enumerate(analyses):
            if analysis.interview_response_id is not None:
                by_response_id.setdefault(analysis.interview_response_id, index)
            by_question_id.setdefault(analysis.question_id, deque()).append(index)

        for position, response in enumerate(responses):
            if response.response_id is None:
                continue
            index = by_response_id.get(response.response_id)
            if index is not None and index not in consumed:
                assignments[position] = (index, MatchKind.RESPONSE_ID)
                consumed.add(index)

        for position, response in enumerate(responses):
            if assignments[position] is not None:
                continue
            queue = by_question_id.get(response.question_id)
            while queue and queue[0] in consumed:
                queue.popleft()
            if queue:
                index = queue.popleft()
                assignments[position] = (index, MatchKind.QUESTION_ID)
                consumed.add(index)

        if self.positional_fallback:
            for position, response in enumerate(responses):
                if assignments[position] is not None:
                    continue
                if position < len(analyses) and position not in consumed:
                    assignments[position] = (position, MatchKind.POSITION)
                    consumed.add(position)
                    logger.warning(
                        "analysis_matched_by_position",
                        position=position,
                        question_id=response.question_id,
                        analysis_question_id=analyses[position].question_id,
                    )

        reconciled = []
        for response, assignment in zip(responses, assignments):
            if assignment is None:
                reconciled.append(self._provisional(response))
            else:
                index, kind = assignment
                reconciled.append(self._merge(response, analyses[index], kind))

        unmatched = len(analyses) - len(consumed)
        if unmatched:
            logger.debug("analyses_left_unmatched", count=unmatched)
        return reconciled

    def reconcile_summary(
        self,
        local_feedback: Optional[AIFeedback],
        remote_summary: Optional[SessionSummary],
    ) -> AggregateFeedback:
        """Remote summary fields win; local feedback only fills what is missing."""
        local_score = local_feedback.overall_score if local_feedback else None
        local_strengths = list(local_feedback.strengths) if local_feedback else []
        local_improvements = list(local_feedback.improvements) if local_feedback else []
        local_detail = (local_feedback.detailed_feedback or None) if local_feedback else None

        if remote_summary is None:
            return AggregateFeedback(
                overall_score=local_score,
                strengths=local_strengths,
                improvements=local_improvements,
                detailed_feedback=local_detail,
                is_provisional=True,
            )

        def pick(remote_value, local_value):
            return remote_value if remote_value is not None else local_value

        return AggregateFeedback(
            overall_score=pick(remote_summary.average_score, local_score),
            strengths=list(pick(remote_summary.overall_strengths, local_strengths)),
            improvements=list(pick(remote_summary.overall_improvements, local_improvements)),
            readiness_level=remote_summary.readiness_level,
            readiness_score=remote_summary.readiness_score,
            next_steps=list(remote_summary.next_steps or []),
            detailed_feedback=pick(remote_summary.role_specific_feedback, local_detail),
            is_provisional=False,
        )

    def _provisional(self, response: QuestionResponse) -> ReconciledResponse:
        return ReconciledResponse(
            question_id=response.question_id,
            question_text=response.question_text,
            answer_text=response.answer_text,
            duration_seconds=response.duration_seconds,
            analysis_hint=response.analysis_hint,
            response_id=response.response_id,
            score=provisional_score(response.analysis_hint),
        )

    def _merge(self, response: QuestionResponse, analysis: AnalysisRecord, kind: MatchKind) -> ReconciledResponse:
        score = analysis.overall_score
        if score is None:
            score = provisional_score(response.analysis_hint)
        return ReconciledResponse(
            question_id=response.question_id,
            question_text=response.question_text,
            answer_text=response.answer_text,
            duration_seconds=response.duration_seconds,
            analysis_hint=response.analysis_hint,
            response_id=response.response_id,
            score=score,
            strengths=list(analysis.strengths),
            improvements=list(analysis.improvements),
            communication_scores=analysis.communication_scores,
            content_scores=analysis.content_scores,
            actionable_feedback=analysis.actionable_feedback,
            improved_example=analysis.improved_example,
            analysis_id=analysis.id,
            match=kind,
        )
