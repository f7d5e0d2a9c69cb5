import asyncio
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import structlog

from ..core.config import Settings
from ..core.exceptions import LoadTimeout
from ..core.interfaces import AnalysisSource
from ..core.results import Result
from ..storage.models import AIFeedback
from .feedback import AggregateFeedback, AnalysisRecord, ReconciledResponse, SessionSummary
from .interview_session import QuestionResponse
from .reconciler import AnalysisReconciler

logger = structlog.get_logger(__name__)


@dataclass
class SessionResults:
    session_id: str
    responses: List[ReconciledResponse]
    feedback: AggregateFeedback
    degraded: bool = False

    @property
    def analyses_available(self) -> bool:
        return any(not r.is_provisional for r in self.responses)


class SessionResultsLoader:
    """
    Fetches server analyses for a session and merges them onto local responses.

    A failing fetch is treated like "not computed yet" and the results fall
    back to provisional data. Only running past the overall time limit is
    reported, as a retryable :class:`LoadTimeout`.
    """
    def __init__(
        self,
        source: AnalysisSource,
        reconciler: Optional[AnalysisReconciler] = None,
        timeout_seconds: float = 30.0,
    ):
        self.source = source
        self.reconciler = reconciler or AnalysisReconciler()
        self.timeout_seconds = timeout_seconds

    @classmethod
    def from_settings(cls, settings: Settings, source: AnalysisSource) -> "SessionResultsLoader":
        return cls(
            source,
            reconciler=AnalysisReconciler.from_settings(settings),
            timeout_seconds=settings.LOAD_TIMEOUT_SECONDS,
        )

    async def load(
        self,
        session_id: str,
        responses: Sequence[QuestionResponse],
        local_feedback: Optional[AIFeedback] = None,
    ) -> Result[SessionResults, LoadTimeout]:
        try:
            (analyses, analyses_failed), (summary, summary_failed) = await asyncio.wait_for(
                asyncio.gather(self._fetch_analyses(session_id), self._fetch_summary(session_id)),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.error("results_load_timed_out", session_id=session_id, timeout_seconds=self.timeout_seconds)
            return Result.failure(LoadTimeout(session_id, self.timeout_seconds))

        results = SessionResults(
            session_id=session_id,
            responses=self.reconciler.reconcile(responses, analyses),
            feedback=self.reconciler.reconcile_summary(local_feedback, summary),
            degraded=analyses_failed or summary_failed,
        )
        logger.info(
            "results_loaded",
            session_id=session_id,
            analyses=len(analyses),
            has_summary=summary is not None,
            degraded=results.degraded,
        )
        return Result.success(results)

    async def _fetch_analyses(self, session_id: str) -> Tuple[List[AnalysisRecord], bool]:
        try:
            return list(await self.source.get_session_analyses(session_id) or []), False
        except Exception as e:
            logger.warning("analyses_fetch_failed", session_id=session_id, error=str(e))
            return [], True

    async def _fetch_summary(self, session_id: str) -> Tuple[Optional[SessionSummary], bool]:
        try:
            return await self.source.get_summary_by_session(session_id), False
        except Exception as e:
            logger.warning("summary_fetch_failed", session_id=session_id, error=str(e))
            return None, True
