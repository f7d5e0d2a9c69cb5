"""Offline-first bookkeeping for interview sessions.

A session moves ``created -> active -> complete -> synced``. Every change is
written to the local :class:`SessionStore` first; the remote store is then
told on a best-effort basis under a bounded wait. A session only becomes
``synced`` once the remote store has accepted every response and confirmed
the completion write.
"""
import asyncio
import inspect
import uuid
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Union

import structlog

from ..core.config import Settings
from ..core.exceptions import (
    AlreadyAnswered,
    IncompleteResponses,
    NotAnswered,
    RecoveryError,
    SessionClosed,
    SessionNotFound,
    UnknownQuestion,
)
from ..core.interfaces import RemoteInterviewStore
from ..core.locks import KeyedLock
from ..core.results import Result
from ..storage.models import utcnow
from .interview_session import Answer, InterviewSession, QuestionResponse, SessionState
from .session_store import SessionStore

logger = structlog.get_logger(__name__)

CLOSED_STATES = (SessionState.COMPLETE, SessionState.SYNCED)


class SessionRecoveryManager:
    def __init__(
        self,
        store: SessionStore,
        remote: Optional[RemoteInterviewStore] = None,
        remote_timeout_seconds: float = 10.0,
    ):
        self.store = store
        self.remote = remote
        self.remote_timeout_seconds = remote_timeout_seconds
        self._locks = KeyedLock()

    @classmethod
    def from_settings(cls, settings: Settings, remote: Optional[RemoteInterviewStore] = None) -> "SessionRecoveryManager":
        return cls(
            SessionStore(settings.SESSIONS_DIR),
            remote=remote,
            remote_timeout_seconds=settings.REMOTE_WRITE_TIMEOUT_SECONDS,
        )

    async def create_session(
        self,
        question_ids: Iterable[int],
        user_id: Optional[str] = None,
        question_texts: Optional[Dict[int, str]] = None,
        session_id: Optional[str] = None,
    ) -> str:
        question_ids = list(question_ids)
        if not question_ids:
            raise ValueError("An interview session needs at least one question")
        if len(set(question_ids)) != len(question_ids):
            raise ValueError("Question ids in a session must be unique")

        session = InterviewSession(
            session_id=session_id or str(uuid.uuid4()),
            user_id=user_id,
            question_ids=question_ids,
            question_texts=dict(question_texts or {}),
        )
        async with self._locks.hold(session.session_id):
            if await self.store.get(session.session_id) is not None:
                raise ValueError(f"Session {session.session_id} already exists")
            await self.store.save(session)

        logger.info("session_created", session_id=session.session_id, questions=len(question_ids))
        return session.session_id

    async def get_session(self, session_id: str) -> Optional[InterviewSession]:
        return await self.store.get(session_id)

    async def add_response(
        self,
        session_id: str,
        question_id: int,
        answer: Answer,
    ) -> Result[QuestionResponse, RecoveryError]:
        """Record the first answer to a question. Answers are write-once."""
        async with self._locks.hold(session_id):
            session = await self.store.get(session_id)
            if session is None:
                return Result.failure(SessionNotFound(session_id))
            if session.state in CLOSED_STATES:
                return Result.failure(SessionClosed(session_id, session.state.value))
            if question_id not in session.question_ids:
                return Result.failure(UnknownQuestion(session_id, question_id))
            if question_id in session.responses:
                return Result.failure(AlreadyAnswered(session_id, question_id))

            response = QuestionResponse(
                question_id=question_id,
                question_text=answer.question_text or session.question_texts.get(question_id, ""),
                answer_text=answer.answer_text,
                duration_seconds=answer.duration_seconds,
                analysis_hint=answer.analysis_hint,
            )
            session.responses[question_id] = response
            session.response_order.append(question_id)
            session.state = SessionState.ACTIVE
            session.updated_at = utcnow()
            await self.store.save(session)
            logger.info("response_saved_locally", session_id=session_id, question_id=question_id)

            response = await self._push_response(session, response)
        return Result.success(response)

    async def edit_response(
        self,
        session_id: str,
        question_id: int,
        answer: Answer,
    ) -> Result[QuestionResponse, RecoveryError]:
        """Replace an existing answer. The remote id and answer order are kept."""
        async with self._locks.hold(session_id):
            session = await self.store.get(session_id)
            if session is None:
                return Result.failure(SessionNotFound(session_id))
            if session.state in CLOSED_STATES:
                return Result.failure(SessionClosed(session_id, session.state.value))
            if question_id not in session.question_ids:
                return Result.failure(UnknownQuestion(session_id, question_id))
            previous = session.responses.get(question_id)
            if previous is None:
                return Result.failure(NotAnswered(session_id, question_id))

            response = previous.model_copy(update={
                "question_text": answer.question_text or previous.question_text,
                "answer_text": answer.answer_text,
                "duration_seconds": answer.duration_seconds,
                "analysis_hint": answer.analysis_hint,
                "answered_at": utcnow(),
            })
            session.responses[question_id] = response
            session.updated_at = utcnow()
            await self.store.save(session)
            logger.info("response_edited", session_id=session_id, question_id=question_id)

            response = await self._push_response(session, response)
        return Result.success(response)

    async def complete_session(self, session_id: str) -> Result[InterviewSession, RecoveryError]:
        async with self._locks.hold(session_id):
            session = await self.store.get(session_id)
            if session is None:
                return Result.failure(SessionNotFound(session_id))
            if session.state is SessionState.SYNCED:
                return Result.success(session)

            missing = session.missing_question_ids()
            if missing:
                return Result.failure(IncompleteResponses(session_id, missing))

            if session.state is not SessionState.COMPLETE:
                session.state = SessionState.COMPLETE
                session.completed_at = utcnow()
                session.updated_at = utcnow()
                await self.store.save(session)
                logger.info("session_completed_locally", session_id=session_id)

            session = await self._push_completion(session)
        return Result.success(session)

    async def sync_pending(self, session_id: str) -> Result[InterviewSession, RecoveryError]:
        """Retry remote writes that failed or timed out earlier."""
        async with self._locks.hold(session_id):
            session = await self.store.get(session_id)
            if session is None:
                return Result.failure(SessionNotFound(session_id))

            for response in session.unsynced_responses():
                await self._push_response(session, response)
            if session.state is SessionState.COMPLETE:
                session = await self._push_completion(session)
        return Result.success(session)

    async def resume_session(self, session_id: str) -> Result[InterviewSession, RecoveryError]:
        """Return a session to continue, hydrating it from the remote store if needed."""
        async with self._locks.hold(session_id):
            session = await self.store.get(session_id)
            if session is None:
                session = await self._hydrate(session_id)
            if session is None:
                return Result.failure(SessionNotFound(session_id))
            if session.state is SessionState.SYNCED:
                return Result.failure(SessionClosed(session_id, session.state.value))

        logger.info("session_resumed", session_id=session_id, answered=len(session.responses))
        return Result.success(session)

    async def find_incomplete_session(self, user_id: Optional[str]) -> Optional[str]:
        """Most recent active session of a user. Local lookup only."""
        candidates = [
            s for s in await self.store.all()
            if s.user_id == user_id and s.state is SessionState.ACTIVE
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda s: s.created_at).session_id

    async def discard_session(self, session_id: str) -> bool:
        async with self._locks.hold(session_id):
            removed = await self.store.delete(session_id)
        if removed:
            logger.info("session_discarded", session_id=session_id)
        return removed

    async def clear_synced(self) -> int:
        """Drop local records of sessions the remote store fully holds."""
        cleared = 0
        for session in await self.store.all():
            if session.state is not SessionState.SYNCED:
                continue
            async with self._locks.hold(session.session_id):
                current = await self.store.get(session.session_id)
                if current is not None and current.state is SessionState.SYNCED:
                    await self.store.delete(session.session_id)
                    cleared += 1
        if cleared:
            logger.info("synced_sessions_cleared", count=cleared)
        return cleared

    async def _push_response(self, session: InterviewSession, response: QuestionResponse) -> QuestionResponse:
        if self.remote is None:
            return response
        try:
            response_id = await asyncio.wait_for(
                self.remote.save_response(session.session_id, response),
                timeout=self.remote_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning("remote_response_write_timed_out", session_id=session.session_id, question_id=response.question_id)
            return response
        except Exception as e:
            logger.warning("remote_response_write_failed", session_id=session.session_id, question_id=response.question_id, error=str(e))
            return response

        if response_id != response.response_id:
            response = response.model_copy(update={"response_id": response_id})
            session.responses[response.question_id] = response
            await self.store.save(session)
        return response

    async def _push_completion(self, session: InterviewSession) -> InterviewSession:
        if self.remote is None:
            return session

        for response in session.unsynced_responses():
            await self._push_response(session, response)
        if session.unsynced_responses():
            logger.info("completion_sync_deferred", session_id=session.session_id)
            return session

        try:
            await asyncio.wait_for(
                self.remote.complete_session(session.session_id),
                timeout=self.remote_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning("remote_completion_timed_out", session_id=session.session_id)
            return session
        except Exception as e:
            logger.warning("remote_completion_failed", session_id=session.session_id, error=str(e))
            return session

        session.state = SessionState.SYNCED
        session.synced_at = utcnow()
        await self.store.save(session)
        logger.info("session_synced", session_id=session.session_id)
        return session

    async def _hydrate(self, session_id: str) -> Optional[InterviewSession]:
        if self.remote is None:
            return None
        try:
            remote_session = await asyncio.wait_for(
                self.remote.fetch_interview_session(session_id),
                timeout=self.remote_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning("remote_session_fetch_timed_out", session_id=session_id)
            return None
        except Exception as e:
            logger.warning("remote_session_fetch_failed", session_id=session_id, error=str(e))
            return None
        if remote_session is None or not remote_session.questions:
            return None

        question_texts = {q.question_id: q.question_text for q in remote_session.questions}
        session = InterviewSession(
            session_id=session_id,
            question_ids=list(question_texts),
            question_texts=question_texts,
        )
        for remote_response in remote_session.responses:
            qid = remote_response.question_id
            if qid not in question_texts or qid in session.responses:
                logger.warning("remote_response_skipped", session_id=session_id, question_id=qid)
                continue
            session.responses[qid] = QuestionResponse(
                response_id=remote_response.id,
                question_id=qid,
                question_text=question_texts[qid],
                answer_text=remote_response.response_text,
                duration_seconds=remote_response.duration_seconds,
            )
            session.response_order.append(qid)

        if session.responses:
            session.state = SessionState.COMPLETE if session.is_complete else SessionState.ACTIVE
        await self.store.save(session)
        logger.info("session_hydrated", session_id=session_id, responses=len(session.responses))
        return session


ActiveCallback = Callable[[Optional[str]], Union[Awaitable[None], None]]


class ResumeMonitor:
    """Re-checks for an interrupted session whenever the host says the app became active.

    The host wires its own trigger (window focus, visibility change, app
    foregrounding) to :meth:`notify_active`.
    """
    def __init__(self, manager: SessionRecoveryManager, user_id: Optional[str]):
        self.manager = manager
        self.user_id = user_id
        self._callbacks: List[ActiveCallback] = []

    def on_become_active(self, callback: ActiveCallback) -> Callable[[], None]:
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    async def notify_active(self) -> Optional[str]:
        session_id = await self.manager.find_incomplete_session(self.user_id)
        for callback in list(self._callbacks):
            try:
                outcome = callback(session_id)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception:
                logger.exception("resume_callback_failed", incomplete_session=session_id)
        return session_id
