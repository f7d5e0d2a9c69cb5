from abc import ABC, abstractmethod
from typing import List, Optional

from ..application.feedback import AnalysisRecord, SessionSummary
from ..application.interview_session import QuestionResponse, RemoteSession


class RemoteInterviewStore(ABC):
    @abstractmethod
    async def fetch_interview_session(self, session_id: str) -> Optional[RemoteSession]:
        """Return the questions and saved responses of a session, or None if unknown."""
        pass

    @abstractmethod
    async def save_response(self, session_id: str, response: QuestionResponse) -> str:
        """Insert or update a response and return its remote id."""
        pass

    @abstractmethod
    async def complete_session(self, session_id: str) -> None:
        """Mark the session finished. Returning normally is the confirmation."""
        pass


class AnalysisSource(ABC):
    @abstractmethod
    async def get_session_analyses(self, session_id: str) -> List[AnalysisRecord]:
        """Per-answer analyses computed so far. Empty while analysis is still running."""
        pass

    @abstractmethod
    async def get_summary_by_session(self, session_id: str) -> Optional[SessionSummary]:
        """Session roll-up, or None until it has been computed."""
        pass
