import asyncio
import hashlib
from pathlib import Path
from typing import Dict, List, Optional

import aiofiles
import aiofiles.os
import structlog
from pydantic import ValidationError

from .interview_session import InterviewSession

logger = structlog.get_logger(__name__)


class SessionStore:
    """Small JSON-file store for interview session bookkeeping.

    All sessions are loaded into memory on first use, so lookups never touch
    the disk again; every write goes to disk before the cache is updated.
    """
    TMP_SUFFIX = ".tmp"

    def __init__(self, directory: str | Path):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self._cache: Optional[Dict[str, InterviewSession]] = None
        self._load_lock = asyncio.Lock()

    def _path(self, session_id: str) -> Path:
        return self.directory / f"{hashlib.sha256(session_id.encode('utf-8')).hexdigest()}.json"

    async def load(self) -> Dict[str, InterviewSession]:
        if self._cache is not None:
            return self._cache
        async with self._load_lock:
            # Another caller may have finished the scan while this one waited
            if self._cache is None:
                self._cache = await self._scan()
        return self._cache

    async def _scan(self) -> Dict[str, InterviewSession]:
        sessions: Dict[str, InterviewSession] = {}
        for name in await aiofiles.os.listdir(self.directory):
            path = self.directory / name
            if name.endswith(self.TMP_SUFFIX):
                await aiofiles.os.remove(path)
                continue
            if not name.endswith(".json"):
                continue
            async with aiofiles.open(path, "rb") as f:
                raw = await f.read()
            try:
                session = InterviewSession.model_validate_json(raw)
            except (ValidationError, UnicodeDecodeError) as e:
                logger.error("corrupt_session_file", path=str(path), error=str(e))
                continue
            sessions[session.session_id] = session

        logger.debug("session_store_loaded", sessions=len(sessions))
        return sessions

    async def get(self, session_id: str) -> Optional[InterviewSession]:
        sessions = await self.load()
        session = sessions.get(session_id)
        return session.model_copy(deep=True) if session is not None else None

    async def all(self) -> List[InterviewSession]:
        sessions = await self.load()
        return [s.model_copy(deep=True) for s in sessions.values()]

    async def save(self, session: InterviewSession) -> None:
        sessions = await self.load()
        path = self._path(session.session_id)
        tmp = path.with_name(path.name + self.TMP_SUFFIX)
        async with aiofiles.open(tmp, "w") as f:
            await f.write(session.model_dump_json(indent=2))
        await aiofiles.os.replace(tmp, path)
        sessions[session.session_id] = session.model_copy(deep=True)

    async def delete(self, session_id: str) -> bool:
        sessions = await self.load()
        path = self._path(session_id)
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            pass
        return sessions.pop(session_id, None) is not None
