from typing import Optional

from fastapi import APIRouter, Depends, Request

from rehearsal.application.session_recovery import SessionRecoveryManager

router = APIRouter(prefix="/sessions", tags=["sessions"])


def get_session_manager(request: Request) -> SessionRecoveryManager:
    return request.app.state.session_manager


@router.get("/incomplete")
async def incomplete_session(
    user_id: Optional[str] = None,
    manager: SessionRecoveryManager = Depends(get_session_manager),
):
    """Session the user can resume or discard, answered from local state only."""
    return {"session_id": await manager.find_incomplete_session(user_id)}
