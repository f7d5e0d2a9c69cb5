from fastapi import APIRouter, Depends, Request

from rehearsal.core.config import Settings, get_settings

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(request: Request, settings: Settings = Depends(get_settings)):
    """Liveness plus a glance at local storage and open playback files."""
    quota = request.app.state.blob_store.quota
    pool = request.app.state.playback_pool
    return {
        "status": "ok",
        "environment": settings.ENVIRONMENT,
        "app_name": settings.APP_NAME,
        "storage": {
            "used_bytes": quota.used_bytes,
            "capacity_bytes": quota.capacity_bytes,
            "usage_ratio": quota.usage_ratio,
        },
        "playback_handles": {"active": pool.active_count, "limit": pool.limit},
    }
