from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from rehearsal.application.session_recovery import SessionRecoveryManager
from rehearsal.core.config import Settings, get_settings
from rehearsal.core.logging import setup_logging
from rehearsal.processors.playback import PlaybackHandlePool
from rehearsal.processors.transcoder import Transcoder
from rehearsal.storage.blob_store import BlobStore


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Verify the cached quota against what is actually on disk
    await app.state.blob_store.initialize()
    yield
    await app.state.playback_pool.release_all()


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    setup_logging(settings)

    app = FastAPI(
        title=settings.APP_NAME,
        debug=settings.DEBUG,
        version="0.1.0",
        lifespan=lifespan,
    )
    app.dependency_overrides[get_settings] = lambda: settings

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # In production, replace with actual origins
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    blob_store = BlobStore.from_settings(settings)
    transcoder = Transcoder.from_settings(settings)
    app.state.blob_store = blob_store
    app.state.transcoder = transcoder
    app.state.playback_pool = PlaybackHandlePool.from_settings(settings, blob_store, transcoder=transcoder)
    app.state.session_manager = SessionRecoveryManager.from_settings(settings)

    # Include routers
    from .routers import health, sessions, videos
    app.include_router(health.router, prefix=settings.API_PREFIX)
    app.include_router(videos.router, prefix=settings.API_PREFIX)
    app.include_router(sessions.router, prefix=settings.API_PREFIX)

    return app
