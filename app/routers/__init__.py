"""API routers."""

from app.routers.audio_chunks import router as audio_chunks_router
from app.routers.combinations import router as combinations_router
from app.routers.silence_analyses import router as silence_analyses_router

__all__ = ["audio_chunks_router", "combinations_router", "silence_analyses_router"]
