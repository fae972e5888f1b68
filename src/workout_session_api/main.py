"""Main FastAPI application."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from workout_session_api.api.session_routes import get_session_service, router as session_router
from workout_session_api.config import settings
from workout_session_api.services.session_service import SessionTicker

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    ticker = None
    if settings.SESSION_TICK_ENABLED:
        ticker = SessionTicker(get_session_service().registry)
        ticker.start()
    yield
    if ticker is not None:
        await ticker.stop()


app = FastAPI(title="Workout Session API", lifespan=lifespan)

# Configure CORS to allow requests from the UI
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
def health():
    return {"status": "ok", "environment": settings.ENVIRONMENT}


app.include_router(session_router)
