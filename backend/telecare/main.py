"""
Telecare Backend - Main Application

This is the entry point for the FastAPI application.
It handles:
- REST API endpoints (video sessions, conversations, messages)
- WebSocket connections for live conversation views
- Provider clients (Chime SDK meetings/messaging) built once at startup
"""
from contextlib import asynccontextmanager
import logging
import weakref
from datetime import datetime, UTC

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from telecare.api import router as api_router
from telecare.api.websocket import router as ws_router
from telecare.config.redis import close_redis
from telecare.config.settings import settings
from telecare.models.database import AsyncSessionLocal, init_db
from telecare.services.metrics import start_metrics_server
from telecare.services.providers import ChimeMeetingsProvider, ChimeMessagingProvider

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def configure_state(app: FastAPI):
    """Fill in collaborators that weren't provided up front (tests pre-set fakes)."""
    state = app.state
    if getattr(state, "session_factory", None) is None:
        state.session_factory = AsyncSessionLocal
    if getattr(state, "session_provider", None) is None:
        state.session_provider = ChimeMeetingsProvider()
    if getattr(state, "messaging_provider", None) is None:
        state.messaging_provider = ChimeMessagingProvider()
    if getattr(state, "conversation_locks", None) is None:
        state.conversation_locks = weakref.WeakValueDictionary()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Handles startup and shutdown events using the modern FastAPI pattern.
    """
    # === STARTUP ===
    logger.info("Starting Telecare Backend...")

    configure_state(app)

    # Create database tables
    if app.state.session_factory is AsyncSessionLocal:
        await init_db()
        logger.info("Database tables created")

    if settings.METRICS_PORT:
        start_metrics_server(settings.METRICS_PORT)

    if not settings.CHIME_APP_INSTANCE_ARN:
        logger.warning("CHIME_APP_INSTANCE_ARN is not set; conversation endpoints will fail")

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Shutting down...")
    await close_redis()


app = FastAPI(
    title="Telecare Backend",
    description="Appointment video sessions and patient/specialist messaging",
    version="1.0.0",
    lifespan=lifespan
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origin_regex=r"http://(localhost|127\.0\.0\.1)(:\d+)?",
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include REST API routes
app.include_router(api_router, prefix="/api")

# Include WebSocket routes
app.include_router(ws_router)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Telecare Backend",
        "version": "1.0.0",
        "status": "running"
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {
        "status": "ok",
        "timestamp": datetime.now(UTC).isoformat(),
    }
