from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from .config import get_settings
from .database.session import init_db, async_session
from .database.store import SnapshotStore
from .logging_config import setup_logging
from .routers import game
from .services.backend import TimeGuessrClient
from .services.coordinator import GameCoordinator
from .services.retry import RetryPolicy

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifecycle events for the application."""
    setup_logging(settings.LOG_DIR, settings.LOG_LEVEL, settings.LOG_FORMAT)
    await init_db()

    client = TimeGuessrClient(
        settings.TIMEGUESSR_API_URL,
        settings.TIMEGUESSR_API_KEY,
        retry_policy=RetryPolicy(
            max_attempts=settings.RETRY_MAX_ATTEMPTS,
            base_delay=settings.RETRY_BASE_DELAY,
            max_delay=settings.RETRY_MAX_DELAY,
            jitter=settings.RETRY_JITTER
        ),
        timeout=settings.REQUEST_TIMEOUT
    )
    store = SnapshotStore(async_session, ttl_hours=settings.SNAPSHOT_TTL_HOURS)
    app.state.coordinator = GameCoordinator(
        client, store,
        rounds_per_game=settings.ROUNDS_PER_GAME,
        good_threshold=settings.GOOD_ROUND_THRESHOLD
    )
    yield


# Create FastAPI application
app = FastAPI(
    title="TimeGuessr",
    description="Scoring and session service for the TimeGuessr history and geography game",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(game.router, prefix="/api")


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "Welcome to TimeGuessr API",
        "docs": "/docs",
        "health": "ok"
    }


@app.get("/health")
@app.get("/api/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}
