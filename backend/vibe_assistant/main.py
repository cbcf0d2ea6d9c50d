from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.encoders import jsonable_encoder
from contextlib import asynccontextmanager
from vibe_assistant.api import health, analyze, users
from vibe_assistant.core.config import settings
from vibe_assistant.core.logging_config import setup_logging
from vibe_assistant.services.maintenance import CacheJanitor
from vibe_assistant.services.orchestrator import build_orchestrator
import logging

setup_logging(settings)
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle startup and shutdown events."""
    # Startup
    logger.info(f"{settings.PROJECT_NAME} starting up...")
    orchestrator = build_orchestrator(settings)
    app.state.orchestrator = orchestrator
    app.state.reconciler = orchestrator.listings

    janitor = CacheJanitor(orchestrator, settings.CACHE_CLEANUP_INTERVAL_SECONDS)
    janitor.start()
    yield
    # Shutdown
    logger.info(f"{settings.PROJECT_NAME} shutting down, stopping cache cleanup...")
    await janitor.stop()

app = FastAPI(
    title=settings.PROJECT_NAME,
    description="Backend API for repository analysis, AI insights and repository listings",
    version="0.1.0",
    lifespan=lifespan
)

# Add validation error handler to log 422 errors
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.error(f"[VALIDATION ERROR] on {request.url}: {exc.errors()}")
    return JSONResponse(
        status_code=422,
        content={"detail": jsonable_encoder(exc.errors())},
    )

# Configure CORS for the dashboard frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router, prefix=f"{settings.API_V1_STR}/health", tags=["health"])
app.include_router(analyze.router, prefix=f"{settings.API_V1_STR}/analyze", tags=["analysis"])
app.include_router(users.router, prefix=f"{settings.API_V1_STR}/users", tags=["users"])
