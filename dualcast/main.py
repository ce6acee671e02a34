from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from contextlib import asynccontextmanager
import logging
from dualcast.core.config import settings
from dualcast.core.logging import setup_logging
from dualcast.core.exceptions import (
    DualcastException, dualcast_exception_handler,
    sqlalchemy_exception_handler, general_exception_handler
)
from dualcast.db.init_db import init_db
from dualcast.db.session import SessionLocal, get_db
from dualcast.services.publishing.broadcaster import get_broadcaster
from dualcast.services.publishing.job_store import JobStore
from dualcast.services.publishing.orchestrator import PublishOrchestrator
from dualcast.services.publishing.runner import JobRunner
from dualcast.services.social_media.credentials import DatabaseCredentialProvider
from dualcast.services.video_processing.transcoder import get_transcoder
from dualcast.api.v1.api import api_router

# Set up logging
setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan management"""
    # Startup
    init_db()
    job_store = JobStore(SessionLocal)
    # Jobs from a previous process cannot be resumed
    job_store.fail_stale_jobs()

    if not await get_transcoder().check_available():
        logger.warning(f"ffmpeg not found at {settings.FFMPEG_PATH}; publish jobs will fail at conversion")

    broadcaster = get_broadcaster()
    orchestrator = PublishOrchestrator(
        job_store=job_store,
        credential_provider=DatabaseCredentialProvider(SessionLocal),
        broadcaster=broadcaster,
    )
    app.state.job_store = job_store
    app.state.broadcaster = broadcaster
    app.state.job_runner = JobRunner(orchestrator, job_store, broadcaster)

    yield

    # Shutdown
    await app.state.job_runner.shutdown()


app = FastAPI(
    title="Dualcast API",
    description="Publish one video to Instagram Reels and YouTube Shorts with AI-written metadata",
    version="1.0.0",
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    lifespan=lifespan
)

# Exception handlers
app.add_exception_handler(DualcastException, dualcast_exception_handler)
app.add_exception_handler(SQLAlchemyError, sqlalchemy_exception_handler)
app.add_exception_handler(Exception, general_exception_handler)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=[str(origin).rstrip("/") for origin in settings.BACKEND_CORS_ORIGINS],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API router
app.include_router(api_router, prefix=settings.API_V1_STR)

@app.get("/")
async def root():
    return {"message": "Dualcast API is running"}

@app.get("/health")
def health_check(db: Session = Depends(get_db)):
    db.execute(text("SELECT 1"))
    return {"status": "healthy"}

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
