#!/usr/bin/env python3
"""
Advisory Feed API - Read-only status and item service
Serves aggregated advisory items and feed health from the feed engine
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from advisory_api.api.routes import feeds
from advisory_feeds.config.settings import settings
from advisory_feeds.orchestration.feed_manager import build_feed_manager

# Setup logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
)
logger = logging.getLogger(__name__)

API_VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan management"""
    logger.info("Starting Advisory Feed API...")

    manager = build_feed_manager(settings)
    await manager.start()
    app.state.feed_manager = manager

    logger.info(f"Advisory Feed API started with {len(manager.registry.all())} sources")

    yield

    logger.info("Shutting down Advisory Feed API...")
    await manager.close()
    app.state.feed_manager = None


# Create FastAPI app
app = FastAPI(
    title="Advisory Feed API",
    description="Aggregated security advisories and feed health",
    version=API_VERSION,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

app.include_router(feeds.router, prefix="/api", tags=["feeds"])


@app.get("/")
async def root():
    return {
        "message": "Advisory Feed API",
        "version": API_VERSION,
        "status": "running",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


if __name__ == "__main__":
    uvicorn.run(
        "advisory_api.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
    )
