"""
SwingSetups Backend - FastAPI Application

Main entry point for the backend API.
"""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from swingsetups.core.config import settings
from swingsetups.core.market_hours import get_market_status
from swingsetups.api.v1 import router as api_v1_router

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")
    logger.info(f"Environment: {settings.environment}")

    # Initialize SQLite database
    from swingsetups.db.database import init_db, close_db
    await init_db()

    # Initialize Redis cache
    from swingsetups.services.cache.redis_client import init_redis, close_redis
    redis_client = await init_redis()
    if redis_client:
        logger.info("Redis cache connected")
    else:
        logger.info("Redis unavailable - using in-memory cache")

    yield

    # Shutdown
    logger.info("Shutting down...")
    from swingsetups.services.analysis import get_orchestrator
    from swingsetups.services.market_data import get_market_data_service
    from swingsetups.services.news import get_news_service
    from swingsetups.services.notifications import get_dispatcher

    await get_orchestrator().drain()
    await get_market_data_service().close()
    await get_news_service().close()
    await get_dispatcher().close()
    await close_redis()
    await close_db()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="""
    SwingSetups: AI-assisted swing and intraday setups for NSE equities

    ## Pipeline
    - **Market Data**: candles and indicators per timeframe
    - **Sentiment**: headline classification for the trading horizon
    - **Preflight / Skeleton / Finalize**: three validated LLM stages
    - **Scoring**: deterministic confidence, band and risk meter

    ## Core Principles
    - One computation per instrument and analysis type, shared by every requester
    - Levels are computed, never taken from model output
    - Educational analysis, not investment advice
    """,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routes
app.include_router(api_v1_router, prefix="/api/v1")


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "app": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
        "market": get_market_status(),
    }
