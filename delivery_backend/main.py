"""
FastAPI application entry point for the Hub Delivery API.

Serves performance entry CRUD and insertion order delivery summaries. Every
performance entry write triggers a recompute of the affected order's
deliverySummary (see services/delivery_summary.py).
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from delivery_backend import __version__
from delivery_backend.core.config import get_settings
from delivery_backend.core.database import init_db, close_db
from delivery_backend.api.performance_entries import router as performance_entries_router
from delivery_backend.api.orders import router as orders_router

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Open the database pool on startup and close it on shutdown.
    """
    logger.info("Hub Delivery API starting")
    try:
        await init_db()
        logger.info("Database connection pool initialized")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        # Continue startup; /health does not need the database

    yield

    logger.info("Hub Delivery API shutting down")
    try:
        await close_db()
        logger.info("Database connection pool closed")
    except Exception as e:
        logger.error(f"Error closing database pool: {e}")


app = FastAPI(
    title="Hub Delivery API",
    version=__version__,
    description=(
        "Performance entry reporting and delivery reconciliation for "
        "publication insertion orders."
    ),
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(
    performance_entries_router,
    prefix="/performance-entries",
    tags=["performance-entries"],
)
app.include_router(orders_router, prefix="/orders", tags=["orders"])


@app.get("/health")
async def health_check():
    """Health check endpoint for monitoring and load balancer probes."""
    return {"status": "healthy"}


@app.get("/")
async def root():
    return {
        "name": "Hub Delivery API",
        "version": __version__,
        "docs": "/docs",
        "openapi": "/openapi.json",
    }


# Run with uvicorn when executed directly
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "delivery_backend.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
