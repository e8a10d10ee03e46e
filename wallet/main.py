"""
FastAPI application entry point.

Run with: uvicorn wallet.main:app --reload
"""

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI

from wallet._version import VERSION
from wallet.database import init_db

# Import models to ensure they're registered with SQLAlchemy
from wallet.models import Portfolio, PortfolioHistory, Position, PriceHistory, Transaction  # noqa: F401
from wallet.routers import portfolios_router, positions_router, transactions_router
from wallet.services.price_feed import HttpPriceFeed
from wallet import telemetry

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler.

    Startup: create database tables if they don't exist, set up the price
    feed and telemetry.
    """
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())

    await init_db()
    logger.info("Database initialized")

    app.state.price_feed = HttpPriceFeed.from_env()

    if telemetry.setup_telemetry():
        telemetry.setup_portfolio_metrics()
        # Attach OTLP handler to root logger for log export
        handler = telemetry.get_log_handler()
        if handler:
            logging.getLogger().addHandler(handler)
        logger.info("Telemetry initialized (OTLP metrics + logs enabled)")
    else:
        logger.info("Telemetry disabled")

    yield

    logger.info("Application shutting down")


app = FastAPI(
    title="Wallet API",
    description="Portfolio accounting: positions, transactions, valuation and history",
    version=VERSION,
    lifespan=lifespan,
)


app.include_router(portfolios_router, prefix="/api/v1", tags=["portfolios"])
app.include_router(positions_router, prefix="/api/v1", tags=["positions"])
app.include_router(transactions_router, prefix="/api/v1", tags=["transactions"])


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "ok"}


@app.get("/api/version")
async def get_version():
    """Get API version information."""
    return {
        "version": VERSION,
        "api_version": "v1",
    }
