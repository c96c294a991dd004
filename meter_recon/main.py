"""
FastAPI application entry point for the reconciliation API.

CHANGELOG:
- 2026-10-18: Register cost, reconciliation, hierarchy and validation routers
- 2026-10-18: Initial creation

TODO:
- None
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from meter_recon.api.cost import router as cost_router
from meter_recon.api.health import router as health_router
from meter_recon.api.hierarchy import router as hierarchy_router
from meter_recon.api.reconciliation import router as reconciliation_router
from meter_recon.api.validation import router as validation_router
from meter_recon.config import get_settings
from meter_recon.db.session import dispose_engine
from meter_recon.logging_config import setup_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Configure logging at startup; release the DB pool at shutdown."""
    settings = get_settings()
    setup_logging(settings.LOG_LEVEL)
    logger.info("Reconciliation API starting")
    yield
    await dispose_engine()


app = FastAPI(
    title="Meter Reconciliation API",
    description="Tariff cost calculation and hierarchical meter reconciliation.",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(cost_router)
app.include_router(health_router)
app.include_router(hierarchy_router)
app.include_router(reconciliation_router)
app.include_router(validation_router)


@app.get("/")
async def root() -> dict:
    """Liveness check.

    Returns:
        dict: JSON object with application status.
    """
    return {"status": "ok"}
