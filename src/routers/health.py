"""Health check endpoint — public, no auth required."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter

from src.config import get_settings
from src.services.row_store import get_row_store
from src.telemetry.config_loader import get_pipeline_config

router = APIRouter(tags=["system"])
logger = logging.getLogger("dayline.health")


@router.get("/health")
async def health_check() -> dict:
    """Liveness probe. Returns 200 if the API process is up.

    Also reports whether the row store and pipeline config are loaded.
    """
    settings = get_settings()
    store_ok = False
    try:
        get_row_store()
        store_ok = True
    except RuntimeError as exc:
        logger.warning("Health check row store probe failed: %s", exc)

    return {
        "status": "healthy" if store_ok else "degraded",
        "version": settings.app_version,
        "environment": settings.environment,
        "rowStore": "ready" if store_ok else "uninitialized",
        "pipelineConfig": get_pipeline_config().version,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
