"""Shared FastAPI dependencies injected into route handlers."""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends

from src.services.row_store import RowStore, get_row_store
from src.telemetry.config_loader import PipelineConfig, get_pipeline_config


def get_active_pipeline_config() -> PipelineConfig:
    """The loaded pipeline config singleton (loaded at startup)."""
    return get_pipeline_config()


# Annotated shortcuts for route signatures
Store = Annotated[RowStore, Depends(get_row_store)]
ActivePipelineConfig = Annotated[PipelineConfig, Depends(get_active_pipeline_config)]
