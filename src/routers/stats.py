"""Stats endpoints backing the dashboard's single-day and multi-day views.

``GET /stats/hourly`` has two modes:

* ``?date=YYYY-MM-DD`` → raw hourly rows for one day (plus the neighbouring
  sleep rows that belong to that night);
* ``?startDate=YYYY-MM-DD&endDate=YYYY-MM-DD`` → one aggregated summary per
  date in the range.
"""

from __future__ import annotations

import logging
import re
from datetime import date
from typing import Any, Union

from fastapi import APIRouter, HTTPException, Query

from src.dependencies import ActivePipelineConfig, Store
from src.models.telemetry import DaySummaryRead, MultiDayResponse, SingleDayResponse
from src.services.row_store import fetch_feeds
from src.telemetry.pipeline import aggregate_range, select_single_day_rows

router = APIRouter(prefix="/stats", tags=["stats"])
logger = logging.getLogger("dayline.stats")

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def _parse_date(raw: str, name: str) -> date:
    if not _DATE_RE.match(raw):
        raise HTTPException(status_code=400, detail=f"Invalid {name}. Use YYYY-MM-DD format.")
    try:
        return date.fromisoformat(raw)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid {name}: {raw}")


@router.get("/hourly", response_model=Union[SingleDayResponse, MultiDayResponse])
async def get_hourly_stats(
    store: Store,
    config: ActivePipelineConfig,
    day: str | None = Query(default=None, alias="date"),
    start_date: str | None = Query(default=None, alias="startDate"),
    end_date: str | None = Query(default=None, alias="endDate"),
) -> Any:
    if start_date and end_date:
        start = _parse_date(start_date, "startDate")
        end = _parse_date(end_date, "endDate")
        if start > end:
            raise HTTPException(status_code=400, detail="startDate must be <= endDate")
        try:
            feeds = await fetch_feeds(store)
            records = aggregate_range(
                feeds.hourly, feeds.daily, feeds.manual, start, end, config, ecg_rows=feeds.ecg
            )
        except Exception as exc:
            logger.exception("Failed to aggregate stats for %s..%s", start, end)
            raise HTTPException(status_code=500, detail="Failed to fetch health stats") from exc
        days = [DaySummaryRead.from_record(r) for r in records]
        return MultiDayResponse(start_date=start, end_date=end, days=days, count=len(days))

    if day:
        target = _parse_date(day, "date")
        try:
            rows = await store.fetch_hourly()
            selection = select_single_day_rows(rows, target, config)
        except Exception as exc:
            logger.exception("Failed to fetch hourly rows for %s", target)
            raise HTTPException(status_code=500, detail="Failed to fetch hourly data") from exc
        return SingleDayResponse.from_selection(selection)

    raise HTTPException(
        status_code=400,
        detail="Provide ?date=YYYY-MM-DD or ?startDate=...&endDate=...",
    )
