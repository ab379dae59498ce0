"""Shared fixtures and row builders for telemetry pipeline tests."""

from __future__ import annotations

import json
from datetime import date, datetime, time, timedelta
from typing import Any
from zoneinfo import ZoneInfo

import pytest

from src.telemetry.base import AggregatedSleepSession, SleepStageEvent
from src.telemetry.config_loader import PipelineConfig, load_pipeline_config
from src.telemetry.context import AggregationContext

TZ = ZoneInfo("America/New_York")

# The night of Jan 27 → Jan 28, 2026 (EST, UTC-5)
TEST_DATE = date(2026, 1, 28)
PREV_DATE = TEST_DATE - timedelta(days=1)
NEXT_DATE = TEST_DATE + timedelta(days=1)


# ---------------------------------------------------------------------------
# Time helpers
# ---------------------------------------------------------------------------


def at(day: date, hour: int, minute: int = 0, second: int = 0) -> datetime:
    """Aware local datetime on ``day``."""
    return datetime.combine(day, time(hour, minute, second), tzinfo=TZ)


def fmt_ts(dt: datetime) -> str:
    """Exporter-native form: ``2026-01-28 23:00:00 -0500``."""
    return dt.strftime("%Y-%m-%d %H:%M:%S %z")


def fmt_date(day: date) -> str:
    """Spreadsheet form: ``1/28/2026``."""
    return f"{day.month}/{day.day}/{day.year}"


# ---------------------------------------------------------------------------
# Hourly row builders (nine positional columns)
# ---------------------------------------------------------------------------


def hourly_row(
    ts: datetime,
    metric: str,
    value: Any = "",
    payload: dict | str | None = None,
    row_date: date | None = None,
    source: str = "Apple Watch",
) -> list[str]:
    raw = payload if isinstance(payload, str) else json.dumps(payload) if payload else ""
    return [
        fmt_ts(ts),
        fmt_date(row_date or ts.date()),
        str(ts.hour),
        metric,
        "" if value is None else str(value),
        "",
        "",
        source,
        raw,
    ]


def hr_row(ts: datetime, bpm: float, row_date: date | None = None) -> list[str]:
    return hourly_row(ts, "heart_rate", bpm, {"date": fmt_ts(ts), "Avg": bpm}, row_date)


def step_row(ts: datetime, qty: float, row_date: date | None = None) -> list[str]:
    return hourly_row(ts, "step_count", qty, {"date": fmt_ts(ts), "qty": qty}, row_date)


def stage_row(
    start: datetime, end: datetime, stage: str, row_date: date | None = None
) -> list[str]:
    payload = {
        "startDate": fmt_ts(start),
        "endDate": fmt_ts(end),
        "stage": stage,
        "durationMins": (end - start).total_seconds() / 60,
    }
    return hourly_row(start, "sleep_stage", "", payload, row_date or end.date())


def session_row(
    start: datetime,
    end: datetime,
    total_h: float,
    awake_h: float = 0.0,
    deep_h: float = 0.0,
    rem_h: float = 0.0,
    core_h: float = 0.0,
    row_date: date | None = None,
) -> list[str]:
    payload = {
        "sleepStart": fmt_ts(start),
        "sleepEnd": fmt_ts(end),
        "totalSleep": total_h,
        "awake": awake_h,
        "deep": deep_h,
        "rem": rem_h,
        "core": core_h,
    }
    return hourly_row(end, "sleep_analysis", "", payload, row_date or end.date())


def daily_row(day: date, **values: Any) -> list[str]:
    """Seventeen-column daily-feed row; keyword names follow DailyFeedRow."""
    columns = {
        "steps": 1, "avg_hr": 2, "resting_hr": 3, "min_hr": 4, "max_hr": 5,
        "avg_hrv": 6, "sleep_minutes": 7, "sleep_efficiency": 8, "deep_minutes": 9,
        "rem_minutes": 10, "hr_count": 12, "hrv_count": 13, "awake_minutes": 14,
        "hr_awake_avg": 15, "hr_asleep_avg": 16,
    }
    row = [""] * 17
    row[0] = fmt_date(day)
    for name, val in values.items():
        row[columns[name]] = str(val)
    return row


def manual_row(day: date, feet_on_ground: Any = "", brain_time: Any = "") -> list[str]:
    return ["2026-01-28T21:00:00Z", fmt_date(day), str(feet_on_ground), "", "", "", str(brain_time)]


def ecg_row(day: date, rs_ratio: Any, avg_hr: Any = "", classification: str = "SinusRhythm") -> list[str]:
    """Five-column ECG-feed row: timestamp, date, classification, HR, R/S ratio."""
    return ["2026-01-28T08:15:00Z", fmt_date(day), classification, str(avg_hr), str(rs_ratio)]


# ---------------------------------------------------------------------------
# Record builders
# ---------------------------------------------------------------------------


def make_stage(start: datetime, end: datetime, stage: str = "core") -> SleepStageEvent:
    return SleepStageEvent(start=start, end=end, stage=stage)


def make_session(
    start: datetime,
    end: datetime,
    total: float | None = None,
    awake: float = 0.0,
    **minutes: float,
) -> AggregatedSleepSession:
    """Session whose total defaults to its full window length."""
    if total is None:
        total = (end - start).total_seconds() / 60
    return AggregatedSleepSession(
        start=start, end=end, total_sleep_minutes=total, awake_minutes=awake, **minutes
    )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def pipeline_config() -> PipelineConfig:
    """Load the real pipeline config for tests."""
    return load_pipeline_config()


@pytest.fixture
def ctx(pipeline_config: PipelineConfig) -> AggregationContext:
    """Fresh request context bound to the bundled config."""
    return AggregationContext(config=pipeline_config)
