"""Raw row and payload parsing.

Turns the positional rows of the four input feeds into typed records:

* hourly feed (nine columns) → ``Reading`` with a typed payload variant;
* daily feed → ``DailyFeedRow``;
* manual-entry feed → ``ManualEntry``;
* ECG feed → ``EcgReading``.

Column I of the hourly feed is an opaque JSON blob whose shape depends on the
metric.  It is decoded and validated exactly once here.  A blob that fails to
decode never drops the reading: the reading keeps ``raw_payload = {}`` and its
scalar value/min/max columns still feed the aggregates.
"""

from __future__ import annotations

import json
import logging
import math
from typing import Any, Sequence

from src.telemetry.base import (
    AggregatedSleepSession,
    DailyFeedRow,
    EcgReading,
    EmptyPayload,
    HeartRatePayload,
    ManualEntry,
    MetricKind,
    Payload,
    Reading,
    SleepSessionPayload,
    SleepStageEvent,
    SleepStagePayload,
    StepPayload,
)
from src.telemetry.context import AggregationContext
from src.telemetry.errors import MalformedPayload, UnparseableTimestamp
from src.telemetry.timestamps import parse_calendar_date, parse_timestamp, try_parse_timestamp

logger = logging.getLogger("dayline.telemetry.parser")

HOURLY_COLUMNS = 9

# Daily feed column indices (column A = date)
_DAILY_COLUMNS: dict[str, int] = {
    "steps": 1,
    "avg_hr": 2,
    "resting_hr": 3,
    "min_hr": 4,
    "max_hr": 5,
    "avg_hrv": 6,
    "sleep_minutes": 7,
    "deep_minutes": 9,
    "rem_minutes": 10,
    "awake_minutes": 14,
    "hr_awake_avg": 15,
    "hr_asleep_avg": 16,
}
_DAILY_SLEEP_EFFICIENCY = 8
_DAILY_HR_COUNT = 12
_DAILY_HRV_COUNT = 13

# Manual-entry feed: column B = date, C = feet on ground (hours), G = brain time
_MANUAL_DATE = 1
_MANUAL_COLUMNS: dict[str, int] = {
    "feet_on_ground": 2,
    "brain_time": 6,
}

# ECG feed: A = timestamp, B = date, C = classification, D = avg HR, E = R/S ratio
_ECG_DATE = 1
_ECG_CLASSIFICATION = 2
_ECG_AVG_HR = 3
_ECG_RS_RATIO = 4


# ---------------------------------------------------------------------------
# Cell helpers
# ---------------------------------------------------------------------------


def cell(row: Sequence[Any], idx: int) -> str:
    if idx >= len(row) or row[idx] is None:
        return ""
    return str(row[idx]).strip()


def to_float(raw: Any) -> float | None:
    """Numeric cell → float; empty, non-numeric and NaN cells → None."""
    if raw is None or raw == "":
        return None
    try:
        val = float(raw)
    except (TypeError, ValueError):
        return None
    return None if math.isnan(val) else val


def _to_int(raw: Any) -> int | None:
    val = to_float(raw)
    return int(val) if val is not None else None


def _hours_to_minutes(data: dict, key: str) -> float:
    return (to_float(data.get(key)) or 0.0) * 60.0


# ---------------------------------------------------------------------------
# Payload decoding
# ---------------------------------------------------------------------------


def decode_raw_payload(raw: str) -> dict[str, Any]:
    """Decode a column-I JSON string.

    Returns:
        The decoded dict ({} for an empty cell).

    Raises:
        MalformedPayload: If the text is not JSON or not a JSON object.
    """
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise MalformedPayload(f"Invalid JSON payload: {exc}") from exc
    if not isinstance(data, dict):
        raise MalformedPayload(f"Payload is {type(data).__name__}, expected object")
    return data


def _stage_payload(data: dict, source: str, ctx: AggregationContext) -> Payload:
    if not data.get("startDate") or not data.get("endDate"):
        return EmptyPayload()
    try:
        start = parse_timestamp(str(data["startDate"]), ctx.tz)
        end = parse_timestamp(str(data["endDate"]), ctx.tz)
    except UnparseableTimestamp as exc:
        ctx.unparseable_timestamps += 1
        logger.debug("Dropping sleep stage from time-ordered processing: %s", exc)
        return EmptyPayload()
    stage = str(data.get("stage") or "unknown").strip().lower()
    try:
        event = SleepStageEvent(
            start=start,
            end=end,
            stage=stage,
            reported_duration_minutes=to_float(data.get("durationMins")),
            source=source,
        )
    except ValueError as exc:
        ctx.invalid_intervals += 1
        logger.debug("Skipping sleep stage: %s", exc)
        return EmptyPayload()
    return SleepStagePayload(event=event)


def _session_payload(data: dict, source: str, ctx: AggregationContext) -> Payload:
    if not data.get("sleepStart") or not data.get("sleepEnd"):
        return EmptyPayload()
    try:
        start = parse_timestamp(str(data["sleepStart"]), ctx.tz)
        end = parse_timestamp(str(data["sleepEnd"]), ctx.tz)
    except UnparseableTimestamp as exc:
        ctx.unparseable_timestamps += 1
        logger.debug("Dropping sleep session from time-ordered processing: %s", exc)
        return EmptyPayload()

    deep = _hours_to_minutes(data, "deep")
    rem = _hours_to_minutes(data, "rem")
    core = _hours_to_minutes(data, "core")
    total = _hours_to_minutes(data, "totalSleep")
    if total <= 0:
        total = _hours_to_minutes(data, "asleep")
    if total <= 0:
        total = deep + rem + core

    try:
        session = AggregatedSleepSession(
            start=start,
            end=end,
            total_sleep_minutes=total,
            awake_minutes=_hours_to_minutes(data, "awake"),
            deep_minutes=deep,
            rem_minutes=rem,
            core_minutes=core,
            source=source,
        )
    except ValueError as exc:
        ctx.invalid_intervals += 1
        logger.debug("Skipping sleep session: %s", exc)
        return EmptyPayload()
    return SleepSessionPayload(session=session)


def _sample_payload(kind: MetricKind, data: dict, ctx: AggregationContext) -> Payload:
    sampled_at = None
    if data.get("date"):
        sampled_at = try_parse_timestamp(str(data["date"]), ctx.tz)
        if sampled_at is None:
            ctx.unparseable_timestamps += 1
    if kind is MetricKind.HEART_RATE:
        bpm = data.get("Avg", data.get("avg"))
        return HeartRatePayload(sampled_at=sampled_at, bpm=to_float(bpm))
    return StepPayload(sampled_at=sampled_at, quantity=to_float(data.get("qty")))


def build_payload(
    kind: MetricKind | None, data: dict, source: str, ctx: AggregationContext
) -> Payload:
    """Map a decoded payload dict onto its typed variant for ``kind``."""
    if kind is MetricKind.SLEEP_STAGE:
        return _stage_payload(data, source, ctx)
    if kind is MetricKind.SLEEP_ANALYSIS:
        return _session_payload(data, source, ctx)
    if kind in (MetricKind.HEART_RATE, MetricKind.STEP_COUNT) and data:
        return _sample_payload(kind, data, ctx)
    return EmptyPayload()


# ---------------------------------------------------------------------------
# Row parsing
# ---------------------------------------------------------------------------


def parse_hourly_row(row: Sequence[Any], ctx: AggregationContext) -> Reading:
    """Parse one nine-column hourly row into a Reading.

    Short rows are treated as if padded with empty cells.
    """
    ts_raw = cell(row, 0)
    date_raw = cell(row, 1)
    metric_name = cell(row, 3)
    source = cell(row, 7)
    kind = MetricKind.from_name(metric_name)

    timestamp = None
    if ts_raw:
        timestamp = try_parse_timestamp(ts_raw, ctx.tz)
        if timestamp is None:
            ctx.unparseable_timestamps += 1

    try:
        raw_payload = decode_raw_payload(cell(row, 8))
    except MalformedPayload as exc:
        ctx.malformed_payloads += 1
        logger.debug("Keeping %s reading with empty payload: %s", metric_name, exc)
        raw_payload = {}

    return Reading(
        timestamp=timestamp,
        calendar_date=parse_calendar_date(date_raw),
        raw_date=date_raw,
        hour_of_day=_to_int(cell(row, 2)),
        metric_kind=kind,
        metric_name=metric_name,
        value=to_float(cell(row, 4)),
        min_value=to_float(cell(row, 5)),
        max_value=to_float(cell(row, 6)),
        source=source,
        payload=build_payload(kind, raw_payload, source, ctx),
        raw_payload=raw_payload,
    )


def parse_hourly_rows(rows: Sequence[Sequence[Any]], ctx: AggregationContext) -> list[Reading]:
    readings = [parse_hourly_row(row, ctx) for row in rows]
    logger.debug("Parsed %d hourly rows", len(readings))
    return readings


def parse_daily_row(row: Sequence[Any]) -> DailyFeedRow | None:
    """Parse one daily-feed row; None if its date column is unusable."""
    day = parse_calendar_date(cell(row, 0))
    if day is None:
        return None
    values = {name: to_float(cell(row, idx)) for name, idx in _DAILY_COLUMNS.items()}
    return DailyFeedRow(
        date=day,
        sleep_efficiency=cell(row, _DAILY_SLEEP_EFFICIENCY) or None,
        hr_count=_to_int(cell(row, _DAILY_HR_COUNT)),
        hrv_count=_to_int(cell(row, _DAILY_HRV_COUNT)),
        **values,
    )


def parse_manual_row(row: Sequence[Any]) -> ManualEntry | None:
    """Parse one manual-entry row; None if its date column is unusable."""
    day = parse_calendar_date(cell(row, _MANUAL_DATE))
    if day is None:
        return None
    return ManualEntry(
        date=day,
        metrics={name: to_float(cell(row, idx)) for name, idx in _MANUAL_COLUMNS.items()},
    )


def parse_ecg_row(row: Sequence[Any]) -> EcgReading | None:
    """Parse one ECG-feed row.

    Returns:
        The EcgReading, or None if the date is unusable or the row carries no
        R/S ratio.
    """
    day = parse_calendar_date(cell(row, _ECG_DATE))
    if day is None:
        return None
    rs_ratio = to_float(cell(row, _ECG_RS_RATIO))
    if rs_ratio is None:
        return None
    return EcgReading(
        date=day,
        rs_ratio=rs_ratio,
        avg_hr=to_float(cell(row, _ECG_AVG_HR)),
        classification=cell(row, _ECG_CLASSIFICATION),
    )
