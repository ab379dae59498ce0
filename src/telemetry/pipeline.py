"""Pipeline entry points.

``aggregate_range`` runs the full chain for a date range::

    rows ─► parse ─► dedup ─► cluster ─► resolve ─► attribute/clip ─► aggregate
                                                                    └► DayRecords

``select_single_day_rows`` picks the raw hourly rows a single-day view needs,
including the neighbouring-day sleep rows that belong to the night in
question.

Both are pure functions of their inputs.  Every call builds its own
AggregationContext, so nothing leaks between requests.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Sequence

from src.telemetry.aggregator import DailyAggregator, SleepTimeline
from src.telemetry.base import (
    AggregatedSleepSession,
    DayRecord,
    SleepSessionPayload,
    SleepStageEvent,
    SleepStagePayload,
)
from src.telemetry.config_loader import PipelineConfig, get_pipeline_config
from src.telemetry.context import AggregationContext
from src.telemetry.day_attribution import (
    attribute_resolutions,
    attribute_stage_events,
    sleep_periods_by_date,
)
from src.telemetry.errors import MalformedPayload
from src.telemetry.parser import (
    cell,
    decode_raw_payload,
    parse_daily_row,
    parse_ecg_row,
    parse_hourly_rows,
    parse_manual_row,
    to_float,
)
from src.telemetry.sleep_clusters import cluster_sessions
from src.telemetry.sleep_resolver import STOP_INCONCLUSIVE, EvidenceIndex, resolve_cluster
from src.telemetry.timestamps import parse_calendar_date, try_parse_timestamp

logger = logging.getLogger("dayline.telemetry.pipeline")

Row = Sequence[Any]


# ---------------------------------------------------------------------------
# Multi-day aggregation
# ---------------------------------------------------------------------------


def _in_window(day: date | None, start: date, end: date) -> bool:
    return day is not None and start <= day <= end


def aggregate_range(
    hourly_rows: Sequence[Row],
    daily_rows: Sequence[Row],
    manual_rows: Sequence[Row],
    start: date,
    end: date,
    config: PipelineConfig | None = None,
    ecg_rows: Sequence[Row] = (),
) -> list[DayRecord]:
    """Aggregate the three feeds into one DayRecord per date in ``[start, end]``.

    Sleep rows from ``attribution.lookback_days`` either side of the range are
    included so clusters that cross the range edge resolve the same way they
    would inside it.

    Args:
        hourly_rows: Nine-column hourly rows.
        daily_rows:  Daily-feed rows.
        manual_rows: Manual-entry rows.
        start:       First date (inclusive).
        end:         Last date (inclusive).
        config:      Pipeline configuration; the loaded singleton if omitted.
        ecg_rows:    ECG-feed rows; rows without an R/S ratio are skipped.

    Returns:
        DayRecords sorted by date, only for dates with at least one source.
    """
    if start > end:
        raise ValueError(f"start {start} is after end {end}")

    ctx = AggregationContext(config=config or get_pipeline_config())
    margin = timedelta(days=ctx.config.attribution.lookback_days)
    window_start, window_end = start - margin, end + margin

    readings = [
        r for r in parse_hourly_rows(hourly_rows, ctx)
        if _in_window(r.local_day(ctx.tz), window_start, window_end)
    ]

    stages: list[SleepStageEvent] = list(
        ctx.stage_dedup.filter(
            r.payload.event for r in readings if isinstance(r.payload, SleepStagePayload)
        )
    )
    sessions: list[AggregatedSleepSession] = list(
        ctx.session_dedup.filter(
            r.payload.session for r in readings if isinstance(r.payload, SleepSessionPayload)
        )
    )

    index = EvidenceIndex.from_readings(readings)
    resolutions = [
        resolve_cluster(cluster, index, ctx.config) for cluster in cluster_sessions(sessions)
    ]
    ctx.inconclusive_gaps = sum(1 for r in resolutions if r.stopped_reason == STOP_INCONCLUSIVE)

    periods = sleep_periods_by_date(stages, ctx.tz)
    aggregator = DailyAggregator(
        SleepTimeline(span for spans in periods.values() for span in spans), tz=ctx.tz
    )

    for reading in readings:
        if _in_window(reading.local_day(ctx.tz), start, end):
            aggregator.add_reading(reading)
    for day, minutes in attribute_stage_events(stages, ctx.tz).items():
        if _in_window(day, start, end):
            aggregator.add_stage_minutes(day, minutes)
    for day, day_resolutions in attribute_resolutions(resolutions, ctx.tz).items():
        if _in_window(day, start, end):
            aggregator.add_resolutions(day, day_resolutions)

    for row in daily_rows:
        daily = parse_daily_row(row)
        if daily is not None and _in_window(daily.date, start, end):
            aggregator.add_daily_row(daily)
    for row in manual_rows:
        entry = parse_manual_row(row)
        if entry is not None and _in_window(entry.date, start, end):
            aggregator.add_manual_entry(entry)
    for row in ecg_rows:
        ecg = parse_ecg_row(row)
        if ecg is not None and _in_window(ecg.date, start, end):
            aggregator.add_ecg_reading(ecg)

    records = aggregator.records(start, end)
    logger.debug(
        "aggregate_range %s..%s: %d readings, %d stages, %d sessions, %d clusters → %d days",
        start, end, len(readings), len(stages), len(sessions), len(resolutions), len(records),
    )
    ctx.log_summary()
    return records


# ---------------------------------------------------------------------------
# Single-day row selection
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class HourlyRow:
    """One hourly row as handed to the single-day view."""

    timestamp: str
    date: str
    hour: int | None
    metric: str
    value: float | None
    min: float | None
    max: float | None
    source: str
    raw_data: str
    spillover: bool = False


@dataclass(frozen=True)
class SingleDayRows:
    date: date
    rows: list[HourlyRow] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.rows)


def _as_hourly_row(row: Row, spillover: bool = False) -> HourlyRow:
    hour = to_float(cell(row, 2))
    return HourlyRow(
        timestamp=cell(row, 0),
        date=cell(row, 1),
        hour=int(hour) if hour is not None else None,
        metric=cell(row, 3),
        value=to_float(cell(row, 4)),
        min=to_float(cell(row, 5)),
        max=to_float(cell(row, 6)),
        source=cell(row, 7),
        raw_data=cell(row, 8),
        spillover=spillover,
    )


def _session_window(
    row: Row, ctx: AggregationContext
) -> tuple[datetime, datetime] | None:
    try:
        data = decode_raw_payload(cell(row, 8))
    except MalformedPayload:
        ctx.malformed_payloads += 1
        return None
    if not data.get("sleepStart") or not data.get("sleepEnd"):
        return None
    start = try_parse_timestamp(str(data["sleepStart"]), ctx.tz)
    end = try_parse_timestamp(str(data["sleepEnd"]), ctx.tz)
    if start is None or end is None:
        ctx.unparseable_timestamps += 1
        return None
    return start, end


def select_single_day_rows(
    rows: Sequence[Row], day: date, config: PipelineConfig | None = None
) -> SingleDayRows:
    """Select the hourly rows needed to render ``day`` on its own.

    Included, in this order:
        1. every row filed under ``day``;
        2. next-day ``sleep_analysis`` rows whose session starts on ``day``,
           plus next-day sessions overlapping one of them (flagged
           ``spillover``);
        3. previous-day ``sleep_stage`` rows;
        4. next-day ``sleep_stage`` rows.

    Args:
        rows:   Raw nine-column hourly rows.
        day:    The requested date.
        config: Pipeline configuration; the loaded singleton if omitted.

    Returns:
        SingleDayRows for ``day``.
    """
    ctx = AggregationContext(config=config or get_pipeline_config())
    prev_day, next_day = day - timedelta(days=1), day + timedelta(days=1)

    matching: list[HourlyRow] = []
    prev_stages: list[HourlyRow] = []
    next_stages: list[HourlyRow] = []
    next_sessions: list[tuple[Row, datetime, datetime]] = []

    for row in rows:
        row_day = parse_calendar_date(cell(row, 1))
        metric = cell(row, 3)
        if row_day == day:
            matching.append(_as_hourly_row(row))
        elif metric == "sleep_analysis" and row_day == next_day:
            window = _session_window(row, ctx)
            if window is not None:
                next_sessions.append((row, *window))
        elif metric == "sleep_stage" and row_day == prev_day:
            prev_stages.append(_as_hourly_row(row))
        elif metric == "sleep_stage" and row_day == next_day:
            next_stages.append(_as_hourly_row(row))

    spill: list[tuple[Row, datetime, datetime]] = []
    others: list[tuple[Row, datetime, datetime]] = []
    for s in next_sessions:
        # session start read in the source timezone
        (spill if s[1].astimezone(ctx.tz).date() == day else others).append(s)
    siblings = [s for s in others if any(s[1] < sp[2] and s[2] > sp[1] for sp in spill)]
    spillover = [_as_hourly_row(row, spillover=True) for row, _, _ in spill + siblings]

    selected = SingleDayRows(date=day, rows=matching + spillover + prev_stages + next_stages)
    logger.debug(
        "select_single_day_rows %s: %d matching, %d spillover, %d prev stages, %d next stages",
        day, len(matching), len(spillover), len(prev_stages), len(next_stages),
    )
    ctx.log_summary()
    return selected
