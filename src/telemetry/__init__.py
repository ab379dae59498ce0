"""Dayline Wearable Telemetry Pipeline.

This package turns raw wearable rows (hourly samples, device sleep sessions
and sleep stage events) into one consistent summary per calendar date.

Core modules:
    base            — Canonical records (Reading, sleep events, DayRecord)
    timestamps      — Timestamp normalization to aware datetimes
    parser          — Hourly / daily / manual / ECG row parsing, payload decoding
    dedup           — Duplicate stage and session removal
    sleep_clusters  — Overlapping-session clustering
    sleep_resolver  — Nested-session resolution with the awake score
    day_attribution — End-date attribution and midnight clipping
    aggregator      — Per-date DayRecord assembly
    distribution    — Five-number HR summaries
    pipeline        — aggregate_range / select_single_day_rows entry points
    config_loader   — Load/validate/hot-reload pipeline_config.yaml
"""

from src.telemetry.base import DayRecord, MetricKind, Reading
from src.telemetry.config_loader import PipelineConfig, get_pipeline_config
from src.telemetry.pipeline import SingleDayRows, aggregate_range, select_single_day_rows

__all__ = [
    "DayRecord",
    "MetricKind",
    "Reading",
    "PipelineConfig",
    "get_pipeline_config",
    "SingleDayRows",
    "aggregate_range",
    "select_single_day_rows",
]
