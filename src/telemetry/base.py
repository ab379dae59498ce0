"""Canonical data models for the Dayline telemetry pipeline.

Raw rows from the hourly feed become ``Reading`` records; sleep-shaped
payloads are decoded once, at parse time, into one of the payload variants
below.  Every later stage consumes these types and never re-probes the raw
JSON.  All records are immutable and scoped to a single aggregation request.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, tzinfo
from enum import Enum
from typing import Any, Union

logger = logging.getLogger("dayline.telemetry")


class MetricKind(str, Enum):
    """Metric names carried in column D of the hourly feed."""

    HEART_RATE = "heart_rate"
    STEP_COUNT = "step_count"
    HEART_RATE_VARIABILITY = "heart_rate_variability"
    RESTING_HEART_RATE = "resting_heart_rate"
    SLEEP_ANALYSIS = "sleep_analysis"
    SLEEP_STAGE = "sleep_stage"

    @classmethod
    def from_name(cls, name: str) -> MetricKind | None:
        try:
            return cls(name.strip())
        except ValueError:
            return None


# Stage labels that count toward the sleep total besides any "asleep*" label
_TRUE_SLEEP_STAGES = frozenset({"deep", "rem", "core"})


def is_true_sleep(stage: str) -> bool:
    """Return True when a stage label represents actual sleep.

    ``awake`` and ``inbed`` are excluded; every ``asleep*`` variant and the
    deep/rem/core stages are included.
    """
    st = stage.lower()
    return "asleep" in st or st in _TRUE_SLEEP_STAGES


# ---------------------------------------------------------------------------
# Sleep records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SleepStageEvent:
    """A granular, single-stage sleep interval.

    Attributes:
        start:                     Aware datetime the stage began.
        end:                       Aware datetime the stage ended (> start).
        stage:                     Lowercased label (deep/rem/core/awake/asleep/inbed/unknown).
        reported_duration_minutes: Duration as reported by the device, if any.
        source:                    Free-text device/app source.
    """

    start: datetime
    end: datetime
    stage: str
    reported_duration_minutes: float | None = None
    source: str = ""

    def __post_init__(self) -> None:
        if self.start >= self.end:
            raise ValueError(f"Stage event must have start < end ({self.start} >= {self.end})")

    @property
    def key(self) -> tuple[datetime, datetime, str]:
        """Identity key; two events sharing it are the same device emission."""
        return (self.start, self.end, self.stage)

    @property
    def is_sleep(self) -> bool:
        return is_true_sleep(self.stage)


@dataclass(frozen=True)
class AggregatedSleepSession:
    """A device-reported coarse sleep session with per-stage minute totals.

    ``window_minutes`` need not equal ``total_sleep_minutes + awake_minutes``;
    devices routinely leave slack at either end of the window.
    """

    start: datetime
    end: datetime
    total_sleep_minutes: float = 0.0
    awake_minutes: float = 0.0
    deep_minutes: float = 0.0
    rem_minutes: float = 0.0
    core_minutes: float = 0.0
    source: str = ""

    def __post_init__(self) -> None:
        if self.start >= self.end:
            raise ValueError(f"Sleep session must have start < end ({self.start} >= {self.end})")

    @property
    def window_minutes(self) -> float:
        return (self.end - self.start).total_seconds() / 60.0

    @property
    def resolved_minutes(self) -> float:
        """Sleep-window duration used once this session is authoritative."""
        return self.total_sleep_minutes + self.awake_minutes

    @property
    def key(self) -> tuple[datetime, datetime, float, float]:
        return (self.start, self.end, self.total_sleep_minutes, self.awake_minutes)


# ---------------------------------------------------------------------------
# Payload variants (tagged union, one per metric shape)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EmptyPayload:
    """Payload that carried nothing usable; scalar row fields still apply."""


@dataclass(frozen=True)
class HeartRatePayload:
    sampled_at: datetime | None
    bpm: float | None


@dataclass(frozen=True)
class StepPayload:
    sampled_at: datetime | None
    quantity: float | None


@dataclass(frozen=True)
class SleepStagePayload:
    event: SleepStageEvent


@dataclass(frozen=True)
class SleepSessionPayload:
    session: AggregatedSleepSession


Payload = Union[EmptyPayload, HeartRatePayload, StepPayload, SleepStagePayload, SleepSessionPayload]


@dataclass(frozen=True)
class Reading:
    """One raw observation from the hourly feed.

    Attributes:
        timestamp:     Parsed column A instant (None if unparseable).
        calendar_date: Parsed column B date (None if unparseable).
        raw_date:      Column B exactly as stored.
        hour_of_day:   Column C.
        metric_kind:   Parsed column D (None for metrics this pipeline ignores).
        metric_name:   Column D exactly as stored.
        value:         Column E.
        min_value:     Column F.
        max_value:     Column G.
        source:        Column H.
        payload:       Typed payload variant decoded from column I.
        raw_payload:   Column I decoded as a dict ({} on decode failure).
    """

    timestamp: datetime | None
    calendar_date: date | None
    raw_date: str
    hour_of_day: int | None
    metric_kind: MetricKind | None
    metric_name: str
    value: float | None = None
    min_value: float | None = None
    max_value: float | None = None
    source: str = ""
    payload: Payload = field(default_factory=EmptyPayload)
    raw_payload: dict[str, Any] = field(default_factory=dict)

    def local_day(self, tz: tzinfo | None = None) -> date | None:
        """Date the reading is filed under: column B, else column A's date in ``tz``."""
        if self.calendar_date is not None:
            return self.calendar_date
        if self.timestamp is None:
            return None
        ts = self.timestamp.astimezone(tz) if tz is not None else self.timestamp
        return ts.date()

    @property
    def sampled_at(self) -> datetime | None:
        """Best per-sample instant: the payload's own date, else column A."""
        if isinstance(self.payload, (HeartRatePayload, StepPayload)) and self.payload.sampled_at:
            return self.payload.sampled_at
        return self.timestamp

    @property
    def heart_rate(self) -> float | None:
        """Column E (average BPM for the sample), else the payload's Avg."""
        if self.value is not None:
            return self.value
        if isinstance(self.payload, HeartRatePayload):
            return self.payload.bpm
        return None

    @property
    def step_quantity(self) -> float | None:
        if isinstance(self.payload, StepPayload) and self.payload.quantity is not None:
            return self.payload.quantity
        return self.value


# ---------------------------------------------------------------------------
# Secondary feeds
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DailyFeedRow:
    """Pre-aggregated per-date values written by the upstream ingestion job.

    Used only as a fallback when granular hourly data is absent for a date.
    """

    date: date
    steps: float | None = None
    avg_hr: float | None = None
    resting_hr: float | None = None
    min_hr: float | None = None
    max_hr: float | None = None
    avg_hrv: float | None = None
    sleep_minutes: float | None = None
    sleep_efficiency: str | None = None
    deep_minutes: float | None = None
    rem_minutes: float | None = None
    hr_count: int | None = None
    hrv_count: int | None = None
    awake_minutes: float | None = None
    hr_awake_avg: float | None = None
    hr_asleep_avg: float | None = None


@dataclass(frozen=True)
class ManualEntry:
    """Manually entered per-date metrics, passed through untouched."""

    date: date
    metrics: dict[str, float | None] = field(default_factory=dict)


@dataclass(frozen=True)
class EcgReading:
    """One recording from the ECG feed.

    Attributes:
        date:           Column B.
        rs_ratio:       Column E, the R/S amplitude ratio.
        avg_hr:         Column D, device-reported average heart rate.
        classification: Column C, as the device reported it.
    """

    date: date
    rs_ratio: float
    avg_hr: float | None = None
    classification: str = ""


# ---------------------------------------------------------------------------
# Day-level output
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FiveNumberSummary:
    """Box-plot statistics for one date's heart-rate samples."""

    min: float
    q1: float
    median: float
    q3: float
    max: float
    count: int


@dataclass(frozen=True)
class HeartRateStats:
    avg: float
    min: float
    max: float
    count: int


@dataclass(frozen=True)
class HrvSummary:
    avg: float
    count: int | None


@dataclass(frozen=True)
class EcgSummary:
    """Per-date ECG averages; avg_hr is None when no recording carried one."""

    avg_rs_ratio: float
    avg_hr: int | None
    count: int


@dataclass(frozen=True)
class SleepComposition:
    """Sleep minutes for one date.

    Attributes:
        total:  Sleep minutes (awake excluded for stage data; device total
                plus awake for resolved sessions).
        deep:   Deep minutes, None when unknown.
        rem:    REM minutes, None when unknown.
        core:   Core/light minutes, None when unknown.
        awake:  Awake minutes, None when unknown.
        source: 'stages', 'sessions' or 'daily_feed'.
    """

    total: int
    deep: int | None = None
    rem: int | None = None
    core: int | None = None
    awake: int | None = None
    source: str = "stages"


@dataclass(frozen=True)
class DayRecord:
    """The unit of output: one consistent summary per calendar date."""

    date: date
    steps: int | None = None
    heart_rate: HeartRateStats | None = None
    heart_rate_distribution: FiveNumberSummary | None = None
    resting_heart_rate: float | None = None
    sleep: SleepComposition | None = None
    heart_rate_variability: HrvSummary | None = None
    hr_awake_avg: float | None = None
    hr_asleep_avg: float | None = None
    ecg: EcgSummary | None = None
    manual: dict[str, float | None] = field(default_factory=dict)
