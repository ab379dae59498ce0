"""Daily aggregation — turn per-date inputs into one DayRecord per date.

Each date collects its readings (filed under the row's calendar date), its
clipped stage minutes, the resolved sleep clusters attributed to it, and the
matching daily-feed, manual and ECG rows.  ``DailyAggregator.records`` then folds
each bucket into a DayRecord.

Precedence per metric, first available wins:

========================  ==========================================  ===================
Metric                    Primary                                     Fallback
========================  ==========================================  ===================
steps                     sum of step readings                        daily feed
heart rate avg/min/max    heart-rate readings                         daily feed
resting heart rate        resting-HR readings                         daily feed
HRV                       HRV readings                                daily feed
sleep                     stage events, then resolved sessions        daily feed
HR awake / asleep         HR samples split by true-sleep intervals    daily feed
ECG R/S ratio and HR      ECG feed                                    none
========================  ==========================================  ===================

Metrics with no data stay None; absence is never reported as zero.
"""

from __future__ import annotations

import bisect
import logging
import math
from dataclasses import dataclass, field
from datetime import date, datetime, tzinfo
from typing import Iterable

from src.telemetry.base import (
    DailyFeedRow,
    DayRecord,
    EcgReading,
    EcgSummary,
    HeartRateStats,
    HrvSummary,
    ManualEntry,
    MetricKind,
    Reading,
    SleepComposition,
)
from src.telemetry.day_attribution import StageMinutes
from src.telemetry.distribution import five_number_summary
from src.telemetry.sleep_resolver import ClusterResolution

logger = logging.getLogger("dayline.telemetry.aggregator")

SOURCE_STAGES = "stages"
SOURCE_SESSIONS = "sessions"
SOURCE_DAILY_FEED = "daily_feed"


def _round(value: float) -> int:
    """Round half up, the way the dashboard has always displayed minutes."""
    return int(math.floor(value + 0.5))


def _round1(value: float) -> float:
    return round(value, 1)


def _mean(values: list[float]) -> float | None:
    return sum(values) / len(values) if values else None


def _minutes_or_none(value: float) -> int | None:
    rounded = _round(value)
    return rounded or None


# ---------------------------------------------------------------------------
# Sleep timeline (HR awake/asleep split)
# ---------------------------------------------------------------------------


class SleepTimeline:
    """Merged true-sleep intervals for membership tests on HR samples."""

    def __init__(self, periods: Iterable[tuple[datetime, datetime]] = ()) -> None:
        merged: list[list[datetime]] = []
        for start, end in sorted(periods):
            if merged and start <= merged[-1][1]:
                merged[-1][1] = max(merged[-1][1], end)
            else:
                merged.append([start, end])
        self._starts = [s for s, _ in merged]
        self._ends = [e for _, e in merged]

    def contains(self, ts: datetime) -> bool:
        """True if ``ts`` falls in some ``[start, end)`` sleep interval."""
        idx = bisect.bisect_right(self._starts, ts) - 1
        return idx >= 0 and ts < self._ends[idx]

    def __len__(self) -> int:
        return len(self._starts)


# ---------------------------------------------------------------------------
# Per-date inputs
# ---------------------------------------------------------------------------


@dataclass
class DayBucket:
    """Everything known about one date before it is folded into a DayRecord."""

    date: date
    steps: list[float] = field(default_factory=list)
    heart_rates: list[float] = field(default_factory=list)
    hr_asleep: list[float] = field(default_factory=list)
    hr_awake: list[float] = field(default_factory=list)
    resting: list[float] = field(default_factory=list)
    hrv: list[float] = field(default_factory=list)
    stage_minutes: StageMinutes | None = None
    resolutions: list[ClusterResolution] = field(default_factory=list)
    daily: DailyFeedRow | None = None
    manual: ManualEntry | None = None
    ecg: list[EcgReading] = field(default_factory=list)


def sleep_from_stages(minutes: StageMinutes) -> SleepComposition | None:
    if minutes.total <= 0:
        return None
    return SleepComposition(
        total=_round(minutes.total),
        deep=_minutes_or_none(minutes.deep),
        rem=_minutes_or_none(minutes.rem),
        core=_minutes_or_none(minutes.core),
        awake=_minutes_or_none(minutes.awake),
        source=SOURCE_STAGES,
    )


def sleep_from_sessions(resolutions: list[ClusterResolution]) -> SleepComposition | None:
    """Sum the authoritative sessions of every cluster ending on the date."""
    sessions = [res.authoritative for res in resolutions]
    total = sum(s.resolved_minutes for s in sessions)
    if total <= 0:
        return None
    return SleepComposition(
        total=_round(total),
        deep=_minutes_or_none(sum(s.deep_minutes for s in sessions)),
        rem=_minutes_or_none(sum(s.rem_minutes for s in sessions)),
        core=_minutes_or_none(sum(s.core_minutes for s in sessions)),
        awake=_minutes_or_none(sum(s.awake_minutes for s in sessions)),
        source=SOURCE_SESSIONS,
    )


def sleep_from_daily(row: DailyFeedRow) -> SleepComposition | None:
    """Daily-feed sleep; core is derived as what is left of the total."""
    if row.sleep_minutes is None:
        return None
    core = None
    if row.deep_minutes is not None and row.rem_minutes is not None:
        awake = row.awake_minutes or 0.0
        core = max(0.0, row.sleep_minutes - row.deep_minutes - row.rem_minutes - awake)
    return SleepComposition(
        total=_round(row.sleep_minutes),
        deep=_round(row.deep_minutes) if row.deep_minutes is not None else None,
        rem=_round(row.rem_minutes) if row.rem_minutes is not None else None,
        core=_round(core) if core is not None else None,
        awake=_round(row.awake_minutes) if row.awake_minutes is not None else None,
        source=SOURCE_DAILY_FEED,
    )


def ecg_summary(readings: list[EcgReading]) -> EcgSummary | None:
    """Average the R/S ratio (2 dp) and HR (whole bpm) over a date's recordings."""
    if not readings:
        return None
    hrs = [r.avg_hr for r in readings if r.avg_hr is not None]
    rs_avg = sum(r.rs_ratio for r in readings) / len(readings)
    return EcgSummary(
        avg_rs_ratio=_round(rs_avg * 100) / 100,
        avg_hr=_round(sum(hrs) / len(hrs)) if hrs else None,
        count=len(readings),
    )


def build_day_record(bucket: DayBucket) -> DayRecord:
    """Fold one date's bucket into its DayRecord."""
    daily = bucket.daily

    steps: int | None = None
    if bucket.steps:
        steps = _round(sum(bucket.steps))
    elif daily is not None and daily.steps is not None:
        steps = _round(daily.steps)

    heart_rate: HeartRateStats | None = None
    if bucket.heart_rates:
        heart_rate = HeartRateStats(
            avg=_round1(sum(bucket.heart_rates) / len(bucket.heart_rates)),
            min=min(bucket.heart_rates),
            max=max(bucket.heart_rates),
            count=len(bucket.heart_rates),
        )
    elif daily is not None and daily.avg_hr is not None:
        heart_rate = HeartRateStats(
            avg=daily.avg_hr,
            min=daily.min_hr if daily.min_hr is not None else daily.avg_hr,
            max=daily.max_hr if daily.max_hr is not None else daily.avg_hr,
            count=daily.hr_count or 0,
        )

    resting = _mean(bucket.resting)
    if resting is not None:
        resting = _round1(resting)
    elif daily is not None:
        resting = daily.resting_hr

    hrv: HrvSummary | None = None
    if bucket.hrv:
        hrv = HrvSummary(avg=_round1(sum(bucket.hrv) / len(bucket.hrv)), count=len(bucket.hrv))
    elif daily is not None and daily.avg_hrv is not None:
        hrv = HrvSummary(avg=daily.avg_hrv, count=daily.hrv_count)

    sleep = None
    if bucket.stage_minutes is not None:
        sleep = sleep_from_stages(bucket.stage_minutes)
    if sleep is None and bucket.resolutions:
        sleep = sleep_from_sessions(bucket.resolutions)
    if sleep is None and daily is not None:
        sleep = sleep_from_daily(daily)

    hr_asleep = _mean(bucket.hr_asleep)
    hr_awake = _mean(bucket.hr_awake)

    return DayRecord(
        date=bucket.date,
        steps=steps,
        heart_rate=heart_rate,
        heart_rate_distribution=five_number_summary(bucket.heart_rates),
        resting_heart_rate=resting,
        sleep=sleep,
        heart_rate_variability=hrv,
        hr_awake_avg=_round1(hr_awake) if hr_awake is not None else (daily.hr_awake_avg if daily else None),
        hr_asleep_avg=_round1(hr_asleep) if hr_asleep is not None else (daily.hr_asleep_avg if daily else None),
        ecg=ecg_summary(bucket.ecg),
        manual=dict(bucket.manual.metrics) if bucket.manual is not None else {},
    )


# ---------------------------------------------------------------------------
# Aggregator
# ---------------------------------------------------------------------------


class DailyAggregator:
    """Collects per-date inputs for one request and emits DayRecords.

    Args:
        sleep_timeline: True-sleep intervals used to split HR samples into
                        asleep and awake.
        tz:             Source timezone for readings filed by their timestamp.
    """

    def __init__(
        self, sleep_timeline: SleepTimeline | None = None, tz: tzinfo | None = None
    ) -> None:
        self._timeline = sleep_timeline or SleepTimeline()
        self._tz = tz
        self._buckets: dict[date, DayBucket] = {}

    def _bucket(self, day: date) -> DayBucket:
        bucket = self._buckets.get(day)
        if bucket is None:
            bucket = self._buckets[day] = DayBucket(date=day)
        return bucket

    def add_reading(self, reading: Reading) -> None:
        """File a reading under its date.  Unknown metrics are ignored."""
        day = reading.local_day(self._tz)
        if day is None or reading.metric_kind is None:
            return
        kind = reading.metric_kind

        if kind is MetricKind.STEP_COUNT:
            qty = reading.step_quantity
            if qty is not None:
                self._bucket(day).steps.append(qty)
        elif kind is MetricKind.HEART_RATE:
            bpm = reading.heart_rate
            if bpm is None:
                return
            bucket = self._bucket(day)
            bucket.heart_rates.append(bpm)
            ts = reading.sampled_at
            if ts is not None:
                (bucket.hr_asleep if self._timeline.contains(ts) else bucket.hr_awake).append(bpm)
        elif kind is MetricKind.RESTING_HEART_RATE:
            if reading.value is not None:
                self._bucket(day).resting.append(reading.value)
        elif kind is MetricKind.HEART_RATE_VARIABILITY:
            if reading.value is not None:
                self._bucket(day).hrv.append(reading.value)

    def add_stage_minutes(self, day: date, minutes: StageMinutes) -> None:
        self._bucket(day).stage_minutes = minutes

    def add_resolutions(self, day: date, resolutions: list[ClusterResolution]) -> None:
        self._bucket(day).resolutions.extend(resolutions)

    def add_daily_row(self, row: DailyFeedRow) -> None:
        self._bucket(row.date).daily = row

    def add_manual_entry(self, entry: ManualEntry) -> None:
        self._bucket(entry.date).manual = entry

    def add_ecg_reading(self, reading: EcgReading) -> None:
        self._bucket(reading.date).ecg.append(reading)

    def records(self, start: date, end: date) -> list[DayRecord]:
        """DayRecords for every collected date in ``[start, end]``, sorted."""
        days = sorted(d for d in self._buckets if start <= d <= end)
        out = [build_day_record(self._buckets[d]) for d in days]
        logger.debug(
            "Aggregated %d days (%d buckets collected) for %s..%s",
            len(out), len(self._buckets), start, end,
        )
        return out
