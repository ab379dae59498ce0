"""Day attribution and cross-midnight clipping.

Rules:
    * An interval belongs to the calendar date of its **end** instant, read in
      the source timezone (``attribution.source_timezone``), whatever offset
      the instant was reported with.
    * A stage interval that starts on an earlier date is clipped to the local
      midnight that opens its attributed date.  The pre-midnight portion is
      not re-attributed to the prior date.  Downstream day-to-day comparisons
      rely on this convention, so it is kept even though it undercounts.
    * Only true-sleep stages add to the sleep total; awake minutes are kept
      separately and in-bed minutes are ignored.
    * Authoritative aggregated sessions are attributed by end date and
      contribute their device minute counts whole.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, tzinfo
from typing import Iterable

from src.telemetry.base import SleepStageEvent
from src.telemetry.sleep_resolver import ClusterResolution

logger = logging.getLogger("dayline.telemetry.day_attribution")


def attribute_date(end: datetime, tz: tzinfo) -> date:
    """Return the calendar date, in ``tz``, of an interval ending at ``end``."""
    return end.astimezone(tz).date()


def day_bounds(day: date, tz: tzinfo) -> tuple[datetime, datetime]:
    """Return local ``[00:00, next 00:00)`` for ``day``."""
    start = datetime.combine(day, time.min, tzinfo=tz)
    return start, start + timedelta(days=1)


def clip_to_day(
    start: datetime, end: datetime, day: date, tz: tzinfo
) -> tuple[datetime, datetime] | None:
    """Clip ``[start, end]`` to the bounds of ``day`` in ``tz``.

    An interval already inside the day comes back unchanged.

    Returns:
        The clipped (start, end), or None if nothing of it falls on ``day``.
    """
    day_start, day_end = day_bounds(day, tz)
    clipped_start = max(start, day_start)
    clipped_end = min(end, day_end)
    if clipped_end <= clipped_start:
        return None
    return clipped_start, clipped_end


def _minutes(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 60.0


# ---------------------------------------------------------------------------
# Stage events
# ---------------------------------------------------------------------------


@dataclass
class StageMinutes:
    """Clipped stage minutes accumulated for one date."""

    deep: float = 0.0
    rem: float = 0.0
    core: float = 0.0
    asleep: float = 0.0  # asleep / asleepUnspecified
    awake: float = 0.0
    events: int = 0

    @property
    def total(self) -> float:
        return self.deep + self.rem + self.core + self.asleep

    def add(self, stage: str, minutes: float) -> None:
        self.events += 1
        if stage in ("deep", "rem", "core"):
            setattr(self, stage, getattr(self, stage) + minutes)
        elif "asleep" in stage:
            self.asleep += minutes
        elif stage == "awake":
            self.awake += minutes


def attribute_stage_events(
    events: Iterable[SleepStageEvent], tz: tzinfo
) -> dict[date, StageMinutes]:
    """Attribute deduplicated stage events to dates and sum clipped minutes.

    Args:
        events: Stage events, already deduplicated.
        tz:     Source timezone whose calendar defines the dates.

    Returns:
        date → StageMinutes.
    """
    by_date: dict[date, StageMinutes] = defaultdict(StageMinutes)
    clipped = 0
    for event in events:
        day = attribute_date(event.end, tz)
        span = clip_to_day(event.start, event.end, day, tz)
        if span is None:
            continue
        if span[0] != event.start:
            clipped += 1
        by_date[day].add(event.stage, _minutes(*span))
    if clipped:
        logger.debug("Clipped %d cross-midnight stage events", clipped)
    return dict(by_date)


def sleep_periods_by_date(
    events: Iterable[SleepStageEvent], tz: tzinfo
) -> dict[date, list[tuple[datetime, datetime]]]:
    """Clipped true-sleep intervals per attributed date.

    Used to split a date's heart-rate samples into asleep/awake.
    """
    periods: dict[date, list[tuple[datetime, datetime]]] = defaultdict(list)
    for event in events:
        if not event.is_sleep:
            continue
        day = attribute_date(event.end, tz)
        span = clip_to_day(event.start, event.end, day, tz)
        if span is not None:
            periods[day].append(span)
    return dict(periods)


# ---------------------------------------------------------------------------
# Resolved sessions
# ---------------------------------------------------------------------------


def attribute_resolutions(
    resolutions: Iterable[ClusterResolution], tz: tzinfo
) -> dict[date, list[ClusterResolution]]:
    """Group resolved clusters by the end date of their authoritative session."""
    by_date: dict[date, list[ClusterResolution]] = defaultdict(list)
    for res in resolutions:
        by_date[attribute_date(res.authoritative.end, tz)].append(res)
    return dict(by_date)
