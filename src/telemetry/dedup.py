"""Deduplication of sleep events within one aggregation request.

Devices re-emit overlapping-but-identical stage windows, and the same
session can be written under two row dates.  Without deduplication those
rows double-count sleep minutes, so this runs before day attribution.

Dedup keys:
    - SleepStageEvent:        (start, end, stage)
    - AggregatedSleepSession: (start, end, total_sleep_minutes, awake_minutes)
"""

from __future__ import annotations

import logging
from typing import Hashable, Iterable, Iterator

from src.telemetry.base import AggregatedSleepSession, SleepStageEvent

logger = logging.getLogger("dayline.telemetry.dedup")


class InMemoryDedupCache:
    """Seen-key set for one aggregation request.

    Usage::

        cache = InMemoryDedupCache()
        if cache.is_seen(key):
            cache.mark_dropped()
        else:
            cache.mark_seen(key)
            # process the record
    """

    def __init__(self) -> None:
        self._seen: set[Hashable] = set()
        self.dropped = 0

    def is_seen(self, key: Hashable) -> bool:
        return key in self._seen

    def mark_seen(self, key: Hashable) -> None:
        self._seen.add(key)

    def mark_dropped(self) -> None:
        self.dropped += 1

    def clear(self) -> None:
        """Reset the cache."""
        self._seen.clear()
        self.dropped = 0

    def __len__(self) -> int:
        return len(self._seen)


class StageDeduplicator(InMemoryDedupCache):
    """Emit the first occurrence of each stage event, in input order."""

    def filter(self, events: Iterable[SleepStageEvent]) -> Iterator[SleepStageEvent]:
        """Yield events whose (start, end, stage) key has not been seen yet.

        Later duplicates are dropped and counted on ``self.dropped``.
        """
        for event in events:
            if self.is_seen(event.key):
                self.mark_dropped()
                logger.debug("Dropping duplicate stage %s %s→%s", event.stage, event.start, event.end)
                continue
            self.mark_seen(event.key)
            yield event


class SessionDeduplicator(InMemoryDedupCache):
    """Emit the first occurrence of each aggregated session, in input order."""

    def filter(self, sessions: Iterable[AggregatedSleepSession]) -> Iterator[AggregatedSleepSession]:
        for session in sessions:
            if self.is_seen(session.key):
                self.mark_dropped()
                continue
            self.mark_seen(session.key)
            yield session


def dedupe_stages(events: Iterable[SleepStageEvent]) -> tuple[list[SleepStageEvent], int]:
    """Deduplicate a batch of stage events with a fresh cache.

    Returns:
        (unique events in input order, number of duplicates dropped)
    """
    dedup = StageDeduplicator()
    unique = list(dedup.filter(events))
    return unique, dedup.dropped
