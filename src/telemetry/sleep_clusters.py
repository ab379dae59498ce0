"""Sleep session clustering — group aggregated sessions that overlap in time.

A device often reports one night as several sessions: a broad "in bed"
window plus one or more narrower windows nested inside it, or a chain of
partially overlapping fragments.  Clustering gathers each such group so the
resolver can pick one authoritative session per group.

Overlap is strict: a session that starts exactly when the cluster ends opens
a new cluster, so back-to-back sessions stay separate.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Iterable

from src.telemetry.base import AggregatedSleepSession

logger = logging.getLogger("dayline.telemetry.sleep_clusters")


class ClusterShape(str, Enum):
    """Decision path the resolver takes for a cluster."""

    SINGLE = "single"
    SEQUENTIAL = "sequential"
    NESTED = "nested"


@dataclass
class SessionCluster:
    """A maximal set of sessions whose intervals transitively overlap.

    Attributes:
        sessions: Members, sorted by start time.
    """

    sessions: list[AggregatedSleepSession] = field(default_factory=list)

    @property
    def start(self) -> datetime:
        return self.sessions[0].start

    @property
    def end(self) -> datetime:
        return max(s.end for s in self.sessions)

    @property
    def is_nested(self) -> bool:
        """True when the earliest-starting member also ends last.

        That member then contains every other member.  A tie on the end
        time still counts as containing.
        """
        if len(self.sessions) < 2:
            return False
        return self.sessions[0].end >= self.end

    @property
    def shape(self) -> ClusterShape:
        if len(self.sessions) == 1:
            return ClusterShape.SINGLE
        return ClusterShape.NESTED if self.is_nested else ClusterShape.SEQUENTIAL

    def __len__(self) -> int:
        return len(self.sessions)


def cluster_sessions(sessions: Iterable[AggregatedSleepSession]) -> list[SessionCluster]:
    """Group sessions into clusters of transitively overlapping intervals.

    Algorithm:
        1. Sort sessions by start; on equal starts the wider window comes
           first so it is the one tested for containment.
        2. Sweep left to right; a session whose start is strictly before the
           current cluster's maximum end joins it, otherwise it opens a new
           cluster.

    Args:
        sessions: Aggregated sessions for a lookback window (any dates).

    Returns:
        Clusters ordered by start time, each with at least one member.
    """
    ordered = sorted(sessions, key=lambda s: (s.start, -s.window_minutes))
    if not ordered:
        return []

    clusters: list[SessionCluster] = []
    current = SessionCluster(sessions=[ordered[0]])
    cluster_end = ordered[0].end

    for session in ordered[1:]:
        if session.start < cluster_end:
            current.sessions.append(session)
            cluster_end = max(cluster_end, session.end)
        else:
            clusters.append(current)
            current = SessionCluster(sessions=[session])
            cluster_end = session.end
    clusters.append(current)

    logger.debug("cluster_sessions: %d sessions → %d clusters", len(ordered), len(clusters))
    return clusters
