"""Nested-session resolution — pick one authoritative session per cluster.

Three explicit decision paths, chosen by the cluster's shape:

``single``
    The sole session is authoritative.

``sequential``
    Members overlap but none contains all the others.  They are independent
    candidates, so the one with the most sleep minutes wins; no activity
    heuristic applies.

``nested``
    The broadest member contains every other one.  The question is how far
    the sleep window really extends, so the resolver starts from the
    narrowest member and walks outward one layer at a time.  For each layer
    it looks at heart-rate and step evidence in the exclusive gap
    ``[outer.start, accepted.start)``:

    * gap longer than 30 min with < 2 HR samples/hour → inconclusive, stop;
    * awake score < cutoff → the gap was sleep, accept the outer layer;
    * awake score ≥ cutoff → the gap was awake, stop.

    The accepted boundary is always one of the cluster's own members.

Awake score (0–7 with default config)::

    2·(avg_hr > 70) + 1·(max_hr > 85)
        + 2·(significant_steps_per_hour > 1) + 2·(steps_per_hour > 20)

All thresholds come from ``pipeline_config.yaml``.
"""

from __future__ import annotations

import bisect
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Sequence

from src.telemetry.base import AggregatedSleepSession, MetricKind, Reading
from src.telemetry.config_loader import AwakeScoreConfig, EvidenceConfig, PipelineConfig
from src.telemetry.errors import InsufficientEvidence
from src.telemetry.sleep_clusters import ClusterShape, SessionCluster

logger = logging.getLogger("dayline.telemetry.sleep_resolver")

STOP_AWAKE = "awake"
STOP_INCONCLUSIVE = "inconclusive"


# ---------------------------------------------------------------------------
# Activity evidence
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ActivityEvidence:
    """Heart-rate and step activity inside one time window.

    Attributes:
        span_minutes:            Window length.
        sample_count:            Number of HR samples in the window.
        avg_hr:                  Mean HR, None without samples.
        max_hr:                  Peak HR, None without samples.
        total_steps:             Sum of step quantities.
        significant_step_events: Step samples above the significance threshold.
    """

    span_minutes: float
    sample_count: int = 0
    avg_hr: float | None = None
    max_hr: float | None = None
    total_steps: float = 0.0
    significant_step_events: int = 0

    def _per_hour(self, count: float) -> float:
        return count / self.span_minutes * 60.0 if self.span_minutes > 0 else 0.0

    @property
    def steps_per_hour(self) -> float:
        return self._per_hour(self.total_steps)

    @property
    def significant_steps_per_hour(self) -> float:
        return self._per_hour(self.significant_step_events)

    @property
    def hr_samples_per_hour(self) -> float:
        return self._per_hour(self.sample_count)


class EvidenceIndex:
    """Time-sorted HR and step samples for fast window queries.

    Built once per aggregation request from every heart-rate and step reading
    that carries a usable per-sample timestamp.
    """

    def __init__(
        self,
        hr_samples: Iterable[tuple[datetime, float]] = (),
        step_samples: Iterable[tuple[datetime, float]] = (),
    ) -> None:
        self._hr = sorted(hr_samples, key=lambda s: s[0])
        self._steps = sorted(step_samples, key=lambda s: s[0])
        self._hr_ts = [ts for ts, _ in self._hr]
        self._step_ts = [ts for ts, _ in self._steps]

    @classmethod
    def from_readings(cls, readings: Iterable[Reading]) -> EvidenceIndex:
        hr: list[tuple[datetime, float]] = []
        steps: list[tuple[datetime, float]] = []
        for r in readings:
            ts = r.sampled_at
            if ts is None:
                continue
            if r.metric_kind is MetricKind.HEART_RATE and r.heart_rate is not None:
                hr.append((ts, r.heart_rate))
            elif r.metric_kind is MetricKind.STEP_COUNT:
                steps.append((ts, r.step_quantity or 0.0))
        return cls(hr, steps)

    @staticmethod
    def _window(
        ts: Sequence[datetime], samples: Sequence[tuple[datetime, float]], start: datetime, end: datetime
    ) -> Sequence[tuple[datetime, float]]:
        lo = bisect.bisect_left(ts, start)
        hi = bisect.bisect_left(ts, end)
        return samples[lo:hi]

    def evidence(
        self, start: datetime, end: datetime, significant_step_qty: float = 2.0
    ) -> ActivityEvidence:
        """Aggregate the samples in the half-open window ``[start, end)``."""
        span = (end - start).total_seconds() / 60.0
        hrs = [bpm for _, bpm in self._window(self._hr_ts, self._hr, start, end)]
        steps = [qty for _, qty in self._window(self._step_ts, self._steps, start, end)]
        return ActivityEvidence(
            span_minutes=span,
            sample_count=len(hrs),
            avg_hr=sum(hrs) / len(hrs) if hrs else None,
            max_hr=max(hrs) if hrs else None,
            total_steps=sum(steps),
            significant_step_events=sum(1 for q in steps if q > significant_step_qty),
        )

    def __len__(self) -> int:
        return len(self._hr) + len(self._steps)


def require_coverage(evidence: ActivityEvidence, cfg: EvidenceConfig) -> None:
    """Raise InsufficientEvidence when a long gap has too few HR samples."""
    if (
        evidence.span_minutes > cfg.min_span_minutes
        and evidence.hr_samples_per_hour < cfg.min_hr_samples_per_hour
    ):
        raise InsufficientEvidence(evidence.span_minutes, evidence.sample_count)


def awake_score(evidence: ActivityEvidence, cfg: AwakeScoreConfig) -> int:
    """Score how awake a gap looks: 0 = likely asleep, ≥ cutoff = likely awake."""
    score = 0
    if evidence.avg_hr is not None and evidence.avg_hr > cfg.avg_hr_bpm:
        score += cfg.avg_hr_points
    if evidence.max_hr is not None and evidence.max_hr > cfg.max_hr_bpm:
        score += cfg.max_hr_points
    if evidence.significant_steps_per_hour > cfg.significant_steps_per_hour:
        score += cfg.significant_steps_points
    if evidence.steps_per_hour > cfg.steps_per_hour:
        score += cfg.steps_points
    return score


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ClusterResolution:
    """Outcome of resolving one cluster.

    Attributes:
        shape:           Decision path taken.
        authoritative:   The chosen member session.
        layers_expanded: Outward expansions accepted (nested clusters only).
        stopped_reason:  'awake', 'inconclusive', or None if the walk ran out
                         of layers (or never walked).
        gap_scores:      Awake score of each gap examined, innermost first.
    """

    shape: ClusterShape
    authoritative: AggregatedSleepSession
    layers_expanded: int = 0
    stopped_reason: str | None = None
    gap_scores: tuple[int, ...] = field(default_factory=tuple)

    @property
    def resolved_minutes(self) -> float:
        return self.authoritative.resolved_minutes


def _resolve_sequential(cluster: SessionCluster) -> AggregatedSleepSession:
    best = cluster.sessions[0]
    for session in cluster.sessions[1:]:
        if session.total_sleep_minutes > best.total_sleep_minutes:
            best = session
    return best


def _resolve_nested(
    cluster: SessionCluster, index: EvidenceIndex, config: PipelineConfig
) -> ClusterResolution:
    by_span = sorted(cluster.sessions, key=lambda s: s.window_minutes, reverse=True)
    best = by_span[-1]
    expanded = 0
    scores: list[int] = []
    stopped: str | None = None

    for outer in reversed(by_span[:-1]):
        if outer.start >= best.start:
            # No exclusive gap before the accepted boundary to examine
            continue

        evidence = index.evidence(
            outer.start, best.start, config.awake_score.significant_step_qty
        )
        try:
            require_coverage(evidence, config.evidence)
        except InsufficientEvidence as exc:
            logger.debug("Stopping expansion at %s: %s", best.start, exc)
            stopped = STOP_INCONCLUSIVE
            break

        score = awake_score(evidence, config.awake_score)
        scores.append(score)
        if score >= config.awake_score.awake_cutoff:
            stopped = STOP_AWAKE
            break
        best = outer
        expanded += 1

    return ClusterResolution(
        shape=ClusterShape.NESTED,
        authoritative=best,
        layers_expanded=expanded,
        stopped_reason=stopped,
        gap_scores=tuple(scores),
    )


def resolve_cluster(
    cluster: SessionCluster, index: EvidenceIndex, config: PipelineConfig
) -> ClusterResolution:
    """Choose the authoritative session for one cluster.

    Args:
        cluster: A non-empty SessionCluster.
        index:   HR/step samples for the request.
        config:  Pipeline configuration (awake-score thresholds).

    Returns:
        ClusterResolution whose ``authoritative`` is a member of ``cluster``.
    """
    shape = cluster.shape
    if shape is ClusterShape.SINGLE:
        return ClusterResolution(shape=shape, authoritative=cluster.sessions[0])
    if shape is ClusterShape.SEQUENTIAL:
        return ClusterResolution(shape=shape, authoritative=_resolve_sequential(cluster))
    return _resolve_nested(cluster, index, config)
