"""Tests for the nested-session resolver and the awake score."""

from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from src.telemetry.config_loader import AwakeScoreConfig, EvidenceConfig, PipelineConfig
from src.telemetry.errors import InsufficientEvidence
from src.telemetry.sleep_clusters import ClusterShape, cluster_sessions
from src.telemetry.sleep_resolver import (
    STOP_AWAKE,
    STOP_INCONCLUSIVE,
    ActivityEvidence,
    EvidenceIndex,
    awake_score,
    require_coverage,
    resolve_cluster,
)
from src.telemetry.tests.conftest import PREV_DATE, TEST_DATE, at, make_session


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def every(start: datetime, end: datetime, minutes: int, value: float) -> list[tuple[datetime, float]]:
    """One sample every ``minutes`` in ``[start, end)``."""
    out = []
    ts = start
    while ts < end:
        out.append((ts, value))
        ts += timedelta(minutes=minutes)
    return out


# Scenario night: outer 23:00→07:00, inner 01:00→06:00, gap 23:00→01:00
OUTER = make_session(at(PREV_DATE, 23), at(TEST_DATE, 7), total=420, awake=30)
INNER = make_session(at(TEST_DATE, 1), at(TEST_DATE, 6), total=300, awake=0)


def resolve_night(index: EvidenceIndex, config: PipelineConfig, *sessions):
    clusters = cluster_sessions(sessions or (OUTER, INNER))
    assert len(clusters) == 1
    return resolve_cluster(clusters[0], index, config)


# ---------------------------------------------------------------------------
# Evidence
# ---------------------------------------------------------------------------


class TestActivityEvidence:
    def test_rates_per_hour(self) -> None:
        ev = ActivityEvidence(span_minutes=120, sample_count=6, total_steps=50, significant_step_events=4)
        assert ev.hr_samples_per_hour == pytest.approx(3.0)
        assert ev.steps_per_hour == pytest.approx(25.0)
        assert ev.significant_steps_per_hour == pytest.approx(2.0)

    def test_zero_span_rates_are_zero(self) -> None:
        ev = ActivityEvidence(span_minutes=0, sample_count=3, total_steps=10)
        assert ev.hr_samples_per_hour == 0.0
        assert ev.steps_per_hour == 0.0

    def test_window_is_half_open(self) -> None:
        start, end = at(TEST_DATE, 1), at(TEST_DATE, 2)
        index = EvidenceIndex(
            hr_samples=[(start, 60.0), (at(TEST_DATE, 1, 30), 80.0), (end, 120.0)],
            step_samples=[(start, 3.0), (end, 100.0)],
        )
        ev = index.evidence(start, end)
        assert ev.sample_count == 2
        assert ev.avg_hr == pytest.approx(70.0)
        assert ev.max_hr == 80.0
        assert ev.total_steps == 3.0
        assert ev.significant_step_events == 1

    def test_empty_window(self) -> None:
        ev = EvidenceIndex().evidence(at(TEST_DATE, 1), at(TEST_DATE, 2))
        assert ev.sample_count == 0
        assert ev.avg_hr is None
        assert ev.max_hr is None
        assert ev.span_minutes == pytest.approx(60.0)

    def test_require_coverage_on_sparse_long_gap(self) -> None:
        cfg = EvidenceConfig()
        with pytest.raises(InsufficientEvidence) as exc_info:
            require_coverage(ActivityEvidence(span_minutes=120, sample_count=3), cfg)
        assert exc_info.value.hr_samples == 3

    def test_require_coverage_ignores_short_gap(self) -> None:
        require_coverage(ActivityEvidence(span_minutes=30, sample_count=0), EvidenceConfig())

    def test_require_coverage_passes_dense_gap(self) -> None:
        require_coverage(ActivityEvidence(span_minutes=120, sample_count=4), EvidenceConfig())


class TestAwakeScore:
    def test_quiet_gap_scores_zero(self) -> None:
        ev = ActivityEvidence(span_minutes=120, sample_count=12, avg_hr=55, max_hr=60)
        assert awake_score(ev, AwakeScoreConfig()) == 0

    def test_every_component_scores(self) -> None:
        ev = ActivityEvidence(
            span_minutes=60, sample_count=6, avg_hr=90, max_hr=110,
            total_steps=300, significant_step_events=5,
        )
        cfg = AwakeScoreConfig()
        assert awake_score(ev, cfg) == 7 == cfg.max_score

    def test_thresholds_are_strict(self) -> None:
        ev = ActivityEvidence(
            span_minutes=60, sample_count=6, avg_hr=70, max_hr=85,
            total_steps=20, significant_step_events=1,
        )
        assert awake_score(ev, AwakeScoreConfig()) == 0

    def test_thresholds_come_from_config(self) -> None:
        ev = ActivityEvidence(span_minutes=60, sample_count=6, avg_hr=65, max_hr=70)
        assert awake_score(ev, AwakeScoreConfig(avg_hr_bpm=60)) == 2


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


class TestResolveCluster:
    def test_single_session_is_authoritative(self, pipeline_config: PipelineConfig) -> None:
        cluster = cluster_sessions([INNER])[0]
        res = resolve_cluster(cluster, EvidenceIndex(), pipeline_config)
        assert res.shape is ClusterShape.SINGLE
        assert res.authoritative is INNER
        assert res.layers_expanded == 0

    def test_quiet_gap_expands_to_outer(self, pipeline_config: PipelineConfig) -> None:
        """Resting HR and no steps before the inner session → outer window wins."""
        gap_start, gap_end = OUTER.start, INNER.start
        index = EvidenceIndex(
            hr_samples=every(gap_start, gap_end, 10, 55.0),
            step_samples=every(gap_start, gap_end, 30, 0.0),
        )
        res = resolve_night(index, pipeline_config)
        assert res.shape is ClusterShape.NESTED
        assert res.authoritative is OUTER
        assert res.layers_expanded == 1
        assert res.stopped_reason is None
        assert res.gap_scores == (0,)
        assert res.resolved_minutes == pytest.approx(450.0)

    def test_active_gap_keeps_inner(self, pipeline_config: PipelineConfig) -> None:
        """avg HR 90 and 3 significant step events per hour → the gap was awake."""
        gap_start, gap_end = OUTER.start, INNER.start
        index = EvidenceIndex(
            hr_samples=every(gap_start, gap_end, 10, 90.0),
            step_samples=every(gap_start, gap_end, 20, 5.0),
        )
        res = resolve_night(index, pipeline_config)
        assert res.authoritative is INNER
        assert res.layers_expanded == 0
        assert res.stopped_reason == STOP_AWAKE
        assert res.gap_scores[0] >= pipeline_config.awake_score.awake_cutoff
        assert res.resolved_minutes == pytest.approx(300.0)

    def test_sparse_gap_is_inconclusive(self, pipeline_config: PipelineConfig) -> None:
        gap_start = OUTER.start
        index = EvidenceIndex(hr_samples=[(gap_start, 55.0), (gap_start + timedelta(hours=1), 56.0)])
        res = resolve_night(index, pipeline_config)
        assert res.authoritative is INNER
        assert res.stopped_reason == STOP_INCONCLUSIVE
        assert res.gap_scores == ()

    def test_short_gap_without_data_expands(self, pipeline_config: PipelineConfig) -> None:
        outer = make_session(at(TEST_DATE, 0, 40), at(TEST_DATE, 7))
        res = resolve_night(EvidenceIndex(), pipeline_config, outer, INNER)
        assert res.authoritative is outer
        assert res.layers_expanded == 1

    def test_walk_stops_at_first_awake_layer(self, pipeline_config: PipelineConfig) -> None:
        widest = make_session(at(PREV_DATE, 22), at(TEST_DATE, 8))
        hr = every(widest.start, OUTER.start, 10, 95.0) + every(OUTER.start, INNER.start, 10, 55.0)
        res = resolve_night(EvidenceIndex(hr_samples=hr), pipeline_config, widest, OUTER, INNER)
        assert res.authoritative is OUTER
        assert res.layers_expanded == 1
        assert res.stopped_reason == STOP_AWAKE
        assert res.gap_scores == (0, 3)

    def test_walk_through_every_layer(self, pipeline_config: PipelineConfig) -> None:
        widest = make_session(at(PREV_DATE, 22), at(TEST_DATE, 8))
        hr = every(widest.start, INNER.start, 10, 52.0)
        res = resolve_night(EvidenceIndex(hr_samples=hr), pipeline_config, widest, OUTER, INNER)
        assert res.authoritative is widest
        assert res.layers_expanded == 2
        assert res.stopped_reason is None

    def test_layer_without_earlier_start_is_skipped(self, pipeline_config: PipelineConfig) -> None:
        outer = make_session(at(PREV_DATE, 23), at(TEST_DATE, 7))
        inner = make_session(at(PREV_DATE, 23), at(TEST_DATE, 6))
        res = resolve_night(EvidenceIndex(), pipeline_config, outer, inner)
        assert res.shape is ClusterShape.NESTED
        assert res.authoritative is inner
        assert res.layers_expanded == 0
        assert res.gap_scores == ()

    def test_sequential_picks_most_sleep(self, pipeline_config: PipelineConfig) -> None:
        a = make_session(at(PREV_DATE, 22), at(TEST_DATE, 2), total=200)
        b = make_session(at(TEST_DATE, 1), at(TEST_DATE, 6), total=280)
        res = resolve_night(EvidenceIndex(), pipeline_config, a, b)
        assert res.shape is ClusterShape.SEQUENTIAL
        assert res.authoritative is b

    def test_sequential_tie_keeps_first(self, pipeline_config: PipelineConfig) -> None:
        a = make_session(at(PREV_DATE, 22), at(TEST_DATE, 2), total=240)
        b = make_session(at(TEST_DATE, 1), at(TEST_DATE, 6), total=240)
        res = resolve_night(EvidenceIndex(), pipeline_config, b, a)
        assert res.authoritative is a

    @pytest.mark.parametrize("bpm", [50.0, 72.0, 90.0, 120.0])
    def test_authoritative_is_always_a_member(self, pipeline_config: PipelineConfig, bpm: float) -> None:
        widest = make_session(at(PREV_DATE, 21), at(TEST_DATE, 9))
        hr = every(widest.start, INNER.end, 15, bpm)
        sessions = (widest, OUTER, INNER)
        res = resolve_night(EvidenceIndex(hr_samples=hr), pipeline_config, *sessions)
        assert any(res.authoritative is s for s in sessions)
        assert res.authoritative.start <= INNER.start
