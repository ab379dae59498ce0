"""Request-scoped accumulator passed through every pipeline stage.

One ``AggregationContext`` is created per aggregation request and discarded
afterwards.  Nothing in it is shared across requests or threads.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import tzinfo

from src.telemetry.config_loader import PipelineConfig, get_pipeline_config
from src.telemetry.dedup import SessionDeduplicator, StageDeduplicator

logger = logging.getLogger("dayline.telemetry.context")


@dataclass
class AggregationContext:
    """Per-request state: configuration, dedup caches, and local-failure counters.

    Attributes:
        config:                 Pipeline configuration in effect for this request.
        stage_dedup:            Seen-key cache for sleep stage events.
        session_dedup:          Seen-key cache for aggregated sleep sessions.
        unparseable_timestamps: Readings/events whose time could not be parsed.
        malformed_payloads:     Readings whose column-I JSON failed to decode.
        invalid_intervals:      Stage/session payloads with start >= end.
        inconclusive_gaps:      Nested-cluster gaps stopped for sparse HR data.
    """

    config: PipelineConfig = field(default_factory=get_pipeline_config)
    stage_dedup: StageDeduplicator = field(default_factory=StageDeduplicator)
    session_dedup: SessionDeduplicator = field(default_factory=SessionDeduplicator)
    unparseable_timestamps: int = 0
    malformed_payloads: int = 0
    invalid_intervals: int = 0
    inconclusive_gaps: int = 0

    @property
    def tz(self) -> tzinfo:
        return self.config.attribution.tzinfo

    def counters(self) -> dict[str, int]:
        return {
            "duplicate_stages": self.stage_dedup.dropped,
            "duplicate_sessions": self.session_dedup.dropped,
            "unparseable_timestamps": self.unparseable_timestamps,
            "malformed_payloads": self.malformed_payloads,
            "invalid_intervals": self.invalid_intervals,
            "inconclusive_gaps": self.inconclusive_gaps,
        }

    def log_summary(self) -> None:
        logger.debug(
            "Aggregation counters: %s",
            ", ".join(f"{k}={v}" for k, v in self.counters().items()),
        )
