"""Exception taxonomy for the telemetry pipeline.

Every error here is local to one reading, one cluster, or one date.  None of
them aborts aggregation for other dates; the component that detects the
problem catches it at its own boundary and records it on the request's
AggregationContext.
"""

from __future__ import annotations


class TelemetryError(Exception):
    """Base class for all telemetry pipeline errors."""


class UnparseableTimestamp(TelemetryError, ValueError):
    """A date/time string matched none of the parse strategies."""

    def __init__(self, raw: str) -> None:
        super().__init__(f"Unparseable timestamp: {raw!r}")
        self.raw = raw


class MalformedPayload(TelemetryError, ValueError):
    """A reading's raw payload could not be decoded into a structured dict."""


class InsufficientEvidence(TelemetryError):
    """An activity gap is too sparsely instrumented to classify.

    Raised by the evidence check inside the nested-session resolver and
    translated there into "stop expanding"; it never reaches the caller.
    """

    def __init__(self, span_minutes: float, hr_samples: int) -> None:
        super().__init__(
            f"Inconclusive gap: {hr_samples} HR samples over {span_minutes:.0f} min"
        )
        self.span_minutes = span_minutes
        self.hr_samples = hr_samples
