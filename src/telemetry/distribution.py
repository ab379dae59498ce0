"""Five-number summary of a date's heart-rate samples for box-plot views."""

from __future__ import annotations

from typing import Iterable

from src.telemetry.base import FiveNumberSummary


def five_number_summary(values: Iterable[float]) -> FiveNumberSummary | None:
    """Compute min / q1 / median / q3 / max over ``values``.

    Quartiles use lower-biased index selection (``sorted[n // 4]`` and
    ``sorted[3n // 4]``), not interpolation, so multi-day charts stay
    comparable with historical output.  The median is rounded to one decimal.

    Returns:
        The summary, or None for an empty input.
    """
    ordered = sorted(values)
    n = len(ordered)
    if n == 0:
        return None

    if n % 2 == 1:
        median = ordered[n // 2]
    else:
        median = (ordered[n // 2 - 1] + ordered[n // 2]) / 2

    return FiveNumberSummary(
        min=ordered[0],
        q1=ordered[n // 4],
        median=round(median, 1),
        q3=ordered[(3 * n) // 4],
        max=ordered[-1],
        count=n,
    )
