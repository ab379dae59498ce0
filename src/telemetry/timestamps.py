"""Timestamp and calendar-date normalization.

Health exports mix three date/time encodings:

* ``"2026-01-28 18:03:53 -0500"``, the exporter's native form;
* ``"1/28/2026, 11:41:10 PM"``, locale-formatted strings written by the
  spreadsheet layer;
* plain ISO 8601.

``parse_timestamp`` tries, in order: a strict regex for the native form
(rewritten to an explicit-offset ISO string), dateutil's generic parser,
and a space-to-``T`` fallback for partial ISO strings.  The native form is
never handed to the generic parser directly.  The generic parser only counts
as a match when the string names a full year, month and day; dateutil would
otherwise fill the gaps from today.  The first strategy that succeeds wins.
"""

from __future__ import annotations

import logging
import re
from datetime import date, datetime, tzinfo

from dateutil import parser as dtparser

from src.telemetry.errors import UnparseableTimestamp

logger = logging.getLogger("dayline.telemetry.timestamps")

_OFFSET_FORMAT = re.compile(
    r"^(\d{4})-(\d{2})-(\d{2})\s+(\d{2}):(\d{2}):(\d{2})\s+([+-])(\d{2})(\d{2})$"
)
_PARTIAL_ISO = re.compile(r"^\d{4}-\d{2}-\d{2}\s\d{2}:")


def _from_offset_format(text: str) -> datetime | None:
    match = _OFFSET_FORMAT.match(text)
    if not match:
        return None
    y, mo, d, h, mi, s, sign, oh, om = match.groups()
    iso = f"{y}-{mo}-{d}T{h}:{mi}:{s}{sign}{oh}:{om}"
    try:
        return datetime.fromisoformat(iso)
    except ValueError:
        return None


# Two distinct defaults: a field dateutil filled in differs between the parses
_DEFAULT_A = datetime(1900, 1, 1)
_DEFAULT_B = datetime(1904, 2, 2)


def _from_generic(text: str) -> datetime | None:
    """Generic parse, rejecting strings that do not name a full calendar date."""
    try:
        first = dtparser.parse(text, default=_DEFAULT_A)
        second = dtparser.parse(text, default=_DEFAULT_B)
    except (ValueError, OverflowError):
        return None
    if first.date() != second.date():
        return None
    return first


def _from_partial_iso(text: str) -> datetime | None:
    if _PARTIAL_ISO.match(text):
        text = text.replace(" ", "T", 1)
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


_STRATEGIES = (_from_offset_format, _from_generic, _from_partial_iso)


def parse_timestamp(raw: str | None, default_tz: tzinfo) -> datetime:
    """Parse a date/time string into a timezone-aware datetime.

    Args:
        raw:        The source string.
        default_tz: Zone applied to strings that carry no offset.

    Returns:
        Aware datetime.

    Raises:
        UnparseableTimestamp: If no strategy succeeds.
    """
    if not raw or not raw.strip():
        raise UnparseableTimestamp(raw or "")
    text = raw.strip()

    for strategy in _STRATEGIES:
        dt = strategy(text)
        if dt is not None:
            if dt.tzinfo is None:
                dt = dt.replace(tzinfo=default_tz)
            return dt

    raise UnparseableTimestamp(raw)


def try_parse_timestamp(raw: str | None, default_tz: tzinfo) -> datetime | None:
    """Like ``parse_timestamp`` but returns None instead of raising."""
    try:
        return parse_timestamp(raw, default_tz)
    except UnparseableTimestamp:
        return None


def parse_calendar_date(raw: str | None) -> date | None:
    """Parse a calendar-date column value.

    Accepts ``M/D/YYYY`` and ``YYYY-MM-DD``; anything after the date part
    (e.g. a time of day) is ignored.

    Returns:
        The date, or None if the string is empty or malformed.
    """
    if not raw:
        return None
    text = raw.strip().split(" ")[0].split("T")[0].rstrip(",")
    try:
        if "/" in text:
            parts = text.split("/")
            if len(parts) != 3:
                return None
            month, day, year = (int(p) for p in parts)
            return date(year, month, day)
        if "-" in text:
            parts = text.split("-")
            if len(parts) != 3:
                return None
            year, month, day = (int(p) for p in parts)
            return date(year, month, day)
    except ValueError:
        return None
    return None
