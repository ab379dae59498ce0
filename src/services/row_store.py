"""Row store: where the four raw feeds come from.

The pipeline only ever sees positional rows (lists of strings).  A store
hands them out per feed:

* hourly feed: nine columns, timestamp → raw JSON payload;
* daily feed: date plus pre-aggregated per-date columns;
* manual-entry feed: one row per manually logged date;
* ECG feed: one row per ECG recording (date, classification, HR, R/S ratio).

``InMemoryRowStore`` keeps the rows in process memory and can be seeded from
a JSON file with one row list per feed
(``{"hourly": [...], "daily": [...], "manual": [...], "ecg": [...]}``).  The
module-level store is created once at app startup, like a connection pool.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol, Sequence

from src.config import Settings, get_settings

logger = logging.getLogger("dayline.row_store")

Rows = list[list[str]]


class RowStore(Protocol):
    async def fetch_hourly(self) -> Rows: ...

    async def fetch_daily(self) -> Rows: ...

    async def fetch_manual(self) -> Rows: ...

    async def fetch_ecg(self) -> Rows: ...


def _normalize(rows: Sequence[Sequence[Any]]) -> Rows:
    return [["" if cell is None else str(cell) for cell in row] for row in rows]


class InMemoryRowStore:
    """RowStore backed by in-process lists."""

    def __init__(
        self,
        hourly: Sequence[Sequence[Any]] = (),
        daily: Sequence[Sequence[Any]] = (),
        manual: Sequence[Sequence[Any]] = (),
        ecg: Sequence[Sequence[Any]] = (),
    ) -> None:
        self._hourly = _normalize(hourly)
        self._daily = _normalize(daily)
        self._manual = _normalize(manual)
        self._ecg = _normalize(ecg)

    @classmethod
    def from_json_file(cls, path: Path) -> InMemoryRowStore:
        """Seed a store from a JSON file with ``hourly``/``daily``/``manual``/``ecg`` keys.

        Raises:
            FileNotFoundError: If the file does not exist.
            ValueError:        If the file is not a JSON object of row lists.
        """
        if not path.exists():
            raise FileNotFoundError(f"Row store seed file not found: {path}")
        with path.open("r", encoding="utf-8") as fh:
            try:
                data = json.load(fh)
            except json.JSONDecodeError as exc:
                raise ValueError(f"Invalid row store seed JSON in {path}: {exc}") from exc
        if not isinstance(data, dict):
            raise ValueError(f"Row store seed must be a JSON object, got {type(data).__name__}")
        store = cls(
            hourly=data.get("hourly") or [],
            daily=data.get("daily") or [],
            manual=data.get("manual") or [],
            ecg=data.get("ecg") or [],
        )
        logger.info(
            "Seeded row store from %s (%d hourly, %d daily, %d manual, %d ECG rows)",
            path, len(store._hourly), len(store._daily), len(store._manual), len(store._ecg),
        )
        return store

    async def fetch_hourly(self) -> Rows:
        return [list(r) for r in self._hourly]

    async def fetch_daily(self) -> Rows:
        return [list(r) for r in self._daily]

    async def fetch_manual(self) -> Rows:
        return [list(r) for r in self._manual]

    async def fetch_ecg(self) -> Rows:
        return [list(r) for r in self._ecg]


@dataclass
class FeedRows:
    hourly: Rows = field(default_factory=list)
    daily: Rows = field(default_factory=list)
    manual: Rows = field(default_factory=list)
    ecg: Rows = field(default_factory=list)


async def fetch_feeds(store: RowStore) -> FeedRows:
    """Fetch all four feeds concurrently."""
    hourly, daily, manual, ecg = await asyncio.gather(
        store.fetch_hourly(),
        store.fetch_daily(),
        store.fetch_manual(),
        store.fetch_ecg(),
    )
    logger.debug(
        "Fetched %d hourly, %d daily, %d manual, %d ECG rows",
        len(hourly), len(daily), len(manual), len(ecg),
    )
    return FeedRows(hourly=hourly, daily=daily, manual=manual, ecg=ecg)


# ---------------------------------------------------------------------------
# Module-level store, initialized once at app startup
# ---------------------------------------------------------------------------

_store: RowStore | None = None


def init_row_store(settings: Settings | None = None) -> RowStore:
    """Create the process-wide row store.  Call once at app startup."""
    global _store
    s = settings or get_settings()
    if s.row_store_seed_path is not None:
        _store = InMemoryRowStore.from_json_file(s.row_store_seed_path)
    else:
        _store = InMemoryRowStore()
        logger.info("Row store initialized empty (no seed path configured)")
    return _store


def close_row_store() -> None:
    global _store
    _store = None


def get_row_store() -> RowStore:
    if _store is None:
        raise RuntimeError("Row store not initialized; call init_row_store() first")
    return _store
