"""Tests for the /api/v1/stats/hourly and /health endpoints."""

from __future__ import annotations

from typing import Iterator

import pytest
from fastapi.testclient import TestClient

from src.main import app
from src.services.row_store import InMemoryRowStore, get_row_store
from src.telemetry.tests.conftest import (
    NEXT_DATE,
    PREV_DATE,
    TEST_DATE,
    at,
    daily_row,
    ecg_row,
    hr_row,
    manual_row,
    session_row,
)

URL = "/api/v1/stats/hourly"


class FailingRowStore:
    async def fetch_hourly(self):
        raise ConnectionError("sheet unreachable")

    async def fetch_daily(self):
        raise ConnectionError("sheet unreachable")

    async def fetch_manual(self):
        raise ConnectionError("sheet unreachable")

    async def fetch_ecg(self):
        raise ConnectionError("sheet unreachable")


@pytest.fixture
def store() -> InMemoryRowStore:
    return InMemoryRowStore(
        hourly=[
            hr_row(at(TEST_DATE, 9), 60),
            hr_row(at(TEST_DATE, 12), 70),
            hr_row(at(TEST_DATE, 18), 80),
            hr_row(at(NEXT_DATE, 12), 65),
            session_row(at(PREV_DATE, 23), at(TEST_DATE, 7), total_h=7, awake_h=0.25, deep_h=1),
        ],
        daily=[daily_row(NEXT_DATE, steps=6500)],
        manual=[manual_row(TEST_DATE, feet_on_ground=3, brain_time=5.5)],
        ecg=[
            ecg_row(TEST_DATE, "1.25", "62"),
            ecg_row(TEST_DATE, "1.35", "66"),
            ecg_row(PREV_DATE, "1.1", "70"),
        ],
    )


@pytest.fixture
def client(store: InMemoryRowStore) -> Iterator[TestClient]:
    app.dependency_overrides[get_row_store] = lambda: store
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


class TestSingleDay:
    def test_rows_for_date(self, client: TestClient) -> None:
        resp = client.get(URL, params={"date": "2026-01-28"})
        assert resp.status_code == 200
        body = resp.json()
        assert body["date"] == "2026-01-28"
        assert body["count"] == 4
        assert [r["metric"] for r in body["rows"]] == ["heart_rate"] * 3 + ["sleep_analysis"]
        first = body["rows"][0]
        assert first["value"] == 60
        assert first["hour"] == 9
        assert "rawData" in first
        assert first["spillover"] is False

    def test_empty_day(self, client: TestClient) -> None:
        resp = client.get(URL, params={"date": "2025-06-01"})
        assert resp.status_code == 200
        assert resp.json() == {"date": "2025-06-01", "rows": [], "count": 0}

    def test_bad_format(self, client: TestClient) -> None:
        resp = client.get(URL, params={"date": "01/28/2026"})
        assert resp.status_code == 400
        assert "YYYY-MM-DD" in resp.json()["detail"]

    def test_impossible_date(self, client: TestClient) -> None:
        resp = client.get(URL, params={"date": "2026-02-30"})
        assert resp.status_code == 400


class TestMultiDay:
    def test_summaries_per_date(self, client: TestClient) -> None:
        resp = client.get(URL, params={"startDate": "2026-01-28", "endDate": "2026-01-29"})
        assert resp.status_code == 200
        body = resp.json()
        assert body["startDate"] == "2026-01-28"
        assert body["endDate"] == "2026-01-29"
        assert body["count"] == 2

        today, tomorrow = body["days"]
        assert today["date"] == "2026-01-28"
        assert today["heartRate"]["avg"] == 70
        assert today["hr"]["median"] == 70
        assert today["hr"]["count"] == 3
        assert today["sleep"]["total"] == 435
        assert today["sleep"]["deep"] == 60
        assert today["sleep"]["source"] == "sessions"
        assert today["feetOnGround"] == 3
        assert today["brainTime"] == 5.5
        assert today["avgHR_awake"] == 70
        assert today["ecg"] == {"avgRsRatio": 1.3, "avgHr": 64, "count": 2}

        assert tomorrow["steps"] == 6500
        assert tomorrow["sleep"] is None
        assert tomorrow["ecg"] is None

    def test_start_after_end(self, client: TestClient) -> None:
        resp = client.get(URL, params={"startDate": "2026-01-29", "endDate": "2026-01-28"})
        assert resp.status_code == 400
        assert resp.json()["detail"] == "startDate must be <= endDate"

    def test_bad_start_date(self, client: TestClient) -> None:
        resp = client.get(URL, params={"startDate": "2026-1-28", "endDate": "2026-01-29"})
        assert resp.status_code == 400


class TestErrors:
    def test_missing_params(self, client: TestClient) -> None:
        resp = client.get(URL)
        assert resp.status_code == 400

    def test_start_without_end(self, client: TestClient) -> None:
        resp = client.get(URL, params={"startDate": "2026-01-28"})
        assert resp.status_code == 400

    def test_store_failure_multi_day(self, client: TestClient) -> None:
        app.dependency_overrides[get_row_store] = lambda: FailingRowStore()
        resp = client.get(URL, params={"startDate": "2026-01-28", "endDate": "2026-01-28"})
        assert resp.status_code == 500
        assert resp.json()["detail"] == "Failed to fetch health stats"

    def test_store_failure_single_day(self, client: TestClient) -> None:
        app.dependency_overrides[get_row_store] = lambda: FailingRowStore()
        resp = client.get(URL, params={"date": "2026-01-28"})
        assert resp.status_code == 500
        assert resp.json()["detail"] == "Failed to fetch hourly data"


class TestHealth:
    def test_health(self, client: TestClient) -> None:
        resp = client.get("/health")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "healthy"
        assert body["rowStore"] == "ready"
        assert body["pipelineConfig"]
