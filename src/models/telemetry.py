"""Pydantic response models for the stats endpoints.

Field aliases keep the JSON contract the dashboard already consumes
(``startDate``, ``rawData``, ``avgHR_awake`` and so on).
"""

from __future__ import annotations

import datetime as dt

from pydantic import Field

from src.models.base import DaylineBase
from src.telemetry.base import DayRecord
from src.telemetry.pipeline import SingleDayRows


# ---------- Single day ----------

class HourlyRowRead(DaylineBase):
    timestamp: str
    date: str
    hour: int | None = None
    metric: str
    value: float | None = None
    min: float | None = None
    max: float | None = None
    source: str = ""
    raw_data: str = Field(default="", alias="rawData")
    spillover: bool = False


class SingleDayResponse(DaylineBase):
    date: dt.date
    rows: list[HourlyRowRead] = Field(default_factory=list)
    count: int

    @classmethod
    def from_selection(cls, selection: SingleDayRows) -> SingleDayResponse:
        return cls(
            date=selection.date,
            rows=[HourlyRowRead.model_validate(row) for row in selection.rows],
            count=selection.count,
        )


# ---------- Multi day ----------

class FiveNumberSummaryRead(DaylineBase):
    min: float
    q1: float
    median: float
    q3: float
    max: float
    count: int


class HeartRateStatsRead(DaylineBase):
    avg: float
    min: float
    max: float
    count: int


class SleepCompositionRead(DaylineBase):
    total: int
    deep: int | None = None
    rem: int | None = None
    core: int | None = None
    awake: int | None = None
    source: str


class HrvRead(DaylineBase):
    avg: float
    count: int | None = None


class EcgRead(DaylineBase):
    avg_rs_ratio: float = Field(alias="avgRsRatio")
    avg_hr: int | None = Field(default=None, alias="avgHr")
    count: int


class DaySummaryRead(DaylineBase):
    date: dt.date
    hr: FiveNumberSummaryRead | None = None
    heart_rate: HeartRateStatsRead | None = Field(default=None, alias="heartRate")
    resting_heart_rate: float | None = Field(default=None, alias="restingHeartRate")
    steps: int | None = None
    sleep: SleepCompositionRead | None = None
    hrv: HrvRead | None = None
    feet_on_ground: float | None = Field(default=None, alias="feetOnGround")
    brain_time: float | None = Field(default=None, alias="brainTime")
    hr_awake_avg: float | None = Field(default=None, alias="avgHR_awake")
    hr_asleep_avg: float | None = Field(default=None, alias="avgHR_asleep")
    ecg: EcgRead | None = None

    @classmethod
    def from_record(cls, record: DayRecord) -> DaySummaryRead:
        return cls(
            date=record.date,
            hr=FiveNumberSummaryRead.model_validate(record.heart_rate_distribution)
            if record.heart_rate_distribution else None,
            heart_rate=HeartRateStatsRead.model_validate(record.heart_rate)
            if record.heart_rate else None,
            resting_heart_rate=record.resting_heart_rate,
            steps=record.steps,
            sleep=SleepCompositionRead.model_validate(record.sleep) if record.sleep else None,
            hrv=HrvRead.model_validate(record.heart_rate_variability)
            if record.heart_rate_variability else None,
            feet_on_ground=record.manual.get("feet_on_ground"),
            brain_time=record.manual.get("brain_time"),
            hr_awake_avg=record.hr_awake_avg,
            hr_asleep_avg=record.hr_asleep_avg,
            ecg=EcgRead.model_validate(record.ecg) if record.ecg else None,
        )


class MultiDayResponse(DaylineBase):
    start_date: dt.date = Field(alias="startDate")
    end_date: dt.date = Field(alias="endDate")
    days: list[DaySummaryRead] = Field(default_factory=list)
    count: int
