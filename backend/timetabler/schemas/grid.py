from __future__ import annotations

import re

from pydantic import BaseModel, Field, field_validator, model_validator

DAY_VALUES = (
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
    "Sunday",
)

DEFAULT_DAYS = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday"]

TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


def parse_time_to_minutes(value: str) -> int:
    if not TIME_PATTERN.match(value):
        raise ValueError("Time must be in HH:MM 24-hour format")
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)


class PeriodEntry(BaseModel):
    label: str | None = Field(default=None, max_length=50)
    start_time: str
    end_time: str
    is_break: bool = False

    @field_validator("start_time", "end_time")
    @classmethod
    def validate_time(cls, value: str) -> str:
        if not TIME_PATTERN.match(value):
            raise ValueError("Time must be in HH:MM 24-hour format")
        return value

    @model_validator(mode="after")
    def validate_time_order(self) -> "PeriodEntry":
        if parse_time_to_minutes(self.end_time) <= parse_time_to_minutes(self.start_time):
            raise ValueError("Period end time must be after start time")
        label = (self.label or "").strip()
        self.label = label or f"{self.start_time}-{self.end_time}"
        return self


def default_periods() -> list[PeriodEntry]:
    return [
        PeriodEntry(start_time="09:00", end_time="10:00"),
        PeriodEntry(start_time="10:00", end_time="11:00"),
        PeriodEntry(label="Break", start_time="11:00", end_time="11:30", is_break=True),
        PeriodEntry(start_time="11:30", end_time="12:30"),
        PeriodEntry(start_time="12:30", end_time="13:30"),
        PeriodEntry(label="Lunch", start_time="13:30", end_time="14:30", is_break=True),
        PeriodEntry(start_time="14:30", end_time="15:30"),
        PeriodEntry(start_time="15:30", end_time="16:30"),
    ]


class GridConfig(BaseModel):
    """Weekly grid: ordered days times ordered periods, breaks excluded.

    ``double_slot_pairs`` lists the ``(period_index, period_index + 1)`` pairs,
    counted over teaching periods only, that may host a double-length session.
    When left out, every two adjacent teaching periods with no break between
    them qualify.
    """

    days: list[str] = Field(default_factory=lambda: list(DEFAULT_DAYS), min_length=1, max_length=7)
    periods: list[PeriodEntry] = Field(default_factory=default_periods, min_length=1, max_length=24)
    double_slot_pairs: list[tuple[int, int]] | None = None

    @field_validator("days")
    @classmethod
    def validate_days(cls, value: list[str]) -> list[str]:
        cleaned = [day.strip() for day in value]
        invalid = [day for day in cleaned if day not in DAY_VALUES]
        if invalid:
            raise ValueError(f"Invalid day value(s): {', '.join(invalid)}")
        duplicates = sorted({day for day in cleaned if cleaned.count(day) > 1})
        if duplicates:
            raise ValueError(f"Duplicate day entries: {', '.join(duplicates)}")
        return cleaned

    @model_validator(mode="after")
    def validate_periods(self) -> "GridConfig":
        for index in range(1, len(self.periods)):
            previous = self.periods[index - 1]
            current = self.periods[index]
            if parse_time_to_minutes(current.start_time) < parse_time_to_minutes(previous.end_time):
                raise ValueError("Periods must be listed in time order and cannot overlap")

        labels = [period.label for period in self.periods]
        duplicates = sorted({label for label in labels if labels.count(label) > 1})
        if duplicates:
            raise ValueError(f"Duplicate period label(s): {', '.join(duplicates)}")

        teaching_count = sum(1 for period in self.periods if not period.is_break)
        if teaching_count == 0:
            raise ValueError("Grid must contain at least one teaching period")

        if self.double_slot_pairs is not None:
            normalized: list[tuple[int, int]] = []
            for first, second in self.double_slot_pairs:
                if second != first + 1:
                    raise ValueError("Double slot pairs must be consecutive period indices")
                if first < 0 or second >= teaching_count:
                    raise ValueError(f"Double slot pair ({first}, {second}) is outside the grid")
                if (first, second) not in normalized:
                    normalized.append((first, second))
            self.double_slot_pairs = sorted(normalized)
        return self

    @property
    def teaching_periods(self) -> list[PeriodEntry]:
        return [period for period in self.periods if not period.is_break]
