"""
Working Hours Value Objects

``WorkingHours`` is the per-machine override supplied by the machine registry.
``WorkingCalendar`` is the resolved daily calendar used by slot search: a
working window, the days it applies to and the breaks inside it.
Weekdays use ISO numbering (Monday=1, Sunday=7).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta

from pydantic import Field, field_validator, model_validator
from typing_extensions import Self

from ...shared.base import ValueObject

WEEKEND_DAYS = frozenset({6, 7})


class WorkingHours(ValueObject):
    """Working window and working days of a single machine."""

    start: time = time(8, 0)
    end: time = time(17, 0)
    working_days: frozenset[int] = Field(default=frozenset({1, 2, 3, 4, 5}))

    @field_validator("working_days")
    @classmethod
    def _check_weekdays(cls, value: frozenset[int]) -> frozenset[int]:
        invalid = sorted(day for day in value if not 1 <= day <= 7)
        if invalid:
            raise ValueError(f"Invalid weekdays {invalid}. Must be 1-7 (Monday=1)")
        return value

    @model_validator(mode="after")
    def _check_order(self) -> Self:
        if self.end <= self.start:
            raise ValueError("End time must be after start time")
        return self


def _minutes(value: time) -> int:
    return value.hour * 60 + value.minute


@dataclass(frozen=True)
class WorkingCalendar:
    """
    Resolved calendar for one slot search.

    Immutable; built by the availability calculator from the machine override
    or the facility default, optionally widened by after-hours or weekend
    flags.
    """

    start_time: time
    end_time: time
    working_days: frozenset[int]
    breaks: tuple[tuple[time, time], ...] = field(default_factory=tuple)
    allow_weekends: bool = False

    def __post_init__(self) -> None:
        if self.end_time <= self.start_time:
            raise ValueError("End time must be after start time")

    def is_working_day(self, day: date) -> bool:
        weekday = day.isoweekday()
        if weekday in self.working_days:
            return True
        return self.allow_weekends and weekday in WEEKEND_DAYS

    def day_bounds(self, day: date) -> tuple[datetime, datetime]:
        return datetime.combine(day, self.start_time), datetime.combine(
            day, self.end_time
        )

    def break_windows(self, day: date) -> list[tuple[datetime, datetime]]:
        """Breaks on ``day`` clipped to the working window."""
        day_start, day_end = self.day_bounds(day)
        windows = []
        for break_start, break_end in self.breaks:
            start = max(datetime.combine(day, break_start), day_start)
            end = min(datetime.combine(day, break_end), day_end)
            if start < end:
                windows.append((start, end))
        return sorted(windows)

    def daily_working_minutes(self) -> int:
        """Length of the working window minus the breaks that fall inside it."""
        span = _minutes(self.end_time) - _minutes(self.start_time)
        for break_start, break_end in self.breaks:
            start = max(_minutes(break_start), _minutes(self.start_time))
            end = min(_minutes(break_end), _minutes(self.end_time))
            if start < end:
                span -= end - start
        return span

    def working_segments(self, day: date) -> list[tuple[datetime, datetime]]:
        """The working window of ``day`` split around its breaks."""
        segments = []
        cursor, day_end = self.day_bounds(day)
        for break_start, break_end in self.break_windows(day):
            if cursor < break_start:
                segments.append((cursor, break_start))
            cursor = max(cursor, break_end)
        if cursor < day_end:
            segments.append((cursor, day_end))
        return segments

    def advance_working_minutes(self, day: date, minutes: float) -> datetime:
        """
        Instant reached after ``minutes`` of work from the start of ``day``.

        Breaks are skipped. ``minutes`` must not exceed the day's working
        minutes.
        """
        remaining = timedelta(minutes=minutes)
        segments = self.working_segments(day)
        for segment_start, segment_end in segments:
            length = segment_end - segment_start
            if remaining <= length:
                return segment_start + remaining
            remaining -= length
        return segments[-1][1] if segments else self.day_bounds(day)[1]

    def start_after_working_minutes(self, day: date, minutes: float) -> datetime:
        """
        Start instant for work that follows ``minutes`` of work on ``day``.

        Unlike ``advance_working_minutes`` a segment boundary resolves to the
        start of the next segment, so work never starts at a break.
        """
        remaining = timedelta(minutes=minutes)
        for segment_start, segment_end in self.working_segments(day):
            length = segment_end - segment_start
            if remaining < length:
                return segment_start + remaining
            remaining -= length
        return self.day_bounds(day)[1]

    def next_working_day(self, day: date, max_days: int = 14) -> date | None:
        """First working day on or after ``day`` within ``max_days``."""
        for offset in range(max_days + 1):
            candidate = day + timedelta(days=offset)
            if self.is_working_day(candidate):
                return candidate
        return None
