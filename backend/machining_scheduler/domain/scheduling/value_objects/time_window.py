"""
Time Window Value Objects

Absolute time periods used for maintenance windows, query ranges and
candidate slots. All intervals are half-open: ``[start, end)``.
"""

from datetime import datetime, timedelta

from pydantic import model_validator
from typing_extensions import Self

from ...shared.base import UTCDateTime, ValueObject


class TimeWindow(ValueObject):
    """A period between two instants, e.g. a maintenance window or a date range."""

    start: UTCDateTime
    end: UTCDateTime

    @model_validator(mode="after")
    def _check_order(self) -> Self:
        if self.start > self.end:
            raise ValueError("Start time must be before end time")
        return self

    def duration_minutes(self) -> float:
        return (self.end - self.start).total_seconds() / 60

    def overlaps(self, start: datetime, end: datetime) -> bool:
        """Half-open overlap test against ``[start, end)``."""
        return start < self.end and self.start < end

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment < self.end

    def __str__(self) -> str:
        return f"{self.start.isoformat()} - {self.end.isoformat()}"


class TimeSlot(ValueObject):
    """
    A candidate interval on a machine.

    A slot is never a commitment; it becomes a ScheduleEntry only once the
    orchestrator accepts and persists it. ``is_fallback`` marks the
    deterministic slot returned when the horizon held no free gap.
    """

    start: UTCDateTime
    end: UTCDateTime
    duration_minutes: float
    is_fallback: bool = False
    # Working days covered; > 1 for a multi-day slot whose end is exact
    spans_days: int = 1

    @classmethod
    def between(
        cls,
        start: datetime,
        end: datetime,
        *,
        is_fallback: bool = False,
        spans_days: int = 1,
    ) -> "TimeSlot":
        return cls(
            start=start,
            end=end,
            duration_minutes=(end - start).total_seconds() / 60,
            is_fallback=is_fallback,
            spans_days=spans_days,
        )

    @property
    def is_multi_day(self) -> bool:
        return self.spans_days > 1

    def fits(self, duration_minutes: float, not_before: datetime | None = None) -> bool:
        """Whether ``duration_minutes`` fits in the slot from ``not_before`` on."""
        start = max(self.start, not_before) if not_before else self.start
        return start + timedelta(minutes=duration_minutes) <= self.end
