"""
Availability Calculator Service

Finds feasible time slots on a machine given its working calendar, breaks,
maintenance windows and existing bookings. Durations up to one working day
are placed in single-day gaps; longer durations get a slot spanning
consecutive working days.
"""

import math
from collections.abc import Callable
from datetime import date, datetime, timedelta

from ....core.config import AvailabilityConfig
from ....core.observability import SLOT_SEARCHES, get_logger
from ...shared.base import as_naive_utc, utc_now
from ...shared.exceptions import ConfigurationError
from ..entities.machine import Machine
from ..entities.schedule_entry import ScheduleEntry
from ..repositories.schedule_store import ScheduleStore
from ..value_objects.time_window import TimeSlot
from ..value_objects.working_hours import WorkingCalendar, WorkingHours

logger = get_logger(__name__)

Interval = tuple[datetime, datetime]


def merge_intervals(intervals: list[Interval]) -> list[Interval]:
    """Sort and merge overlapping or touching intervals."""
    merged: list[Interval] = []
    for start, end in sorted(intervals):
        if merged and start <= merged[-1][1]:
            merged[-1] = (merged[-1][0], max(merged[-1][1], end))
        else:
            merged.append((start, end))
    return merged


def _minutes_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 60


class AvailabilityCalculator:
    """
    Calendar-aware slot search over a ScheduleStore.

    The search is read-only and deterministic: two calls with the same store
    contents and the same ``now`` return the same ordered slot list.
    """

    def __init__(
        self,
        store: ScheduleStore,
        config: AvailabilityConfig | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._config = config or AvailabilityConfig()
        self._clock = clock

    @property
    def config(self) -> AvailabilityConfig:
        return self._config

    def get_effective_calendar(
        self,
        machine: Machine,
        *,
        allow_after_hours: bool = False,
        allow_weekends: bool = False,
        working_hours: WorkingHours | None = None,
    ) -> WorkingCalendar:
        """Machine override (or facility default), widened by opt-in flags."""
        hours = working_hours or machine.working_hours
        if hours is not None:
            start, end, days = hours.start, hours.end, hours.working_days
        else:
            start = self._config.start_time
            end = self._config.end_time
            days = self._config.working_days

        if allow_after_hours:
            start = min(start, self._config.after_hours_start)
            end = max(end, self._config.after_hours_end)

        return WorkingCalendar(
            start_time=start,
            end_time=end,
            working_days=frozenset(days),
            breaks=tuple((b.start, b.end) for b in self._config.break_times),
            allow_weekends=allow_weekends,
        )

    def daily_working_minutes(self, calendar: WorkingCalendar) -> int:
        return calendar.daily_working_minutes()

    async def get_available_time_slots(
        self,
        machine: Machine,
        duration_minutes: float,
        *,
        not_before: datetime | None = None,
        now: datetime | None = None,
        allow_after_hours: bool = False,
        allow_weekends: bool = False,
        working_hours: WorkingHours | None = None,
        calendar: WorkingCalendar | None = None,
        horizon_days: int | None = None,
        max_slots: int | None = None,
        allow_multi_day: bool = True,
    ) -> list[TimeSlot]:
        """
        Ordered candidate slots for ``duration_minutes`` on ``machine``.

        Args:
            machine: Target machine
            duration_minutes: Working minutes required
            not_before: Earliest allowed start, e.g. a dependency's end
            now: Reference instant; slots never start before it
            allow_after_hours: Widen the window to the after-hours window
            allow_weekends: Treat Saturday and Sunday as working days
            working_hours: Override of the machine's working hours
            calendar: Fully resolved calendar, bypassing the options above
            horizon_days: Number of days to scan
            max_slots: Stop after this many candidates
            allow_multi_day: When False, durations longer than a working day
                yield no slots

        Returns:
            Candidate slots; a single ``is_fallback`` slot when the horizon
            held no free gap

        Raises:
            ConfigurationError: If the calendar has no working minutes
            PersistenceError: If the store query fails
        """
        now = as_naive_utc(now or self._clock())
        anchor = max(now, as_naive_utc(not_before)) if not_before else now
        calendar = calendar or self.get_effective_calendar(
            machine,
            allow_after_hours=allow_after_hours,
            allow_weekends=allow_weekends,
            working_hours=working_hours,
        )
        daily_minutes = calendar.daily_working_minutes()
        if daily_minutes <= 0:
            raise ConfigurationError(
                f"Machine {machine.id} has no working minutes per day"
            )
        max_slots = max_slots or self._config.max_slots
        occupied = await self._occupied_intervals(machine)

        if duration_minutes > daily_minutes:
            if not allow_multi_day:
                logger.warning(
                    "Duration exceeds one working day and multi-day slots are disabled",
                    machine_id=machine.id,
                    duration_minutes=duration_minutes,
                    daily_working_minutes=daily_minutes,
                )
                return []
            SLOT_SEARCHES.labels(path="multi_day").inc()
            slots = self._find_multi_day_slots(
                calendar,
                occupied,
                duration_minutes,
                anchor,
                horizon_days or self._config.multi_day_horizon_days,
                max_slots,
            )
        else:
            SLOT_SEARCHES.labels(path="single_day").inc()
            slots = self._find_single_day_slots(
                calendar,
                occupied,
                duration_minutes,
                anchor,
                horizon_days or self._config.search_horizon_days,
                max_slots,
            )

        if slots:
            return slots

        fallback = self._fallback_slot(calendar, duration_minutes, anchor)
        logger.info(
            "No free slot within horizon, using fallback",
            machine_id=machine.id,
            duration_minutes=duration_minutes,
            fallback_start=fallback.start.isoformat() if fallback else None,
        )
        SLOT_SEARCHES.labels(path="fallback").inc()
        return [fallback] if fallback else []

    async def check_maintenance_conflicts(
        self, machine: Machine, start: datetime, end: datetime
    ) -> bool:
        """Whether ``[start, end)`` overlaps any maintenance window of the machine."""
        return bool(machine.maintenance_overlapping(start, end))

    async def calculate_next_available(
        self, machine: Machine, now: datetime | None = None
    ) -> datetime:
        """End of the machine's latest booking, or ``now`` when it is idle."""
        now = as_naive_utc(now or self._clock())
        entries = [
            e
            for e in await self._store.query(machine.id)
            if e.status.occupies_machine
        ]
        latest_end = max((e.end_time for e in entries), default=now)
        return max(latest_end, now)

    def estimate_completion_time(
        self, start: datetime, duration_minutes: float
    ) -> datetime:
        """``start`` plus the duration inflated by the configured buffer."""
        buffered = duration_minutes * (1 + self._config.buffer_time_percentage / 100)
        return start + timedelta(minutes=buffered)

    def buffered_duration(self, duration_minutes: float) -> float:
        return duration_minutes * (1 + self._config.buffer_time_percentage / 100)

    async def _occupied_intervals(self, machine: Machine) -> list[Interval]:
        entries: list[ScheduleEntry] = await self._store.query(machine.id)
        intervals = [
            (e.start_time, e.end_time) for e in entries if e.status.occupies_machine
        ]
        intervals.extend((w.start, w.end) for w in machine.maintenance_windows)
        return merge_intervals(intervals)

    def _find_single_day_slots(
        self,
        calendar: WorkingCalendar,
        occupied: list[Interval],
        duration_minutes: float,
        anchor: datetime,
        horizon_days: int,
        max_slots: int,
    ) -> list[TimeSlot]:
        slots: list[TimeSlot] = []
        for offset in range(horizon_days):
            day = anchor.date() + timedelta(days=offset)
            if not calendar.is_working_day(day):
                continue

            day_start, day_end = calendar.day_bounds(day)
            scan_start = max(day_start, anchor)
            if scan_start >= day_end:
                continue

            blocked = [
                (max(start, scan_start), min(end, day_end))
                for start, end in occupied + calendar.break_windows(day)
                if start < day_end and end > scan_start
            ]

            cursor = scan_start
            for start, end in merge_intervals(blocked):
                if start > cursor and _minutes_between(cursor, start) >= duration_minutes:
                    slots.append(TimeSlot.between(cursor, start))
                cursor = max(cursor, end)
            if day_end > cursor and _minutes_between(cursor, day_end) >= duration_minutes:
                slots.append(TimeSlot.between(cursor, day_end))

            if len(slots) >= max_slots:
                break
        return slots[:max_slots]

    def _find_multi_day_slots(
        self,
        calendar: WorkingCalendar,
        occupied: list[Interval],
        duration_minutes: float,
        anchor: datetime,
        horizon_days: int,
        max_slots: int,
    ) -> list[TimeSlot]:
        daily_minutes = calendar.daily_working_minutes()
        days_needed = math.ceil(duration_minutes / daily_minutes)
        working_days = [
            anchor.date() + timedelta(days=offset)
            for offset in range(horizon_days)
            if calendar.is_working_day(anchor.date() + timedelta(days=offset))
        ]

        slots: list[TimeSlot] = []
        for index in range(len(working_days) - days_needed + 1):
            run = working_days[index : index + days_needed]
            spans = self._multi_day_spans(calendar, run, duration_minutes)
            if spans[0][0] < anchor:
                continue
            if any(self._is_blocked(span, occupied) for span in spans):
                continue
            slots.append(
                TimeSlot.between(spans[0][0], spans[-1][1], spans_days=days_needed)
            )
            if len(slots) >= max_slots:
                break
        return slots

    @staticmethod
    def _multi_day_spans(
        calendar: WorkingCalendar, run: list[date], duration_minutes: float
    ) -> list[Interval]:
        """Working span used on each day of ``run``; the last day ends exactly."""
        daily_minutes = calendar.daily_working_minutes()
        remaining = duration_minutes
        spans = []
        for day in run[:-1]:
            spans.append(calendar.day_bounds(day))
            remaining -= daily_minutes
        last_day = run[-1]
        spans.append(
            (
                calendar.day_bounds(last_day)[0],
                calendar.advance_working_minutes(last_day, remaining),
            )
        )
        return spans

    @staticmethod
    def _is_blocked(span: Interval, occupied: list[Interval]) -> bool:
        start, end = span
        return any(o_start < end and start < o_end for o_start, o_end in occupied)

    def _fallback_slot(
        self, calendar: WorkingCalendar, duration_minutes: float, anchor: datetime
    ) -> TimeSlot | None:
        """Deterministic slot at the first working day starting at or after ``anchor``."""
        day = anchor.date()
        for _ in range(self._config.multi_day_horizon_days):
            if calendar.is_working_day(day) and calendar.day_bounds(day)[0] >= anchor:
                break
            day += timedelta(days=1)
        else:
            return None

        daily_minutes = calendar.daily_working_minutes()
        days_needed = max(1, math.ceil(duration_minutes / daily_minutes))
        run = [day]
        cursor = day
        while len(run) < days_needed:
            next_day = calendar.next_working_day(cursor + timedelta(days=1))
            if next_day is None:
                return None
            run.append(next_day)
            cursor = next_day

        spans = self._multi_day_spans(calendar, run, duration_minutes)
        return TimeSlot.between(
            spans[0][0], spans[-1][1], is_fallback=True, spans_days=days_needed
        )
