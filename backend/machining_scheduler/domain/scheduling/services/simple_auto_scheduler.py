"""
Simple Auto Scheduler

Degraded-mode strategy: instances are visited strictly by ``order_index``
and packed back to back, day by day, on the best-ranked capable machine.
The dependency graph is only consulted to refuse cyclic batches.
"""

import math
from collections.abc import Callable
from datetime import date, datetime, timedelta

from pydantic import BaseModel, Field

from ....core.config import SchedulingOptions
from ....core.observability import get_logger
from ...shared.base import UTCDateTime, utc_now
from ...shared.exceptions import (
    CircularDependencyError,
    MachineUnavailableError,
    MultipleDependencyError,
    SlotNotFoundError,
)
from ..algorithms.dependency_resolver import DependencyResolver
from ..entities.machine import Machine
from ..entities.process_instance import ProcessInstance
from ..entities.schedule_entry import ScheduleEntry, ScheduleMetrics
from ..repositories.schedule_store import ScheduleStore
from ..value_objects.working_hours import WorkingCalendar
from .availability_calculator import AvailabilityCalculator
from .base_scheduler import BaseAutoScheduler, Placement, RunContext
from .machine_matcher import MachineMatcher

logger = get_logger(__name__)


class SimpleSchedulingOptions(BaseModel):
    max_daily_hours: float = Field(default=8, gt=0, le=24)
    search_days: int = Field(default=30, ge=1)
    capacity_days: int = Field(default=5, ge=1)
    start_date: UTCDateTime | None = None


class SimpleAutoScheduler(BaseAutoScheduler):
    """
    Sequential packing by order index.

    Each instance starts no earlier than the end of the previously placed
    one and is packed into the first working day whose remaining capacity
    can take it (or, for long work, the start of it).
    """

    strategy_name = "simple"
    respects_dependencies = False

    def __init__(
        self,
        store: ScheduleStore,
        availability_calculator: AvailabilityCalculator | None = None,
        machine_matcher: MachineMatcher | None = None,
        dependency_resolver: DependencyResolver | None = None,
        options: SchedulingOptions | None = None,
        simple_options: SimpleSchedulingOptions | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        super().__init__(
            store,
            availability_calculator=availability_calculator,
            machine_matcher=machine_matcher,
            dependency_resolver=dependency_resolver,
            options=options,
            clock=clock,
        )
        self._simple_options = simple_options or SimpleSchedulingOptions()
        self._minutes_used: dict[str, dict[date, float]] = {}
        self._cursor: datetime | None = None

    def validate(self, instances: list[ProcessInstance]) -> None:
        super().validate(instances)
        cycles = self._resolver.find_cycles(instances)
        if cycles:
            raise MultipleDependencyError(
                [CircularDependencyError([cycle]) for cycle in cycles]
            )

    def _begin_run(self, context: RunContext) -> None:
        self._minutes_used = {}
        start_date = self._simple_options.start_date
        self._cursor = max(start_date, context.now) if start_date else context.now

    def order_instances(
        self, instances: list[ProcessInstance], now: datetime
    ) -> list[ProcessInstance]:
        return sorted(instances, key=lambda instance: instance.order_index)

    async def place_instance(
        self,
        instance: ProcessInstance,
        earliest_start: datetime,
        context: RunContext,
    ) -> Placement:
        ranked = self._matcher.find_capable_machines(
            instance, context.active_machines
        )
        if not ranked:
            raise MachineUnavailableError(
                instance.id,
                f"no capable machines found for {instance.label}",
            )

        not_before = max(earliest_start, self._cursor or earliest_start)
        duration = self.entry_duration_minutes(instance)
        for candidate in ranked:
            placement = await self._pack(
                candidate.machine, instance, duration, not_before
            )
            if placement:
                self._cursor = placement.end_time
                return placement

        raise SlotNotFoundError(
            instance.id,
            [candidate.machine_id for candidate in ranked],
            self._simple_options.search_days,
        )

    async def _pack(
        self,
        machine: Machine,
        instance: ProcessInstance,
        duration: float,
        not_before: datetime,
    ) -> Placement | None:
        calendar = self._availability.get_effective_calendar(machine)
        capacity = min(
            calendar.daily_working_minutes(),
            self._simple_options.max_daily_hours * 60,
        )
        used = self._minutes_used.setdefault(machine.id, {})

        for offset in range(self._simple_options.search_days):
            day = not_before.date() + timedelta(days=offset)
            if not calendar.is_working_day(day):
                continue
            day_used = max(
                used.get(day, 0.0), self._minutes_before(calendar, day, not_before)
            )
            available = capacity - day_used
            if available <= 0 or available < min(duration, capacity):
                continue

            start = calendar.start_after_working_minutes(day, day_used)
            end, allocation = self._allocate(
                calendar, capacity, day, day_used, duration
            )
            candidate = ScheduleEntry(
                machine_id=machine.id,
                process_instance_id=instance.id,
                start_time=start,
                end_time=end,
            )
            if await self._store.detect_conflicts(candidate):
                continue
            for booked_day, minutes in allocation.items():
                used[booked_day] = used.get(booked_day, 0.0) + minutes
            return Placement(machine=machine, start_time=start, end_time=end)
        return None

    @staticmethod
    def _minutes_before(
        calendar: WorkingCalendar, day: date, moment: datetime
    ) -> float:
        """Working minutes of ``day`` that already lie before ``moment``."""
        if moment.date() != day:
            return 0.0
        elapsed = 0.0
        for start, end in calendar.working_segments(day):
            if moment <= start:
                break
            elapsed += (min(moment, end) - start).total_seconds() / 60
        return math.ceil(elapsed)

    @staticmethod
    def _allocate(
        calendar: WorkingCalendar,
        capacity: float,
        day: date,
        day_used: float,
        duration: float,
    ) -> tuple[datetime, dict[date, float]]:
        """End instant and per-day minutes for work after ``day_used`` minutes."""
        allocation: dict[date, float] = {}
        remaining = duration
        used = day_used
        while True:
            take = min(remaining, capacity - used)
            allocation[day] = take
            remaining -= take
            if remaining <= 0:
                return calendar.advance_working_minutes(day, used + take), allocation
            next_day = day + timedelta(days=1)
            day = calendar.next_working_day(next_day) or next_day
            used = 0.0

    def calculate_metrics(self, entries: list[ScheduleEntry]) -> ScheduleMetrics:
        """Utilization is measured against a multi-day capacity per machine."""
        metrics = super().calculate_metrics(entries)
        if not entries:
            return metrics

        minutes_by_machine: dict[str, float] = {}
        for entry in entries:
            minutes_by_machine[entry.machine_id] = (
                minutes_by_machine.get(entry.machine_id, 0.0) + entry.duration_minutes
            )
        capacity = (
            self._simple_options.capacity_days
            * self._simple_options.max_daily_hours
            * 60
        )
        utilizations = [
            min(100.0, minutes / capacity * 100)
            for minutes in minutes_by_machine.values()
        ]
        metrics.average_utilization = round(sum(utilizations) / len(utilizations), 2)
        return metrics
