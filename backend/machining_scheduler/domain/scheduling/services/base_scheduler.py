"""
Scheduling Pipeline

Shared orchestration for the auto-scheduling strategies: validation,
dependency checks, the sequential per-instance placement loop, persistence
through the ScheduleStore and metric aggregation. Strategies decide the
visiting order and how a machine/slot is picked for an instance.
"""

import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from ....core.config import SchedulingOptions
from ....core.observability import get_logger, record_scheduling_run
from ...shared.base import as_naive_utc, utc_now
from ...shared.exceptions import (
    ConfigurationError,
    DependencyError,
    MachineUnavailableError,
    MultipleDependencyError,
    MultipleValidationError,
    PersistenceError,
    SlotNotFoundError,
    ValidationError,
)
from ..algorithms.dependency_resolver import DependencyResolver
from ..entities.machine import Machine
from ..entities.process_instance import ProcessInstance
from ..entities.schedule_entry import (
    Conflict,
    ScheduleEntry,
    ScheduleMetrics,
    ScheduleResult,
)
from ..repositories.schedule_store import ScheduleStore
from ..value_objects.enums import ConflictType
from ..value_objects.time_window import TimeSlot
from .availability_calculator import AvailabilityCalculator
from .machine_matcher import MachineMatcher

logger = get_logger(__name__)


@dataclass
class Placement:
    """A machine and interval accepted for one process instance."""

    machine: Machine
    start_time: datetime
    end_time: datetime


@dataclass
class RunContext:
    """Mutable state of one scheduling run."""

    now: datetime
    active_machines: list[Machine]
    workloads: dict[str, float]
    end_times: dict[str, datetime] = field(default_factory=dict)
    failed_ids: set[str] = field(default_factory=set)


class BaseAutoScheduler(ABC):
    """
    Template for a deterministic, greedy scheduling run.

    ``schedule`` never raises: batch-level failures and unexpected errors are
    returned as a failed ScheduleResult. Instances are placed strictly one
    after another because a dependent's earliest start is the end time of its
    dependencies placed earlier in the same run.
    """

    strategy_name = "base"
    respects_dependencies = True

    def __init__(
        self,
        store: ScheduleStore,
        availability_calculator: AvailabilityCalculator | None = None,
        machine_matcher: MachineMatcher | None = None,
        dependency_resolver: DependencyResolver | None = None,
        options: SchedulingOptions | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._clock = clock
        self._availability = availability_calculator or AvailabilityCalculator(
            store, clock=clock
        )
        self._matcher = machine_matcher or MachineMatcher()
        self._resolver = dependency_resolver or DependencyResolver()
        self._options = options or SchedulingOptions()

    async def schedule(
        self,
        instances: list[ProcessInstance],
        machines: list[Machine],
        now: datetime | None = None,
    ) -> ScheduleResult:
        """
        Schedule a batch of process instances.

        Args:
            instances: Batch to schedule
            machines: Machine registry snapshot
            now: Reference instant; defaults to the injected clock

        Returns:
            ScheduleResult; ``success`` is True only without conflicts
        """
        started = time.perf_counter()
        now = as_naive_utc(now or self._clock())
        logger.info(
            "Scheduling run started",
            strategy=self.strategy_name,
            instance_count=len(instances),
            machine_count=len(machines),
            now=now.isoformat(),
        )

        try:
            result = await self._run(instances, machines, now)
        except MultipleValidationError as e:
            result = ScheduleResult.failed(
                [Conflict.from_error(error) for error in e.validation_errors]
            )
        except MultipleDependencyError as e:
            result = ScheduleResult.failed(
                [Conflict.from_error(error) for error in e.dependency_errors]
            )
        except (ValidationError, DependencyError, MachineUnavailableError) as e:
            result = ScheduleResult.failed([Conflict.from_error(e)])
        except Exception as e:
            logger.exception(
                "Scheduling run failed unexpectedly",
                strategy=self.strategy_name,
                error=str(e),
            )
            result = ScheduleResult.failed(
                [
                    Conflict(
                        type=ConflictType.INTERNAL_ERROR,
                        description=f"Scheduling failed: {e}",
                        affected_ids=[instance.id for instance in instances],
                        suggested_resolution=(
                            "Retry the run; if the error persists, check the "
                            "schedule store and input data"
                        ),
                    )
                ]
            )

        duration_seconds = time.perf_counter() - started
        result.metrics.scheduling_duration_ms = round(duration_seconds * 1000, 3)
        result.metrics.strategy = self.strategy_name
        record_scheduling_run(
            self.strategy_name,
            result.success,
            duration_seconds,
            [conflict.type.value for conflict in result.conflicts],
        )
        logger.info(
            "Scheduling run finished",
            strategy=self.strategy_name,
            success=result.success,
            scheduled=len(result.entries),
            conflicts=len(result.conflicts),
        )
        return result

    def validate(self, instances: list[ProcessInstance]) -> None:
        """
        Fail-closed batch validation.

        Raises:
            MultipleValidationError: If any instance carries invalid data
            MultipleDependencyError: If dependencies are self-referencing,
                unknown or cyclic
        """
        errors: list[ValidationError] = []
        seen: set[str] = set()
        for instance in instances:
            if instance.id in seen:
                errors.append(
                    ValidationError(
                        "id",
                        instance.id,
                        f"Process id {instance.id} is not unique in the batch",
                        instance_id=instance.id,
                        error_code="DUPLICATE_ID",
                    )
                )
            seen.add(instance.id)
            errors.extend(instance.validation_errors())
        if errors:
            raise MultipleValidationError(errors)

        if self.respects_dependencies:
            dependency_errors = self._resolver.dependency_errors(instances)
            if dependency_errors:
                raise MultipleDependencyError(dependency_errors)

    @abstractmethod
    def order_instances(
        self, instances: list[ProcessInstance], now: datetime
    ) -> list[ProcessInstance]:
        """Visiting order of the batch."""

    @abstractmethod
    async def place_instance(
        self,
        instance: ProcessInstance,
        earliest_start: datetime,
        context: RunContext,
    ) -> Placement:
        """
        Pick a machine and interval for ``instance``.

        Raises:
            MachineUnavailableError: If no active machine can run it
            SlotNotFoundError: If no candidate machine has a feasible slot
        """

    def entry_duration_minutes(self, instance: ProcessInstance) -> float:
        duration = instance.total_duration_minutes
        if self._options.apply_buffer:
            return self._availability.buffered_duration(duration)
        return duration

    async def _run(
        self,
        instances: list[ProcessInstance],
        machines: list[Machine],
        now: datetime,
    ) -> ScheduleResult:
        self.validate(instances)

        active = [machine for machine in machines if machine.is_active]
        if not active:
            raise MachineUnavailableError(
                None,
                "No active machines available in the system",
                affected_ids=[instance.id for instance in instances],
            )

        context = RunContext(
            now=now,
            active_machines=active,
            workloads={m.id: m.current_workload_hours for m in machines},
        )
        self._begin_run(context)
        entries: list[ScheduleEntry] = []
        conflicts: list[Conflict] = []

        for instance in self.order_instances(instances, now):
            blocked_by = [d for d in instance.dependencies if d in context.failed_ids]
            if self.respects_dependencies and blocked_by:
                context.failed_ids.add(instance.id)
                conflicts.append(
                    Conflict(
                        type=ConflictType.DEPENDENCY_CONFLICT,
                        description=(
                            f"Process {instance.label} was not scheduled because "
                            f"its dependencies {', '.join(blocked_by)} failed"
                        ),
                        affected_ids=[instance.id, *blocked_by],
                        suggested_resolution=(
                            "Resolve the conflicts of the dependencies and reschedule"
                        ),
                    )
                )
                continue

            earliest_start = self._earliest_start(instance, context)
            try:
                placement = await self.place_instance(instance, earliest_start, context)
            except (MachineUnavailableError, SlotNotFoundError, PersistenceError) as e:
                logger.info(
                    "Process instance not scheduled",
                    process_instance_id=instance.id,
                    reason=e.message,
                )
                context.failed_ids.add(instance.id)
                conflicts.append(Conflict.from_error(e))
                continue

            entry = self._build_entry(instance, placement)
            try:
                entry.id = await self._store.create(entry)
            except PersistenceError as e:
                logger.error(
                    "Schedule entry not persisted",
                    process_instance_id=instance.id,
                    machine_id=entry.machine_id,
                    error=e.message,
                )
                entry.confirmed = False
                e.affected_ids = [instance.id, entry.id]
                conflicts.append(Conflict.from_error(e))

            entries.append(entry)
            context.end_times[instance.id] = entry.end_time
            context.workloads[placement.machine.id] = (
                context.workloads.get(placement.machine.id, 0.0)
                + entry.duration_minutes / 60
            )

        return ScheduleResult(
            success=not conflicts,
            entries=entries,
            conflicts=conflicts,
            metrics=self.calculate_metrics(entries),
        )

    def _begin_run(self, context: RunContext) -> None:
        """Hook for strategies that keep per-run state."""

    def _earliest_start(
        self, instance: ProcessInstance, context: RunContext
    ) -> datetime:
        if not self.respects_dependencies:
            return context.now
        dependency_ends = [
            context.end_times[d] for d in instance.dependencies if d in context.end_times
        ]
        return max([context.now, *dependency_ends])

    async def first_feasible_placement(
        self,
        instance: ProcessInstance,
        machine: Machine,
        earliest_start: datetime,
        now: datetime,
    ) -> Placement | None:
        """First candidate slot on ``machine`` that survives the store's conflict check."""
        duration = self.entry_duration_minutes(instance)
        try:
            slots = await self._availability.get_available_time_slots(
                machine,
                duration,
                not_before=earliest_start,
                now=now,
                allow_after_hours=self._options.allow_after_hours,
                allow_weekends=self._options.allow_weekends,
            )
        except ConfigurationError as e:
            logger.warning(
                "Skipping machine with unusable calendar",
                machine_id=machine.id,
                error=e.message,
            )
            return None

        for slot in slots:
            interval = self._fit_slot(slot, duration, earliest_start)
            if interval is None:
                continue
            start, end = interval
            if machine.maintenance_overlapping(start, end):
                continue
            candidate = ScheduleEntry(
                machine_id=machine.id,
                process_instance_id=instance.id,
                start_time=start,
                end_time=end,
            )
            if await self._store.detect_conflicts(candidate):
                continue
            return Placement(machine=machine, start_time=start, end_time=end)
        return None

    @staticmethod
    def _fit_slot(
        slot: TimeSlot, duration_minutes: float, earliest_start: datetime
    ) -> tuple[datetime, datetime] | None:
        if slot.is_multi_day or slot.is_fallback:
            if slot.start < earliest_start:
                return None
            return slot.start, slot.end
        start = max(slot.start, earliest_start)
        end = start + timedelta(minutes=duration_minutes)
        if end > slot.end:
            return None
        return start, end

    def _build_entry(
        self, instance: ProcessInstance, placement: Placement
    ) -> ScheduleEntry:
        return ScheduleEntry(
            machine_id=placement.machine.id,
            process_instance_id=instance.id,
            start_time=placement.start_time,
            end_time=placement.end_time,
            order_id=instance.order_id,
            display_name=instance.display_name or None,
            due_date=instance.due_date,
        )

    def calculate_metrics(self, entries: list[ScheduleEntry]) -> ScheduleMetrics:
        """Scheduled count, utilization against a daily baseline and on-time rate."""
        if not entries:
            return ScheduleMetrics()

        minutes_by_machine: dict[str, float] = {}
        for entry in entries:
            minutes_by_machine[entry.machine_id] = (
                minutes_by_machine.get(entry.machine_id, 0.0) + entry.duration_minutes
            )
        baseline_minutes = self._options.utilization_baseline_hours * 60
        utilizations = [
            min(100.0, minutes / baseline_minutes * 100)
            for minutes in minutes_by_machine.values()
        ]
        on_time = sum(1 for entry in entries if entry.is_on_time())

        return ScheduleMetrics(
            total_scheduled_jobs=len(entries),
            average_utilization=round(sum(utilizations) / len(utilizations), 2),
            on_time_delivery_rate=round(on_time / len(entries) * 100, 2),
        )
