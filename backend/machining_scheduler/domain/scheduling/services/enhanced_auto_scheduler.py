"""
Enhanced Auto Scheduler

Full pipeline: dependency graph and critical path, priority scoring, a
visiting order that respects topological levels and schedules critical-path
members first, then ranked machine matching with the first feasible slot.
"""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from ....core.config import SchedulingOptions
from ....core.observability import get_logger
from ...shared.base import utc_now
from ...shared.exceptions import (
    CircularDependencyError,
    MachineUnavailableError,
    SlotNotFoundError,
)
from ..algorithms.dependency_resolver import DependencyGraph, DependencyResolver
from ..entities.process_instance import ProcessInstance
from ..repositories.schedule_store import ScheduleStore
from .availability_calculator import AvailabilityCalculator
from .base_scheduler import BaseAutoScheduler, Placement, RunContext
from .machine_matcher import MachineMatcher
from .priority_calculator import PriorityCalculator, PriorityResult

logger = get_logger(__name__)


@dataclass
class SchedulingPlan:
    """Analysis computed before any instance is placed."""

    graph: DependencyGraph
    priorities: list[PriorityResult]
    order: list[ProcessInstance]

    @property
    def critical_path(self) -> list[str]:
        return self.graph.critical_path


class EnhancedAutoScheduler(BaseAutoScheduler):
    """Dependency- and priority-aware scheduler with ranked machine matching."""

    strategy_name = "enhanced"

    def __init__(
        self,
        store: ScheduleStore,
        availability_calculator: AvailabilityCalculator | None = None,
        machine_matcher: MachineMatcher | None = None,
        dependency_resolver: DependencyResolver | None = None,
        priority_calculator: PriorityCalculator | None = None,
        options: SchedulingOptions | None = None,
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
        self._priorities = priority_calculator or PriorityCalculator()
        self.last_plan: SchedulingPlan | None = None

    def build_plan(
        self, instances: list[ProcessInstance], now: datetime
    ) -> SchedulingPlan:
        """
        Dependency analysis, priority scores and visiting order.

        Raises:
            CircularDependencyError: If the batch contains a cycle
        """
        graph = self._resolver.build_dependency_graph(instances)
        if graph.has_cycles:
            raise CircularDependencyError(graph.cycles)

        priorities = self._priorities.calculate_priorities(
            instances, graph.dependents_map(), now
        )
        scores = {p.process_instance_id: p.score for p in priorities}
        position = {instance.id: index for index, instance in enumerate(instances)}
        by_id = {instance.id: instance for instance in instances}

        order: list[ProcessInstance] = []
        for level in graph.levels:
            order.extend(
                sorted(
                    (by_id[i] for i in level),
                    key=lambda instance: (
                        not graph.is_critical(instance.id),
                        -scores[instance.id],
                        position[instance.id],
                    ),
                )
            )

        logger.info(
            "Scheduling plan built",
            levels=len(graph.levels),
            critical_path=graph.critical_path,
            project_duration_minutes=graph.total_duration,
        )
        return SchedulingPlan(graph=graph, priorities=priorities, order=order)

    def order_instances(
        self, instances: list[ProcessInstance], now: datetime
    ) -> list[ProcessInstance]:
        self.last_plan = self.build_plan(instances, now)
        return self.last_plan.order

    async def place_instance(
        self,
        instance: ProcessInstance,
        earliest_start: datetime,
        context: RunContext,
    ) -> Placement:
        ranked = self._matcher.find_capable_machines(
            instance, context.active_machines, context.workloads
        )
        if not ranked:
            raise MachineUnavailableError(
                instance.id,
                f"no active {instance.machine_type} machine with capabilities "
                f"{', '.join(instance.required_capabilities) or 'none'}",
            )

        for candidate in ranked:
            placement = await self.first_feasible_placement(
                instance, candidate.machine, earliest_start, context.now
            )
            if placement:
                logger.debug(
                    "Process instance placed",
                    process_instance_id=instance.id,
                    machine_id=candidate.machine_id,
                    match_score=candidate.score,
                    reason=candidate.reason,
                    start=placement.start_time.isoformat(),
                )
                return placement

        raise SlotNotFoundError(
            instance.id,
            [candidate.machine_id for candidate in ranked],
            self._availability.config.search_horizon_days,
        )
