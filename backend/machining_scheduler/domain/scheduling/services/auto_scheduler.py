"""
Auto Scheduler

Baseline dependency-aware strategy: instances are visited level by level
and, inside a level, critical-path members first, then by due date,
customer priority and order index. Each instance goes to the capable
machine offering the earliest start.
"""

from datetime import datetime

from ....core.observability import get_logger
from ...shared.exceptions import (
    CircularDependencyError,
    MachineUnavailableError,
    SlotNotFoundError,
)
from ..entities.process_instance import ProcessInstance
from .base_scheduler import BaseAutoScheduler, Placement, RunContext

logger = get_logger(__name__)


def baseline_sort_key(instance: ProcessInstance) -> tuple:
    """Due date first (missing last), then customer priority, then order index."""
    return (
        instance.due_date is None,
        instance.due_date or datetime.max,
        instance.customer_priority.rank,
        instance.order_index,
    )


class AutoScheduler(BaseAutoScheduler):
    """Earliest-start greedy scheduler."""

    strategy_name = "auto"

    def order_instances(
        self, instances: list[ProcessInstance], now: datetime
    ) -> list[ProcessInstance]:
        graph = self._resolver.build_dependency_graph(instances)
        if graph.has_cycles:
            raise CircularDependencyError(graph.cycles)

        by_id = {instance.id: instance for instance in instances}
        ordered: list[ProcessInstance] = []
        for level in graph.levels:
            ordered.extend(
                sorted(
                    (by_id[i] for i in level),
                    key=lambda instance: (
                        not graph.is_critical(instance.id),
                        *baseline_sort_key(instance),
                    ),
                )
            )
        return ordered

    async def place_instance(
        self,
        instance: ProcessInstance,
        earliest_start: datetime,
        context: RunContext,
    ) -> Placement:
        capable = [
            machine
            for machine in context.active_machines
            if self._matcher.is_capable(machine, instance)
        ]
        if not capable:
            raise MachineUnavailableError(
                instance.id,
                f"no active {instance.machine_type} machine with capabilities "
                f"{', '.join(instance.required_capabilities) or 'none'}",
            )

        best: Placement | None = None
        for machine in capable:
            placement = await self.first_feasible_placement(
                instance, machine, earliest_start, context.now
            )
            if placement and (best is None or placement.start_time < best.start_time):
                best = placement

        if best is None:
            raise SlotNotFoundError(
                instance.id,
                [machine.id for machine in capable],
                self._availability.config.search_horizon_days,
            )
        logger.debug(
            "Process instance placed",
            process_instance_id=instance.id,
            machine_id=best.machine.id,
            start=best.start_time.isoformat(),
        )
        return best
