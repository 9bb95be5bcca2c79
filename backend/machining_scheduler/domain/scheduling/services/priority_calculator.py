"""
Priority Calculator Service

Scores each process instance 0-100 from four weighted factors: due-date
urgency, customer priority, dependency criticality and setup (batching)
potential.
"""

from datetime import datetime, timedelta

from pydantic import BaseModel

from ....core.config import WEIGHT_SUM_TOLERANCE, PriorityWeights
from ....core.observability import get_logger
from ...shared.base import as_naive_utc, utc_now
from ..entities.process_instance import ProcessInstance
from ..value_objects.enums import CustomerPriority, UrgencyLevel

logger = get_logger(__name__)

CUSTOMER_PRIORITY_SCORES = {
    CustomerPriority.URGENT: 100,
    CustomerPriority.HIGH: 80,
    CustomerPriority.MEDIUM: 50,
    CustomerPriority.LOW: 20,
}

# (days until due, score), checked in order
DUE_DATE_BUCKETS = ((1, 95), (3, 80), (7, 60), (14, 40))
OVERDUE_SCORE = 100
DISTANT_DUE_DATE_SCORE = 20
MISSING_DUE_DATE_SCORE = 50


class PriorityFactors(BaseModel):
    due_date_score: float
    customer_priority_score: float
    dependency_score: float
    setup_optimization_score: float


class PriorityResult(BaseModel):
    process_instance_id: str
    score: float
    factors: PriorityFactors
    urgency_level: UrgencyLevel


class PriorityCalculator:
    """
    Composite priority scoring for process instances.

    Weights are injected as a ``PriorityWeights`` struct; weights that do not
    sum to 1.0 produce a warning, never an error.
    """

    def __init__(self, weights: PriorityWeights | None = None) -> None:
        self._weights = weights or PriorityWeights()

    def calculate_priorities(
        self,
        instances: list[ProcessInstance],
        dependency_map: dict[str, list[str]] | None = None,
        now: datetime | None = None,
    ) -> list[PriorityResult]:
        """
        Score every instance and sort descending.

        Args:
            instances: Batch of process instances
            dependency_map: instance id -> ids of its dependents; derived from
                the batch when omitted
            now: Reference instant for due-date urgency

        Returns:
            Results sorted by score, ties keep input order
        """
        now = as_naive_utc(now or utc_now())
        if dependency_map is None:
            dependency_map = self._build_dependents_map(instances)
        depths = self._dependency_depths(instances)

        results = []
        for instance in instances:
            factors = PriorityFactors(
                due_date_score=self._due_date_score(instance, now),
                customer_priority_score=self._customer_priority_score(instance),
                dependency_score=self._dependency_score(
                    instance, dependency_map, depths.get(instance.id, 0)
                ),
                setup_optimization_score=self._setup_optimization_score(
                    instance, instances
                ),
            )
            score = round(
                factors.due_date_score * self._weights.due_date
                + factors.customer_priority_score * self._weights.customer
                + factors.dependency_score * self._weights.dependency
                + factors.setup_optimization_score * self._weights.setup,
                2,
            )
            results.append(
                PriorityResult(
                    process_instance_id=instance.id,
                    score=score,
                    factors=factors,
                    urgency_level=UrgencyLevel.from_score(score),
                )
            )

        # list.sort is stable, so equal scores keep input order
        results.sort(key=lambda result: result.score, reverse=True)
        logger.debug(
            "Priorities calculated",
            instance_count=len(results),
            top_score=results[0].score if results else None,
        )
        return results

    def get_priority_ranking(
        self,
        instances: list[ProcessInstance],
        dependency_map: dict[str, list[str]] | None = None,
        now: datetime | None = None,
    ) -> list[str]:
        """Instance ids ordered from highest to lowest priority."""
        return [
            result.process_instance_id
            for result in self.calculate_priorities(instances, dependency_map, now)
        ]

    def update_weights(self, **weights: float) -> PriorityWeights:
        """Replace some or all weights; an unbalanced set emits a UserWarning."""
        merged = self._weights.model_dump() | weights
        total = sum(merged.values())
        if abs(total - 1.0) > WEIGHT_SUM_TOLERANCE:
            logger.warning("Priority weights do not sum to 1.0", total=total)
        self._weights = PriorityWeights(**merged)
        return self._weights

    def get_weights(self) -> PriorityWeights:
        return self._weights.model_copy()

    def _due_date_score(self, instance: ProcessInstance, now: datetime) -> float:
        if instance.due_date is None:
            return MISSING_DUE_DATE_SCORE

        estimated_completion = now + timedelta(minutes=instance.total_duration_minutes)
        days_until_due = (
            instance.due_date - estimated_completion
        ).total_seconds() / 86400

        if days_until_due < 0:
            return OVERDUE_SCORE
        for limit, score in DUE_DATE_BUCKETS:
            if days_until_due < limit:
                return score
        return DISTANT_DUE_DATE_SCORE

    def _customer_priority_score(self, instance: ProcessInstance) -> float:
        return CUSTOMER_PRIORITY_SCORES.get(instance.customer_priority, 50)

    def _dependency_score(
        self,
        instance: ProcessInstance,
        dependency_map: dict[str, list[str]],
        depth: int,
    ) -> float:
        direct_dependencies = len(instance.dependencies)
        dependents = len(dependency_map.get(instance.id, []))
        return min(100, direct_dependencies * 10 + dependents * 15 + depth * 5)

    def _setup_optimization_score(
        self, instance: ProcessInstance, instances: list[ProcessInstance]
    ) -> float:
        required = {c.lower() for c in instance.required_capabilities}
        similar = sum(
            1
            for other in instances
            if other.id != instance.id
            and other.machine_type == instance.machine_type
            and required & {c.lower() for c in other.required_capabilities}
        )
        if similar == 0:
            return 30
        if similar <= 2:
            return 60
        return 90

    @staticmethod
    def _build_dependents_map(
        instances: list[ProcessInstance],
    ) -> dict[str, list[str]]:
        dependents: dict[str, list[str]] = {instance.id: [] for instance in instances}
        for instance in instances:
            for dependency_id in instance.dependencies:
                if dependency_id in dependents and dependency_id != instance.id:
                    dependents[dependency_id].append(instance.id)
        return dependents

    @staticmethod
    def _dependency_depths(instances: list[ProcessInstance]) -> dict[str, int]:
        """Length of the longest chain of ancestors of each instance."""
        by_id = {instance.id: instance for instance in instances}
        depths: dict[str, int] = {}

        def depth(instance_id: str, trail: frozenset[str]) -> int:
            if instance_id in depths:
                return depths[instance_id]
            parents = [
                d
                for d in by_id[instance_id].dependencies
                if d in by_id and d not in trail
            ]
            value = max(
                (depth(p, trail | {instance_id}) + 1 for p in parents), default=0
            )
            depths[instance_id] = value
            return value

        for instance in instances:
            depth(instance.id, frozenset())
        return depths
