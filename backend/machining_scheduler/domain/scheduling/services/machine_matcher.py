"""
Machine Matcher Service

Filters machines that can run a process instance and ranks them on
capability fit, load balance, setup efficiency and general efficiency.
"""

from pydantic import BaseModel

from ....core.config import WEIGHT_SUM_TOLERANCE, MatchingWeights
from ....core.observability import get_logger
from ..entities.machine import Machine
from ..entities.process_instance import ProcessInstance

logger = get_logger(__name__)

BONUS_CAPABILITIES = (
    "high_precision",
    "high_speed",
    "complex_geometry",
    "live_tooling",
    "titanium_cutting",
    "aluminum_cutting",
)


def _clamp(value: float) -> float:
    return max(0.0, min(100.0, value))


class MachineScore(BaseModel):
    """Ranked candidate with its sub-scores and an audit justification."""

    machine_id: str
    machine: Machine
    score: float
    capability_score: float
    load_balance_score: float
    setup_score: float
    efficiency_score: float
    reason: str


class CapabilityAnalysis(BaseModel):
    capability: str
    required_by: list[str]
    available_on: list[str]
    shortage: bool


class MachineMatcher:
    """
    Capability-based machine matching.

    Scoring is heuristic and deterministic: candidates with equal totals keep
    the order of the ``machines`` argument.
    """

    def __init__(self, weights: MatchingWeights | None = None) -> None:
        self._weights = weights or MatchingWeights()

    def find_capable_machines(
        self,
        instance: ProcessInstance,
        machines: list[Machine],
        current_workloads: dict[str, float] | None = None,
    ) -> list[MachineScore]:
        """
        Rank the machines able to run ``instance``.

        Args:
            instance: Process instance to place
            machines: Machine registry snapshot
            current_workloads: machine id -> hours already booked; falls back
                to each machine's ``current_workload_hours``

        Returns:
            Candidates ranked by weighted score, highest first
        """
        candidates = [m for m in machines if self.is_capable(m, instance)]
        if not candidates:
            logger.info(
                "No capable machines",
                process_instance_id=instance.id,
                machine_type=instance.machine_type,
                required_capabilities=instance.required_capabilities,
            )
            return []

        workloads = {
            m.id: (current_workloads or {}).get(m.id, m.current_workload_hours)
            for m in candidates
        }
        max_workload = max(workloads.values())

        scores = [
            self._score_machine(m, instance, workloads[m.id], max_workload)
            for m in candidates
        ]
        scores.sort(key=lambda s: s.score, reverse=True)
        return scores

    def get_best_machine(
        self,
        instance: ProcessInstance,
        machines: list[Machine],
        current_workloads: dict[str, float] | None = None,
    ) -> MachineScore | None:
        ranked = self.find_capable_machines(instance, machines, current_workloads)
        return ranked[0] if ranked else None

    @staticmethod
    def is_capable(machine: Machine, instance: ProcessInstance) -> bool:
        return (
            machine.is_active
            and machine.type == instance.machine_type
            and not machine.missing_capabilities(instance.required_capabilities)
        )

    def get_capability_analysis(
        self, instances: list[ProcessInstance], machines: list[Machine]
    ) -> list[CapabilityAnalysis]:
        """Which capabilities are required, and which active machines offer them."""
        required_by: dict[str, list[str]] = {}
        for instance in instances:
            for capability in instance.required_capabilities:
                required_by.setdefault(capability.lower(), []).append(instance.id)

        analysis = []
        for capability, instance_ids in required_by.items():
            available_on = [
                m.id for m in machines if m.is_active and m.has_capability(capability)
            ]
            analysis.append(
                CapabilityAnalysis(
                    capability=capability,
                    required_by=instance_ids,
                    available_on=available_on,
                    shortage=not available_on,
                )
            )
        return analysis

    def update_weights(self, **weights: float) -> MatchingWeights:
        merged = self._weights.model_dump() | weights
        total = sum(merged.values())
        if abs(total - 1.0) > WEIGHT_SUM_TOLERANCE:
            logger.warning("Matching weights do not sum to 1.0", total=total)
        self._weights = MatchingWeights(**merged)
        return self._weights

    def _score_machine(
        self,
        machine: Machine,
        instance: ProcessInstance,
        workload: float,
        max_workload: float,
    ) -> MachineScore:
        capability_score = self._capability_score(machine, instance)
        load_balance_score = self._load_balance_score(workload, max_workload)
        setup_score = self._setup_score(machine, instance)
        efficiency_score = self._efficiency_score(machine)

        total = (
            capability_score * self._weights.capability
            + load_balance_score * self._weights.load_balance
            + setup_score * self._weights.setup
            + efficiency_score * self._weights.efficiency
        )
        return MachineScore(
            machine_id=machine.id,
            machine=machine,
            score=round(total, 2),
            capability_score=capability_score,
            load_balance_score=load_balance_score,
            setup_score=setup_score,
            efficiency_score=efficiency_score,
            reason=self._match_reason(machine, capability_score, load_balance_score),
        )

    @staticmethod
    def _capability_score(machine: Machine, instance: ProcessInstance) -> float:
        missing = machine.missing_capabilities(instance.required_capabilities)
        score = 100.0 - 50.0 * len(missing)
        score += 5.0 * sum(1 for flag in BONUS_CAPABILITIES if machine.has_flag(flag))
        return _clamp(score)

    @staticmethod
    def _load_balance_score(workload: float, max_workload: float) -> float:
        if max_workload <= 0:
            return 100.0
        return _clamp(100.0 * (1 - workload / max_workload))

    @staticmethod
    def _setup_score(machine: Machine, instance: ProcessInstance) -> float:
        score = 50.0
        if instance.machine_type.lower() == "turning" and machine.has_flag(
            "live_tooling"
        ):
            score += 20
        if machine.has_flag("high_precision"):
            score -= 10
        if machine.type.lower() == "5-axis":
            score -= 15
        if machine.has_flag("high_speed"):
            score += 15
        return _clamp(score)

    @staticmethod
    def _efficiency_score(machine: Machine) -> float:
        score = 50.0
        if machine.has_flag("high_speed"):
            score += 25
        if machine.has_flag("high_precision"):
            score += 15
        if machine.has_flag("complex_geometry"):
            score += 10
        if machine.hourly_rate is not None:
            if machine.hourly_rate < 60:
                score += 15
            elif machine.hourly_rate > 100:
                score -= 10
        return _clamp(score)

    @staticmethod
    def _match_reason(
        machine: Machine, capability_score: float, load_balance_score: float
    ) -> str:
        reasons = []
        if capability_score >= 90:
            reasons.append("Perfect capability match")
        elif capability_score >= 70:
            reasons.append("Good capability match")

        if load_balance_score >= 80:
            reasons.append("Low workload")
        elif load_balance_score >= 60:
            reasons.append("Moderate workload")
        else:
            reasons.append("High workload")

        if machine.has_flag("high_speed"):
            reasons.append("High speed capability")
        if machine.has_flag("high_precision"):
            reasons.append("High precision capability")

        return ", ".join(reasons)
