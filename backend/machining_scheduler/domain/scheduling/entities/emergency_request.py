"""Emergency scheduling request aggregate and its approval records."""

from typing import Literal

from pydantic import BaseModel, Field

from ...shared.base import Entity, UTCDateTime
from ...shared.exceptions import InvalidStatusTransitionError
from ..value_objects.enums import EmergencyLevel, EmergencyStatus


class ApprovalDecision(BaseModel):
    """An approve/reject action, recorded with its actor and timestamp."""

    actor: str
    action: Literal["approve", "reject"]
    timestamp: UTCDateTime
    reason: str | None = None


class EmergencyRequest(Entity):
    """
    Request to run a process instance outside normal scheduling rules.

    Lifecycle: requested -> approved -> scheduled, requested -> rejected, or
    requested -> scheduled when no approval is required.
    """

    process_instance_id: str
    machine_id: str
    duration_minutes: float = Field(gt=0)
    emergency_level: EmergencyLevel
    reason: str
    requested_by: str
    requested_at: UTCDateTime
    requested_start: UTCDateTime | None = None
    allow_after_hours: bool = True
    allow_weekends: bool = False
    safety_considerations: str | None = None
    status: EmergencyStatus = EmergencyStatus.REQUESTED
    requires_approval: bool = True
    required_approvals: int = 1
    decisions: list[ApprovalDecision] = Field(default_factory=list)
    schedule_entry_id: str | None = None

    @property
    def approvers(self) -> list[str]:
        return [d.actor for d in self.decisions if d.action == "approve"]

    @property
    def approval_count(self) -> int:
        return len(self.approvers)

    def has_decision_from(self, actor: str) -> bool:
        return any(decision.actor == actor for decision in self.decisions)

    def transition_to(self, target: EmergencyStatus) -> None:
        if not self.status.can_transition_to(target):
            raise InvalidStatusTransitionError(self.id, self.status.value, target.value)
        self.status = target
