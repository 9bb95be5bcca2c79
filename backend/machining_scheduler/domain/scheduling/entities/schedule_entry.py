"""Schedule entries, conflicts and run results."""

from datetime import datetime

from pydantic import BaseModel, Field, model_validator
from typing_extensions import Self

from ...shared.base import Entity, UTCDateTime
from ...shared.exceptions import DomainError, InvalidStatusTransitionError
from ..value_objects.enums import ConflictSeverity, ConflictType, ScheduleStatus


class ScheduleEntry(Entity):
    """A process instance booked on a machine for ``[start_time, end_time)``."""

    machine_id: str
    process_instance_id: str
    start_time: UTCDateTime
    end_time: UTCDateTime
    status: ScheduleStatus = ScheduleStatus.SCHEDULED
    order_id: str | None = None
    display_name: str | None = None
    due_date: UTCDateTime | None = None
    is_emergency: bool = False
    confirmed: bool = True
    actual_start_time: UTCDateTime | None = None
    actual_end_time: UTCDateTime | None = None
    operator_notes: str | None = None

    @model_validator(mode="after")
    def _check_interval(self) -> Self:
        if self.start_time >= self.end_time:
            raise ValueError("start_time must be before end_time")
        return self

    @property
    def duration_minutes(self) -> float:
        return (self.end_time - self.start_time).total_seconds() / 60

    def overlaps(self, start: datetime, end: datetime) -> bool:
        """Half-open overlap test."""
        return start < self.end_time and self.start_time < end

    def transition_to(self, target: ScheduleStatus) -> None:
        if target == self.status:
            return
        if not self.status.can_transition_to(target):
            raise InvalidStatusTransitionError(self.id, self.status.value, target.value)
        self.status = target

    def is_on_time(self) -> bool:
        return self.due_date is None or self.end_time <= self.due_date


class Conflict(BaseModel):
    """A problem reported to the caller of a scheduling run."""

    type: ConflictType
    description: str
    affected_ids: list[str] = Field(default_factory=list)
    suggested_resolution: str
    severity: ConflictSeverity = ConflictSeverity.HIGH

    @classmethod
    def from_error(cls, error: DomainError) -> "Conflict":
        try:
            conflict_type = ConflictType(error.conflict_type)
        except ValueError:
            conflict_type = ConflictType.INTERNAL_ERROR
        return cls(
            type=conflict_type,
            description=error.message,
            affected_ids=list(error.affected_ids),
            suggested_resolution=error.suggested_resolution,
        )


class ScheduleMetrics(BaseModel):
    total_scheduled_jobs: int = 0
    average_utilization: float = 0.0
    on_time_delivery_rate: float = 0.0
    scheduling_duration_ms: float = 0.0
    strategy: str = ""


class ScheduleResult(BaseModel):
    """Outcome of one scheduling run. ``success`` holds only without conflicts."""

    success: bool
    entries: list[ScheduleEntry] = Field(default_factory=list)
    conflicts: list[Conflict] = Field(default_factory=list)
    metrics: ScheduleMetrics = Field(default_factory=ScheduleMetrics)

    @classmethod
    def failed(
        cls, conflicts: list[Conflict], metrics: ScheduleMetrics | None = None
    ) -> "ScheduleResult":
        return cls(
            success=False,
            entries=[],
            conflicts=conflicts,
            metrics=metrics or ScheduleMetrics(),
        )
