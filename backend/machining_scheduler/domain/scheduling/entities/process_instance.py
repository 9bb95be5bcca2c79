"""Process instance entity: one schedulable unit of machining work."""

from pydantic import Field

from ...shared.base import Entity, UTCDateTime
from ...shared.exceptions import ValidationError
from ..value_objects.enums import CustomerPriority


class ProcessInstance(Entity):
    """
    A machining operation expanded from a job/process definition.

    Numeric fields are not range-checked on construction; the orchestrator
    reports each violation from ``validation_errors`` as a conflict.
    """

    display_name: str = ""
    machine_type: str
    required_capabilities: list[str] = Field(default_factory=list)
    setup_time_minutes: float = 0
    cycle_time_minutes: float = 0
    quantity: int = 1
    dependencies: list[str] = Field(default_factory=list)
    due_date: UTCDateTime | None = None
    customer_priority: CustomerPriority = CustomerPriority.MEDIUM
    order_index: int = 0
    order_id: str | None = None
    process_name: str | None = None

    @property
    def total_duration_minutes(self) -> float:
        """Setup time plus cycle time for the full quantity."""
        return self.setup_time_minutes + self.cycle_time_minutes * self.quantity

    @property
    def label(self) -> str:
        return self.display_name or self.id

    def validation_errors(self) -> list[ValidationError]:
        """Return every data violation of this instance."""
        errors = []
        if self.quantity <= 0:
            errors.append(
                ValidationError(
                    "quantity",
                    self.quantity,
                    f"Process {self.label} has invalid quantity",
                    instance_id=self.id,
                    error_code="INVALID_QUANTITY",
                )
            )
        if self.setup_time_minutes < 0:
            errors.append(
                ValidationError(
                    "setup_time_minutes",
                    self.setup_time_minutes,
                    f"Process {self.label} has invalid setup time",
                    instance_id=self.id,
                    error_code="INVALID_SETUP_TIME",
                )
            )
        if self.cycle_time_minutes < 0:
            errors.append(
                ValidationError(
                    "cycle_time_minutes",
                    self.cycle_time_minutes,
                    f"Process {self.label} has invalid cycle time",
                    instance_id=self.id,
                    error_code="INVALID_CYCLE_TIME",
                )
            )
        if not errors and self.total_duration_minutes <= 0:
            errors.append(
                ValidationError(
                    "total_duration_minutes",
                    self.total_duration_minutes,
                    f"Process {self.label} has zero total duration",
                    instance_id=self.id,
                    error_code="ZERO_DURATION",
                )
            )
        if not self.machine_type:
            errors.append(
                ValidationError(
                    "machine_type",
                    self.machine_type,
                    f"Process {self.label} has no machine type",
                    instance_id=self.id,
                    error_code="MISSING_MACHINE_TYPE",
                )
            )
        return errors
