"""
Domain Exceptions

Custom exceptions for scheduling errors with discriminated error types.
Batch-level errors (validation, dependency) abort a run before anything is
scheduled; instance-level errors (machine unavailable, slot not found,
persistence) are turned into conflicts and the run continues.
"""

from enum import Enum


class ErrorType(str, Enum):
    """Error type enumeration for discriminated unions."""

    VALIDATION = "validation"
    DEPENDENCY = "dependency"
    MACHINE_UNAVAILABLE = "machine_unavailable"
    SLOT_NOT_FOUND = "slot_not_found"
    PERSISTENCE = "persistence"
    NOT_FOUND = "not_found"
    STATE_TRANSITION = "state_transition"
    APPROVAL = "approval"
    CONFIGURATION = "configuration"


class DomainError(Exception):
    """Base class for all domain errors with type discrimination."""

    # Conflict kind used when the error is reported inside a ScheduleResult
    conflict_type = "internal_error"
    suggested_resolution = "Review the scheduling input and retry"

    def __init__(
        self,
        message: str,
        error_type: ErrorType,
        details: dict[str, str | int | bool | None] | None = None,
        affected_ids: list[str] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.error_type = error_type
        self.details = details or {}
        self.affected_ids = affected_ids or []

    def to_dict(self) -> dict[str, str | list[str] | dict[str, str | int | bool | None]]:
        """Convert error to dictionary for API responses."""
        return {
            "type": self.error_type.value,
            "message": self.message,
            "affected_ids": self.affected_ids,
            "details": self.details,
        }


class ValidationError(DomainError):
    """Raised when process instance data is malformed."""

    conflict_type = "validation_error"
    suggested_resolution = "Correct the process instance data and resubmit the batch"

    def __init__(
        self,
        field_name: str,
        value: str | int | float | bool | None,
        message: str,
        instance_id: str | None = None,
        error_code: str | None = None,
    ) -> None:
        self.field_name = field_name
        self.value = value
        self.instance_id = instance_id
        self.error_code = error_code or "VALIDATION_ERROR"

        details: dict[str, str | int | bool | None] = {
            "field": field_name,
            "value": str(value) if value is not None else None,
            "error_code": self.error_code,
        }
        super().__init__(
            message,
            ErrorType.VALIDATION,
            details,
            affected_ids=[instance_id] if instance_id else None,
        )


class MultipleValidationError(ValidationError):
    """Raised when several instances of a batch fail validation at once."""

    def __init__(self, validation_errors: list[ValidationError]) -> None:
        self.validation_errors = validation_errors
        combined_message = "Multiple validation errors: " + "; ".join(
            error.message for error in validation_errors
        )
        super().__init__(
            "multiple_fields",
            None,
            combined_message,
            error_code="MULTIPLE_VALIDATION_ERRORS",
        )
        self.details["error_count"] = len(validation_errors)
        self.affected_ids = [
            instance_id
            for error in validation_errors
            for instance_id in error.affected_ids
        ]

    @property
    def error_count(self) -> int:
        """Get the number of validation errors."""
        return len(self.validation_errors)


class DependencyError(DomainError):
    """Raised for self-dependencies and references to unknown instances."""

    conflict_type = "dependency_conflict"
    suggested_resolution = "Fix the dependency references of the affected instances"

    def __init__(
        self,
        message: str,
        affected_ids: list[str] | None = None,
        details: dict[str, str | int | bool | None] | None = None,
        suggested_resolution: str | None = None,
    ) -> None:
        super().__init__(message, ErrorType.DEPENDENCY, details, affected_ids)
        if suggested_resolution:
            self.suggested_resolution = suggested_resolution


class MultipleDependencyError(DependencyError):
    """Raised when a batch has several dependency problems."""

    def __init__(self, dependency_errors: list[DependencyError]) -> None:
        self.dependency_errors = dependency_errors
        super().__init__(
            "Dependency validation failed: "
            + "; ".join(error.message for error in dependency_errors),
            affected_ids=list(
                dict.fromkeys(
                    instance_id
                    for error in dependency_errors
                    for instance_id in error.affected_ids
                )
            ),
            details={"error_count": len(dependency_errors)},
        )


class CircularDependencyError(DependencyError):
    """Raised when the dependency relation of a batch contains a cycle."""

    suggested_resolution = "Remove one of the dependencies forming the cycle"

    def __init__(self, cycles: list[list[str]]) -> None:
        self.cycles = cycles
        paths = [" → ".join(cycle) for cycle in cycles]
        super().__init__(
            "Circular dependency detected: " + "; ".join(paths),
            affected_ids=list(
                dict.fromkeys(node for cycle in cycles for node in cycle)
            ),
            details={"cycle_count": len(cycles)},
        )


class MachineUnavailableError(DomainError):
    """Raised when no active machine can run a process instance."""

    conflict_type = "machine_unavailable"
    suggested_resolution = (
        "Add a capable machine, activate an existing one, or relax the "
        "required capabilities"
    )

    def __init__(
        self,
        instance_id: str | None,
        reason: str,
        affected_ids: list[str] | None = None,
    ) -> None:
        self.instance_id = instance_id
        self.reason = reason
        message = (
            f"No machine available for process {instance_id}: {reason}"
            if instance_id
            else reason
        )
        super().__init__(
            message,
            ErrorType.MACHINE_UNAVAILABLE,
            {"reason": reason},
            affected_ids=affected_ids or ([instance_id] if instance_id else None),
        )


class SlotNotFoundError(DomainError):
    """Raised when no feasible slot exists within the search horizon."""

    conflict_type = "slot_not_found"
    suggested_resolution = (
        "Extend working hours, allow after-hours work, or schedule manually"
    )

    def __init__(
        self, instance_id: str, machine_ids: list[str], horizon_days: int
    ) -> None:
        self.instance_id = instance_id
        self.machine_ids = machine_ids
        super().__init__(
            f"No available time slot found for process {instance_id} within "
            f"{horizon_days} days on machines {', '.join(machine_ids)}",
            ErrorType.SLOT_NOT_FOUND,
            {"horizon_days": horizon_days, "machine_count": len(machine_ids)},
            affected_ids=[instance_id],
        )


class PersistenceError(DomainError):
    """Raised when a schedule store operation fails."""

    conflict_type = "persistence_error"
    suggested_resolution = (
        "Verify the schedule store and resubmit; the entry is unconfirmed"
    )

    def __init__(
        self,
        operation: str,
        message: str,
        affected_ids: list[str] | None = None,
    ) -> None:
        self.operation = operation
        super().__init__(
            f"Schedule store {operation} failed: {message}",
            ErrorType.PERSISTENCE,
            {"operation": operation},
            affected_ids,
        )


class EntityNotFoundError(DomainError):
    """Raised when a requested entity cannot be found."""

    def __init__(self, entity_type: str, entity_id: str) -> None:
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"{entity_type} with ID {entity_id} not found",
            ErrorType.NOT_FOUND,
            {"entity_type": entity_type, "entity_id": entity_id},
            affected_ids=[entity_id],
        )


class InvalidStatusTransitionError(DomainError):
    """Raised when a status change is not permitted."""

    def __init__(self, entity_id: str, current: str, target: str) -> None:
        super().__init__(
            f"Cannot transition {entity_id} from {current} to {target}",
            ErrorType.STATE_TRANSITION,
            {"current_status": current, "target_status": target},
            affected_ids=[entity_id],
        )


class EmergencyApprovalError(DomainError):
    """Raised when an emergency request cannot be submitted or decided."""

    def __init__(
        self,
        message: str,
        request_id: str | None = None,
        violations: list[str] | None = None,
    ) -> None:
        self.violations = violations or []
        super().__init__(
            message,
            ErrorType.APPROVAL,
            {"violation_count": len(self.violations)},
            affected_ids=[request_id] if request_id else None,
        )


class ConfigurationError(DomainError):
    """Raised when scheduler configuration is unusable."""

    def __init__(self, message: str) -> None:
        super().__init__(message, ErrorType.CONFIGURATION)
