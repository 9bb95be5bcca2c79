"""Domain enums for scheduling."""

from enum import Enum


class CustomerPriority(str, Enum):
    """Customer importance attached to a process instance."""

    URGENT = "urgent"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        """Sort rank, lower runs first."""
        return {
            CustomerPriority.URGENT: 0,
            CustomerPriority.HIGH: 1,
            CustomerPriority.MEDIUM: 2,
            CustomerPriority.LOW: 3,
        }[self]


class ScheduleStatus(str, Enum):
    """Schedule entry status enumeration."""

    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in {ScheduleStatus.COMPLETED, ScheduleStatus.CANCELLED}

    @property
    def occupies_machine(self) -> bool:
        """Cancelled entries release their machine time."""
        return self != ScheduleStatus.CANCELLED

    def can_transition_to(self, target_status: "ScheduleStatus") -> bool:
        """Check if an entry can move from current status to target status."""
        valid_transitions = {
            ScheduleStatus.SCHEDULED: {
                ScheduleStatus.IN_PROGRESS,
                ScheduleStatus.CANCELLED,
            },
            ScheduleStatus.IN_PROGRESS: {
                ScheduleStatus.COMPLETED,
                ScheduleStatus.CANCELLED,
            },
            ScheduleStatus.COMPLETED: set(),  # Terminal state
            ScheduleStatus.CANCELLED: set(),  # Terminal state
        }
        return target_status in valid_transitions.get(self, set())


class UrgencyLevel(str, Enum):
    """Urgency label derived from a composite priority score."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @classmethod
    def from_score(cls, score: float) -> "UrgencyLevel":
        if score >= 80:
            return cls.CRITICAL
        if score >= 60:
            return cls.HIGH
        if score >= 40:
            return cls.MEDIUM
        return cls.LOW


class ConflictType(str, Enum):
    """Kinds of conflicts reported by scheduling runs."""

    MACHINE_CONFLICT = "machine_conflict"
    DEPENDENCY_CONFLICT = "dependency_conflict"
    MAINTENANCE_CONFLICT = "maintenance_conflict"
    VALIDATION_ERROR = "validation_error"
    MACHINE_UNAVAILABLE = "machine_unavailable"
    SLOT_NOT_FOUND = "slot_not_found"
    PERSISTENCE_ERROR = "persistence_error"
    INTERNAL_ERROR = "internal_error"


class ConflictSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class EmergencyLevel(str, Enum):
    """Emergency request severity."""

    URGENT = "urgent"
    CRITICAL = "critical"
    SAFETY_CRITICAL = "safety_critical"


class EmergencyStatus(str, Enum):
    """Emergency request lifecycle."""

    REQUESTED = "requested"
    APPROVED = "approved"
    REJECTED = "rejected"
    SCHEDULED = "scheduled"

    @property
    def is_terminal(self) -> bool:
        return self in {EmergencyStatus.REJECTED, EmergencyStatus.SCHEDULED}

    def can_transition_to(self, target_status: "EmergencyStatus") -> bool:
        valid_transitions = {
            EmergencyStatus.REQUESTED: {
                EmergencyStatus.APPROVED,
                EmergencyStatus.REJECTED,
                EmergencyStatus.SCHEDULED,
            },
            EmergencyStatus.APPROVED: {EmergencyStatus.SCHEDULED},
            EmergencyStatus.REJECTED: set(),  # Terminal state
            EmergencyStatus.SCHEDULED: set(),  # Terminal state
        }
        return target_status in valid_transitions.get(self, set())
