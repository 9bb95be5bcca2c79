"""
Emergency Request Events

Domain events emitted over the lifecycle of an emergency request and the
port through which they are published.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from ...shared.base import DomainEvent
from ..entities.emergency_request import EmergencyRequest

EMERGENCY_REQUESTED = "emergency.requested"
EMERGENCY_APPROVED = "emergency.approved"
EMERGENCY_REJECTED = "emergency.rejected"
EMERGENCY_SCHEDULED = "emergency.scheduled"


def emergency_event(
    event_type: str, request: EmergencyRequest, occurred_at: datetime, **extra: Any
) -> DomainEvent:
    payload: dict[str, Any] = {
        "process_instance_id": request.process_instance_id,
        "machine_id": request.machine_id,
        "emergency_level": request.emergency_level.value,
        "status": request.status.value,
        "requested_by": request.requested_by,
    }
    payload.update(extra)
    return DomainEvent(
        event_type=event_type,
        occurred_at=occurred_at,
        aggregate_id=request.id,
        payload=payload,
    )


class NotificationPublisher(ABC):
    """Outbound channel for emergency notifications."""

    @abstractmethod
    async def publish(self, event: DomainEvent) -> None:
        """
        Deliver an event to interested parties.

        Raises:
            Exception: Implementations may fail; callers treat delivery as
                best effort
        """
        pass
