"""
Notification publishers for emergency request events.

``LoggingNotificationPublisher`` writes each event to the structured log;
``InMemoryNotificationPublisher`` records events for inspection.
"""

from ...core.observability import get_logger
from ...domain.scheduling.events.emergency_events import NotificationPublisher
from ...domain.shared.base import DomainEvent

logger = get_logger(__name__)


class LoggingNotificationPublisher(NotificationPublisher):
    async def publish(self, event: DomainEvent) -> None:
        logger.info(
            "Notification published",
            event_type=event.event_type,
            event_id=event.event_id,
            aggregate_id=event.aggregate_id,
            occurred_at=event.occurred_at.isoformat(),
            **event.payload,
        )


class InMemoryNotificationPublisher(NotificationPublisher):
    """Keeps every published event in publication order."""

    def __init__(self) -> None:
        self.events: list[DomainEvent] = []

    async def publish(self, event: DomainEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: str) -> list[DomainEvent]:
        return [event for event in self.events if event.event_type == event_type]

    def clear(self) -> None:
        self.events.clear()
