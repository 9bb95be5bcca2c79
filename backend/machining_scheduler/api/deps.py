"""
Service wiring for the HTTP surface.

A single ServiceContainer lives on ``app.state``; route handlers receive it
through ``ContainerDep`` and build per-request schedulers from it.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Annotated, Literal

from fastapi import Depends, HTTPException, Request, status

from ..core.config import SchedulingOptions, Settings
from ..domain.scheduling.algorithms.dependency_resolver import DependencyResolver
from ..domain.scheduling.entities.machine import Machine
from ..domain.scheduling.events.emergency_events import NotificationPublisher
from ..domain.scheduling.repositories.emergency_request_repository import (
    EmergencyRequestRepository,
)
from ..domain.scheduling.repositories.schedule_store import ScheduleStore
from ..domain.scheduling.services.auto_scheduler import AutoScheduler
from ..domain.scheduling.services.availability_calculator import AvailabilityCalculator
from ..domain.scheduling.services.base_scheduler import BaseAutoScheduler
from ..domain.scheduling.services.emergency_scheduler import EmergencyScheduler
from ..domain.scheduling.services.enhanced_auto_scheduler import EnhancedAutoScheduler
from ..domain.scheduling.services.machine_matcher import MachineMatcher
from ..domain.scheduling.services.priority_calculator import PriorityCalculator
from ..domain.scheduling.services.simple_auto_scheduler import SimpleAutoScheduler
from ..domain.shared.base import utc_now
from ..domain.shared.exceptions import (
    DependencyError,
    DomainError,
    EmergencyApprovalError,
    EntityNotFoundError,
    InvalidStatusTransitionError,
    MachineUnavailableError,
    PersistenceError,
    SlotNotFoundError,
    ValidationError,
)
from ..infrastructure.database.schedule_store import (
    SQLModelScheduleStore,
    create_schedule_engine,
)
from ..infrastructure.events.notification_publisher import LoggingNotificationPublisher
from ..infrastructure.persistence.in_memory_emergency_repository import (
    InMemoryEmergencyRequestRepository,
)
from ..infrastructure.persistence.in_memory_schedule_store import InMemoryScheduleStore

Strategy = Literal["auto", "enhanced", "simple"]


@dataclass
class ServiceContainer:
    settings: Settings
    store: ScheduleStore
    emergency_repository: EmergencyRequestRepository
    publisher: NotificationPublisher
    machines: dict[str, Machine] = field(default_factory=dict)
    clock: Callable[[], datetime] = utc_now

    def availability_calculator(self) -> AvailabilityCalculator:
        return AvailabilityCalculator(
            self.store, self.settings.availability_config(), clock=self.clock
        )

    def scheduler(
        self, strategy: Strategy, options: SchedulingOptions | None = None
    ) -> BaseAutoScheduler:
        common = {
            "availability_calculator": self.availability_calculator(),
            "machine_matcher": MachineMatcher(self.settings.matching_weights()),
            "dependency_resolver": DependencyResolver(),
            "options": options,
            "clock": self.clock,
        }
        if strategy == "auto":
            return AutoScheduler(self.store, **common)
        if strategy == "simple":
            return SimpleAutoScheduler(self.store, **common)
        return EnhancedAutoScheduler(
            self.store,
            priority_calculator=PriorityCalculator(self.settings.priority_weights()),
            **common,
        )

    def emergency_scheduler(self) -> EmergencyScheduler:
        return EmergencyScheduler(
            self.store,
            self.emergency_repository,
            availability_calculator=self.availability_calculator(),
            publisher=self.publisher,
            settings=self.settings.emergency_settings(),
            machines=self.machines,
            clock=self.clock,
        )


def build_container(settings: Settings) -> ServiceContainer:
    """Wire stores from settings; ``memory`` selects the in-memory store."""
    if settings.DATABASE_URL == "memory":
        store: ScheduleStore = InMemoryScheduleStore()
    else:
        store = SQLModelScheduleStore(create_schedule_engine(settings.DATABASE_URL))
    return ServiceContainer(
        settings=settings,
        store=store,
        emergency_repository=InMemoryEmergencyRequestRepository(),
        publisher=LoggingNotificationPublisher(),
    )


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


ContainerDep = Annotated[ServiceContainer, Depends(get_container)]


def domain_http_exception(error: DomainError) -> HTTPException:
    """Map a domain error onto the matching HTTP status."""
    if isinstance(error, ValidationError | DependencyError):
        status_code = status.HTTP_400_BAD_REQUEST
    elif isinstance(error, EntityNotFoundError):
        status_code = status.HTTP_404_NOT_FOUND
    elif isinstance(
        error,
        InvalidStatusTransitionError
        | EmergencyApprovalError
        | SlotNotFoundError
        | MachineUnavailableError,
    ):
        status_code = status.HTTP_409_CONFLICT
    elif isinstance(error, PersistenceError):
        status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    else:
        status_code = status.HTTP_400_BAD_REQUEST
    return HTTPException(status_code=status_code, detail=error.to_dict())
