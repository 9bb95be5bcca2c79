import pytest
from fastapi.testclient import TestClient

from machining_scheduler.api.deps import ServiceContainer
from machining_scheduler.core.config import Settings
from machining_scheduler.infrastructure.events.notification_publisher import (
    InMemoryNotificationPublisher,
)
from machining_scheduler.infrastructure.persistence.in_memory_emergency_repository import (  # noqa: E501
    InMemoryEmergencyRequestRepository,
)
from machining_scheduler.main import create_app


@pytest.fixture
def container(store, clock) -> ServiceContainer:
    return ServiceContainer(
        settings=Settings(_env_file=None, DATABASE_URL="memory"),
        store=store,
        emergency_repository=InMemoryEmergencyRequestRepository(),
        publisher=InMemoryNotificationPublisher(),
        clock=clock,
    )


@pytest.fixture
def client(container) -> TestClient:
    app = create_app(container.settings, container)
    with TestClient(app) as test_client:
        yield test_client
