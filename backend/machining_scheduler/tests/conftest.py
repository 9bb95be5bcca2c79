"""Shared fixtures for the scheduler test suite."""

from collections.abc import Callable
from datetime import datetime

import pytest

from machining_scheduler.domain.scheduling.entities.machine import Machine
from machining_scheduler.domain.scheduling.entities.process_instance import (
    ProcessInstance,
)
from machining_scheduler.infrastructure.persistence.in_memory_schedule_store import (
    InMemoryScheduleStore,
)

# Monday
MONDAY_7AM = datetime(2024, 1, 8, 7, 0)


@pytest.fixture
def now() -> datetime:
    return MONDAY_7AM


@pytest.fixture
def clock(now: datetime) -> Callable[[], datetime]:
    return lambda: now


@pytest.fixture
def store() -> InMemoryScheduleStore:
    return InMemoryScheduleStore()


@pytest.fixture
def milling_machine() -> Machine:
    return Machine(
        id="mill-1",
        name="Haas VF-2",
        type="milling",
        capabilities=["3-axis", "aluminum_cutting"],
    )


@pytest.fixture
def make_instance() -> Callable[..., ProcessInstance]:
    """Factory for process instances; durations default to one hour."""

    def _make(instance_id: str, **overrides) -> ProcessInstance:
        data = {
            "id": instance_id,
            "display_name": instance_id,
            "machine_type": "milling",
            "setup_time_minutes": 0,
            "cycle_time_minutes": 60,
            "quantity": 1,
        }
        data.update(overrides)
        return ProcessInstance(**data)

    return _make
