"""Tests for entity rules and status transitions."""

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError as PydanticValidationError

from machining_scheduler.domain.scheduling.entities.emergency_request import (
    EmergencyRequest,
)
from machining_scheduler.domain.scheduling.entities.machine import Machine
from machining_scheduler.domain.scheduling.entities.process_instance import (
    ProcessInstance,
)
from machining_scheduler.domain.scheduling.entities.schedule_entry import (
    Conflict,
    ScheduleEntry,
)
from machining_scheduler.domain.scheduling.value_objects.enums import (
    ConflictType,
    EmergencyLevel,
    EmergencyStatus,
    ScheduleStatus,
    UrgencyLevel,
)
from machining_scheduler.domain.shared.base import as_naive_utc, utc_now
from machining_scheduler.domain.shared.exceptions import (
    InvalidStatusTransitionError,
    SlotNotFoundError,
)


@pytest.fixture
def entry() -> ScheduleEntry:
    return ScheduleEntry(
        machine_id="mill-1",
        process_instance_id="A",
        start_time=datetime(2024, 1, 8, 8),
        end_time=datetime(2024, 1, 8, 9),
    )


class TestScheduleEntry:
    """Test schedule entry lifecycle."""

    def test_start_must_precede_end(self):
        """Test that an entry must end after it starts."""
        with pytest.raises(PydanticValidationError):
            ScheduleEntry(
                machine_id="m",
                process_instance_id="A",
                start_time=datetime(2024, 1, 8, 9),
                end_time=datetime(2024, 1, 8, 9),
            )

    @pytest.mark.parametrize(
        ("path", "allowed"),
        [
            ([ScheduleStatus.IN_PROGRESS, ScheduleStatus.COMPLETED], True),
            ([ScheduleStatus.CANCELLED], True),
            ([ScheduleStatus.COMPLETED], False),
            ([ScheduleStatus.CANCELLED, ScheduleStatus.IN_PROGRESS], False),
        ],
    )
    def test_status_transitions(self, entry, path, allowed):
        """Test the allowed status paths."""
        if allowed:
            for status in path:
                entry.transition_to(status)
            assert entry.status == path[-1]
        else:
            with pytest.raises(InvalidStatusTransitionError):
                for status in path:
                    entry.transition_to(status)

    def test_terminal_statuses(self):
        """Test terminal flags and machine occupation."""
        assert ScheduleStatus.COMPLETED.is_terminal
        assert not ScheduleStatus.CANCELLED.occupies_machine
        assert ScheduleStatus.IN_PROGRESS.occupies_machine

    def test_on_time(self, entry):
        """Test due date comparison."""
        assert entry.is_on_time()
        entry.due_date = datetime(2024, 1, 8, 8, 30)
        assert not entry.is_on_time()


class TestConflictConversion:
    def test_from_error_uses_error_metadata(self):
        error = SlotNotFoundError("A", ["m1", "m2"], 14)

        conflict = Conflict.from_error(error)

        assert conflict.type == ConflictType.SLOT_NOT_FOUND
        assert conflict.affected_ids == ["A"]
        assert "within 14 days" in conflict.description
        assert conflict.suggested_resolution == error.suggested_resolution


class TestDatetimeNormalisation:
    """Test that aware datetimes become naive UTC on every model."""

    def test_entry_and_instance_datetimes(self):
        cet = timezone(timedelta(hours=1))

        entry = ScheduleEntry(
            machine_id="mill-1",
            process_instance_id="A",
            start_time=datetime(2024, 1, 8, 9, tzinfo=cet),
            end_time=datetime(2024, 1, 8, 9, 30),
        )
        instance = ProcessInstance(
            machine_type="milling", due_date="2024-01-12T17:00:00Z"
        )

        assert entry.start_time == datetime(2024, 1, 8, 8)
        assert entry.start_time.tzinfo is None
        assert instance.due_date == datetime(2024, 1, 12, 17)

    def test_maintenance_windows(self):
        machine = Machine(
            type="milling",
            maintenance_windows=[
                {"start": "2024-01-09T14:30:00Z", "end": "2024-01-09T16:00:00+01:00"}
            ],
        )

        window = machine.maintenance_windows[0]
        assert (window.start, window.end) == (
            datetime(2024, 1, 9, 14, 30),
            datetime(2024, 1, 9, 15),
        )
        assert machine.maintenance_overlapping(
            datetime(2024, 1, 9, 14), datetime(2024, 1, 9, 14, 45)
        )

    def test_naive_values_are_kept(self):
        moment = datetime(2024, 1, 8, 7)

        assert as_naive_utc(moment) is moment

    def test_default_clock_is_naive_utc(self):
        reference = datetime.now(timezone.utc).replace(tzinfo=None)

        moment = utc_now()

        assert moment.tzinfo is None
        assert abs(moment - reference) < timedelta(minutes=1)


class TestEmergencyRequest:
    """Test emergency request status rules."""

    def _request(self) -> EmergencyRequest:
        return EmergencyRequest(
            process_instance_id="A",
            machine_id="m",
            duration_minutes=60,
            emergency_level=EmergencyLevel.CRITICAL,
            reason="breakdown",
            requested_by="operator",
            requested_at=datetime(2024, 1, 8, 7),
        )

    def test_direct_scheduling_is_allowed(self):
        """Test requested -> scheduled."""
        request = self._request()

        request.transition_to(EmergencyStatus.SCHEDULED)

        assert request.status.is_terminal

    def test_rejected_requests_cannot_be_scheduled(self):
        """Test the terminal rejected state."""
        request = self._request()
        request.transition_to(EmergencyStatus.REJECTED)

        with pytest.raises(InvalidStatusTransitionError):
            request.transition_to(EmergencyStatus.SCHEDULED)


@pytest.mark.parametrize(
    ("score", "level"),
    [
        (80, UrgencyLevel.CRITICAL),
        (79.9, UrgencyLevel.HIGH),
        (40, UrgencyLevel.MEDIUM),
        (10, UrgencyLevel.LOW),
    ],
)
def test_urgency_levels(score, level):
    assert UrgencyLevel.from_score(score) == level
