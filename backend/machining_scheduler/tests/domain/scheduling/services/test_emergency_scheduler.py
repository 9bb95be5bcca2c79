"""
Tests for the emergency request workflow.

The clock is fixed at Monday 2024-01-08 07:00; the emergency window runs
06:00-22:00 without breaks.
"""

from datetime import datetime, time, timedelta
from unittest.mock import AsyncMock

import pytest

from machining_scheduler.core.config import EmergencySettings
from machining_scheduler.domain.scheduling.entities.machine import Machine
from machining_scheduler.domain.scheduling.entities.schedule_entry import (
    ScheduleEntry,
)
from machining_scheduler.domain.scheduling.events.emergency_events import (
    EMERGENCY_APPROVED,
    EMERGENCY_REJECTED,
    EMERGENCY_REQUESTED,
    EMERGENCY_SCHEDULED,
    NotificationPublisher,
)
from machining_scheduler.domain.scheduling.services.emergency_scheduler import (
    EmergencyScheduler,
)
from machining_scheduler.domain.scheduling.value_objects.enums import (
    EmergencyLevel,
    EmergencyStatus,
)
from machining_scheduler.domain.scheduling.value_objects.time_window import (
    TimeWindow,
)
from machining_scheduler.domain.shared.exceptions import (
    EmergencyApprovalError,
    EntityNotFoundError,
    SlotNotFoundError,
)
from machining_scheduler.infrastructure.events.notification_publisher import (
    InMemoryNotificationPublisher,
)
from machining_scheduler.infrastructure.persistence.in_memory_emergency_repository import (  # noqa: E501
    InMemoryEmergencyRequestRepository,
)
from machining_scheduler.infrastructure.persistence.in_memory_schedule_store import (
    InMemoryScheduleStore,
)


def at(day: int, hour: int, minute: int = 0) -> datetime:
    return datetime(2024, 1, day, hour, minute)


@pytest.fixture
def repository() -> InMemoryEmergencyRequestRepository:
    return InMemoryEmergencyRequestRepository()


@pytest.fixture
def publisher() -> InMemoryNotificationPublisher:
    return InMemoryNotificationPublisher()


@pytest.fixture
def make_scheduler(store, repository, publisher, clock):
    def _make(settings: EmergencySettings | None = None, **overrides):
        kwargs = {
            "publisher": publisher,
            "settings": settings,
            "clock": clock,
        }
        kwargs.update(overrides)
        return EmergencyScheduler(store, repository, **kwargs)

    return _make


@pytest.fixture
def scheduler(make_scheduler) -> EmergencyScheduler:
    return make_scheduler()


async def _submit(scheduler, machine, **overrides):
    data = {
        "process_instance_id": "proc-1",
        "machine": machine,
        "duration_minutes": 120,
        "emergency_level": EmergencyLevel.URGENT,
        "reason": "spindle failure",
        "requested_by": "operator",
    }
    data.update(overrides)
    return await scheduler.submit_request(**data)


class TestEmergencyWorkflow:
    """Test submission, approval and scheduling."""

    @pytest.mark.asyncio
    async def test_approval_schedules_the_request(
        self, scheduler, store, publisher, milling_machine
    ):
        """Test requested -> approved -> scheduled with an exact emergency slot."""
        request = await _submit(scheduler, milling_machine)

        assert request.status == EmergencyStatus.REQUESTED
        assert request.requires_approval
        assert [r.id for r in await scheduler.list_pending()] == [request.id]

        approved = await scheduler.approve(request.id, "supervisor")

        assert approved.status == EmergencyStatus.SCHEDULED
        entry = await store.get(approved.schedule_entry_id)
        assert (entry.start_time, entry.end_time) == (at(8, 7), at(8, 9))
        assert entry.is_emergency
        assert entry.display_name == "EMERGENCY: spindle failure"
        assert [e.event_type for e in publisher.events] == [
            EMERGENCY_REQUESTED,
            EMERGENCY_APPROVED,
            EMERGENCY_SCHEDULED,
        ]
        assert publisher.of_type(EMERGENCY_APPROVED)[0].payload["status"] == "approved"
        assert await scheduler.list_pending() == []

    @pytest.mark.asyncio
    async def test_immediate_scheduling_without_approval(
        self, make_scheduler, store, publisher, milling_machine
    ):
        """Test requested -> scheduled when the policy needs no approval."""
        scheduler = make_scheduler(
            EmergencySettings(require_approval_for_emergency=False)
        )

        request = await _submit(scheduler, milling_machine)

        assert request.status == EmergencyStatus.SCHEDULED
        assert not request.requires_approval
        assert len(await store.query("mill-1")) == 1
        assert [e.event_type for e in publisher.events] == [EMERGENCY_SCHEDULED]

    @pytest.mark.asyncio
    async def test_long_requests_always_need_approval(
        self, make_scheduler, milling_machine
    ):
        """Test the eight hour approval threshold."""
        scheduler = make_scheduler(
            EmergencySettings(require_approval_for_emergency=False)
        )

        request = await _submit(scheduler, milling_machine, duration_minutes=540)

        assert request.requires_approval
        assert request.status == EmergencyStatus.REQUESTED

    @pytest.mark.asyncio
    async def test_safety_critical_needs_two_approvers(
        self, scheduler, milling_machine
    ):
        """Test dual approval and idempotent repeats by the same actor."""
        request = await _submit(
            scheduler, milling_machine, emergency_level=EmergencyLevel.SAFETY_CRITICAL
        )

        first = await scheduler.approve(request.id, "alice")
        repeat = await scheduler.approve(request.id, "alice")

        assert first.status == EmergencyStatus.REQUESTED
        assert first.approval_count == 1
        assert repeat.approval_count == 1

        second = await scheduler.approve(request.id, "bob")

        assert second.status == EmergencyStatus.SCHEDULED
        assert second.approvers == ["alice", "bob"]

    @pytest.mark.asyncio
    async def test_rejection_is_terminal(self, scheduler, publisher, milling_machine):
        """Test that a rejected request ignores later approvals."""
        request = await _submit(scheduler, milling_machine)

        rejected = await scheduler.reject(request.id, "supervisor", "not needed")
        after = await scheduler.approve(request.id, "manager")

        assert rejected.status == EmergencyStatus.REJECTED
        assert rejected.decisions[0].reason == "not needed"
        assert after.status == EmergencyStatus.REJECTED
        assert publisher.of_type(EMERGENCY_REJECTED)[0].payload["reason"] == "not needed"

    @pytest.mark.asyncio
    async def test_requested_start_is_honoured_when_free(
        self, scheduler, store, milling_machine
    ):
        """Test an explicit start time."""
        request = await _submit(scheduler, milling_machine, requested_start=at(8, 14))

        scheduled = await scheduler.approve(request.id, "supervisor")

        entry = await store.get(scheduled.schedule_entry_id)
        assert (entry.start_time, entry.end_time) == (at(8, 14), at(8, 16))

    @pytest.mark.asyncio
    async def test_existing_bookings_are_not_overlapped(
        self, repository, publisher, clock, milling_machine
    ):
        """Test that the emergency slot starts after the current booking."""
        store = InMemoryScheduleStore(
            [
                ScheduleEntry(
                    machine_id="mill-1",
                    process_instance_id="running",
                    start_time=at(8, 7),
                    end_time=at(8, 12),
                )
            ]
        )
        scheduler = EmergencyScheduler(
            store, repository, publisher=publisher, clock=clock
        )
        request = await _submit(scheduler, milling_machine)

        scheduled = await scheduler.approve(request.id, "supervisor")

        entry = await store.get(scheduled.schedule_entry_id)
        assert (entry.start_time, entry.end_time) == (at(8, 12), at(8, 14))

    @pytest.mark.asyncio
    async def test_no_slot_keeps_request_approved(self, scheduler, repository):
        """Test that a failed booking leaves an approved request behind."""
        machine = Machine(
            id="down",
            type="milling",
            maintenance_windows=[
                TimeWindow(start=at(8, 0), end=at(8, 0) + timedelta(days=30))
            ],
        )
        request = await _submit(scheduler, machine)

        with pytest.raises(SlotNotFoundError):
            await scheduler.approve(request.id, "supervisor")

        stored = await repository.get_by_id(request.id)
        assert stored.status == EmergencyStatus.APPROVED

    @pytest.mark.asyncio
    async def test_approving_again_retries_a_failed_booking(
        self, scheduler, store, publisher
    ):
        """Test approved -> scheduled once the machine is free again."""
        machine = Machine(
            id="down",
            type="milling",
            maintenance_windows=[
                TimeWindow(start=at(8, 0), end=at(8, 0) + timedelta(days=30))
            ],
        )
        request = await _submit(scheduler, machine)
        with pytest.raises(SlotNotFoundError):
            await scheduler.approve(request.id, "supervisor")

        scheduler.register_machine(Machine(id="down", type="milling"))
        retried = await scheduler.approve(request.id, "supervisor")

        assert retried.status == EmergencyStatus.SCHEDULED
        assert retried.approvers == ["supervisor"]
        entry = await store.get(retried.schedule_entry_id)
        assert (entry.start_time, entry.end_time) == (at(8, 7), at(8, 9))
        assert len(publisher.of_type(EMERGENCY_SCHEDULED)) == 1

    @pytest.mark.asyncio
    async def test_weekend_requested_start_needs_approval(
        self, make_scheduler, store, milling_machine
    ):
        """Test that a Saturday start is a weekend request for an urgent level."""
        scheduler = make_scheduler(
            EmergencySettings(require_approval_for_emergency=False)
        )

        request = await _submit(
            scheduler, milling_machine, requested_start=at(13, 3)
        )

        assert request.requires_approval
        assert request.status == EmergencyStatus.REQUESTED
        assert await store.query("mill-1") == []

        scheduled = await scheduler.approve(request.id, "supervisor")

        entry = await store.get(scheduled.schedule_entry_id)
        assert (entry.start_time, entry.end_time) == (at(8, 7), at(8, 9))

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "requested_start",
        [at(8, 21), at(8, 5), at(15, 9)],
        ids=["after-window", "before-window", "past-urgent-horizon"],
    )
    async def test_requested_start_outside_constraints_is_ignored(
        self, scheduler, store, milling_machine, requested_start
    ):
        """Test that the slot search replaces an out-of-envelope start."""
        request = await _submit(
            scheduler, milling_machine, requested_start=requested_start
        )

        scheduled = await scheduler.approve(request.id, "supervisor")

        entry = await store.get(scheduled.schedule_entry_id)
        assert (entry.start_time, entry.end_time) == (at(8, 7), at(8, 9))

    @pytest.mark.asyncio
    async def test_publisher_failures_do_not_change_the_outcome(
        self, make_scheduler, milling_machine
    ):
        """Test best-effort notifications."""
        publisher = AsyncMock(spec=NotificationPublisher)
        publisher.publish.side_effect = RuntimeError("mail server down")
        scheduler = make_scheduler(publisher=publisher)

        request = await _submit(scheduler, milling_machine)
        scheduled = await scheduler.approve(request.id, "supervisor")

        assert scheduled.status == EmergencyStatus.SCHEDULED
        assert publisher.publish.await_count == 3


class TestEmergencyValidation:
    """Test policy violations and approver checks."""

    @pytest.mark.asyncio
    async def test_weekend_request_when_weekends_disabled(
        self, make_scheduler, milling_machine
    ):
        """Test that a disabled weekend policy rejects the submission."""
        scheduler = make_scheduler(EmergencySettings(allow_emergency_weekends=False))

        with pytest.raises(EmergencyApprovalError) as exc_info:
            await _submit(scheduler, milling_machine, allow_weekends=True)

        assert exc_info.value.violations == [
            "Weekend emergency operations are not currently enabled"
        ]
        assert await scheduler.list_pending() == []

    @pytest.mark.asyncio
    async def test_duration_above_consecutive_hour_limit(
        self, scheduler, milling_machine
    ):
        """Test the maximum consecutive emergency hours."""
        with pytest.raises(EmergencyApprovalError) as exc_info:
            await _submit(scheduler, milling_machine, duration_minutes=17 * 60)

        assert "exceeds maximum allowed (16h)" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_only_listed_approvers_may_decide(
        self, make_scheduler, milling_machine
    ):
        """Test the approver allow-list."""
        scheduler = make_scheduler(EmergencySettings(emergency_approvers=["boss"]))
        request = await _submit(scheduler, milling_machine)

        with pytest.raises(EmergencyApprovalError):
            await scheduler.approve(request.id, "intern")

        assert (await scheduler.approve(request.id, "boss")).status == (
            EmergencyStatus.SCHEDULED
        )

    @pytest.mark.asyncio
    async def test_unknown_request(self, scheduler):
        """Test the not-found error."""
        with pytest.raises(EntityNotFoundError):
            await scheduler.approve("missing", "boss")


class TestEmergencySlots:
    """Test constraint resolution and the emergency slot search."""

    def test_constraints_per_level(self, scheduler, now):
        """Test windows, hour caps and approval counts."""
        urgent = scheduler.get_constraints(EmergencyLevel.URGENT, now)
        critical = scheduler.get_constraints(EmergencyLevel.CRITICAL, now)
        safety = scheduler.get_constraints(EmergencyLevel.SAFETY_CRITICAL, now)

        assert not urgent.allow_weekends
        assert urgent.max_consecutive_hours == 12
        assert urgent.horizon_end == at(14, 0).date()
        assert critical.allow_weekends
        assert critical.max_consecutive_hours == 16
        assert (safety.start_time, safety.end_time) == (time(0, 0), time(23, 59))
        assert safety.required_approvals == 2

    @pytest.mark.asyncio
    async def test_slots_have_the_exact_duration(self, scheduler, milling_machine):
        """Test trimming and the unbroken emergency window."""
        slots = await scheduler.get_emergency_time_slots(milling_machine, 120)

        assert (slots[0].start, slots[0].end) == (at(8, 7), at(8, 9))
        assert (slots[1].start, slots[1].end) == (at(9, 6), at(9, 8))
        assert all(slot.duration_minutes == 120 for slot in slots)

    @pytest.mark.asyncio
    async def test_without_after_hours_the_facility_window_applies(
        self, scheduler, milling_machine
    ):
        """Test the narrowed window."""
        slots = await scheduler.get_emergency_time_slots(
            milling_machine, 120, allow_after_hours=False
        )

        assert slots[0].start == at(8, 8)

    @pytest.mark.asyncio
    async def test_urgent_requests_stay_within_the_week(
        self, scheduler, milling_machine
    ):
        """Test that a Saturday urgent search finds nothing."""
        slots = await scheduler.get_emergency_time_slots(
            milling_machine, 120, EmergencyLevel.URGENT, now=at(13, 7)
        )

        assert slots == []

    @pytest.mark.asyncio
    async def test_critical_requests_may_use_weekends(
        self, scheduler, milling_machine
    ):
        """Test a Saturday critical search."""
        slots = await scheduler.get_emergency_time_slots(
            milling_machine, 120, EmergencyLevel.CRITICAL, now=at(13, 7)
        )

        assert (slots[0].start, slots[0].end) == (at(13, 7), at(13, 9))
