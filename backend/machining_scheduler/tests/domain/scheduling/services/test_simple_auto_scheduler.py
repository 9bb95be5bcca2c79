"""Tests for the order-index packing strategy."""

from datetime import datetime

import pytest

from machining_scheduler.domain.scheduling.entities.machine import Machine
from machining_scheduler.domain.scheduling.entities.schedule_entry import (
    ScheduleEntry,
)
from machining_scheduler.domain.scheduling.services.simple_auto_scheduler import (
    SimpleAutoScheduler,
    SimpleSchedulingOptions,
)
from machining_scheduler.domain.scheduling.value_objects.enums import ConflictType
from machining_scheduler.infrastructure.persistence.in_memory_schedule_store import (
    InMemoryScheduleStore,
)


def at(day: int, hour: int, minute: int = 0) -> datetime:
    return datetime(2024, 1, day, hour, minute)


def _intervals(result) -> dict[str, tuple[datetime, datetime]]:
    return {
        entry.process_instance_id: (entry.start_time, entry.end_time)
        for entry in result.entries
    }


class TestSimpleAutoScheduler:
    """Test sequential packing by order index."""

    @pytest.mark.asyncio
    async def test_packs_by_order_index_around_the_break(
        self, store, clock, make_instance, milling_machine
    ):
        """Test that half-day jobs fill mornings and afternoons in order."""
        instances = [
            make_instance("third", cycle_time_minutes=240, order_index=2),
            make_instance("first", cycle_time_minutes=240, order_index=0),
            make_instance("second", cycle_time_minutes=240, order_index=1),
        ]
        scheduler = SimpleAutoScheduler(store, clock=clock)

        result = await scheduler.schedule(instances, [milling_machine])

        assert result.success
        assert _intervals(result) == {
            "first": (at(8, 8), at(8, 12)),
            "second": (at(8, 13), at(8, 17)),
            "third": (at(9, 8), at(9, 12)),
        }
        assert result.metrics.strategy == "simple"
        assert result.metrics.average_utilization == 30.0

    @pytest.mark.asyncio
    async def test_dependencies_do_not_change_the_order(
        self, store, clock, make_instance, milling_machine
    ):
        """Test that order_index wins over declared dependencies."""
        instances = [
            make_instance("A", order_index=1),
            make_instance("B", order_index=0, dependencies=["A"]),
        ]

        result = await SimpleAutoScheduler(store, clock=clock).schedule(
            instances, [milling_machine]
        )

        assert _intervals(result) == {
            "B": (at(8, 8), at(8, 9)),
            "A": (at(8, 9), at(8, 10)),
        }

    @pytest.mark.asyncio
    async def test_cycles_are_still_refused(
        self, store, clock, make_instance, milling_machine
    ):
        """Test that a cyclic batch schedules nothing."""
        instances = [
            make_instance("A", dependencies=["B"]),
            make_instance("B", dependencies=["A"]),
        ]

        result = await SimpleAutoScheduler(store, clock=clock).schedule(
            instances, [milling_machine]
        )

        assert not result.success
        assert result.entries == []
        assert result.conflicts[0].type == ConflictType.DEPENDENCY_CONFLICT
        assert store.total_calls == 0

    @pytest.mark.asyncio
    async def test_long_work_spills_into_the_next_day(
        self, store, clock, make_instance, milling_machine
    ):
        """Test a ten hour job that starts a day and continues the next."""
        result = await SimpleAutoScheduler(store, clock=clock).schedule(
            [make_instance("long", cycle_time_minutes=600)], [milling_machine]
        )

        assert _intervals(result)["long"] == (at(8, 8), at(9, 10))

    @pytest.mark.asyncio
    async def test_max_daily_hours_caps_each_day(
        self, store, clock, make_instance, milling_machine
    ):
        """Test a reduced daily capacity."""
        scheduler = SimpleAutoScheduler(
            store,
            simple_options=SimpleSchedulingOptions(max_daily_hours=4),
            clock=clock,
        )
        instances = [
            make_instance("A", cycle_time_minutes=180, order_index=0),
            make_instance("B", cycle_time_minutes=120, order_index=1),
        ]

        result = await scheduler.schedule(instances, [milling_machine])

        assert _intervals(result) == {
            "A": (at(8, 8), at(8, 11)),
            "B": (at(9, 8), at(9, 10)),
        }

    @pytest.mark.asyncio
    async def test_start_date_delays_the_run(
        self, store, clock, make_instance, milling_machine
    ):
        """Test that nothing starts before the configured start date."""
        scheduler = SimpleAutoScheduler(
            store,
            simple_options=SimpleSchedulingOptions(start_date=at(10, 0)),
            clock=clock,
        )

        result = await scheduler.schedule([make_instance("A")], [milling_machine])

        assert _intervals(result)["A"] == (at(10, 8), at(10, 9))

    @pytest.mark.asyncio
    async def test_stored_bookings_push_work_to_a_free_day(
        self, clock, make_instance, milling_machine
    ):
        """Test that a conflicting day is skipped."""
        store = InMemoryScheduleStore(
            [
                ScheduleEntry(
                    machine_id="mill-1",
                    process_instance_id="existing",
                    start_time=at(8, 8),
                    end_time=at(8, 9),
                )
            ]
        )

        result = await SimpleAutoScheduler(store, clock=clock).schedule(
            [make_instance("A")], [milling_machine]
        )

        assert _intervals(result)["A"] == (at(9, 8), at(9, 9))

    @pytest.mark.asyncio
    async def test_no_capable_machine(self, store, clock, make_instance):
        """Test the per-instance machine_unavailable conflict."""
        result = await SimpleAutoScheduler(store, clock=clock).schedule(
            [make_instance("A", machine_type="turning")],
            [Machine(id="m", type="milling")],
        )

        assert result.conflicts[0].type == ConflictType.MACHINE_UNAVAILABLE
