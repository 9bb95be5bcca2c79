"""
API tests for the scheduling endpoints.

The app runs on an in-memory store with the clock fixed at Monday
2024-01-08 07:00.
"""

from datetime import datetime

import pytest

from machining_scheduler.domain.scheduling.entities.schedule_entry import (
    ScheduleEntry,
)
from machining_scheduler.infrastructure.persistence.in_memory_schedule_store import (
    InMemoryScheduleStore,
)

API = "/api/v1/scheduling"

MACHINES = [
    {"id": "mill-1", "name": "Haas VF-2", "type": "milling", "capabilities": ["3-axis"]}
]


def _instance(instance_id: str, **overrides) -> dict:
    data = {
        "id": instance_id,
        "display_name": instance_id,
        "machine_type": "milling",
        "cycle_time_minutes": 60,
    }
    data.update(overrides)
    return data


class TestAutoScheduleEndpoint:
    """Test POST /scheduling/auto-schedule."""

    @pytest.mark.parametrize("strategy", ["auto", "enhanced", "simple"])
    def test_schedules_a_chain(self, client, container, strategy):
        """Test every strategy on a two step chain."""
        response = client.post(
            f"{API}/auto-schedule",
            json={
                "process_instances": [
                    _instance("A", order_index=0),
                    _instance("B", order_index=1, dependencies=["A"]),
                ],
                "machines": MACHINES,
                "strategy": strategy,
            },
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert [e["start_time"] for e in body["entries"]] == [
            "2024-01-08T08:00:00",
            "2024-01-08T09:00:00",
        ]
        assert body["metrics"]["strategy"] == strategy
        assert "mill-1" in container.machines

    def test_conflicts_are_returned_with_200(self, client):
        """Test that an unsuccessful run is still a normal response."""
        response = client.post(
            f"{API}/auto-schedule",
            json={
                "process_instances": [
                    _instance("A", dependencies=["B"]),
                    _instance("B", dependencies=["A"]),
                ],
                "machines": MACHINES,
            },
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is False
        assert body["conflicts"][0]["type"] == "dependency_conflict"
        assert body["entries"] == []

    def test_explicit_reference_time(self, client):
        """Test that the request can pin "now"."""
        response = client.post(
            f"{API}/auto-schedule",
            json={
                "process_instances": [_instance("A")],
                "machines": MACHINES,
                "now": "2024-01-09T14:30:00",
            },
        )

        assert response.json()["entries"][0]["start_time"] == "2024-01-09T14:30:00"

    def test_timezone_aware_input_is_converted_to_utc(self, client):
        """Test offsets on the reference time, due dates and maintenance."""
        machine = {
            **MACHINES[0],
            "maintenance_windows": [
                {"start": "2024-01-09T14:30:00Z", "end": "2024-01-09T15:00:00Z"}
            ],
        }
        response = client.post(
            f"{API}/auto-schedule",
            json={
                "process_instances": [
                    _instance("A", due_date="2024-01-12T17:00:00Z")
                ],
                "machines": [machine],
                "now": "2024-01-09T15:30:00+01:00",
            },
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["entries"][0]["start_time"] == "2024-01-09T15:00:00"
        assert body["entries"][0]["due_date"] == "2024-01-12T17:00:00"
        assert body["metrics"]["on_time_delivery_rate"] == 100.0

    def test_unknown_strategy_is_rejected(self, client):
        """Test request validation."""
        response = client.post(
            f"{API}/auto-schedule",
            json={
                "process_instances": [_instance("A")],
                "machines": MACHINES,
                "strategy": "genetic",
            },
        )

        assert response.status_code == 422


class TestValidateEndpoint:
    """Test POST /scheduling/validate."""

    def test_valid_batch_reports_structure(self, client):
        """Test levels, critical path and analysis."""
        response = client.post(
            f"{API}/validate",
            json={
                "process_instances": [
                    _instance("A"),
                    _instance("B", dependencies=["A"]),
                    _instance("C", cycle_time_minutes=10),
                ]
            },
        )

        body = response.json()
        assert body["valid"] is True
        assert body["levels"] == [["A", "C"], ["B"]]
        assert body["critical_path"] == ["A", "B"]
        assert body["analysis"]["total_levels"] == 2

    def test_invalid_batch_lists_every_problem(self, client):
        """Test data and dependency conflicts together."""
        response = client.post(
            f"{API}/validate",
            json={
                "process_instances": [
                    _instance("A", quantity=0),
                    _instance("B", dependencies=["ghost"]),
                ]
            },
        )

        body = response.json()
        assert body["valid"] is False
        assert [c["type"] for c in body["conflicts"]] == [
            "validation_error",
            "dependency_conflict",
        ]


SEEDED = [
    ScheduleEntry(
        machine_id="mill-1",
        process_instance_id=f"seed-{index}",
        start_time=start,
        end_time=end,
    )
    for index, (start, end) in enumerate(
        [
            (datetime(2024, 1, 8, 8), datetime(2024, 1, 8, 10)),
            (datetime(2024, 1, 8, 9), datetime(2024, 1, 8, 11)),
            (datetime(2024, 1, 9, 8), datetime(2024, 1, 9, 9)),
        ]
    )
]


class TestScheduleQueries:
    """Test the read endpoints against a pre-filled store."""

    @pytest.fixture
    def store(self) -> InMemoryScheduleStore:
        return InMemoryScheduleStore(SEEDED)

    def test_conflicts_are_listed_once_per_pair(self, client):
        """Test overlap listing over stored entries."""
        response = client.get(f"{API}/conflicts", params={"machine_id": "mill-1"})

        assert response.status_code == 200
        conflicts = response.json()
        assert len(conflicts) == 1
        assert conflicts[0]["type"] == "machine_conflict"
        assert set(conflicts[0]["affected_ids"]) == {SEEDED[0].id, SEEDED[1].id}

    def test_machine_schedule_with_range(self, client):
        """Test the date range filter."""
        response = client.get(
            f"{API}/machines/mill-1/schedule",
            params={"start": "2024-01-09T00:00:00", "end": "2024-01-10T00:00:00"},
        )

        assert response.status_code == 200
        assert [e["id"] for e in response.json()] == [SEEDED[2].id]

    def test_half_open_range_is_rejected(self, client):
        """Test that start and end must be given together."""
        response = client.get(
            f"{API}/machines/mill-1/schedule", params={"start": "2024-01-09T00:00:00"}
        )

        assert response.status_code == 400

    def test_store_failure_maps_to_503(self, client, store):
        """Test persistence errors at the HTTP boundary."""
        store.fail_on.add("query")

        response = client.get(f"{API}/machines/mill-1/schedule")

        assert response.status_code == 503
        assert response.json()["detail"]["type"] == "persistence"
