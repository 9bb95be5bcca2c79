"""
Schedule Store Interface

Defines the contract for persisting and querying schedule entries.
Scheduling services never mutate persisted state except through it.
"""

from abc import ABC, abstractmethod
from typing import Any

import pydantic

from ...shared.exceptions import ValidationError
from ..entities.schedule_entry import Conflict, ScheduleEntry
from ..value_objects.enums import ConflictSeverity, ConflictType, ScheduleStatus
from ..value_objects.time_window import TimeSlot, TimeWindow


IMMUTABLE_FIELDS = frozenset({"id", "machine_id", "process_instance_id"})


def apply_patch(entry: ScheduleEntry, patch: dict[str, Any]) -> ScheduleEntry:
    """
    Return a validated copy of ``entry`` with ``patch`` applied.

    Raises:
        ValidationError: If a field is unknown, immutable or gets an invalid value
        InvalidStatusTransitionError: If the status change is not allowed
    """
    changes = dict(patch)
    for key in changes:
        if key not in ScheduleEntry.model_fields or key in IMMUTABLE_FIELDS:
            raise ValidationError(
                key,
                str(changes[key]),
                f"Field {key} cannot be updated",
                instance_id=entry.id,
                error_code="INVALID_PATCH_FIELD",
            )

    updated = entry.model_copy(deep=True)
    if "status" in changes:
        status = changes.pop("status")
        try:
            target = ScheduleStatus(status)
        except ValueError as e:
            raise ValidationError(
                "status",
                str(status),
                f"Unknown schedule status {status}",
                instance_id=entry.id,
                error_code="INVALID_STATUS",
            ) from e
        updated.transition_to(target)
    try:
        return ScheduleEntry.model_validate({**updated.model_dump(), **changes})
    except pydantic.ValidationError as e:
        raise ValidationError(
            ",".join(changes),
            None,
            f"Invalid update for schedule entry {entry.id}: {e.errors()[0]['msg']}",
            instance_id=entry.id,
            error_code="INVALID_PATCH_VALUE",
        ) from e


class ScheduleStore(ABC):
    """
    Abstract store for ScheduleEntry records.

    Implementations raise ``PersistenceError`` when the backend fails and
    ``EntityNotFoundError`` for unknown ids. Conflict detection and gap
    calculation are built on ``query`` and shared by all implementations.
    """

    @abstractmethod
    async def create(self, entry: ScheduleEntry) -> str:
        """
        Persist a new schedule entry.

        Args:
            entry: Entry to store

        Returns:
            Id of the stored entry

        Raises:
            PersistenceError: If the write fails
        """
        pass

    @abstractmethod
    async def update(self, entry_id: str, patch: dict[str, Any]) -> ScheduleEntry:
        """
        Apply a partial update to an entry.

        A ``status`` key is validated against the entry's allowed transitions.

        Args:
            entry_id: Entry identifier
            patch: Field name -> new value

        Returns:
            Updated entry

        Raises:
            EntityNotFoundError: If the entry does not exist
            InvalidStatusTransitionError: If the status change is not allowed
            PersistenceError: If the write fails
        """
        pass

    @abstractmethod
    async def delete(self, entry_id: str) -> None:
        """
        Remove an entry.

        Raises:
            EntityNotFoundError: If the entry does not exist
            PersistenceError: If the write fails
        """
        pass

    @abstractmethod
    async def get(self, entry_id: str) -> ScheduleEntry | None:
        """Retrieve an entry by id, or None."""
        pass

    @abstractmethod
    async def query(
        self, machine_id: str, date_range: TimeWindow | None = None
    ) -> list[ScheduleEntry]:
        """
        Entries of one machine, sorted by start time.

        Args:
            machine_id: Machine identifier
            date_range: Optional window; entries overlapping it are returned

        Returns:
            Entries ordered by start time

        Raises:
            PersistenceError: If the read fails
        """
        pass

    @abstractmethod
    async def list_entries(
        self, date_range: TimeWindow | None = None
    ) -> list[ScheduleEntry]:
        """All entries, optionally limited to those overlapping ``date_range``."""
        pass

    async def detect_conflicts(self, candidate: ScheduleEntry) -> list[Conflict]:
        """
        Overlap check of ``candidate`` against the same machine's entries.

        Uses the half-open test ``new_start < existing_end and
        existing_start < new_end``. The candidate itself and cancelled entries
        are ignored.
        """
        conflicts = []
        for existing in await self.query(candidate.machine_id):
            if existing.id == candidate.id or not existing.status.occupies_machine:
                continue
            if existing.overlaps(candidate.start_time, candidate.end_time):
                conflicts.append(
                    Conflict(
                        type=ConflictType.MACHINE_CONFLICT,
                        description=(
                            f"Machine {candidate.machine_id} is already booked "
                            f"from {existing.start_time.isoformat()} to "
                            f"{existing.end_time.isoformat()}"
                        ),
                        affected_ids=[candidate.id, existing.id],
                        suggested_resolution="Reschedule to a different time slot",
                        severity=ConflictSeverity.HIGH,
                    )
                )
        return conflicts

    async def calculate_machine_availability(
        self, machine_id: str, date_range: TimeWindow
    ) -> list[TimeSlot]:
        """Free gaps between the machine's entries inside ``date_range``."""
        slots = []
        cursor = date_range.start
        for entry in await self.query(machine_id, date_range):
            if not entry.status.occupies_machine:
                continue
            if entry.start_time > cursor:
                slots.append(
                    TimeSlot.between(cursor, min(entry.start_time, date_range.end))
                )
            cursor = max(cursor, entry.end_time)
            if cursor >= date_range.end:
                break
        if cursor < date_range.end:
            slots.append(TimeSlot.between(cursor, date_range.end))
        return slots
