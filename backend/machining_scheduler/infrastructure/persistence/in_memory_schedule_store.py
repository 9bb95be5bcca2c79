"""
In-memory ScheduleStore.

Default store for the API and the test suite. Entries are copied on the way
in and out so callers never share state with the store.
"""

from collections import Counter
from collections.abc import Iterable
from typing import Any

from ...domain.scheduling.entities.schedule_entry import ScheduleEntry
from ...domain.scheduling.repositories.schedule_store import ScheduleStore, apply_patch
from ...domain.scheduling.value_objects.time_window import TimeWindow
from ...domain.shared.exceptions import EntityNotFoundError, PersistenceError


class InMemoryScheduleStore(ScheduleStore):
    """
    Dict-backed store that counts the calls it receives.

    ``fail_on`` names operations (``create``, ``update``, ...) that raise
    ``PersistenceError``, for exercising failure handling.
    """

    def __init__(
        self,
        entries: list[ScheduleEntry] | None = None,
        fail_on: set[str] | None = None,
    ) -> None:
        self._entries: dict[str, ScheduleEntry] = {
            entry.id: entry.model_copy(deep=True) for entry in entries or []
        }
        self.fail_on = set(fail_on or ())
        self.calls: Counter[str] = Counter()

    @property
    def total_calls(self) -> int:
        return sum(self.calls.values())

    def _record(self, operation: str) -> None:
        self.calls[operation] += 1
        if operation in self.fail_on:
            raise PersistenceError(operation, "store unavailable")

    async def create(self, entry: ScheduleEntry) -> str:
        self._record("create")
        self._entries[entry.id] = entry.model_copy(deep=True)
        return entry.id

    async def update(self, entry_id: str, patch: dict[str, Any]) -> ScheduleEntry:
        self._record("update")
        entry = self._entries.get(entry_id)
        if entry is None:
            raise EntityNotFoundError("ScheduleEntry", entry_id)
        updated = apply_patch(entry, patch)
        self._entries[entry_id] = updated
        return updated.model_copy(deep=True)

    async def delete(self, entry_id: str) -> None:
        self._record("delete")
        if self._entries.pop(entry_id, None) is None:
            raise EntityNotFoundError("ScheduleEntry", entry_id)

    async def get(self, entry_id: str) -> ScheduleEntry | None:
        self._record("get")
        entry = self._entries.get(entry_id)
        return entry.model_copy(deep=True) if entry else None

    async def query(
        self, machine_id: str, date_range: TimeWindow | None = None
    ) -> list[ScheduleEntry]:
        self._record("query")
        entries = [e for e in self._entries.values() if e.machine_id == machine_id]
        if date_range is not None:
            entries = [e for e in entries if e.overlaps(date_range.start, date_range.end)]
        return self._select(entries)

    async def list_entries(
        self, date_range: TimeWindow | None = None
    ) -> list[ScheduleEntry]:
        self._record("list_entries")
        if date_range is None:
            return self._select(self._entries.values())
        return self._select(
            e
            for e in self._entries.values()
            if e.overlaps(date_range.start, date_range.end)
        )

    @staticmethod
    def _select(entries: Iterable[ScheduleEntry]) -> list[ScheduleEntry]:
        return [
            entry.model_copy(deep=True)
            for entry in sorted(entries, key=lambda e: (e.start_time, e.id))
        ]
