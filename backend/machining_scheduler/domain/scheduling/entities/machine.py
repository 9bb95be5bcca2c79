"""Machine entity for production resources and capabilities."""

from datetime import datetime

from pydantic import Field

from ...shared.base import Entity
from ..value_objects.time_window import TimeWindow
from ..value_objects.working_hours import WorkingHours


class Machine(Entity):
    """
    Machine entity representing production equipment.

    Supplied by the machine registry. ``working_hours`` is optional; slot
    search falls back to the facility calendar when it is absent.
    """

    name: str = ""
    type: str
    capabilities: list[str] = Field(default_factory=list)
    is_active: bool = True
    working_hours: WorkingHours | None = None
    maintenance_windows: list[TimeWindow] = Field(default_factory=list)
    current_workload_hours: float = Field(default=0, ge=0)
    hourly_rate: float | None = Field(default=None, ge=0)

    def has_capability(self, required: str) -> bool:
        """Case-insensitive containment against the machine's capability names."""
        needle = required.lower()
        return any(needle in capability.lower() for capability in self.capabilities)

    def missing_capabilities(self, required: list[str]) -> list[str]:
        return [c for c in required if not self.has_capability(c)]

    def has_flag(self, flag: str) -> bool:
        """Exact (case-insensitive) capability lookup used by scoring heuristics."""
        return flag.lower() in {capability.lower() for capability in self.capabilities}

    def maintenance_overlapping(
        self, start: datetime, end: datetime
    ) -> list[TimeWindow]:
        return [
            window for window in self.maintenance_windows if window.overlaps(start, end)
        ]
