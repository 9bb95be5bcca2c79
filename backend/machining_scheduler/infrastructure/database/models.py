"""
SQLModel table for persisted schedule entries.

Maps ScheduleEntry to the ``schedule_entries`` table. Statuses are stored
as their string values. Datetime columns hold naive UTC values.
"""

from datetime import datetime

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel

from ...domain.scheduling.entities.schedule_entry import ScheduleEntry
from ...domain.scheduling.value_objects.enums import ScheduleStatus


class ScheduleEntryRecord(SQLModel, table=True):
    __tablename__ = "schedule_entries"

    id: str = Field(primary_key=True, max_length=64)
    machine_id: str = Field(index=True, max_length=64)
    process_instance_id: str = Field(index=True, max_length=64)
    start_time: datetime = Field(index=True, sa_type=DateTime())
    end_time: datetime = Field(sa_type=DateTime())
    status: str = Field(default=ScheduleStatus.SCHEDULED.value, max_length=20)
    order_id: str | None = Field(default=None, max_length=64)
    display_name: str | None = Field(default=None, max_length=255)
    due_date: datetime | None = Field(default=None, sa_type=DateTime())
    is_emergency: bool = False
    confirmed: bool = True
    actual_start_time: datetime | None = Field(default=None, sa_type=DateTime())
    actual_end_time: datetime | None = Field(default=None, sa_type=DateTime())
    operator_notes: str | None = None

    @classmethod
    def from_entry(cls, entry: ScheduleEntry) -> "ScheduleEntryRecord":
        data = entry.model_dump()
        data["status"] = entry.status.value
        return cls(**data)

    def to_entry(self) -> ScheduleEntry:
        return ScheduleEntry.model_validate(self.model_dump())
