"""
SQLModel-backed ScheduleStore.

Each operation runs in its own session. SQLAlchemy failures surface as
``PersistenceError`` so the scheduling pipeline can report them as
conflicts.
"""

from typing import Any

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine, select

from ...core.observability import get_logger
from ...domain.scheduling.entities.schedule_entry import ScheduleEntry
from ...domain.scheduling.repositories.schedule_store import ScheduleStore, apply_patch
from ...domain.scheduling.value_objects.time_window import TimeWindow
from ...domain.shared.exceptions import EntityNotFoundError, PersistenceError
from .models import ScheduleEntryRecord

logger = get_logger(__name__)


def create_schedule_engine(database_url: str) -> Engine:
    """Engine for ``database_url`` with the schedule tables created."""
    if database_url.startswith("sqlite"):
        engine = create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        engine = create_engine(database_url, pool_pre_ping=True)
    SQLModel.metadata.create_all(engine)
    return engine


class SQLModelScheduleStore(ScheduleStore):
    """Schedule store on a relational database through SQLModel."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    async def create(self, entry: ScheduleEntry) -> str:
        try:
            with Session(self._engine) as session:
                session.add(ScheduleEntryRecord.from_entry(entry))
                session.commit()
        except SQLAlchemyError as e:
            logger.error("Schedule entry insert failed", entry_id=entry.id, error=str(e))
            raise PersistenceError("create", str(e), [entry.id]) from e
        return entry.id

    async def update(self, entry_id: str, patch: dict[str, Any]) -> ScheduleEntry:
        try:
            with Session(self._engine) as session:
                record = session.get(ScheduleEntryRecord, entry_id)
                if record is None:
                    raise EntityNotFoundError("ScheduleEntry", entry_id)
                updated = apply_patch(record.to_entry(), patch)
                values = ScheduleEntryRecord.from_entry(updated).model_dump()
                for key, value in values.items():
                    setattr(record, key, value)
                session.add(record)
                session.commit()
                return updated
        except SQLAlchemyError as e:
            raise PersistenceError("update", str(e), [entry_id]) from e

    async def delete(self, entry_id: str) -> None:
        try:
            with Session(self._engine) as session:
                record = session.get(ScheduleEntryRecord, entry_id)
                if record is None:
                    raise EntityNotFoundError("ScheduleEntry", entry_id)
                session.delete(record)
                session.commit()
        except SQLAlchemyError as e:
            raise PersistenceError("delete", str(e), [entry_id]) from e

    async def get(self, entry_id: str) -> ScheduleEntry | None:
        try:
            with Session(self._engine) as session:
                record = session.get(ScheduleEntryRecord, entry_id)
                return record.to_entry() if record else None
        except SQLAlchemyError as e:
            raise PersistenceError("get", str(e), [entry_id]) from e

    async def query(
        self, machine_id: str, date_range: TimeWindow | None = None
    ) -> list[ScheduleEntry]:
        statement = select(ScheduleEntryRecord).where(
            ScheduleEntryRecord.machine_id == machine_id
        )
        return self._fetch("query", statement, date_range)

    async def list_entries(
        self, date_range: TimeWindow | None = None
    ) -> list[ScheduleEntry]:
        return self._fetch("list_entries", select(ScheduleEntryRecord), date_range)

    def _fetch(
        self, operation: str, statement: Any, date_range: TimeWindow | None
    ) -> list[ScheduleEntry]:
        if date_range is not None:
            statement = statement.where(
                ScheduleEntryRecord.start_time < date_range.end,
                ScheduleEntryRecord.end_time > date_range.start,
            )
        statement = statement.order_by(
            ScheduleEntryRecord.start_time, ScheduleEntryRecord.id
        )
        try:
            with Session(self._engine) as session:
                return [record.to_entry() for record in session.exec(statement).all()]
        except SQLAlchemyError as e:
            raise PersistenceError(operation, str(e)) from e
