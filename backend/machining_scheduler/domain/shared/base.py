"""
Base classes for domain entities and value objects.

Datetimes are naive UTC throughout the domain. ``UTCDateTime`` fields accept
aware values and convert them on validation.
"""

from datetime import datetime, timezone
from typing import Annotated, Any
from uuid import uuid4

from pydantic import AfterValidator, BaseModel, ConfigDict, Field


def new_id() -> str:
    return str(uuid4())


def as_naive_utc(value: datetime) -> datetime:
    """Convert an aware datetime to naive UTC; naive values pass unchanged."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


UTCDateTime = Annotated[datetime, AfterValidator(as_naive_utc)]


class ValueObject(BaseModel):
    """Base class for value objects (immutable, defined by their values)."""

    model_config = ConfigDict(frozen=True)


class Entity(BaseModel):
    """Base class for entities (have identity, can change over time)."""

    model_config = ConfigDict(validate_assignment=True)

    id: str = Field(default_factory=new_id)

    def __eq__(self, other: Any) -> bool:
        """Entities are equal if they have the same ID and type."""
        if not isinstance(other, self.__class__):
            return False
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)


class DomainEvent(BaseModel):
    """Base class for domain events."""

    model_config = ConfigDict(frozen=True)

    event_id: str = Field(default_factory=new_id)
    event_type: str
    occurred_at: UTCDateTime
    aggregate_id: str
    payload: dict[str, Any] = Field(default_factory=dict)
