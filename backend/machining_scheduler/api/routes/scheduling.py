"""
Scheduling API Routes.

Auto-scheduling runs, batch validation and schedule/conflict queries.
"""

from datetime import datetime

from fastapi import APIRouter, HTTPException, Query, status
from pydantic import BaseModel, Field

from ...core.config import SchedulingOptions
from ...domain.scheduling.algorithms.dependency_resolver import DependencyResolver
from ...domain.scheduling.entities.machine import Machine
from ...domain.scheduling.entities.process_instance import ProcessInstance
from ...domain.scheduling.entities.schedule_entry import (
    Conflict,
    ScheduleEntry,
    ScheduleResult,
)
from ...domain.scheduling.value_objects.time_window import TimeWindow
from ...domain.shared.base import UTCDateTime, as_naive_utc
from ...domain.shared.exceptions import DomainError
from ..deps import ContainerDep, Strategy, domain_http_exception

router = APIRouter(prefix="/scheduling", tags=["scheduling"])


class AutoScheduleRequest(BaseModel):
    process_instances: list[ProcessInstance]
    machines: list[Machine]
    strategy: Strategy = "enhanced"
    now: UTCDateTime | None = None
    options: SchedulingOptions | None = None


class ValidateRequest(BaseModel):
    process_instances: list[ProcessInstance]


class ValidateResponse(BaseModel):
    valid: bool
    conflicts: list[Conflict] = Field(default_factory=list)
    levels: list[list[str]] = Field(default_factory=list)
    critical_path: list[str] = Field(default_factory=list)
    analysis: dict[str, int | float] = Field(default_factory=dict)


def _date_range(start: datetime | None, end: datetime | None) -> TimeWindow | None:
    if start is None and end is None:
        return None
    if start is None or end is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="start and end must be given together",
        )
    start, end = as_naive_utc(start), as_naive_utc(end)
    if end < start:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="end must not be before start",
        )
    return TimeWindow(start=start, end=end)


@router.post(
    "/auto-schedule",
    summary="Run automatic scheduling",
    description="Schedule a batch of process instances onto the given machines.",
    response_model=ScheduleResult,
)
async def auto_schedule(
    request: AutoScheduleRequest, container: ContainerDep
) -> ScheduleResult:
    """
    Run one scheduling pass with the selected strategy.

    Conflicts are part of the result; the endpoint answers 200 even when the
    run was not successful.
    """
    for machine in request.machines:
        container.machines[machine.id] = machine
    scheduler = container.scheduler(request.strategy, request.options)
    return await scheduler.schedule(
        request.process_instances, request.machines, now=request.now
    )


@router.post(
    "/validate",
    summary="Validate a batch",
    response_model=ValidateResponse,
)
async def validate_batch(request: ValidateRequest) -> ValidateResponse:
    """Data and dependency checks without scheduling anything."""
    instances = request.process_instances
    conflicts = [
        Conflict.from_error(error)
        for instance in instances
        for error in instance.validation_errors()
    ]
    resolver = DependencyResolver()
    conflicts.extend(resolver.validate_dependencies(instances))
    graph = resolver.build_dependency_graph(instances)
    return ValidateResponse(
        valid=not conflicts,
        conflicts=conflicts,
        levels=graph.levels,
        critical_path=graph.critical_path,
        analysis=resolver.get_dependency_analysis(graph),
    )


@router.get(
    "/conflicts",
    summary="List overlapping schedule entries",
    response_model=list[Conflict],
)
async def list_conflicts(
    container: ContainerDep,
    machine_id: str | None = Query(None, description="Limit to one machine"),
    start: datetime | None = Query(None),
    end: datetime | None = Query(None),
) -> list[Conflict]:
    """Every pair of stored entries that overlap on the same machine, once."""
    date_range = _date_range(start, end)
    try:
        if machine_id:
            entries = await container.store.query(machine_id, date_range)
        else:
            entries = await container.store.list_entries(date_range)

        conflicts: list[Conflict] = []
        seen: set[frozenset[str]] = set()
        for entry in entries:
            if not entry.status.occupies_machine:
                continue
            for conflict in await container.store.detect_conflicts(entry):
                pair = frozenset(conflict.affected_ids)
                if pair not in seen:
                    seen.add(pair)
                    conflicts.append(conflict)
        return conflicts
    except DomainError as e:
        raise domain_http_exception(e) from e


@router.get(
    "/machines/{machine_id}/schedule",
    summary="Machine schedule",
    response_model=list[ScheduleEntry],
)
async def machine_schedule(
    machine_id: str,
    container: ContainerDep,
    start: datetime | None = Query(None),
    end: datetime | None = Query(None),
) -> list[ScheduleEntry]:
    try:
        return await container.store.query(machine_id, _date_range(start, end))
    except DomainError as e:
        raise domain_http_exception(e) from e
