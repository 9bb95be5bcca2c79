"""
Emergency API Routes.

Submission and approval workflow for emergency scheduling requests.
"""

from fastapi import APIRouter, status
from pydantic import BaseModel, Field

from ...domain.scheduling.entities.emergency_request import EmergencyRequest
from ...domain.scheduling.entities.machine import Machine
from ...domain.scheduling.value_objects.enums import EmergencyLevel
from ...domain.shared.base import UTCDateTime
from ...domain.shared.exceptions import DomainError
from ..deps import ContainerDep, domain_http_exception

router = APIRouter(prefix="/emergency", tags=["emergency"])


class EmergencySubmission(BaseModel):
    process_instance_id: str
    machine: Machine
    duration_minutes: float = Field(gt=0)
    emergency_level: EmergencyLevel = EmergencyLevel.URGENT
    reason: str
    requested_by: str
    requested_start: UTCDateTime | None = None
    allow_after_hours: bool = True
    allow_weekends: bool = False
    safety_considerations: str | None = None


class ApprovalRequest(BaseModel):
    actor: str


class RejectionRequest(BaseModel):
    actor: str
    reason: str | None = None


@router.post(
    "/requests",
    summary="Submit emergency request",
    response_model=EmergencyRequest,
    status_code=status.HTTP_201_CREATED,
    responses={
        409: {"description": "Policy violation or no emergency slot available"},
        503: {"description": "Schedule store unavailable"},
    },
)
async def submit_request(
    submission: EmergencySubmission, container: ContainerDep
) -> EmergencyRequest:
    try:
        return await container.emergency_scheduler().submit_request(
            **submission.model_dump(exclude={"machine"}),
            machine=submission.machine,
        )
    except DomainError as e:
        raise domain_http_exception(e) from e


@router.get(
    "/requests",
    summary="List pending emergency requests",
    response_model=list[EmergencyRequest],
)
async def list_pending(container: ContainerDep) -> list[EmergencyRequest]:
    return await container.emergency_scheduler().list_pending()


@router.get(
    "/requests/{request_id}",
    summary="Get emergency request",
    response_model=EmergencyRequest,
)
async def get_request(request_id: str, container: ContainerDep) -> EmergencyRequest:
    try:
        return await container.emergency_scheduler().get_request(request_id)
    except DomainError as e:
        raise domain_http_exception(e) from e


@router.post(
    "/requests/{request_id}/approve",
    summary="Approve emergency request",
    response_model=EmergencyRequest,
)
async def approve_request(
    request_id: str, approval: ApprovalRequest, container: ContainerDep
) -> EmergencyRequest:
    try:
        return await container.emergency_scheduler().approve(request_id, approval.actor)
    except DomainError as e:
        raise domain_http_exception(e) from e


@router.post(
    "/requests/{request_id}/reject",
    summary="Reject emergency request",
    response_model=EmergencyRequest,
)
async def reject_request(
    request_id: str, rejection: RejectionRequest, container: ContainerDep
) -> EmergencyRequest:
    try:
        return await container.emergency_scheduler().reject(
            request_id, rejection.actor, rejection.reason
        )
    except DomainError as e:
        raise domain_http_exception(e) from e
