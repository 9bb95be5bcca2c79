"""In-memory EmergencyRequestRepository."""

from ...domain.scheduling.entities.emergency_request import EmergencyRequest
from ...domain.scheduling.repositories.emergency_request_repository import (
    EmergencyRequestRepository,
)
from ...domain.scheduling.value_objects.enums import EmergencyStatus


class InMemoryEmergencyRequestRepository(EmergencyRequestRepository):
    def __init__(self) -> None:
        self._requests: dict[str, EmergencyRequest] = {}

    async def save(self, request: EmergencyRequest) -> EmergencyRequest:
        self._requests[request.id] = request.model_copy(deep=True)
        return request

    async def get_by_id(self, request_id: str) -> EmergencyRequest | None:
        request = self._requests.get(request_id)
        return request.model_copy(deep=True) if request else None

    async def list_pending(self) -> list[EmergencyRequest]:
        pending = [
            request
            for request in self._requests.values()
            if request.status == EmergencyStatus.REQUESTED
        ]
        return [
            request.model_copy(deep=True)
            for request in sorted(pending, key=lambda r: r.requested_at)
        ]
