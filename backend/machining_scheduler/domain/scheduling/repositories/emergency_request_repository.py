"""
Emergency Request Repository Interface

Defines the contract for emergency request persistence.
"""

from abc import ABC, abstractmethod

from ..entities.emergency_request import EmergencyRequest


class EmergencyRequestRepository(ABC):
    """Abstract repository for EmergencyRequest aggregates."""

    @abstractmethod
    async def save(self, request: EmergencyRequest) -> EmergencyRequest:
        """
        Insert or replace an emergency request.

        Raises:
            PersistenceError: If the write fails
        """
        pass

    @abstractmethod
    async def get_by_id(self, request_id: str) -> EmergencyRequest | None:
        """Retrieve a request by id, or None."""
        pass

    @abstractmethod
    async def list_pending(self) -> list[EmergencyRequest]:
        """Requests still waiting for a decision."""
        pass
