"""
Persistence interface used by the services.

Every method is a coroutine; the conditional updates (`*_if_status`) are
the only concurrency primitive the services rely on. An implementation
must apply them as a single conditional write, not a read followed by
a write.
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

from signflow.models import (
    PositionStatus,
    Recipient,
    RecipientStatus,
    SignaturePosition,
    Task,
    TaskFile,
    TaskStatus,
)

Updates = Dict[str, Any]


class Repository(ABC):

    # Tasks
    @abstractmethod
    async def create_task(self, data: Updates) -> Task: ...

    @abstractmethod
    async def get_task(self, task_id: str) -> Optional[Task]: ...

    @abstractmethod
    async def list_tasks(self, user_id: str, status: Optional[TaskStatus] = None) -> List[Task]: ...

    @abstractmethod
    async def update_task(self, task_id: str, updates: Updates) -> Optional[Task]: ...

    @abstractmethod
    async def update_task_if_status(
        self,
        task_id: str,
        expected: TaskStatus,
        updates: Updates,
    ) -> Optional[Task]:
        """Apply updates only while the task still has `expected` status; None if it did not."""

    @abstractmethod
    async def delete_task(self, task_id: str) -> None: ...

    # Files
    @abstractmethod
    async def create_file(self, data: Updates) -> TaskFile: ...

    @abstractmethod
    async def get_file(self, file_id: str) -> Optional[TaskFile]: ...

    @abstractmethod
    async def list_files(self, task_id: str) -> List[TaskFile]:
        """Files of a task ordered by file_order."""

    @abstractmethod
    async def update_file(self, file_id: str, updates: Updates) -> Optional[TaskFile]: ...

    @abstractmethod
    async def delete_file(self, file_id: str) -> None: ...

    # Recipients
    @abstractmethod
    async def create_recipient(self, data: Updates) -> Recipient: ...

    @abstractmethod
    async def get_recipient(self, recipient_id: str) -> Optional[Recipient]: ...

    @abstractmethod
    async def get_recipient_by_token(self, token: str) -> Optional[Recipient]: ...

    @abstractmethod
    async def list_recipients(self, task_id: str) -> List[Recipient]:
        """Recipients of a task ordered by creation time."""

    @abstractmethod
    async def update_recipient(self, recipient_id: str, updates: Updates) -> Optional[Recipient]: ...

    @abstractmethod
    async def update_recipient_if_status(
        self,
        recipient_id: str,
        expected: Sequence[RecipientStatus],
        updates: Updates,
    ) -> Optional[Recipient]: ...

    @abstractmethod
    async def update_recipients_with_status(
        self,
        task_id: str,
        expected: Sequence[RecipientStatus],
        updates: Updates,
    ) -> int:
        """Bulk conditional update for a task's recipients; returns the affected count."""

    @abstractmethod
    async def delete_recipient(self, recipient_id: str) -> None: ...

    # Positions
    @abstractmethod
    async def create_position(self, data: Updates) -> SignaturePosition: ...

    @abstractmethod
    async def get_position(self, position_id: str) -> Optional[SignaturePosition]: ...

    @abstractmethod
    async def list_positions(
        self,
        recipient_id: Optional[str] = None,
        file_id: Optional[str] = None,
        status: Optional[PositionStatus] = None,
    ) -> List[SignaturePosition]:
        """Positions matching every given filter, ordered by page number."""

    @abstractmethod
    async def update_position(self, position_id: str, updates: Updates) -> Optional[SignaturePosition]: ...

    @abstractmethod
    async def update_position_if_status(
        self,
        position_id: str,
        expected: PositionStatus,
        updates: Updates,
    ) -> Optional[SignaturePosition]: ...

    @abstractmethod
    async def delete_position(self, position_id: str) -> None: ...

    @abstractmethod
    async def delete_positions(
        self,
        recipient_id: Optional[str] = None,
        file_id: Optional[str] = None,
    ) -> int: ...

    async def ping(self) -> bool:
        """Cheap connectivity check for health endpoints."""
        return True
