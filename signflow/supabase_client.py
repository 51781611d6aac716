"""
Supabase client module for database operations.
Uses the service key; tenant scoping is enforced by the services.
"""
import logging
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Type, TypeVar

from supabase import AsyncClient, acreate_client

from signflow.config import Settings
from signflow.models import (
    DBRecord,
    PositionStatus,
    Recipient,
    RecipientStatus,
    SignaturePosition,
    Task,
    TaskFile,
    TaskStatus,
)
from signflow.repository import Repository, Updates
from signflow.utils.datetime_utils import to_db_timestamp

logger = logging.getLogger(__name__)

TASKS_TABLE = "signature_tasks"
FILES_TABLE = "signature_files"
RECIPIENTS_TABLE = "signature_recipients"
POSITIONS_TABLE = "signature_positions"

RecordT = TypeVar("RecordT", bound=DBRecord)


def _serialize(data: Updates) -> Dict[str, Any]:
    """Convert datetimes and enums into JSON values for PostgREST."""
    row = {}
    for key, value in data.items():
        if isinstance(value, datetime):
            row[key] = to_db_timestamp(value)
        elif isinstance(value, Enum):
            row[key] = value.value
        else:
            row[key] = value
    return row


def _first(model: Type[RecordT], data: Optional[List[Dict[str, Any]]]) -> Optional[RecordT]:
    if not data:
        return None
    return model.model_validate(data[0])


def _all(model: Type[RecordT], data: Optional[List[Dict[str, Any]]]) -> List[RecordT]:
    return [model.model_validate(row) for row in data or []]


class SupabaseRepository(Repository):
    """Repository backed by Supabase PostgREST tables."""

    def __init__(self, client: AsyncClient):
        self.client = client

    @classmethod
    async def connect(cls, settings: Settings) -> "SupabaseRepository":
        if not settings.supabase_url or not settings.supabase_service_key:
            raise RuntimeError("SUPABASE_URL and SUPABASE_SERVICE_KEY must be configured")
        client = await acreate_client(settings.supabase_url, settings.supabase_service_key)
        logger.info("Supabase client initialized")
        return cls(client)

    def table(self, table_name: str):
        return self.client.table(table_name)

    async def _insert(self, table_name: str, model: Type[RecordT], data: Updates) -> RecordT:
        try:
            result = await self.table(table_name).insert(_serialize(data)).execute()
        except Exception as e:
            logger.error(f"Insert into {table_name} failed: {e}")
            raise
        record = _first(model, result.data)
        if record is None:
            raise RuntimeError(f"Insert into {table_name} returned no row")
        return record

    async def _get(self, table_name: str, model: Type[RecordT], column: str, value: str) -> Optional[RecordT]:
        result = await self.table(table_name).select("*").eq(column, value).limit(1).execute()
        return _first(model, result.data)

    async def _update(self, table_name: str, model: Type[RecordT], record_id: str, updates: Updates) -> Optional[RecordT]:
        result = await self.table(table_name).update(_serialize(updates)).eq("id", record_id).execute()
        return _first(model, result.data)

    async def _delete(self, table_name: str, record_id: str) -> None:
        await self.table(table_name).delete().eq("id", record_id).execute()

    # Tasks
    async def create_task(self, data: Updates) -> Task:
        return await self._insert(TASKS_TABLE, Task, data)

    async def get_task(self, task_id: str) -> Optional[Task]:
        return await self._get(TASKS_TABLE, Task, "id", task_id)

    async def list_tasks(self, user_id: str, status: Optional[TaskStatus] = None) -> List[Task]:
        query = self.table(TASKS_TABLE).select("*").eq("user_id", user_id)
        if status is not None:
            query = query.eq("status", TaskStatus(status).value)
        result = await query.order("created_at", desc=True).execute()
        return _all(Task, result.data)

    async def update_task(self, task_id: str, updates: Updates) -> Optional[Task]:
        return await self._update(TASKS_TABLE, Task, task_id, updates)

    async def update_task_if_status(
        self,
        task_id: str,
        expected: TaskStatus,
        updates: Updates,
    ) -> Optional[Task]:
        # Conditional UPDATE ... WHERE id = ? AND status = ?; an empty result means the race was lost
        result = await self.table(TASKS_TABLE).update(_serialize(updates)).eq(
            "id", task_id
        ).eq("status", TaskStatus(expected).value).execute()
        if not result.data:
            logger.info(f"update_task_if_status: RACE_LOST task={task_id[:8]} expected={expected.value}")
            return None
        return _first(Task, result.data)

    async def delete_task(self, task_id: str) -> None:
        await self._delete(TASKS_TABLE, task_id)

    # Files
    async def create_file(self, data: Updates) -> TaskFile:
        return await self._insert(FILES_TABLE, TaskFile, data)

    async def get_file(self, file_id: str) -> Optional[TaskFile]:
        return await self._get(FILES_TABLE, TaskFile, "id", file_id)

    async def list_files(self, task_id: str) -> List[TaskFile]:
        result = await self.table(FILES_TABLE).select("*").eq(
            "task_id", task_id
        ).order("file_order").execute()
        return _all(TaskFile, result.data)

    async def update_file(self, file_id: str, updates: Updates) -> Optional[TaskFile]:
        return await self._update(FILES_TABLE, TaskFile, file_id, updates)

    async def delete_file(self, file_id: str) -> None:
        await self._delete(FILES_TABLE, file_id)

    # Recipients
    async def create_recipient(self, data: Updates) -> Recipient:
        return await self._insert(RECIPIENTS_TABLE, Recipient, data)

    async def get_recipient(self, recipient_id: str) -> Optional[Recipient]:
        return await self._get(RECIPIENTS_TABLE, Recipient, "id", recipient_id)

    async def get_recipient_by_token(self, token: str) -> Optional[Recipient]:
        return await self._get(RECIPIENTS_TABLE, Recipient, "token", token)

    async def list_recipients(self, task_id: str) -> List[Recipient]:
        result = await self.table(RECIPIENTS_TABLE).select("*").eq(
            "task_id", task_id
        ).order("created_at").execute()
        return _all(Recipient, result.data)

    async def update_recipient(self, recipient_id: str, updates: Updates) -> Optional[Recipient]:
        return await self._update(RECIPIENTS_TABLE, Recipient, recipient_id, updates)

    async def update_recipient_if_status(
        self,
        recipient_id: str,
        expected: Sequence[RecipientStatus],
        updates: Updates,
    ) -> Optional[Recipient]:
        result = await self.table(RECIPIENTS_TABLE).update(_serialize(updates)).eq(
            "id", recipient_id
        ).in_("status", [RecipientStatus(s).value for s in expected]).execute()
        return _first(Recipient, result.data)

    async def update_recipients_with_status(
        self,
        task_id: str,
        expected: Sequence[RecipientStatus],
        updates: Updates,
    ) -> int:
        result = await self.table(RECIPIENTS_TABLE).update(_serialize(updates)).eq(
            "task_id", task_id
        ).in_("status", [RecipientStatus(s).value for s in expected]).execute()
        return len(result.data or [])

    async def delete_recipient(self, recipient_id: str) -> None:
        await self._delete(RECIPIENTS_TABLE, recipient_id)

    # Positions
    async def create_position(self, data: Updates) -> SignaturePosition:
        return await self._insert(POSITIONS_TABLE, SignaturePosition, data)

    async def get_position(self, position_id: str) -> Optional[SignaturePosition]:
        return await self._get(POSITIONS_TABLE, SignaturePosition, "id", position_id)

    async def list_positions(
        self,
        recipient_id: Optional[str] = None,
        file_id: Optional[str] = None,
        status: Optional[PositionStatus] = None,
    ) -> List[SignaturePosition]:
        query = self.table(POSITIONS_TABLE).select("*")
        if recipient_id is not None:
            query = query.eq("recipient_id", recipient_id)
        if file_id is not None:
            query = query.eq("file_id", file_id)
        if status is not None:
            query = query.eq("status", PositionStatus(status).value)
        result = await query.order("page_number").order("created_at").execute()
        return _all(SignaturePosition, result.data)

    async def update_position(self, position_id: str, updates: Updates) -> Optional[SignaturePosition]:
        return await self._update(POSITIONS_TABLE, SignaturePosition, position_id, updates)

    async def update_position_if_status(
        self,
        position_id: str,
        expected: PositionStatus,
        updates: Updates,
    ) -> Optional[SignaturePosition]:
        result = await self.table(POSITIONS_TABLE).update(_serialize(updates)).eq(
            "id", position_id
        ).eq("status", PositionStatus(expected).value).execute()
        return _first(SignaturePosition, result.data)

    async def delete_position(self, position_id: str) -> None:
        await self._delete(POSITIONS_TABLE, position_id)

    async def delete_positions(
        self,
        recipient_id: Optional[str] = None,
        file_id: Optional[str] = None,
    ) -> int:
        if recipient_id is None and file_id is None:
            raise ValueError("delete_positions needs recipient_id or file_id")
        query = self.table(POSITIONS_TABLE).delete()
        if recipient_id is not None:
            query = query.eq("recipient_id", recipient_id)
        if file_id is not None:
            query = query.eq("file_id", file_id)
        result = await query.execute()
        return len(result.data or [])

    async def ping(self) -> bool:
        try:
            await self.table(TASKS_TABLE).select("id").limit(1).execute()
            return True
        except Exception as e:
            logger.warning(f"Supabase ping failed: {e}")
            return False
