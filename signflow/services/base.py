"""
Owner-scoped lookups shared by the services.

Anything outside the caller's scope is reported as not found so the
existence of other tenants' data is never revealed.
"""
from typing import Tuple

from signflow.exceptions import NotFoundError
from signflow.models import AuthenticatedUser, Recipient, SignaturePosition, Task, TaskFile
from signflow.repository import Repository
from signflow.utils.logging import set_context


class ScopedService:

    def __init__(self, repository: Repository):
        self.repository = repository

    async def get_owned_task(self, user: AuthenticatedUser, task_id: str) -> Task:
        task = await self.repository.get_task(task_id)
        if task is None or task.user_id != user.user_id:
            raise NotFoundError("Task", task_id)
        set_context(task_id=task.id)
        return task

    async def get_owned_file(self, user: AuthenticatedUser, file_id: str) -> Tuple[TaskFile, Task]:
        task_file = await self.repository.get_file(file_id)
        if task_file is None:
            raise NotFoundError("File", file_id)
        task = await self.repository.get_task(task_file.task_id)
        if task is None or task.user_id != user.user_id:
            raise NotFoundError("File", file_id)
        set_context(task_id=task.id)
        return task_file, task

    async def get_owned_recipient(self, user: AuthenticatedUser, recipient_id: str) -> Tuple[Recipient, Task]:
        recipient = await self.repository.get_recipient(recipient_id)
        if recipient is None:
            raise NotFoundError("Recipient", recipient_id)
        task = await self.repository.get_task(recipient.task_id)
        if task is None or task.user_id != user.user_id:
            raise NotFoundError("Recipient", recipient_id)
        set_context(task_id=task.id, recipient_id=recipient.id)
        return recipient, task

    async def get_owned_position(
        self,
        user: AuthenticatedUser,
        position_id: str,
    ) -> Tuple[SignaturePosition, Recipient, Task]:
        position = await self.repository.get_position(position_id)
        if position is None:
            raise NotFoundError("Position", position_id)
        recipient = await self.repository.get_recipient(position.recipient_id)
        if recipient is None:
            raise NotFoundError("Position", position_id)
        task = await self.repository.get_task(recipient.task_id)
        if task is None or task.user_id != user.user_id:
            raise NotFoundError("Position", position_id)
        set_context(task_id=task.id, recipient_id=recipient.id)
        return position, recipient, task
