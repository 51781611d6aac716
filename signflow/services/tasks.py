"""
Owner-side task management: lifecycle, files and recipients.
"""
import logging
import os
import uuid
from datetime import timedelta
from typing import List, Optional, Sequence

from signflow.config import Settings
from signflow.coordinates import detect_internal_conflicts
from signflow.exceptions import (
    NotFoundError,
    PermissionDeniedException,
    StateConflictException,
    ValidationException,
)
from signflow.gcs import ObjectStorage
from signflow.models import (
    ACTIVE_RECIPIENT_STATUSES,
    AuthenticatedUser,
    DownloadUrlResponse,
    FileStatus,
    PipelineResult,
    PublishResponse,
    Recipient,
    RecipientResponse,
    RecipientStatus,
    SendFinalResponse,
    Task,
    TaskFile,
    TaskStatus,
    TransitionResponse,
)
from signflow.notifications import Notifier
from signflow.pdf import PDFComposer
from signflow.repository import Repository
from signflow.services.base import ScopedService
from signflow.services.pdf_pipeline import PDFCompositionPipeline
from signflow.status import (
    can_add_files,
    can_add_recipients,
    compute_transition_updates,
    get_transition_info,
    is_task_editable,
    validate_status_transition,
)
from signflow.utils.datetime_utils import expiry_from_now, utc_now
from signflow.utils.logging import mask_email
from signflow.utils.security import generate_recipient_token

logger = logging.getLogger(__name__)

ALLOWED_UPLOAD_TYPES = {
    "application/pdf": ".pdf",
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
}


def to_recipient_response(recipient: Recipient, settings: Settings) -> RecipientResponse:
    return RecipientResponse(
        id=recipient.id,
        task_id=recipient.task_id,
        name=recipient.name,
        email=recipient.email,
        status=recipient.status,
        token=recipient.token,
        signing_link=settings.build_signing_link(recipient.token),
        expires_at=recipient.expires_at,
        viewed_at=recipient.viewed_at,
        signed_at=recipient.signed_at,
    )


class TaskService(ScopedService):

    def __init__(
        self,
        repository: Repository,
        storage: ObjectStorage,
        notifier: Notifier,
        composer: PDFComposer,
        pipeline: PDFCompositionPipeline,
        settings: Settings,
    ):
        super().__init__(repository)
        self.storage = storage
        self.notifier = notifier
        self.composer = composer
        self.pipeline = pipeline
        self.settings = settings

    # -------------------------------------------------------------------------
    # Tasks
    # -------------------------------------------------------------------------

    async def create_task(self, user: AuthenticatedUser, title: str, description: Optional[str] = None) -> Task:
        now = utc_now()
        task = await self.repository.create_task({
            "id": str(uuid.uuid4()),
            "user_id": user.user_id,
            "title": title.strip(),
            "description": description,
            "status": TaskStatus.DRAFT,
            "created_at": now,
            "updated_at": now,
        })
        logger.info(f"Task created: {task.id}")
        return task

    async def list_tasks(self, user: AuthenticatedUser, status: Optional[TaskStatus] = None) -> List[Task]:
        return await self.repository.list_tasks(user.user_id, status)

    async def get_task(self, user: AuthenticatedUser, task_id: str) -> Task:
        return await self.get_owned_task(user, task_id)

    async def update_task(
        self,
        user: AuthenticatedUser,
        task_id: str,
        title: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Task:
        task = await self.get_owned_task(user, task_id)
        if not is_task_editable(task.status):
            raise PermissionDeniedException(
                f"Only draft tasks can be edited (task is '{task.status.value}')",
                code="TASK_NOT_EDITABLE",
            )

        updates = {"updated_at": utc_now()}
        if title is not None:
            updates["title"] = title.strip()
        if description is not None:
            updates["description"] = description
        return await self.repository.update_task(task.id, updates) or task

    async def change_status(self, user: AuthenticatedUser, task_id: str, target: TaskStatus) -> TransitionResponse:
        """
        Move a task to another status.

        The status write is conditional on the status read here, so a
        concurrent change surfaces as a conflict instead of being
        overwritten.
        """
        task = await self.get_owned_task(user, task_id)
        target = TaskStatus(target)
        current = task.status

        validation = validate_status_transition(current, target)
        if not validation.valid:
            raise StateConflictException(
                validation.error,
                code="INVALID_STATUS_TRANSITION",
                details=validation.to_details(),
            )

        if current != target and target == TaskStatus.COMPLETED:
            recipients = await self.repository.list_recipients(task.id)
            unsigned = [r for r in recipients if r.status != RecipientStatus.SIGNED]
            if not recipients or unsigned:
                raise StateConflictException(
                    f"Task cannot be completed while {len(unsigned)} recipient(s) have not signed",
                    code="RECIPIENTS_PENDING",
                    details={"pending_recipients": len(unsigned), **validation.to_details()},
                )

        if current == TaskStatus.DRAFT and target == TaskStatus.IN_PROGRESS:
            await self._check_publishable(task)

        updated = await self._transition(task, target)
        info = get_transition_info(current, target)
        return TransitionResponse(
            task=updated,
            previous_status=current,
            action=info.action,
            description=info.description,
        )

    async def _transition(self, task: Task, target: TaskStatus) -> Task:
        updates = compute_transition_updates(task.status, target)
        updates["status"] = target
        updated = await self.repository.update_task_if_status(task.id, task.status, updates)
        if updated is None:
            raise StateConflictException(
                "Task status was changed by another request, reload and try again",
                code="CONCURRENT_STATUS_CHANGE",
                details={"expected_status": task.status.value},
            )

        if task.status != target:
            await self._cascade_recipients(updated, task.status, target)
            logger.info(f"Task {task.id} status: {task.status.value} -> {target.value}")
        return updated

    async def _cascade_recipients(self, task: Task, previous: TaskStatus, target: TaskStatus) -> None:
        now = utc_now()
        if target == TaskStatus.CANCELLED:
            count = await self.repository.update_recipients_with_status(
                task.id,
                ACTIVE_RECIPIENT_STATUSES,
                {"status": RecipientStatus.CANCELLED, "updated_at": now},
            )
            logger.info(f"Cancelled {count} recipient(s) of task {task.id}")
        elif previous == TaskStatus.CANCELLED and target == TaskStatus.DRAFT:
            count = await self.repository.update_recipients_with_status(
                task.id,
                (RecipientStatus.CANCELLED,),
                {"status": RecipientStatus.PENDING, "viewed_at": None, "updated_at": now},
            )
            logger.info(f"Reset {count} recipient(s) of task {task.id} to pending")

    async def _publish_problems(self, task: Task) -> List[str]:
        errors = []
        if not await self.repository.list_files(task.id):
            errors.append("Task has no files")
        if not await self.repository.list_recipients(task.id):
            errors.append("Task has no recipients")
        return errors

    async def _check_publishable(self, task: Task) -> None:
        errors = await self._publish_problems(task)
        if errors:
            raise ValidationException(
                "Task is not ready to be sent: " + "; ".join(errors),
                details={"errors": errors},
                code="TASK_NOT_READY",
            )

    async def publish(self, user: AuthenticatedUser, task_id: str, dry_run: bool = False) -> PublishResponse:
        """Validate a draft, move it to in_progress and invite every recipient."""
        task = await self.get_owned_task(user, task_id)
        if task.status != TaskStatus.DRAFT:
            validation = validate_status_transition(task.status, TaskStatus.IN_PROGRESS)
            raise StateConflictException(
                f"Only draft tasks can be sent (task is '{task.status.value}')",
                code="TASK_NOT_DRAFT",
                details=validation.to_details(),
            )

        errors = await self._publish_problems(task)
        recipients = await self.repository.list_recipients(task.id)
        warnings = []
        for recipient in recipients:
            if not await self.repository.list_positions(recipient_id=recipient.id):
                warnings.append(f"Recipient {recipient.name} has no fields to fill in")
        for task_file in await self.repository.list_files(task.id):
            placed = [p.placed() for p in await self.repository.list_positions(file_id=task_file.id)]
            for conflict in detect_internal_conflicts(placed, self.settings.position_conflict_threshold):
                warnings.extend(conflict.warnings)

        if dry_run or errors:
            return PublishResponse(valid=not errors, dry_run=dry_run, errors=errors, warnings=warnings, task=task)

        updated = await self._transition(task, TaskStatus.IN_PROGRESS)
        report = await self.notifier.send_invitations(updated, recipients)
        warnings.extend(report.warnings)
        return PublishResponse(
            valid=True,
            errors=[],
            warnings=warnings,
            task=updated,
            invitations_sent=report.sent,
        )

    async def delete_task(self, user: AuthenticatedUser, task_id: str) -> None:
        """Permanently delete a trashed task with everything it owns."""
        task = await self.get_owned_task(user, task_id)
        if task.status != TaskStatus.TRASHED:
            raise StateConflictException(
                f"Only trashed tasks can be deleted permanently (task is '{task.status.value}')",
                code="TASK_NOT_TRASHED",
            )

        for recipient in await self.repository.list_recipients(task.id):
            await self.repository.delete_positions(recipient_id=recipient.id)
            await self.repository.delete_recipient(recipient.id)
        for task_file in await self.repository.list_files(task.id):
            await self.repository.delete_positions(file_id=task_file.id)
            await self._delete_objects(task_file)
            await self.repository.delete_file(task_file.id)
        await self.repository.delete_task(task.id)
        logger.info(f"Task deleted: {task.id}")

    async def _delete_objects(self, task_file: TaskFile) -> None:
        for path in (task_file.storage_path, task_file.final_storage_path):
            if not path:
                continue
            try:
                await self.storage.delete(path)
            except Exception as e:
                # The row goes regardless; an orphaned object is only a storage cost
                logger.warning(f"Could not delete object for file {task_file.id}: {e}")

    # -------------------------------------------------------------------------
    # Files
    # -------------------------------------------------------------------------

    async def add_file(
        self,
        user: AuthenticatedUser,
        task_id: str,
        filename: str,
        content_type: str,
        data: bytes,
        display_name: Optional[str] = None,
    ) -> TaskFile:
        task = await self.get_owned_task(user, task_id)
        if not can_add_files(task.status):
            raise PermissionDeniedException(
                f"Files can only be added to draft tasks (task is '{task.status.value}')",
                code="TASK_NOT_EDITABLE",
            )

        content_type = (content_type or "").lower().split(";")[0].strip()
        extension = ALLOWED_UPLOAD_TYPES.get(content_type)
        if extension is None:
            raise ValidationException(
                f"Unsupported file type '{content_type}'",
                details={"allowed": sorted(ALLOWED_UPLOAD_TYPES)},
            )
        if not data:
            raise ValidationException("Uploaded file is empty")
        if len(data) > self.settings.max_upload_bytes:
            raise ValidationException(
                f"File exceeds the maximum size of {self.settings.max_upload_bytes} bytes",
            )

        page_count = self._count_pages(data, content_type)

        existing = await self.repository.list_files(task.id)
        file_order = max((f.file_order for f in existing), default=-1) + 1
        file_id = str(uuid.uuid4())
        object_path = f"tasks/{task.id}/original/{file_id}{extension}"
        url = await self.storage.upload(data, object_path, content_type)

        stem = os.path.splitext(os.path.basename(filename or "document"))[0] or "document"
        task_file = await self.repository.create_file({
            "id": file_id,
            "task_id": task.id,
            "original_filename": filename or f"document{extension}",
            "display_name": (display_name or stem).strip(),
            "file_size": len(data),
            "mime_type": content_type,
            "storage_path": object_path,
            "original_file_url": url,
            "page_count": page_count,
            "file_order": file_order,
            "status": FileStatus.PENDING,
            "created_at": utc_now(),
        })
        await self.repository.update_task(task.id, {"updated_at": utc_now()})
        logger.info(f"File {file_id} added to task {task.id} ({len(data)} bytes, {page_count} page(s))")
        return task_file

    def _count_pages(self, data: bytes, content_type: str) -> int:
        if content_type != "application/pdf":
            return 1
        try:
            pages = self.composer.page_dimensions(data)
        except Exception as e:
            raise ValidationException(f"File is not a readable PDF: {e}")
        if not pages:
            raise ValidationException("PDF has no pages")
        return len(pages)

    async def list_files(self, user: AuthenticatedUser, task_id: str) -> List[TaskFile]:
        task = await self.get_owned_task(user, task_id)
        return await self.repository.list_files(task.id)

    async def delete_file(self, user: AuthenticatedUser, file_id: str) -> None:
        task_file, task = await self.get_owned_file(user, file_id)
        if not can_add_files(task.status):
            raise PermissionDeniedException(
                f"Files can only be removed from draft tasks (task is '{task.status.value}')",
                code="TASK_NOT_EDITABLE",
            )
        removed = await self.repository.delete_positions(file_id=task_file.id)
        await self._delete_objects(task_file)
        await self.repository.delete_file(task_file.id)
        logger.info(f"File {task_file.id} deleted with {removed} position(s)")

    async def reorder_files(self, user: AuthenticatedUser, task_id: str, file_ids: Sequence[str]) -> List[TaskFile]:
        """Assign file_order 0..n-1 following file_ids, which must list every file once."""
        task = await self.get_owned_task(user, task_id)
        if not can_add_files(task.status):
            raise PermissionDeniedException(
                f"Files can only be reordered in draft tasks (task is '{task.status.value}')",
                code="TASK_NOT_EDITABLE",
            )

        files = await self.repository.list_files(task.id)
        current_ids = {f.id for f in files}
        if len(file_ids) != len(set(file_ids)) or set(file_ids) != current_ids:
            raise ValidationException(
                "file_ids must list every file of the task exactly once",
                details={"expected": sorted(current_ids)},
            )

        for index, file_id in enumerate(file_ids):
            await self.repository.update_file(file_id, {"file_order": index})
        return await self.repository.list_files(task.id)

    async def get_download_url(self, user: AuthenticatedUser, file_id: str, final: bool = False) -> DownloadUrlResponse:
        task_file, _ = await self.get_owned_file(user, file_id)
        path = task_file.final_storage_path if final else task_file.storage_path
        if not path:
            raise NotFoundError("Final document", file_id)

        ttl = timedelta(minutes=self.settings.gcs_signed_url_expiration_minutes)
        name = task_file.display_name or task_file.original_filename
        if final:
            name = f"{name}.pdf"
        url = await self.storage.create_signed_url(path, ttl, filename=name)
        return DownloadUrlResponse(file_id=task_file.id, url=url, expires_in_seconds=int(ttl.total_seconds()))

    # -------------------------------------------------------------------------
    # Recipients
    # -------------------------------------------------------------------------

    async def _ensure_unique_email(self, task_id: str, email: str, exclude_id: Optional[str] = None) -> None:
        for other in await self.repository.list_recipients(task_id):
            if other.email == email and other.id != exclude_id:
                raise ValidationException(
                    "A recipient with this email already exists for this task",
                    details={"field": "email"},
                    code="DUPLICATE_RECIPIENT",
                )

    async def add_recipient(self, user: AuthenticatedUser, task_id: str, name: str, email: str) -> Recipient:
        task = await self.get_owned_task(user, task_id)
        if not can_add_recipients(task.status):
            raise PermissionDeniedException(
                f"Recipients can only be added to draft tasks (task is '{task.status.value}')",
                code="TASK_NOT_EDITABLE",
            )

        email = email.strip().lower()
        await self._ensure_unique_email(task.id, email)

        now = utc_now()
        recipient = await self.repository.create_recipient({
            "id": str(uuid.uuid4()),
            "task_id": task.id,
            "name": name.strip(),
            "email": email,
            "token": generate_recipient_token(),
            "expires_at": expiry_from_now(self.settings.recipient_token_ttl_days),
            "status": RecipientStatus.PENDING,
            "created_at": now,
            "updated_at": now,
        })
        logger.info(f"Recipient {recipient.id} ({mask_email(email)}) added to task {task.id}")
        return recipient

    async def list_recipients(self, user: AuthenticatedUser, task_id: str) -> List[Recipient]:
        task = await self.get_owned_task(user, task_id)
        return await self.repository.list_recipients(task.id)

    async def update_recipient(
        self,
        user: AuthenticatedUser,
        recipient_id: str,
        name: Optional[str] = None,
        email: Optional[str] = None,
    ) -> Recipient:
        recipient, task = await self.get_owned_recipient(user, recipient_id)
        if recipient.status == RecipientStatus.SIGNED:
            raise PermissionDeniedException("Signed recipients cannot be modified", code="RECIPIENT_SIGNED")
        if task.status not in (TaskStatus.DRAFT, TaskStatus.IN_PROGRESS):
            raise PermissionDeniedException(
                f"Recipients cannot be edited while the task is '{task.status.value}'",
                code="TASK_NOT_EDITABLE",
            )

        updates = {"updated_at": utc_now()}
        if name is not None:
            updates["name"] = name.strip()
        if email is not None:
            email = email.strip().lower()
            if email != recipient.email:
                await self._ensure_unique_email(task.id, email, exclude_id=recipient.id)
                updates["email"] = email

        updated = await self.repository.update_recipient_if_status(
            recipient.id,
            (RecipientStatus.PENDING, RecipientStatus.VIEWED, RecipientStatus.CANCELLED),
            updates,
        )
        if updated is None:
            raise PermissionDeniedException("Signed recipients cannot be modified", code="RECIPIENT_SIGNED")
        return updated

    async def delete_recipient(self, user: AuthenticatedUser, recipient_id: str) -> None:
        recipient, task = await self.get_owned_recipient(user, recipient_id)
        if recipient.status == RecipientStatus.SIGNED:
            raise PermissionDeniedException("Signed recipients cannot be deleted", code="RECIPIENT_SIGNED")
        if not can_add_recipients(task.status):
            raise PermissionDeniedException(
                f"Recipients can only be removed from draft tasks (task is '{task.status.value}')",
                code="TASK_NOT_EDITABLE",
            )
        removed = await self.repository.delete_positions(recipient_id=recipient.id)
        await self.repository.delete_recipient(recipient.id)
        logger.info(f"Recipient {recipient.id} deleted with {removed} position(s)")

    async def regenerate_token(self, user: AuthenticatedUser, recipient_id: str) -> Recipient:
        """
        Issue a new link with a fresh validity window starting now.

        The previous token stops working immediately.
        """
        recipient, task = await self.get_owned_recipient(user, recipient_id)
        if recipient.status == RecipientStatus.SIGNED:
            raise StateConflictException(
                "Cannot regenerate the link of a recipient who already signed",
                code="RECIPIENT_SIGNED",
            )
        if recipient.status == RecipientStatus.CANCELLED or task.status in (
            TaskStatus.CANCELLED, TaskStatus.TRASHED, TaskStatus.COMPLETED
        ):
            raise StateConflictException(
                f"Cannot regenerate links while the task is '{task.status.value}'",
                code="TASK_NOT_ACTIVE",
            )

        updated = await self.repository.update_recipient_if_status(
            recipient.id,
            ACTIVE_RECIPIENT_STATUSES,
            {
                "token": generate_recipient_token(),
                "expires_at": expiry_from_now(self.settings.recipient_token_ttl_days),
                "updated_at": utc_now(),
            },
        )
        if updated is None:
            raise StateConflictException(
                "Cannot regenerate the link of a recipient who already signed",
                code="RECIPIENT_SIGNED",
            )
        logger.info(f"Token regenerated for recipient {recipient.id}")
        return updated

    async def resend_invitation(self, user: AuthenticatedUser, recipient_id: str) -> Optional[str]:
        recipient, task = await self.get_owned_recipient(user, recipient_id)
        if task.status != TaskStatus.IN_PROGRESS or recipient.status not in ACTIVE_RECIPIENT_STATUSES:
            raise StateConflictException(
                "Invitations can only be sent to recipients of a task in progress who have not signed",
                code="TASK_NOT_ACTIVE",
            )
        return await self.notifier.send_invitation(task, recipient)

    # -------------------------------------------------------------------------
    # Final documents
    # -------------------------------------------------------------------------

    async def generate_final_documents(self, user: AuthenticatedUser, task_id: str) -> PipelineResult:
        """Re-run final document generation for a completed task."""
        task = await self.get_owned_task(user, task_id)
        if task.status != TaskStatus.COMPLETED:
            raise StateConflictException(
                f"Final documents are only available for completed tasks (task is '{task.status.value}')",
                code="TASK_NOT_COMPLETED",
            )
        return await self.pipeline.generate(task.id)

    async def send_final_documents(self, user: AuthenticatedUser, task_id: str) -> SendFinalResponse:
        task = await self.get_owned_task(user, task_id)
        if task.status != TaskStatus.COMPLETED:
            raise StateConflictException(
                f"Final documents are only available for completed tasks (task is '{task.status.value}')",
                code="TASK_NOT_COMPLETED",
            )
        files = await self.repository.list_files(task.id)
        if not any(f.final_storage_path for f in files):
            raise StateConflictException(
                "Final documents have not been generated yet",
                code="FINAL_PDF_MISSING",
            )
        recipients = await self.repository.list_recipients(task.id)
        report = await self.notifier.send_final_documents(task, recipients, files)
        return SendFinalResponse(task_id=task.id, emails_sent=report.sent, warnings=report.warnings)
