"""
Public signing flow for recipients.

A recipient is identified only by the token in their link:
validate -> fetch view -> submit field values -> complete.
Expired and unknown links are reported differently so the signing page
can tell the recipient to ask for a new link.
"""
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional, Tuple

from signflow.config import Settings
from signflow.exceptions import NotFoundError, StateConflictException, ValidationException
from signflow.gcs import ObjectStorage
from signflow.models import (
    ACTIVE_RECIPIENT_STATUSES,
    PositionStatus,
    PositionView,
    Recipient,
    RecipientStatus,
    SigningCompleteResponse,
    SigningErrorCode,
    SigningFileView,
    SigningRecipientInfo,
    SigningTaskInfo,
    SigningView,
    Task,
    TaskStatus,
    TokenValidationResponse,
)
from signflow.notifications import Notifier
from signflow.repository import Repository
from signflow.services.completion import CompletionAggregator
from signflow.services.positions import PositionStore
from signflow.utils.datetime_utils import is_past, utc_now
from signflow.utils.logging import fingerprint, set_context
from signflow.utils.security import is_valid_token_format, tokens_match

logger = logging.getLogger(__name__)


@dataclass
class TokenValidation:
    valid: bool
    expired: bool = False
    recipient: Optional[Recipient] = None
    error_code: Optional[SigningErrorCode] = None
    message: Optional[str] = None


class SigningProtocol:

    def __init__(
        self,
        repository: Repository,
        storage: ObjectStorage,
        positions: PositionStore,
        completion: CompletionAggregator,
        notifier: Notifier,
        settings: Settings,
    ):
        self.repository = repository
        self.storage = storage
        self.positions = positions
        self.completion = completion
        self.notifier = notifier
        self.settings = settings

    # -------------------------------------------------------------------------
    # Token handling
    # -------------------------------------------------------------------------

    async def check_token(self, token: str) -> TokenValidation:
        """Classify a token as malformed, unknown, expired or valid."""
        if not is_valid_token_format(token):
            return TokenValidation(
                valid=False,
                error_code=SigningErrorCode.SIGN_LINK_MALFORMED,
                message="This signing link is malformed",
            )

        set_context(token_fp=fingerprint(token, "tok_"))
        recipient = await self.repository.get_recipient_by_token(token)
        if recipient is None or not tokens_match(token, recipient.token):
            logger.info("Signing token not found")
            return TokenValidation(
                valid=False,
                error_code=SigningErrorCode.SIGN_LINK_INVALID,
                message="This signing link does not exist or has been replaced",
            )

        set_context(task_id=recipient.task_id, recipient_id=recipient.id)
        if is_past(recipient.expires_at):
            logger.info(f"Signing token expired at {recipient.expires_at.isoformat()}")
            return TokenValidation(
                valid=False,
                expired=True,
                recipient=recipient,
                error_code=SigningErrorCode.SIGN_LINK_EXPIRED,
                message="This signing link has expired, ask the sender for a new one",
            )

        return TokenValidation(valid=True, recipient=recipient)

    async def validate_token(self, token: str) -> TokenValidationResponse:
        check = await self.check_token(token)
        response = TokenValidationResponse(
            valid=check.valid,
            expired=check.expired,
            error_code=check.error_code,
            message=check.message,
        )
        if check.recipient is not None:
            task = await self.repository.get_task(check.recipient.task_id)
            response.recipient_name = check.recipient.name
            response.task_title = task.title if task else None
            response.expires_at = check.recipient.expires_at
        return response

    async def _require_recipient(self, token: str) -> Recipient:
        """Resolve a usable recipient or raise the matching typed error."""
        check = await self.check_token(token)
        if check.valid:
            return check.recipient
        if check.error_code == SigningErrorCode.SIGN_LINK_MALFORMED:
            raise ValidationException(check.message, code=check.error_code.value)
        if check.error_code == SigningErrorCode.SIGN_LINK_INVALID:
            raise NotFoundError("Signing link", fingerprint(token, "tok_"), code=check.error_code.value)
        raise StateConflictException(
            check.message,
            code=check.error_code.value,
            details={"expires_at": check.recipient.expires_at.isoformat()},
            status_code=410,
        )

    async def _require_active(self, token: str) -> Tuple[Recipient, Task]:
        recipient = await self._require_recipient(token)
        if recipient.status == RecipientStatus.SIGNED:
            raise StateConflictException(
                "You have already signed these documents",
                code=SigningErrorCode.SIGN_ALREADY_COMPLETED.value,
                details={"signed_at": recipient.signed_at.isoformat() if recipient.signed_at else None},
                status_code=410,
            )
        if recipient.status == RecipientStatus.CANCELLED:
            raise StateConflictException(
                "This signing request has been cancelled",
                code=SigningErrorCode.SIGN_LINK_CANCELLED.value,
                status_code=410,
            )

        task = await self.repository.get_task(recipient.task_id)
        if task is None:
            raise NotFoundError("Signing link", fingerprint(token, "tok_"), code=SigningErrorCode.SIGN_LINK_INVALID.value)
        if task.status != TaskStatus.IN_PROGRESS:
            raise StateConflictException(
                "These documents are not open for signing",
                code=SigningErrorCode.TASK_NOT_ACTIVE.value,
                details={"task_status": task.status.value},
            )
        return recipient, task

    # -------------------------------------------------------------------------
    # Signing operations
    # -------------------------------------------------------------------------

    async def fetch_signing_view(self, token: str) -> SigningView:
        """
        Everything the signing page needs, for this recipient only.

        Other recipients' fields, values and identities are never part
        of the view. The first fetch marks the recipient as viewed.
        """
        recipient, task = await self._require_active(token)

        if recipient.status == RecipientStatus.PENDING:
            now = utc_now()
            viewed = await self.repository.update_recipient_if_status(
                recipient.id,
                (RecipientStatus.PENDING,),
                {"status": RecipientStatus.VIEWED, "viewed_at": now, "updated_at": now},
            )
            if viewed is not None:
                recipient = viewed
                logger.info(f"Recipient {recipient.id} opened the documents")

        positions = await self.positions.for_recipient(recipient.id)
        files = await self.repository.list_files(task.id)
        ttl = timedelta(minutes=self.settings.signing_view_link_ttl_minutes)

        file_views = []
        for task_file in files:
            url = await self.storage.create_signed_url(
                task_file.storage_path,
                ttl,
                filename=task_file.original_filename,
            )
            file_positions = sorted(
                (p for p in positions if p.file_id == task_file.id),
                key=lambda p: (p.page_number, p.y_percent, p.x_percent),
            )
            file_views.append(SigningFileView(
                id=task_file.id,
                display_name=task_file.display_name,
                file_order=task_file.file_order,
                mime_type=task_file.mime_type,
                download_url=url,
                positions=[PositionView.from_position(p) for p in file_positions],
            ))

        pending_required = [p for p in positions if p.is_required and p.status == PositionStatus.PENDING]
        return SigningView(
            task=SigningTaskInfo(id=task.id, title=task.title, description=task.description, status=task.status),
            recipient=SigningRecipientInfo(
                id=recipient.id,
                name=recipient.name,
                email=recipient.email,
                status=recipient.status,
                expires_at=recipient.expires_at,
            ),
            files=file_views,
            total_fields=len(positions),
            pending_required_fields=len(pending_required),
        )

    async def submit_field_value(self, token: str, position_id: str, value: str) -> PositionView:
        recipient, _ = await self._require_active(token)
        return await self.positions.apply_signer_value(recipient, position_id, value)

    async def complete_signing_session(self, token: str) -> SigningCompleteResponse:
        """
        Mark the recipient as signed and finalize the task if they were last.

        Calling this again after success is an error, not a no-op.
        """
        recipient, task = await self._require_active(token)

        pending = await self.positions.pending_required(recipient.id)
        if pending:
            raise ValidationException(
                f"{len(pending)} required field(s) still need to be filled in",
                details={"pending_count": len(pending), "position_ids": [p.id for p in pending]},
                code=SigningErrorCode.REQUIRED_FIELDS_PENDING.value,
            )

        now = utc_now()
        signed = await self.repository.update_recipient_if_status(
            recipient.id,
            ACTIVE_RECIPIENT_STATUSES,
            {"status": RecipientStatus.SIGNED, "signed_at": now, "updated_at": now},
        )
        if signed is None:
            raise StateConflictException(
                "You have already signed these documents",
                code=SigningErrorCode.SIGN_ALREADY_COMPLETED.value,
                status_code=410,
            )
        logger.info(f"Recipient {signed.id} signed")

        completion = await self.completion.on_recipient_completed(task.id)
        for warning in completion.email_warnings:
            logger.warning(f"Final document delivery: {warning}")

        warning = await self.notifier.send_signer_confirmation(task, signed)
        if warning:
            logger.warning(f"Signer confirmation not delivered: {warning}")

        if completion.task_completed:
            message = "Thank you. All recipients have signed and the final documents are on their way."
        else:
            message = "Thank you. Your signature has been recorded."
        return SigningCompleteResponse(
            recipient_id=signed.id,
            status=signed.status,
            signed_at=signed.signed_at or now,
            task_completed=completion.task_completed,
            message=message,
        )
