"""
Signature position store.

Percentage coordinates are the only persisted geometry. Reads return the
pixel rect computed from the percentages and the page-size snapshot.
"""
import logging
import uuid
from typing import Dict, List, Sequence

from signflow.config import Settings
from signflow.coordinates import (
    PageDimensions,
    PercentRect,
    PlacedRect,
    detect_conflict,
    suggest_positions,
    validate_page_dimensions,
    validate_position,
)
from signflow.exceptions import (
    NotFoundError,
    PermissionDeniedException,
    StateConflictException,
    ValidationException,
)
from signflow.models import (
    ACTIVE_RECIPIENT_STATUSES,
    DEFAULT_PLACEHOLDER,
    AuthenticatedUser,
    ConflictCheckResponse,
    ConflictEntry,
    FilePositionsGroup,
    PositionCreateRequest,
    PositionStatus,
    PositionUpdateRequest,
    PositionView,
    PositionWriteResponse,
    Recipient,
    SignaturePosition,
    SigningErrorCode,
    SuggestedRect,
    TaskFile,
    TaskStatus,
)
from signflow.repository import Repository
from signflow.services.base import ScopedService
from signflow.utils.datetime_utils import utc_now

logger = logging.getLogger(__name__)

GEOMETRY_FIELDS = ("x_percent", "y_percent", "width_percent", "height_percent")


def group_by_file(positions: Sequence[SignaturePosition], files: Sequence[TaskFile]) -> List[FilePositionsGroup]:
    """Group positions under their file, files in file_order and positions by page."""
    by_file: Dict[str, List[SignaturePosition]] = {}
    for position in positions:
        by_file.setdefault(position.file_id, []).append(position)

    groups = []
    for task_file in sorted(files, key=lambda f: f.file_order):
        file_positions = by_file.get(task_file.id)
        if not file_positions:
            continue
        file_positions.sort(key=lambda p: (p.page_number, p.y_percent, p.x_percent))
        groups.append(FilePositionsGroup(
            file_id=task_file.id,
            display_name=task_file.display_name,
            file_order=task_file.file_order,
            positions=[PositionView.from_position(p) for p in file_positions],
        ))
    return groups


class PositionStore(ScopedService):

    def __init__(self, repository: Repository, settings: Settings):
        super().__init__(repository)
        self.settings = settings

    @property
    def threshold(self) -> float:
        return self.settings.position_conflict_threshold

    # -------------------------------------------------------------------------
    # Geometry checks
    # -------------------------------------------------------------------------

    def _validate_geometry(
        self,
        rect: PercentRect,
        page_number: int,
        page: PageDimensions,
        task_file: TaskFile,
    ) -> List[str]:
        """Raise ValidationException listing every violation; return warnings otherwise."""
        result = validate_position(rect, page_number)
        errors = list(result.errors)
        errors.extend(validate_page_dimensions(page).errors)
        if task_file.page_count and page_number > task_file.page_count:
            errors.append(
                f"Page {page_number} does not exist (file has {task_file.page_count} page(s))"
            )
        if errors:
            raise ValidationException(
                "Invalid field position",
                details={"errors": errors},
                code="INVALID_POSITION",
            )
        return list(result.warnings)

    async def _conflict_warnings(self, candidate: PlacedRect, file_id: str) -> List[str]:
        existing = await self.repository.list_positions(file_id=file_id)
        result = detect_conflict(candidate, [p.placed() for p in existing], self.threshold)
        if result.has_conflict:
            logger.info(
                f"Field on page {candidate.page_number} overlaps {len(result.conflicting_with)} field(s)"
            )
        return result.warnings

    # -------------------------------------------------------------------------
    # Owner operations
    # -------------------------------------------------------------------------

    async def create(self, user: AuthenticatedUser, req: PositionCreateRequest) -> PositionWriteResponse:
        """
        Place a new field.

        The recipient and the file must belong to the same draft task.
        Overlaps with existing fields never block the placement; they are
        returned as warnings.
        """
        recipient, task = await self.get_owned_recipient(user, req.recipient_id)
        if task.status != TaskStatus.DRAFT:
            raise PermissionDeniedException(
                f"Fields can only be placed while the task is a draft (task is '{task.status.value}')",
                code="TASK_NOT_EDITABLE",
            )

        task_file = await self.repository.get_file(req.file_id)
        if task_file is None:
            raise NotFoundError("File", req.file_id)
        if task_file.task_id != task.id:
            raise ValidationException(
                "Recipient and file belong to different tasks",
                details={"recipient_id": recipient.id, "file_id": task_file.id},
                code="TASK_MISMATCH",
            )

        default_page = PageDimensions.default()
        page = PageDimensions(
            width=default_page.width if req.page_width is None else req.page_width,
            height=default_page.height if req.page_height is None else req.page_height,
        )
        rect = PercentRect(x=req.x_percent, y=req.y_percent, width=req.width_percent, height=req.height_percent)
        warnings = self._validate_geometry(rect, req.page_number, page, task_file)

        position_id = str(uuid.uuid4())
        warnings.extend(await self._conflict_warnings(
            PlacedRect(page_number=req.page_number, rect=rect, id=position_id),
            task_file.id,
        ))

        now = utc_now()
        position = await self.repository.create_position({
            "id": position_id,
            "recipient_id": recipient.id,
            "file_id": task_file.id,
            "page_number": req.page_number,
            "x_percent": rect.x,
            "y_percent": rect.y,
            "width_percent": rect.width,
            "height_percent": rect.height,
            "page_width": page.width,
            "page_height": page.height,
            "field_type": req.field_type,
            "placeholder_text": req.placeholder_text or DEFAULT_PLACEHOLDER,
            "is_required": req.is_required,
            "default_value": req.default_value,
            "status": PositionStatus.PENDING,
            "created_at": now,
            "updated_at": now,
        })
        logger.info(f"Position {position.id} placed on page {position.page_number} of file {task_file.id}")
        return PositionWriteResponse(position=PositionView.from_position(position), warnings=warnings)

    async def list_for_recipient(self, user: AuthenticatedUser, recipient_id: str) -> List[FilePositionsGroup]:
        recipient, task = await self.get_owned_recipient(user, recipient_id)
        positions = await self.repository.list_positions(recipient_id=recipient.id)
        files = await self.repository.list_files(task.id)
        return group_by_file(positions, files)

    async def list_for_file(self, user: AuthenticatedUser, file_id: str) -> List[PositionView]:
        task_file, _ = await self.get_owned_file(user, file_id)
        positions = await self.repository.list_positions(file_id=task_file.id)
        return [PositionView.from_position(p) for p in positions]

    async def update_geometry(
        self,
        user: AuthenticatedUser,
        position_id: str,
        req: PositionUpdateRequest,
    ) -> PositionWriteResponse:
        """Owner edit of placement and field settings, draft tasks only."""
        position, _, task = await self.get_owned_position(user, position_id)
        if task.status != TaskStatus.DRAFT:
            raise PermissionDeniedException(
                f"Fields can only be edited while the task is a draft (task is '{task.status.value}')",
                code="TASK_NOT_EDITABLE",
            )
        if position.status == PositionStatus.SIGNED:
            raise PermissionDeniedException("Signed fields cannot be edited", code="POSITION_SIGNED")

        patch = {k: v for k, v in req.model_dump(exclude_unset=True).items() if v is not None}
        merged = position.model_copy(update=patch)
        warnings = []
        if any(key in patch for key in (*GEOMETRY_FIELDS, "page_number", "page_width", "page_height")):
            task_file = await self.repository.get_file(position.file_id)
            if task_file is None:
                raise NotFoundError("File", position.file_id)
            warnings = self._validate_geometry(merged.rect, merged.page_number, merged.page, task_file)
            warnings.extend(await self._conflict_warnings(merged.placed(), position.file_id))

        patch["updated_at"] = utc_now()
        updated = await self.repository.update_position(position.id, patch)
        if updated is None:
            raise NotFoundError("Position", position_id)
        return PositionWriteResponse(position=PositionView.from_position(updated), warnings=warnings)

    async def delete(self, user: AuthenticatedUser, position_id: str) -> None:
        position, _, task = await self.get_owned_position(user, position_id)
        if position.status == PositionStatus.SIGNED:
            raise PermissionDeniedException("Signed fields cannot be deleted", code="POSITION_SIGNED")
        if task.status != TaskStatus.DRAFT:
            raise PermissionDeniedException(
                f"Fields can only be removed while the task is a draft (task is '{task.status.value}')",
                code="TASK_NOT_EDITABLE",
            )
        await self.repository.delete_position(position.id)
        logger.info(f"Position {position.id} deleted")

    async def check_conflicts(self, user: AuthenticatedUser, req: PositionCreateRequest) -> ConflictCheckResponse:
        """Dry-run a placement: validation, overlaps on the page and free slot suggestions."""
        task_file, _ = await self.get_owned_file(user, req.file_id)
        rect = PercentRect(x=req.x_percent, y=req.y_percent, width=req.width_percent, height=req.height_percent)
        validation = validate_position(rect, req.page_number)

        existing = [p.placed() for p in await self.repository.list_positions(file_id=task_file.id)]
        result = detect_conflict(PlacedRect(page_number=req.page_number, rect=rect), existing, self.threshold)

        suggestions = []
        if result.has_conflict or not validation.valid:
            width = rect.width if 0 < rect.width <= 100 else 15.0
            height = rect.height if 0 < rect.height <= 100 else 5.0
            suggestions = [
                SuggestedRect(x_percent=s.x, y_percent=s.y, width_percent=s.width, height_percent=s.height)
                for s in suggest_positions(existing, max(req.page_number, 1), width=width, height=height)
            ]

        return ConflictCheckResponse(
            valid=validation.valid,
            errors=validation.errors,
            warnings=validation.warnings + result.warnings,
            has_conflict=result.has_conflict,
            conflicts=[
                ConflictEntry(
                    position_id=c.position_id,
                    page_number=c.page_number,
                    overlap_ratio=round(c.overlap_ratio, 4),
                    severity=c.severity,
                )
                for c in result.conflicting_with
            ],
            suggestions=suggestions,
        )

    # -------------------------------------------------------------------------
    # Signer operations
    # -------------------------------------------------------------------------

    async def apply_signer_value(self, recipient: Recipient, position_id: str, value: str) -> PositionView:
        """
        Store a signer's value and mark the field signed.

        The caller has already checked the token. A position of another
        recipient is reported as not found.
        """
        if recipient.status not in ACTIVE_RECIPIENT_STATUSES:
            raise StateConflictException(
                "This recipient can no longer fill in fields",
                code=SigningErrorCode.SIGN_ALREADY_COMPLETED.value,
                status_code=410,
            )

        position = await self.repository.get_position(position_id)
        if position is None or position.recipient_id != recipient.id:
            raise NotFoundError("Position", position_id)

        value = value.strip()
        if not value:
            if position.is_required:
                raise ValidationException(
                    "A value is required for this field",
                    details={"position_id": position.id},
                )
            value = position.default_value or ""

        updated = await self.repository.update_position_if_status(
            position.id,
            PositionStatus.PENDING,
            {
                "signature_content": value,
                "status": PositionStatus.SIGNED,
                "signed_at": utc_now(),
                "updated_at": utc_now(),
            },
        )
        if updated is None:
            raise StateConflictException(
                "This field has already been signed",
                code=SigningErrorCode.FIELD_ALREADY_SIGNED.value,
                details={"position_id": position.id},
            )
        logger.info(f"Position {position.id} signed ({position.field_type.value})")
        return PositionView.from_position(updated)

    async def pending_required(self, recipient_id: str) -> List[SignaturePosition]:
        positions = await self.repository.list_positions(recipient_id=recipient_id, status=PositionStatus.PENDING)
        return [p for p in positions if p.is_required]

    async def signed_for_file(self, file_id: str) -> List[SignaturePosition]:
        return await self.repository.list_positions(file_id=file_id, status=PositionStatus.SIGNED)

    async def for_recipient(self, recipient_id: str) -> List[SignaturePosition]:
        return await self.repository.list_positions(recipient_id=recipient_id)
