from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from signflow.coordinates import (
    DEFAULT_PAGE_HEIGHT,
    DEFAULT_PAGE_WIDTH,
    PageDimensions,
    PercentRect,
    PixelRect,
    PlacedRect,
    percent_rect_to_pixel,
)

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
DEFAULT_PLACEHOLDER = "Click to sign"


class BaseRequest(BaseModel):
    """Base class for all request models - ignores extra fields."""
    model_config = ConfigDict(extra="ignore")


class DBRecord(BaseModel):
    """Base class for rows read from the database."""
    model_config = ConfigDict(extra="ignore")


# Enums
class TaskStatus(str, Enum):
    DRAFT = "draft"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    TRASHED = "trashed"


class RecipientStatus(str, Enum):
    PENDING = "pending"
    VIEWED = "viewed"
    SIGNED = "signed"
    CANCELLED = "cancelled"


class PositionStatus(str, Enum):
    PENDING = "pending"
    SIGNED = "signed"


class FileStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"


class FieldType(str, Enum):
    SIGNATURE = "signature"
    DATE = "date"
    TEXT = "text"
    NAME = "name"
    EMAIL = "email"
    INITIALS = "initials"
    CHECKBOX = "checkbox"


# Recipients who can still act on their link
ACTIVE_RECIPIENT_STATUSES = (RecipientStatus.PENDING, RecipientStatus.VIEWED)


class AuthenticatedUser(BaseModel):
    """Owner identity resolved from the identity provider."""
    user_id: str
    email: Optional[str] = None
    name: Optional[str] = None


# Database records
class Task(DBRecord):
    id: str
    user_id: str
    title: str
    description: Optional[str] = None
    status: TaskStatus = TaskStatus.DRAFT
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    sent_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class TaskFile(DBRecord):
    id: str
    task_id: str
    original_filename: str
    display_name: Optional[str] = None
    file_size: int = 0
    mime_type: str = "application/pdf"
    storage_path: str
    original_file_url: str
    final_storage_path: Optional[str] = None
    final_file_url: Optional[str] = None
    page_count: Optional[int] = None
    file_order: int = 0
    status: FileStatus = FileStatus.PENDING
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class Recipient(DBRecord):
    id: str
    task_id: str
    name: str
    email: str
    token: str
    expires_at: datetime
    status: RecipientStatus = RecipientStatus.PENDING
    viewed_at: Optional[datetime] = None
    signed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class SignaturePosition(DBRecord):
    """
    A fillable field on one page of one file for one recipient.

    The percentage rect is the only stored geometry. The page size is a
    snapshot taken at placement time; pixel coordinates are derived from
    both on every read.
    """
    id: str
    recipient_id: str
    file_id: str
    page_number: int
    x_percent: float
    y_percent: float
    width_percent: float
    height_percent: float
    page_width: float = DEFAULT_PAGE_WIDTH
    page_height: float = DEFAULT_PAGE_HEIGHT
    field_type: FieldType = FieldType.SIGNATURE
    placeholder_text: Optional[str] = None
    is_required: bool = True
    default_value: Optional[str] = None
    status: PositionStatus = PositionStatus.PENDING
    signature_content: Optional[str] = None
    signed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def rect(self) -> PercentRect:
        return PercentRect(
            x=self.x_percent,
            y=self.y_percent,
            width=self.width_percent,
            height=self.height_percent,
        )

    @property
    def page(self) -> PageDimensions:
        return PageDimensions(width=self.page_width, height=self.page_height)

    def placed(self) -> PlacedRect:
        return PlacedRect(page_number=self.page_number, rect=self.rect, id=self.id)

    def pixel_rect(self) -> PixelRect:
        return percent_rect_to_pixel(self.rect, self.page)


# Request Models
class TaskCreateRequest(BaseRequest):
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=5000)


class TaskUpdateRequest(BaseRequest):
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=5000)


class StatusChangeRequest(BaseRequest):
    status: TaskStatus


class PublishRequest(BaseRequest):
    dry_run: bool = False


class FileOrderRequest(BaseRequest):
    file_ids: List[str] = Field(..., min_length=1)


class RecipientCreateRequest(BaseRequest):
    name: str = Field(..., min_length=1, max_length=255)
    email: str = Field(..., pattern=EMAIL_PATTERN, max_length=320)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.strip().lower()


class RecipientUpdateRequest(BaseRequest):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    email: Optional[str] = Field(default=None, pattern=EMAIL_PATTERN, max_length=320)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: Optional[str]) -> Optional[str]:
        return v.strip().lower() if v else v


class PositionCreateRequest(BaseRequest):
    model_config = ConfigDict(allow_inf_nan=False)

    recipient_id: str
    file_id: str
    page_number: int
    # Bounds are checked by validate_position to report every violation at once
    x_percent: float
    y_percent: float
    width_percent: float
    height_percent: float
    page_width: Optional[float] = None
    page_height: Optional[float] = None
    field_type: FieldType = FieldType.SIGNATURE
    placeholder_text: Optional[str] = Field(default=None, max_length=255)
    is_required: bool = True
    default_value: Optional[str] = Field(default=None, max_length=1000)


class PositionUpdateRequest(BaseRequest):
    model_config = ConfigDict(allow_inf_nan=False)

    page_number: Optional[int] = None
    x_percent: Optional[float] = None
    y_percent: Optional[float] = None
    width_percent: Optional[float] = None
    height_percent: Optional[float] = None
    page_width: Optional[float] = None
    page_height: Optional[float] = None
    field_type: Optional[FieldType] = None
    placeholder_text: Optional[str] = Field(default=None, max_length=255)
    is_required: Optional[bool] = None
    default_value: Optional[str] = Field(default=None, max_length=1000)


class FieldSubmitRequest(BaseRequest):
    position_id: str
    # Signature fields may carry a PNG data URL
    value: str = Field(..., max_length=500_000)


# Response Models
class PositionView(BaseModel):
    id: str
    recipient_id: str
    file_id: str
    page_number: int
    x_percent: float
    y_percent: float
    width_percent: float
    height_percent: float
    page_width: float
    page_height: float
    pixel: PixelRect
    field_type: FieldType
    placeholder_text: Optional[str] = None
    is_required: bool
    default_value: Optional[str] = None
    status: PositionStatus
    signature_content: Optional[str] = None
    signed_at: Optional[datetime] = None

    @classmethod
    def from_position(cls, position: SignaturePosition) -> "PositionView":
        return cls(
            **position.model_dump(exclude={"created_at", "updated_at"}),
            pixel=position.pixel_rect(),
        )


class FilePositionsGroup(BaseModel):
    file_id: str
    display_name: Optional[str] = None
    file_order: int
    positions: List[PositionView] = Field(default_factory=list)


class PositionWriteResponse(BaseModel):
    position: PositionView
    warnings: List[str] = Field(default_factory=list)


class ConflictEntry(BaseModel):
    position_id: Optional[str] = None
    page_number: int
    overlap_ratio: float
    severity: str


class SuggestedRect(BaseModel):
    x_percent: float
    y_percent: float
    width_percent: float
    height_percent: float


class ConflictCheckResponse(BaseModel):
    valid: bool
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    has_conflict: bool = False
    conflicts: List[ConflictEntry] = Field(default_factory=list)
    suggestions: List[SuggestedRect] = Field(default_factory=list)


class RecipientResponse(BaseModel):
    id: str
    task_id: str
    name: str
    email: str
    status: RecipientStatus
    token: str
    signing_link: str
    expires_at: datetime
    viewed_at: Optional[datetime] = None
    signed_at: Optional[datetime] = None


class TaskDetailResponse(BaseModel):
    task: Task
    files: List[TaskFile] = Field(default_factory=list)
    recipients: List[RecipientResponse] = Field(default_factory=list)
    valid_transitions: List[TaskStatus] = Field(default_factory=list)


class TaskListResponse(BaseModel):
    tasks: List[Task]
    total: int


class TransitionResponse(BaseModel):
    task: Task
    previous_status: TaskStatus
    action: str
    description: str


class PublishResponse(BaseModel):
    valid: bool
    dry_run: bool = False
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    task: Optional[Task] = None
    invitations_sent: int = 0


class DownloadUrlResponse(BaseModel):
    file_id: str
    url: str
    expires_in_seconds: int


class GeneratedFile(BaseModel):
    file_id: str
    display_name: Optional[str] = None
    final_file_url: str
    sha256: str
    fields_rendered: int
    fields_skipped: int = 0


class FileGenerationError(BaseModel):
    file_id: str
    display_name: Optional[str] = None
    error: str


class PipelineResult(BaseModel):
    task_id: str
    generated_files: List[GeneratedFile] = Field(default_factory=list)
    errors: List[FileGenerationError] = Field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors


class CompletionResult(BaseModel):
    task_id: str
    all_signed: bool
    pending_recipients: int = 0
    task_completed: bool = False
    already_completed: bool = False
    pdf_result: Optional[PipelineResult] = None
    pipeline_error: Optional[str] = None
    email_warnings: List[str] = Field(default_factory=list)


class SendFinalResponse(BaseModel):
    task_id: str
    emails_sent: int
    warnings: List[str] = Field(default_factory=list)


# Public signing models
class SigningErrorCode(str, Enum):
    """Error codes for the public signing flow."""
    SIGN_LINK_MALFORMED = "SIGN_LINK_MALFORMED"
    SIGN_LINK_INVALID = "SIGN_LINK_INVALID"
    SIGN_LINK_EXPIRED = "SIGN_LINK_EXPIRED"
    SIGN_LINK_CANCELLED = "SIGN_LINK_CANCELLED"
    SIGN_ALREADY_COMPLETED = "SIGN_ALREADY_COMPLETED"
    TASK_NOT_ACTIVE = "TASK_NOT_ACTIVE"
    FIELD_ALREADY_SIGNED = "FIELD_ALREADY_SIGNED"
    REQUIRED_FIELDS_PENDING = "REQUIRED_FIELDS_PENDING"


class TokenValidationResponse(BaseModel):
    valid: bool
    expired: bool = False
    error_code: Optional[SigningErrorCode] = None
    message: Optional[str] = None
    recipient_name: Optional[str] = None
    task_title: Optional[str] = None
    expires_at: Optional[datetime] = None


class SigningTaskInfo(BaseModel):
    id: str
    title: str
    description: Optional[str] = None
    status: TaskStatus


class SigningRecipientInfo(BaseModel):
    id: str
    name: str
    email: str
    status: RecipientStatus
    expires_at: datetime


class SigningFileView(BaseModel):
    id: str
    display_name: Optional[str] = None
    file_order: int
    mime_type: str
    download_url: str
    positions: List[PositionView] = Field(default_factory=list)


class SigningView(BaseModel):
    task: SigningTaskInfo
    recipient: SigningRecipientInfo
    files: List[SigningFileView] = Field(default_factory=list)
    total_fields: int = 0
    pending_required_fields: int = 0


class SigningCompleteResponse(BaseModel):
    recipient_id: str
    status: RecipientStatus
    signed_at: datetime
    task_completed: bool = False
    message: str
