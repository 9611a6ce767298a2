"""
Pydantic models for Portal Uploads.

These models cover the local file reference, the owning submission context,
the tagged task state, the uploader configuration and the response bodies of
the submission-session API.
"""

import mimetypes
import os
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

MIB = 1024 * 1024

CHUNK_SIZE = 5 * MIB
LARGE_FILE_THRESHOLD = 20 * MIB
CHUNK_TIMEOUT = 60.0
REQUEST_TIMEOUT = 90.0
RECOVERY_THRESHOLD = 0.9

DEFAULT_CONTENT_TYPE = "application/octet-stream"


class TaskStatus(str, Enum):
    """Upload task status enumeration."""

    READY = "ready"
    UPLOADING = "uploading"
    COMPLETE = "complete"
    ERROR = "error"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset(
    {TaskStatus.COMPLETE, TaskStatus.ERROR, TaskStatus.CANCELLED}
)


class SourceFile(BaseModel):
    """Immutable reference to a local file selected for upload."""

    model_config = ConfigDict(frozen=True)

    path: Path = Field(..., description="Local file path")
    name: str = Field(..., min_length=1, description="Original file name")
    size: int = Field(..., ge=0, description="File size in bytes")
    content_type: str = Field(
        DEFAULT_CONTENT_TYPE, description="MIME content type", examples=["video/mp4"]
    )

    @classmethod
    def from_path(cls, path: Union[str, Path]) -> "SourceFile":
        path = Path(path)
        content_type, _ = mimetypes.guess_type(path.name)
        return cls(
            path=path,
            name=path.name,
            size=path.stat().st_size,
            content_type=content_type or DEFAULT_CONTENT_TYPE,
        )

    @property
    def extension(self) -> str:
        return Path(self.name).suffix.lstrip(".").lower()

    def read_range(self, start: int, end: int) -> bytes:
        """Read the inclusive byte range ``[start, end]`` from disk."""
        with open(self.path, "rb") as f:
            f.seek(start)
            return f.read(end - start + 1)


class UploadContext(BaseModel):
    """Identity of the submission that owns a set of uploads."""

    assignment_id: str = Field(
        ..., min_length=1, description="Assignment identifier", examples=["ASG-2024-017"]
    )
    student_email: str = Field(
        ..., min_length=3, description="Uploader email", examples=["student@example.edu"]
    )
    student_name: str = Field(
        ..., min_length=1, description="Uploader display name", examples=["Asha Rao"]
    )
    allowed_file_types: str = Field(
        "",
        description="Comma separated extension allowlist (empty allows any)",
        examples=["pdf,zip,mp4"],
    )

    @field_validator("student_email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        """Validate uploader email."""
        if "@" not in v:
            raise ValueError("Email must contain '@'")
        return v.strip()

    @property
    def allowed_extensions(self) -> List[str]:
        return [
            t.strip().lstrip(".").lower()
            for t in self.allowed_file_types.split(",")
            if t.strip()
        ]

    def allows(self, file_name: str) -> bool:
        allowed = self.allowed_extensions
        if not allowed:
            return True
        return Path(file_name).suffix.lstrip(".").lower() in allowed

    @classmethod
    def from_env(cls) -> "UploadContext":
        return cls(
            assignment_id=os.getenv("PORTAL_ASSIGNMENT_ID", ""),
            student_email=os.getenv("PORTAL_STUDENT_EMAIL", ""),
            student_name=os.getenv("PORTAL_STUDENT_NAME", ""),
            allowed_file_types=os.getenv("PORTAL_ALLOWED_FILE_TYPES", ""),
        )


class RemoteFileRef(BaseModel):
    """Durable reference to an uploaded remote object."""

    model_config = ConfigDict(frozen=True)

    file_id: str = Field(..., description="Remote file identifier", examples=["1AbCdEf"])
    file_url: str = Field(
        ...,
        description="Remote file URL",
        examples=["https://drive.google.com/file/d/1AbCdEf/view"],
    )
    mime_type: str = Field(DEFAULT_CONTENT_TYPE, description="Remote MIME type")
    file_name: Optional[str] = Field(None, description="Remote file name")
    verified: bool = Field(
        True, description="False for placeholders pending backend reconciliation"
    )


# Tagged task state. Each variant only carries the fields that are legal in
# that status, so e.g. an error can never hold a remote reference.
class ReadyState(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: Literal["ready"] = "ready"


class UploadingState(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: Literal["uploading"] = "uploading"
    progress_percent: int = Field(0, ge=0, le=100)
    uploaded_bytes: int = Field(0, ge=0)


class CompleteState(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: Literal["complete"] = "complete"
    reference: RemoteFileRef

    @property
    def verified(self) -> bool:
        return self.reference.verified


class ErrorState(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: Literal["error"] = "error"
    reason: str = Field(..., min_length=1)
    uploaded_bytes: int = Field(0, ge=0)


class CancelledState(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: Literal["cancelled"] = "cancelled"
    uploaded_bytes: int = Field(0, ge=0)


TaskState = Annotated[
    Union[ReadyState, UploadingState, CompleteState, ErrorState, CancelledState],
    Field(discriminator="status"),
]


# Configuration Models
class RetrySettings(BaseModel):
    """Bounded retry budget with linear-by-attempt backoff."""

    max_attempts: int = Field(..., ge=1, description="Total attempts, first included")
    base_delay: float = Field(
        ..., ge=0, description="Delay multiplied by the attempt number between attempts"
    )


class UploaderConfig(BaseModel):
    """Tunables for the large-file upload client."""

    chunk_size: int = Field(CHUNK_SIZE, ge=1, description="Chunk size in bytes")
    large_file_threshold: int = Field(
        LARGE_FILE_THRESHOLD,
        ge=0,
        description="Files at or above this size use the resumable upload",
    )
    chunk_timeout: float = Field(CHUNK_TIMEOUT, gt=0, description="Per-chunk timeout in seconds")
    request_timeout: float = Field(
        REQUEST_TIMEOUT, gt=0, description="Endpoint request timeout in seconds"
    )
    chunk_retry: RetrySettings = Field(
        default_factory=lambda: RetrySettings(max_attempts=5, base_delay=1.0)
    )
    finalize_retry: RetrySettings = Field(
        default_factory=lambda: RetrySettings(max_attempts=3, base_delay=2.0)
    )
    recovery_threshold: float = Field(
        RECOVERY_THRESHOLD,
        gt=0,
        le=1,
        description="Transferred fraction from which failures enter recovery instead of error",
    )

    @classmethod
    def from_env(cls) -> "UploaderConfig":
        """Build a config, overriding defaults from PORTAL_UPLOAD_* variables."""
        env_map = {
            "chunk_size": "PORTAL_UPLOAD_CHUNK_SIZE",
            "large_file_threshold": "PORTAL_UPLOAD_THRESHOLD",
            "chunk_timeout": "PORTAL_UPLOAD_CHUNK_TIMEOUT",
            "request_timeout": "PORTAL_UPLOAD_REQUEST_TIMEOUT",
            "recovery_threshold": "PORTAL_UPLOAD_RECOVERY_THRESHOLD",
        }
        overrides: Dict[str, Any] = {}
        for field, var in env_map.items():
            value = os.getenv(var)
            if value:
                overrides[field] = value
        return cls(**overrides)


# Response Models
class TaskView(BaseModel):
    """Snapshot of one upload task for rendering."""

    id: str = Field(..., description="Task identifier", examples=["9f1c2e..."])
    file_name: str = Field(..., description="Original file name")
    size: int = Field(..., description="File size in bytes")
    content_type: str = Field(..., description="File MIME type")
    display_name: str = Field(..., description="User supplied label")
    status: TaskStatus = Field(..., description="Task status")
    status_text: str = Field(..., description="Human readable status", examples=["uploading 40%"])
    progress_percent: int = Field(..., ge=0, le=100)
    uploaded_bytes: int = Field(..., ge=0)
    state: TaskState
    reference: Optional[RemoteFileRef] = None
    last_error: Optional[str] = None


class RegistryView(BaseModel):
    """All tasks of a submission session plus the submit gate."""

    tasks: List[TaskView] = Field(..., description="Upload tasks")
    total_count: int = Field(..., description="Number of tasks")
    submittable: bool = Field(..., description="True when no task is uploading")


class SubmissionFile(BaseModel):
    """One attachment as sent with the final submission."""

    display_name: str
    file_name: str
    file_id: str
    file_url: str
    mime_type: str
    verified: bool


class SubmissionResponse(BaseModel):
    """Attachments ready to be submitted."""

    assignment_id: str
    files: List[SubmissionFile]
    unverified_count: int = Field(0, description="Placeholders pending reconciliation")


class RenameRequest(BaseModel):
    """Request model for renaming an upload."""

    display_name: str = Field(..., min_length=1, max_length=200, examples=["Final report"])

    @field_validator("display_name")
    @classmethod
    def validate_display_name(cls, v: str) -> str:
        """Reject whitespace-only labels."""
        if not v.strip():
            raise ValueError("Display name must not be blank")
        return v.strip()


class DeleteResponse(BaseModel):
    """Response for delete operations."""

    success: bool = Field(..., description="Delete success status")
    message: str = Field(..., description="Status message", examples=["Upload removed"])


class HealthCheckResponse(BaseModel):
    """Health check response."""

    status: str = Field(..., description="Service status", examples=["healthy"])
    version: str = Field(..., description="API version", examples=["1.0.0"])
    timestamp: datetime = Field(default_factory=datetime.utcnow, description="Check timestamp")
