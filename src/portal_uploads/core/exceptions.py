"""
Exception classes for Portal Uploads.

Provides the hierarchy of exceptions raised by the upload client. Transient
failures derive from ``TransferError`` so retry policies can tell them apart
from cancellation and from programming errors.
"""

from typing import Any, Dict, Optional


class PortalUploadError(Exception):
    """Base exception for all Portal Uploads errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} (Details: {self.details})"
        return self.message


class ConfigurationError(PortalUploadError):
    """Raised for configuration-related errors."""

    def __init__(self, message: str) -> None:
        super().__init__(message)


class ValidationError(PortalUploadError):
    """Raised for input validation errors."""

    def __init__(self, field: str, value: Any, message: str) -> None:
        details = {"field": field, "value": value}
        super().__init__(f"Validation error for {field}: {message}", details)
        self.field = field
        self.value = value


class TaskNotFoundError(PortalUploadError):
    """Raised when an upload task id is not in the registry."""

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Upload task not found: {task_id}", {"task_id": task_id})
        self.task_id = task_id


class UploadStateError(PortalUploadError):
    """Raised when an operation is not allowed in the task's current state."""

    def __init__(self, message: str, task_id: Optional[str] = None) -> None:
        details = {"task_id": task_id} if task_id else {}
        super().__init__(message, details)
        self.task_id = task_id


class UploadCancelledError(PortalUploadError):
    """Raised at a cancellation check point once the token has been raised."""

    def __init__(self, message: str = "Upload cancelled by user") -> None:
        super().__init__(message)


class TransferError(PortalUploadError):
    """Base class for transient failures that a retry policy may retry."""


class NetworkError(TransferError):
    """Raised for network-related errors."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        details = {"status_code": status_code} if status_code else {}
        super().__init__(message, details)
        self.status_code = status_code


class ChunkTransferError(NetworkError):
    """Raised when one chunk could not be stored by the session endpoint."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        chunk_index: Optional[int] = None,
    ) -> None:
        super().__init__(message, status_code)
        self.chunk_index = chunk_index
        if chunk_index is not None:
            self.details["chunk_index"] = chunk_index


class EndpointError(TransferError):
    """Raised when the scripting endpoint answers with ``success: false``."""

    def __init__(self, action: str, message: str) -> None:
        super().__init__(message, {"action": action})
        self.action = action
