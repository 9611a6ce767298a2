"""
Portal Uploads - resumable large-file upload client for the student portal.

This package provides:
- Python SDK for chunked, resumable uploads with retry and recovery
- CLI tool for uploading assignment attachments
- FastAPI server exposing a submission session's uploads
"""

__version__ = "1.0.0"
__author__ = "Student Portal Team"
__email__ = "portal-dev@example.edu"

from .core.api import PortalUploadAPI, upload_file
from .core.cancellation import CancellationToken
from .core.client import PortalClient
from .core.exceptions import (
    ChunkTransferError,
    ConfigurationError,
    EndpointError,
    NetworkError,
    PortalUploadError,
    TaskNotFoundError,
    TransferError,
    UploadCancelledError,
    UploadStateError,
    ValidationError,
)
from .core.models import (
    RemoteFileRef,
    SourceFile,
    TaskStatus,
    UploadContext,
    UploaderConfig,
)
from .core.registry import UploadRegistry
from .core.retry import RetryPolicy
from .core.task import UploadTask

__all__ = [
    # Core classes
    "PortalUploadAPI",
    "PortalClient",
    "UploadRegistry",
    "UploadTask",
    "RetryPolicy",
    "CancellationToken",
    # Models
    "SourceFile",
    "UploadContext",
    "UploaderConfig",
    "RemoteFileRef",
    "TaskStatus",
    # Exceptions
    "PortalUploadError",
    "ConfigurationError",
    "ValidationError",
    "TaskNotFoundError",
    "UploadStateError",
    "UploadCancelledError",
    "TransferError",
    "NetworkError",
    "ChunkTransferError",
    "EndpointError",
    # Convenience functions
    "upload_file",
    # Metadata
    "__version__",
    "__author__",
    "__email__",
]
