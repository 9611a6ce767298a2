"""Async client for the portal's spreadsheet-backed scripting endpoint."""

import json
import logging
import os
from typing import Any, Dict, Optional

import httpx

from .exceptions import ConfigurationError, EndpointError, NetworkError
from .models import REQUEST_TIMEOUT, RemoteFileRef, SourceFile, UploadContext

logger = logging.getLogger(__name__)


class PortalClient:
    """Client for the portal upload actions.

    Every call is a form-encoded POST with ``action``, ``studentEmail`` and a
    JSON ``params`` blob; the endpoint answers ``{success, data, error}``.
    """

    ACTION_INITIATE = "initiateResumableUpload"
    ACTION_FINALIZE = "finalizeResumableUpload"
    ACTION_RECOVER = "recoverUploadedFile"

    def __init__(
        self,
        api_url: Optional[str] = None,
        student_email: Optional[str] = None,
        *,
        timeout: float = REQUEST_TIMEOUT,
        http: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize the portal client.

        Args:
            api_url: Scripting endpoint URL. If not provided, will try to get from PORTAL_API_URL env var.
            student_email: Identity sent with every call (or PORTAL_STUDENT_EMAIL env var)
            timeout: Request timeout in seconds for endpoint actions
            http: Optional preconfigured ``httpx.AsyncClient`` (owned by the caller)
        """
        self.api_url = api_url or os.getenv("PORTAL_API_URL")
        if not self.api_url:
            raise ConfigurationError(
                "Portal API URL required. Set PORTAL_API_URL environment variable "
                "or pass api_url parameter."
            )
        self.student_email = student_email or os.getenv("PORTAL_STUDENT_EMAIL", "")
        self.timeout = timeout

        self._owns_http = http is None
        self.http = http or httpx.AsyncClient(
            headers={"Accept": "application/json"},
        )

    async def __aenter__(self) -> "PortalClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_http:
            await self.http.aclose()

    async def _make_request(
        self, action: str, params: Dict[str, Any], student_email: Optional[str] = None
    ) -> Dict[str, Any]:
        """Call one endpoint action and return its ``data`` payload."""
        form = {
            "action": action,
            "studentEmail": student_email or self.student_email,
            "params": json.dumps(params),
        }

        try:
            response = await self.http.post(
                self.api_url,
                data=form,
                timeout=self.timeout,
                follow_redirects=True,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(f"{action} failed: HTTP {e.response.status_code}")
            raise NetworkError(
                f"{action} failed: HTTP {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except httpx.TimeoutException as e:
            logger.error(f"{action} timed out after {self.timeout}s")
            raise NetworkError(f"{action} timed out") from e
        except httpx.TransportError as e:
            logger.error(f"{action} request failed: {e}")
            raise NetworkError(f"{action} request failed: {e}") from e

        try:
            result = response.json()
        except ValueError as e:
            logger.error(f"{action} returned a non-JSON body: {response.text[:200]}")
            raise EndpointError(action, f"{action} returned an invalid response") from e

        if not isinstance(result, dict) or not result.get("success"):
            error = result.get("error") if isinstance(result, dict) else None
            raise EndpointError(action, error or f"{action} was not successful")

        return result.get("data") or {}

    async def initiate(
        self, source: SourceFile, file_name: str, context: UploadContext
    ) -> str:
        """Open a resumable session and return its session URL."""
        logger.info(f"Initiating resumable upload for {file_name} ({source.size} bytes)")
        data = await self._make_request(
            self.ACTION_INITIATE,
            {
                "assignmentId": context.assignment_id,
                "fileName": file_name,
                "fileSize": source.size,
                "mimeType": source.content_type,
                "studentName": context.student_name,
            },
            context.student_email,
        )
        upload_url = data.get("uploadUrl")
        if not upload_url:
            raise EndpointError(self.ACTION_INITIATE, "Failed to initiate upload")
        return upload_url

    async def finalize(
        self, session_url: str, total_size: int, student_email: Optional[str] = None
    ) -> RemoteFileRef:
        """Confirm a completed session and return the remote file reference."""
        data = await self._make_request(
            self.ACTION_FINALIZE,
            {"uploadUrl": session_url, "fileSize": total_size},
            student_email,
        )
        return self._parse_reference(self.ACTION_FINALIZE, data)

    async def recover_by_identity(
        self, context: UploadContext, file_name: str
    ) -> Optional[RemoteFileRef]:
        """Look up an uploaded object by its owner and name.

        Returns:
            The reference, or None when the endpoint reports no match
        """
        try:
            data = await self._make_request(
                self.ACTION_RECOVER,
                {
                    "assignmentId": context.assignment_id,
                    "studentName": context.student_name,
                    "fileName": file_name,
                },
                context.student_email,
            )
        except EndpointError as e:
            logger.info(f"No remote file found for {file_name}: {e.message}")
            return None
        return self._parse_reference(self.ACTION_RECOVER, data)

    @staticmethod
    def _parse_reference(action: str, data: Dict[str, Any]) -> RemoteFileRef:
        file_id = data.get("fileId")
        file_url = data.get("fileUrl")
        if not file_id or not file_url:
            raise EndpointError(action, f"{action} response is missing the file reference")
        return RemoteFileRef(
            file_id=file_id,
            file_url=file_url,
            mime_type=data.get("mimeType") or "application/octet-stream",
            file_name=data.get("fileName"),
        )
