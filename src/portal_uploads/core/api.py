"""Programmatic API for portal large-file uploads."""

import asyncio
import logging
from pathlib import Path
from typing import List, Optional, Sequence, Union

from .client import PortalClient
from .exceptions import ValidationError
from .models import UploadContext, UploaderConfig
from .registry import UploadRegistry
from .task import UploadTask

logger = logging.getLogger(__name__)


class PortalUploadAPI:
    """High-level API for portal upload operations."""

    def __init__(
        self,
        api_url: Optional[str] = None,
        config: Optional[UploaderConfig] = None,
        client: Optional[PortalClient] = None,
    ):
        """Initialize the Portal Upload API.

        Args:
            api_url: Scripting endpoint URL (or from PORTAL_API_URL env var)
            config: Uploader tunables (defaults read from PORTAL_UPLOAD_* env vars)
            client: Preconfigured client, mainly for tests
        """
        self.config = config or UploaderConfig.from_env()
        self.client = client or PortalClient(api_url, timeout=self.config.request_timeout)

    async def __aenter__(self) -> "PortalUploadAPI":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.client.aclose()

    def open_submission(self, context: UploadContext) -> UploadRegistry:
        """Create a fresh registry for one submission session."""
        return UploadRegistry(self.client, context, self.config)

    async def upload_files(
        self,
        paths: Sequence[Union[str, Path]],
        context: UploadContext,
        display_names: Optional[Sequence[str]] = None,
    ) -> List[UploadTask]:
        """Upload large files concurrently and return their finished tasks.

        Args:
            paths: Local files; files below the threshold are skipped
            context: Owning submission identity
            display_names: Optional labels, matched to ``paths`` by position

        Returns:
            Terminal tasks, one per large file, in input order
        """
        display_names = list(display_names or [])
        if len(display_names) > len(paths):
            raise ValidationError(
                "display_names", len(display_names), "More display names than files"
            )

        async with self.open_submission(context) as registry:
            task_ids = []
            for i, path in enumerate(paths):
                name = display_names[i] if i < len(display_names) else Path(path).name
                task_id = registry.add(path, name)
                if task_id is None:
                    logger.info(f"{Path(path).name} is below the large-file threshold; skipped")
                    continue
                task_ids.append(task_id)
            await registry.wait_all()
            return [registry.get(task_id) for task_id in task_ids]


# Convenience functions for quick usage
def upload_file(
    local_path: Union[str, Path],
    assignment_id: str,
    student_email: str,
    student_name: str,
    display_name: Optional[str] = None,
    api_url: Optional[str] = None,
) -> Optional[UploadTask]:
    """Quick function to upload one large file; returns None below the threshold."""
    context = UploadContext(
        assignment_id=assignment_id,
        student_email=student_email,
        student_name=student_name,
    )

    async def _run() -> Optional[UploadTask]:
        async with PortalUploadAPI(api_url) as api:
            tasks = await api.upload_files(
                [local_path], context, [display_name] if display_name else None
            )
            return tasks[0] if tasks else None

    return asyncio.run(_run())
