"""Registry of the upload tasks belonging to one submission session."""

import asyncio
import logging
from pathlib import Path
from typing import Dict, List, Optional, Set, Union

from .client import PortalClient
from .exceptions import TaskNotFoundError, UploadStateError, ValidationError
from .models import (
    SourceFile,
    SubmissionFile,
    TaskStatus,
    UploadContext,
    UploaderConfig,
)
from .task import TaskListener, UploadTask

logger = logging.getLogger(__name__)


class UploadRegistry:
    """Hold the active upload tasks of one submission and gate its submit.

    Construct one per submission session and close it when the session ends;
    closing cancels whatever is still uploading.
    """

    def __init__(
        self,
        client: PortalClient,
        context: UploadContext,
        config: Optional[UploaderConfig] = None,
    ) -> None:
        self.client = client
        self.context = context
        self.config = config or UploaderConfig()
        self._tasks: Dict[str, UploadTask] = {}
        self._runs: Dict[str, asyncio.Task] = {}
        self._background: Set[asyncio.Task] = set()
        self._listeners: List[TaskListener] = []

    async def __aenter__(self) -> "UploadRegistry":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, task_id: str) -> bool:
        return task_id in self._tasks

    def add_listener(self, callback: TaskListener) -> None:
        """Register a callback attached to every task added from now on."""
        self._listeners.append(callback)

    def is_large_file(self, source: SourceFile) -> bool:
        return source.size >= self.config.large_file_threshold

    def add(
        self, file: Union[str, Path, SourceFile], display_name: str = ""
    ) -> Optional[str]:
        """Register a selected file and start its transfer.

        Args:
            file: Local path or prepared ``SourceFile``
            display_name: User supplied label (may be filled in later)

        Returns:
            The new task id, or None when the file is below the large-file
            threshold and takes the inline submission path instead

        Raises:
            ValidationError: The file is missing or its type is not allowed
        """
        source = self._load_source(file)

        if not self.context.allows(source.name):
            allowed = ", ".join(self.context.allowed_extensions)
            raise ValidationError(
                "file", source.name, f"Invalid file type. Allowed types: {allowed}"
            )

        if not self.is_large_file(source):
            logger.debug(
                f"{source.name} is {source.size} bytes, below the "
                f"{self.config.large_file_threshold} byte threshold; not registered"
            )
            return None

        task = UploadTask(
            source,
            self.context,
            self.client,
            self.config,
            display_name=display_name,
        )
        for callback in self._listeners:
            task.add_listener(callback)
        self._tasks[task.id] = task
        logger.info(f"Registered upload {task.id} for {source.name} ({source.size} bytes)")

        run = asyncio.get_running_loop().create_task(task.run(), name=f"upload-{task.id}")
        self._runs[task.id] = run
        self._background.add(run)
        run.add_done_callback(self._background.discard)
        return task.id

    def get(self, task_id: str) -> UploadTask:
        try:
            return self._tasks[task_id]
        except KeyError:
            raise TaskNotFoundError(task_id) from None

    def tasks(self) -> List[UploadTask]:
        return list(self._tasks.values())

    def remove(self, task_id: str) -> UploadTask:
        """Drop a task, cancelling its transfer first if it is still running.

        Removal is immediate; the abandoned transfer stops cooperatively at
        its next check point.
        """
        task = self.get(task_id)
        if not task.is_terminal:
            logger.info(f"Aborting upload for {task.source.name}")
            task.cancel()
        del self._tasks[task_id]
        self._runs.pop(task_id, None)
        return task

    def retry(self, task_id: str) -> Optional[str]:
        """Replace a failed or cancelled task with a fresh one for the same file."""
        task = self.get(task_id)
        if task.status not in (TaskStatus.ERROR, TaskStatus.CANCELLED):
            raise UploadStateError(
                f"Only failed or cancelled uploads can be retried (status: {task.status.value})",
                task_id,
            )
        self.remove(task_id)
        return self.add(task.source, task.display_name)

    def rename(self, task_id: str, display_name: str) -> UploadTask:
        if not display_name.strip():
            raise ValidationError("display_name", display_name, "Display name is required")
        task = self.get(task_id)
        task.rename(display_name)
        return task

    def is_submittable(self) -> bool:
        """True only when no task is still uploading.

        Failed and cancelled tasks do not block; the caller decides whether a
        required-attachment rule applies.
        """
        return not any(t.status == TaskStatus.UPLOADING for t in self._tasks.values())

    def submission_files(self) -> List[SubmissionFile]:
        """Attachments of all completed tasks, in the order they were added."""
        if not self.is_submittable():
            raise UploadStateError("Uploads are still in progress")

        files = []
        for task in self._tasks.values():
            reference = task.reference
            if reference is None:
                continue
            if not task.display_name:
                raise ValidationError(
                    "display_name", task.source.name, "Please enter a name for every file"
                )
            files.append(
                SubmissionFile(
                    display_name=task.display_name,
                    file_name=reference.file_name or task.source.name,
                    file_id=reference.file_id,
                    file_url=reference.file_url,
                    mime_type=reference.mime_type,
                    verified=reference.verified,
                )
            )
        return files

    async def wait(self, task_id: str) -> UploadTask:
        task = self.get(task_id)
        run = self._runs.get(task_id)
        if run is not None:
            await asyncio.shield(run)
        return task

    async def wait_all(self) -> List[UploadTask]:
        """Wait for every registered transfer to reach a terminal state."""
        runs = [self._runs[task_id] for task_id in self._tasks if task_id in self._runs]
        if runs:
            await asyncio.gather(*runs)
        return self.tasks()

    async def close(self) -> None:
        """Cancel unfinished transfers and wait for them to stop."""
        for task in self._tasks.values():
            if not task.is_terminal:
                task.cancel("Submission session closed")
        pending = list(self._background)
        if pending:
            results = await asyncio.gather(*pending, return_exceptions=True)
            for result in results:
                if isinstance(result, Exception):
                    logger.error(f"Upload task ended with an unexpected error: {result}")
        self._tasks.clear()
        self._runs.clear()

    @staticmethod
    def _load_source(file: Union[str, Path, SourceFile]) -> SourceFile:
        if isinstance(file, SourceFile):
            return file
        path = Path(file)
        if not path.is_file():
            raise ValidationError("file", str(path), "File not found")
        return SourceFile.from_path(path)
