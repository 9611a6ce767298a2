"""Submission session owned by the server: one registry plus its spooled files."""

import logging
import shutil
import tempfile
from pathlib import Path
from typing import BinaryIO, Dict, Optional

from ..core.models import TaskStatus
from ..core.registry import UploadRegistry
from ..core.task import UploadTask

logger = logging.getLogger(__name__)


class UploadSession:
    """Registry wrapper that owns the temp copies of uploaded files.

    A spooled copy lives as long as some task may still read it: it is
    removed when its task completes, when the task is removed, or when the
    session closes. Failed and cancelled tasks keep theirs for ``retry``.
    """

    def __init__(self, registry: UploadRegistry) -> None:
        self.registry = registry
        self._spools: Dict[str, Path] = {}
        registry.add_listener(self._on_task_change)

    def add_upload(self, stream: BinaryIO, file_name: str, display_name: str = "") -> Optional[str]:
        """Spool an incoming stream to disk and register it.

        Returns the task id, or None when the file is below the threshold.
        """
        spool_dir = Path(tempfile.mkdtemp(prefix="portal-upload-"))
        path = spool_dir / (Path(file_name).name or "upload.bin")
        try:
            with open(path, "wb") as f:
                shutil.copyfileobj(stream, f)
            task_id = self.registry.add(path, display_name)
        except BaseException:
            self._discard(path)
            raise

        if task_id is None:
            self._discard(path)
            return None
        self._spools[task_id] = path
        return task_id

    def remove(self, task_id: str) -> UploadTask:
        task = self.registry.remove(task_id)
        self._release(task_id)
        return task

    def retry(self, task_id: str) -> Optional[str]:
        new_id = self.registry.retry(task_id)
        path = self._spools.pop(task_id, None)
        if path is not None:
            if new_id is None:
                self._discard(path)
            else:
                self._spools[new_id] = path
        return new_id

    async def close(self) -> None:
        await self.registry.close()
        for task_id in list(self._spools):
            self._release(task_id)

    def _on_task_change(self, task: UploadTask) -> None:
        if task.status == TaskStatus.COMPLETE:
            self._release(task.id)

    def _release(self, task_id: str) -> None:
        path = self._spools.pop(task_id, None)
        if path is not None:
            self._discard(path)

    @staticmethod
    def _discard(path: Path) -> None:
        logger.debug(f"Removing spooled file {path}")
        shutil.rmtree(path.parent, ignore_errors=True)

