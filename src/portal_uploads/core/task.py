"""Per-file upload task: the resumable upload state machine."""

import logging
import time
import uuid
from typing import Callable, List, Optional

from .cancellation import CancellationToken
from .client import PortalClient
from .exceptions import TransferError, UploadCancelledError, UploadStateError
from .finalize import Finalizer
from .models import (
    TERMINAL_STATUSES,
    CancelledState,
    CompleteState,
    ErrorState,
    ReadyState,
    RemoteFileRef,
    SourceFile,
    TaskState,
    TaskStatus,
    TaskView,
    UploadContext,
    UploaderConfig,
    UploadingState,
)
from .retry import RetryPolicy
from .transfer import ChunkOutcome, ChunkTransfer, chunk_count, iter_chunk_ranges

logger = logging.getLogger(__name__)

TaskListener = Callable[["UploadTask"], None]


class UploadTask:
    """Upload one large file through a resumable session.

    ``ready -> uploading -> complete | error | cancelled``. Chunks are sent
    strictly in order, one at a time. Network failures never escape ``run()``;
    they end up as state transitions.
    """

    def __init__(
        self,
        source: SourceFile,
        context: UploadContext,
        client: PortalClient,
        config: Optional[UploaderConfig] = None,
        *,
        display_name: str = "",
        task_id: Optional[str] = None,
    ) -> None:
        self.id = task_id or uuid.uuid4().hex
        self.source = source
        self.context = context
        self.client = client
        self.config = config or UploaderConfig()
        self.display_name = display_name.strip()

        self.cancel_token = CancellationToken()
        self.transfer = ChunkTransfer(client.http, self.config.chunk_timeout)
        self.chunk_policy = RetryPolicy.from_settings(self.config.chunk_retry)
        self.finalizer = Finalizer(
            client, RetryPolicy.from_settings(self.config.finalize_retry)
        )

        self._state: TaskState = ReadyState()
        self._uploaded_bytes = 0
        self._session_url: Optional[str] = None
        self._listeners: List[TaskListener] = []
        self._started = False

    # State accessors
    @property
    def state(self) -> TaskState:
        return self._state

    @property
    def status(self) -> TaskStatus:
        return TaskStatus(self._state.status)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def uploaded_bytes(self) -> int:
        return self._uploaded_bytes

    @property
    def progress_percent(self) -> int:
        if isinstance(self._state, CompleteState):
            return 100
        return self._percent(self._uploaded_bytes)

    @property
    def session_url(self) -> Optional[str]:
        return self._session_url

    @property
    def reference(self) -> Optional[RemoteFileRef]:
        if isinstance(self._state, CompleteState):
            return self._state.reference
        return None

    @property
    def last_error(self) -> Optional[str]:
        if isinstance(self._state, ErrorState):
            return self._state.reason
        return None

    @property
    def upload_name(self) -> str:
        """Name the remote object is created and searched under."""
        return self.display_name or self.source.name

    @property
    def transferred_fraction(self) -> float:
        if self.source.size == 0:
            return 1.0
        return self._uploaded_bytes / self.source.size

    @property
    def reached_recovery_threshold(self) -> bool:
        return self.transferred_fraction >= self.config.recovery_threshold

    @property
    def status_text(self) -> str:
        state = self._state
        if isinstance(state, UploadingState):
            return f"uploading {state.progress_percent}%"
        if isinstance(state, CompleteState):
            return "complete" if state.verified else "complete (unverified)"
        if isinstance(state, ErrorState):
            return f"error: {state.reason}"
        return state.status

    def add_listener(self, callback: TaskListener) -> None:
        """Register a callback invoked synchronously after every state change."""
        self._listeners.append(callback)

    def rename(self, display_name: str) -> None:
        self.display_name = display_name.strip()

    def cancel(self, reason: str = "Upload cancelled by user") -> None:
        """Raise the cancellation signal; observed at the next check point."""
        if self.is_terminal:
            return
        self.cancel_token.cancel(reason)
        if not self._started:
            self._mark_cancelled()

    def to_view(self) -> TaskView:
        return TaskView(
            id=self.id,
            file_name=self.source.name,
            size=self.source.size,
            content_type=self.source.content_type,
            display_name=self.display_name,
            status=self.status,
            status_text=self.status_text,
            progress_percent=self.progress_percent,
            uploaded_bytes=self._uploaded_bytes,
            state=self._state,
            reference=self.reference,
            last_error=self.last_error,
        )

    # Transitions
    def _percent(self, uploaded: int) -> int:
        size = self.source.size
        if size == 0:
            return 100
        return min(100, (uploaded * 100 + size // 2) // size)

    def _set_state(self, state: TaskState) -> None:
        self._state = state
        for callback in list(self._listeners):
            try:
                callback(self)
            except Exception as e:
                logger.warning(f"Task listener error: {e}")

    def _set_session_url(self, session_url: str) -> None:
        if self._session_url is not None:
            raise UploadStateError("Session URL is already set", self.id)
        self._session_url = session_url

    def _advance(self, uploaded: int) -> None:
        if uploaded < self._uploaded_bytes:
            raise UploadStateError("Uploaded byte count cannot go backwards", self.id)
        self._uploaded_bytes = uploaded
        self._set_state(
            UploadingState(progress_percent=self._percent(uploaded), uploaded_bytes=uploaded)
        )

    def _complete(self, reference: RemoteFileRef) -> None:
        if isinstance(self._state, CompleteState):
            raise UploadStateError("Remote reference is already set", self.id)
        self._set_state(CompleteState(reference=reference))

    def _fail(self, reason: str) -> None:
        self._set_state(
            ErrorState(reason=reason or "Upload failed", uploaded_bytes=self._uploaded_bytes)
        )

    def _mark_cancelled(self) -> None:
        if isinstance(self._state, CancelledState):
            return
        self._set_state(CancelledState(uploaded_bytes=self._uploaded_bytes))

    # Driver
    async def run(self) -> TaskState:
        """Transfer, finalize and, if needed, recover. Returns the terminal state."""
        if self._started:
            raise UploadStateError("Upload task has already been started", self.id)
        self._started = True
        token = self.cancel_token

        if token.cancelled:
            self._mark_cancelled()
            return self._state

        start_time = time.time()
        self._set_state(UploadingState())
        try:
            await self._upload_chunks(token)
            reference = await self.finalizer.finalize(
                self._session_url, self.source.size, token, self.context.student_email
            )
            token.raise_if_cancelled()
        except UploadCancelledError:
            logger.info(
                f"Upload cancelled: {self.source.name} at {self._uploaded_bytes}/{self.source.size} bytes"
            )
            self._mark_cancelled()
        except TransferError as exc:
            if token.cancelled:
                # Failure of a call that was in flight when the token was raised
                self._mark_cancelled()
            else:
                await self._handle_failure(exc, token)
        except OSError as exc:
            logger.error(f"Could not read {self.source.path}: {exc}")
            self._fail(f"Could not read file: {exc}")
        else:
            self._complete(reference)
            elapsed = time.time() - start_time
            logger.info(f"Upload complete: {self.upload_name} in {elapsed:.1f}s ({reference.file_id})")

        return self._state

    async def _upload_chunks(self, token: CancellationToken) -> None:
        token.raise_if_cancelled()
        session_url = await self.client.initiate(self.source, self.upload_name, self.context)
        self._set_session_url(session_url)
        token.raise_if_cancelled()

        size = self.source.size
        total_chunks = chunk_count(size, self.config.chunk_size)
        logger.info(
            f"Uploading {self.source.name}: {size} bytes in {total_chunks} chunks "
            f"of up to {self.config.chunk_size} bytes"
        )

        for chunk in iter_chunk_ranges(size, self.config.chunk_size):
            token.raise_if_cancelled()
            payload = self.source.read_range(chunk.start, chunk.end)
            outcome = await self.chunk_policy.run(
                lambda chunk=chunk, payload=payload: self.transfer.send(
                    session_url, chunk, payload, self.source.content_type
                ),
                token=token,
                description=f"Chunk {chunk.index + 1}/{total_chunks}",
            )
            # A result that arrives after cancellation is discarded
            token.raise_if_cancelled()
            self._advance(chunk.end + 1)
            logger.info(
                f"Chunk {chunk.index + 1}/{total_chunks} uploaded "
                f"({self._uploaded_bytes}/{size} bytes, {self.progress_percent}%)"
            )
            if outcome is ChunkOutcome.STORED and chunk.end + 1 < size:
                logger.warning(f"Chunk {chunk.index + 1}: endpoint reported the object complete early")

    async def _handle_failure(self, exc: TransferError, token: CancellationToken) -> None:
        if not self.reached_recovery_threshold:
            logger.error(f"Upload failed for {self.source.name}: {exc}")
            self._fail(exc.message)
            return

        logger.warning(
            f"Transfer failed with {self.progress_percent}% uploaded "
            f"({self._uploaded_bytes}/{self.source.size} bytes); attempting recovery"
        )
        try:
            reference = await self.finalizer.recover(
                task_id=self.id,
                session_url=self._session_url,
                source=self.source,
                file_name=self.upload_name,
                context=self.context,
                token=token,
            )
        except UploadCancelledError:
            self._mark_cancelled()
            return
        self._complete(reference)

    def __repr__(self) -> str:
        return f"UploadTask(id={self.id!r}, file={self.source.name!r}, status={self.status_text!r})"
