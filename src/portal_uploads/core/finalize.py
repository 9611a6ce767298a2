"""Finalization of a transferred session and recovery of lost acknowledgements."""

import logging
from typing import Optional

from .cancellation import CancellationToken
from .client import PortalClient
from .exceptions import TransferError
from .models import MIB, RemoteFileRef, SourceFile, UploadContext
from .retry import RetryPolicy

logger = logging.getLogger(__name__)


def placeholder_reference(task_id: str, source: SourceFile, file_name: str) -> RemoteFileRef:
    """Reference used when the bytes were sent but no reference could be found.

    The backend reconciliation job resolves ``pending_`` ids later.
    """
    size_mb = round(source.size / MIB)
    return RemoteFileRef(
        file_id=f"pending_{task_id}",
        file_url=f"Upload complete ({size_mb}MB) - URL pending verification",
        mime_type=source.content_type,
        file_name=file_name,
        verified=False,
    )


class Finalizer:
    """Close out sessions and recover references without re-uploading."""

    def __init__(self, client: PortalClient, policy: RetryPolicy) -> None:
        self.client = client
        self.policy = policy

    async def finalize(
        self,
        session_url: str,
        total_size: int,
        token: CancellationToken,
        student_email: Optional[str] = None,
    ) -> RemoteFileRef:
        """Finalize with retries; the last error propagates on exhaustion."""
        logger.info("All chunks uploaded, finalizing")
        return await self.policy.run(
            lambda: self.client.finalize(session_url, total_size, student_email),
            token=token,
            description="finalize",
        )

    async def recover(
        self,
        *,
        task_id: str,
        session_url: Optional[str],
        source: SourceFile,
        file_name: str,
        context: UploadContext,
        token: CancellationToken,
    ) -> RemoteFileRef:
        """Find the reference of a transfer whose acknowledgement was lost.

        Tries the session itself first, then a lookup by owner and name, and
        finally returns an unverified placeholder. Never raises transfer
        errors; raises ``UploadCancelledError`` if cancelled between steps.
        """
        token.raise_if_cancelled()
        if session_url:
            logger.info(f"Recovery 1/2: querying upload session for {file_name}")
            try:
                reference = await self.client.finalize(
                    session_url, source.size, context.student_email
                )
                logger.info(f"Recovered {file_name} from upload session: {reference.file_id}")
                return reference
            except TransferError as e:
                logger.warning(f"Upload session query failed: {e}. Trying fallback...")
        else:
            logger.warning("No upload session URL recorded. Skipping to fallback...")

        token.raise_if_cancelled()
        logger.info(f"Recovery 2/2: searching remote folder for {file_name}")
        try:
            reference = await self.client.recover_by_identity(context, file_name)
        except TransferError as e:
            logger.warning(f"Remote folder search failed: {e}")
            reference = None
        if reference is not None:
            logger.info(f"Recovered {file_name} from remote folder search: {reference.file_id}")
            return reference

        token.raise_if_cancelled()
        logger.error(
            f"Both recovery strategies failed for {file_name}. "
            "File uploaded but reference could not be confirmed; marking unverified"
        )
        return placeholder_reference(task_id, source, file_name)
