"""Cooperative cancellation for upload tasks."""

import asyncio
import logging
from typing import Optional

from .exceptions import UploadCancelledError

logger = logging.getLogger(__name__)


class CancellationToken:
    """Cancellation signal checked at every suspension point of a transfer.

    Raising the token never interrupts a request that is already in flight;
    it is observed at the next check point, and backoff sleeps wake up early.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "Upload cancelled by user") -> None:
        if self._event.is_set():
            return
        self.reason = reason
        self._event.set()
        logger.debug(f"Cancellation requested: {reason}")

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise UploadCancelledError(self.reason or "Upload cancelled by user")

    async def sleep(self, delay: float) -> None:
        """Sleep for ``delay`` seconds, raising as soon as the token is cancelled."""
        self.raise_if_cancelled()
        if delay <= 0:
            return
        try:
            await asyncio.wait_for(self._event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return
        self.raise_if_cancelled()
