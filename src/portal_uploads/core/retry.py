"""Bounded retry with backoff, shared by chunk transfer and finalization."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from .cancellation import CancellationToken
from .exceptions import TransferError
from .models import RetrySettings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryPolicy:
    """Run a fallible async operation up to ``max_attempts`` times.

    The delay between attempts is ``base_delay * attempt``. Only
    ``TransferError`` is retried; cancellation and any other exception
    propagate straight away.
    """

    def __init__(self, max_attempts: int, base_delay: float) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if base_delay < 0:
            raise ValueError("base_delay must not be negative")
        self.max_attempts = max_attempts
        self.base_delay = base_delay

    @classmethod
    def from_settings(cls, settings: RetrySettings) -> "RetryPolicy":
        return cls(settings.max_attempts, settings.base_delay)

    def delay_for(self, attempt: int) -> float:
        """Backoff to wait after ``attempt`` (1-based) failed."""
        return self.base_delay * attempt

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        token: Optional[CancellationToken] = None,
        description: str = "operation",
    ) -> T:
        """Call ``operation`` until it succeeds or the attempts are exhausted.

        Args:
            operation: Zero-argument coroutine factory, called once per attempt
            token: Cancellation token checked before every attempt
            description: Label used in log messages

        Returns:
            The operation's result

        Raises:
            UploadCancelledError: The token was raised before an attempt or
                during a backoff window
            TransferError: The last failure once all attempts are used up
        """
        for attempt in range(1, self.max_attempts + 1):
            if token is not None:
                token.raise_if_cancelled()
            try:
                return await operation()
            except TransferError as exc:
                if attempt == self.max_attempts:
                    logger.error(
                        f"{description}: failed after {self.max_attempts} attempts: {exc}"
                    )
                    raise
                backoff = self.delay_for(attempt)
                logger.warning(
                    f"{description}: attempt {attempt}/{self.max_attempts} failed: {exc}; "
                    f"retrying in {backoff:g}s"
                )
                if token is not None:
                    await token.sleep(backoff)
                elif backoff > 0:
                    await asyncio.sleep(backoff)
        raise RuntimeError(f"{description}: exceeded max_attempts without a result")

    def __repr__(self) -> str:
        return f"RetryPolicy(max_attempts={self.max_attempts}, base_delay={self.base_delay})"
