"""Chunk transfer against a resumable upload session URL."""

import logging
import math
from enum import Enum
from typing import Iterator, NamedTuple

import httpx

from .exceptions import ChunkTransferError
from .models import CHUNK_TIMEOUT

logger = logging.getLogger(__name__)

# 200/201: object fully stored; 308: range accepted, more chunks expected
STORED_STATUSES = frozenset({200, 201})
RESUME_INCOMPLETE = 308


class ChunkOutcome(str, Enum):
    """Classification of a successful chunk response."""

    STORED = "stored"
    ACCEPTED = "accepted"


class ChunkRange(NamedTuple):
    """Inclusive byte range ``[start, end]`` of a file of ``total_size`` bytes."""

    index: int
    start: int
    end: int
    total_size: int

    @property
    def length(self) -> int:
        return self.end - self.start + 1

    @property
    def content_range(self) -> str:
        return f"bytes {self.start}-{self.end}/{self.total_size}"


def chunk_count(total_size: int, chunk_size: int) -> int:
    return math.ceil(total_size / chunk_size)


def iter_chunk_ranges(total_size: int, chunk_size: int) -> Iterator[ChunkRange]:
    """Yield strictly increasing, non-overlapping ranges covering the file once."""
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    for index in range(chunk_count(total_size, chunk_size)):
        start = index * chunk_size
        end = min(start + chunk_size, total_size) - 1
        yield ChunkRange(index, start, end, total_size)


class ChunkTransfer:
    """Send single byte ranges to a session URL and classify the response.

    The transfer never touches task state; callers decide what a result means.
    """

    def __init__(self, http: httpx.AsyncClient, timeout: float = CHUNK_TIMEOUT) -> None:
        self.http = http
        self.timeout = timeout

    async def send(
        self,
        session_url: str,
        chunk: ChunkRange,
        payload: bytes,
        content_type: str,
    ) -> ChunkOutcome:
        """PUT one chunk.

        Args:
            session_url: Resumable session URL issued by ``initiate``
            chunk: Byte range being sent
            payload: Exactly ``chunk.length`` bytes
            content_type: MIME type of the source file

        Returns:
            ``ChunkOutcome.STORED`` if the object is now complete,
            ``ChunkOutcome.ACCEPTED`` if more chunks are expected

        Raises:
            ChunkTransferError: On any other status, transport error or timeout
        """
        if len(payload) != chunk.length:
            raise ValueError(
                f"Chunk {chunk.index + 1}: payload is {len(payload)} bytes, "
                f"range needs {chunk.length}"
            )

        headers = {
            "Content-Type": content_type or "application/octet-stream",
            "Content-Range": chunk.content_range,
        }
        try:
            response = await self.http.put(
                session_url,
                content=payload,
                headers=headers,
                timeout=self.timeout,
                follow_redirects=False,
            )
        except httpx.TimeoutException as exc:
            raise ChunkTransferError(
                f"Chunk {chunk.index + 1} upload timeout", chunk_index=chunk.index
            ) from exc
        except httpx.TransportError as exc:
            raise ChunkTransferError(
                f"Network error during chunk {chunk.index + 1} upload: {exc}",
                chunk_index=chunk.index,
            ) from exc

        status = response.status_code
        if status in STORED_STATUSES:
            logger.debug(f"Chunk {chunk.index + 1}: {chunk.content_range} stored (HTTP {status})")
            return ChunkOutcome.STORED
        if status == RESUME_INCOMPLETE:
            logger.debug(f"Chunk {chunk.index + 1}: {chunk.content_range} accepted")
            return ChunkOutcome.ACCEPTED

        raise ChunkTransferError(
            f"Chunk {chunk.index + 1} rejected: HTTP {status}: {response.text[:200]}",
            status_code=status,
            chunk_index=chunk.index,
        )
