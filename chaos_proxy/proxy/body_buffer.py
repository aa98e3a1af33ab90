"""
Request body staging.

Some upstreams refuse a chunked body and need an exact ``Content-Length``
up front. For those, the inbound body is copied to a temporary file first
and replayed from disk. The staged file belongs to one request and is removed
when that request finishes, whatever the outcome.
"""

import asyncio
import logging
import os
import tempfile
from typing import AsyncIterable, AsyncIterator, BinaryIO, Optional

from chaos_proxy.errors import StagingError
from chaos_proxy.utils.exception_logging import log_exception_with_details

logger = logging.getLogger("uvicorn.error")

COPY_BUFFER_SIZE = 1024 * 1024


class StagedBody:
    """A request body held in a temporary file, rewound to its start."""

    def __init__(self, file: BinaryIO, path: str, length: int):
        self.file = file
        self.path = path
        self.length = length
        self.released = False

    async def aiter_chunks(self) -> AsyncIterator[bytes]:
        while True:
            chunk = await asyncio.to_thread(self.file.read, COPY_BUFFER_SIZE)
            if not chunk:
                break
            yield chunk

    def release(self) -> None:
        """Close and delete the staged file. Failures are logged, not raised."""
        if self.released:
            return
        self.released = True
        try:
            self.file.close()
        except OSError as e:
            log_exception_with_details(
                logger, "[Staging] Closing staged body failed", e, logging.WARNING
            )
        try:
            os.remove(self.path)
        except OSError as e:
            log_exception_with_details(
                logger, "[Staging] Removing staged body failed", e, logging.WARNING
            )

    async def __aenter__(self) -> "StagedBody":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        self.release()
        return False


def _sync_to_disk(file: BinaryIO) -> int:
    """Flush and fsync the staged file, rewind it and return its length."""
    file.flush()
    os.fsync(file.fileno())
    length = file.tell()
    file.seek(0)
    return length


async def stage_body(
    chunks: AsyncIterable[bytes], directory: Optional[str] = None
) -> StagedBody:
    """
    Copy an inbound body to a temporary file.

    Incoming chunks are gathered in a buffer of at most ``COPY_BUFFER_SIZE``
    bytes before each write. Once the body is on disk the file is flushed,
    fsynced and rewound. File I/O runs in worker threads so a large body
    does not stall the event loop.

    Raises:
        StagingError: reading the body or writing the file failed; the
            partial file has been removed
    """
    try:
        fd, path = tempfile.mkstemp(prefix="chaos-proxy-body-", dir=directory)
    except OSError as e:
        raise StagingError(f"creating staging file: {e}") from e

    staged = StagedBody(os.fdopen(fd, "w+b"), path, 0)
    file = staged.file
    buffer = bytearray()
    completed = False
    try:
        async for chunk in chunks:
            buffer += chunk
            while len(buffer) >= COPY_BUFFER_SIZE:
                await asyncio.to_thread(file.write, bytes(buffer[:COPY_BUFFER_SIZE]))
                del buffer[:COPY_BUFFER_SIZE]
        if buffer:
            await asyncio.to_thread(file.write, bytes(buffer))
        staged.length = await asyncio.to_thread(_sync_to_disk, file)
        completed = True
    except Exception as e:
        raise StagingError(f"staging request body to {path}: {e}") from e
    finally:
        # also runs on cancellation
        if not completed:
            staged.release()

    logger.debug(f"[Staging] Staged {staged.length} bytes to {path}")
    return staged
