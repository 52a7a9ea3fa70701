"""Blob streaming with incremental digest verification."""

import logging
from typing import Optional, Union

import aiohttp

from ..core.pipeline import KIND_BLOB, RequestPipeline, repository_scope
from ..core.types import DEFAULT_CHUNK_SIZE
from ..exceptions import BlobNotFound, DigestMismatch, TransportError, TruncatedBlob
from ..utils.digest import Digest, DigestAccumulator
from ..utils.validator import validate_repository

logger = logging.getLogger(__name__)


class BlobStream:
    """Lazy, single-pass stream of a blob's bytes.

    Every chunk is hashed before it is yielded. When the server has no more
    data, the final ``__anext__`` either ends iteration normally (content
    verified) or raises :class:`TruncatedBlob` / :class:`DigestMismatch`.

    Integrity is only guaranteed once the stream has been drained without
    error. Chunks already consumed before an error must be discarded, and a
    consumer that stops early gets no guarantee at all. To restart, fetch
    the blob again.
    """

    def __init__(
        self,
        response: aiohttp.ClientResponse,
        digest: Digest,
        repository: Optional[str] = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        self.digest = digest
        self.repository = repository
        self.size = _content_length(response)
        self.verified = False
        self._response = response
        self._chunk_size = chunk_size
        self._accumulator = DigestAccumulator(digest.algorithm)
        self._done = False

    @property
    def bytes_read(self) -> int:
        return self._accumulator.bytes_seen

    def __aiter__(self) -> "BlobStream":
        return self

    async def __anext__(self) -> bytes:
        if self._done:
            raise StopAsyncIteration

        try:
            chunk = await self._response.content.read(self._chunk_size)
        except aiohttp.ClientPayloadError as e:
            self._finish()
            raise TruncatedBlob(
                self.digest, self.size, self.bytes_read, self.repository
            ) from e
        except aiohttp.ClientError as e:
            self._finish()
            raise TransportError(f"Reading blob {self.digest} failed: {e}") from e

        if chunk:
            self._accumulator.update(chunk)
            return chunk

        self._finish()
        self._verify()
        raise StopAsyncIteration

    def _verify(self) -> None:
        if self.size is not None and self.bytes_read < self.size:
            raise TruncatedBlob(self.digest, self.size, self.bytes_read, self.repository)
        actual = self._accumulator.finalize()
        if actual != self.digest:
            logger.warning(
                "Blob digest mismatch in %s: expected %s, got %s",
                self.repository,
                self.digest,
                actual,
            )
            raise DigestMismatch(self.digest, actual, self.repository)
        self.verified = True
        logger.debug("Verified blob %s (%d bytes)", self.digest, self.bytes_read)

    def _finish(self) -> None:
        self._done = True
        self._response.release()

    async def read(self) -> bytes:
        """Drain the stream into memory and return the verified content."""
        chunks = [chunk async for chunk in self]
        return b"".join(chunks)

    async def close(self) -> None:
        """Release the connection without reading the rest."""
        if not self._done:
            self._done = True
            self._response.close()

    async def __aenter__(self) -> "BlobStream":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


def blob_path(repository: str, digest: Union[str, Digest]) -> str:
    return f"/v2/{repository}/blobs/{digest}"


async def get_blob(
    pipeline: RequestPipeline,
    repository: str,
    digest: Union[str, Digest],
    chunk_size: Optional[int] = None,
) -> BlobStream:
    """Open a blob for streaming.

    Args:
        pipeline: Request pipeline bound to the registry
        repository: Repository name
        digest: Blob digest
        chunk_size: Maximum bytes per yielded chunk

    Returns:
        BlobStream; iterate it fully to verify the content

    Raises:
        MalformedDigest: If digest is not a valid digest string
        BlobNotFound: If the blob does not exist
    """
    validate_repository(repository)
    expected = Digest.parse(digest)
    response = await pipeline.send(
        "GET",
        blob_path(repository, expected),
        scope=repository_scope(repository),
        kind=KIND_BLOB,
        repository=repository,
        reference=str(expected),
        # Content must be hashed exactly as stored
        headers={"Accept-Encoding": "identity"},
    )
    return BlobStream(
        response,
        expected,
        repository=repository,
        chunk_size=chunk_size or pipeline.config.chunk_size,
    )


async def blob_exists(
    pipeline: RequestPipeline, repository: str, digest: Union[str, Digest]
) -> bool:
    """Check if a blob exists in the registry.

    Args:
        pipeline: Request pipeline bound to the registry
        repository: Repository name
        digest: Blob digest

    Returns:
        True if blob exists
    """
    try:
        response = await _head_blob(pipeline, repository, digest)
    except BlobNotFound:
        return False
    response.release()
    return True


async def get_blob_size(
    pipeline: RequestPipeline, repository: str, digest: Union[str, Digest]
) -> Optional[int]:
    """Size of a blob as reported by a HEAD request, if the server says."""
    response = await _head_blob(pipeline, repository, digest)
    try:
        return _content_length(response)
    finally:
        response.release()


async def _head_blob(
    pipeline: RequestPipeline, repository: str, digest: Union[str, Digest]
) -> aiohttp.ClientResponse:
    validate_repository(repository)
    expected = Digest.parse(digest)
    return await pipeline.send(
        "HEAD",
        blob_path(repository, expected),
        scope=repository_scope(repository),
        kind=KIND_BLOB,
        repository=repository,
        reference=str(expected),
    )


def _content_length(response: aiohttp.ClientResponse) -> Optional[int]:
    value = response.headers.get("Content-Length")
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None
