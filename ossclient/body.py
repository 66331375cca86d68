"""Streamed request bodies.

A StreamBody pushes a source of bytes to the connection in chunks no
larger than ``chunk_size``, in source order, and reports cumulative
progress to an optional observer after each chunk.
"""

import os
from typing import AsyncIterable, AsyncIterator, Iterable, Optional, Union

import aiofiles

from ossclient.errors import StreamConsumedError, ValidationError
from ossclient.progress.base import ProgressObserver

# 16 KiB chunks on the wire
DEFAULT_CHUNK_SIZE = 16 * 1024

# Read buffer for file sources: 128 KiB
FILE_READ_SIZE = 128 * 1024

ByteSource = Union[AsyncIterable[bytes], Iterable[bytes]]


async def iter_file(
    path: str,
    read_size: int = FILE_READ_SIZE,
    offset: int = 0,
    length: Optional[int] = None,
) -> AsyncIterator[bytes]:
    """Read a byte range of a file asynchronously.

    Args:
        path: File to read.
        read_size: Maximum bytes per read.
        offset: First byte to read.
        length: Number of bytes to read, or None for the rest of the file.

    Yields:
        Chunks of at most ``read_size`` bytes.
    """
    remaining = length
    async with aiofiles.open(path, "rb") as f:
        if offset:
            await f.seek(offset)
        while remaining is None or remaining > 0:
            size = read_size if remaining is None else min(read_size, remaining)
            chunk = await f.read(size)
            if not chunk:
                break
            if remaining is not None:
                remaining -= len(chunk)
            yield chunk


class StreamBody:
    """Single-use chunked request body.

    Args:
        source: Sync or async iterable of bytes.
        total: Total size in bytes if known. When set, it's sent as
               Content-Length; otherwise the body goes out chunked.
        chunk_size: Upper bound for each chunk handed to the connection.
        observer: Optional progress observer, called once per chunk.
    """

    def __init__(
        self,
        source: ByteSource,
        total: Optional[int] = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        observer: Optional[ProgressObserver] = None,
    ):
        if chunk_size <= 0:
            raise ValidationError("chunk_size must be positive")
        self.source = source
        self.total = total
        self.chunk_size = chunk_size
        self.observer = observer
        self.sent = 0
        self._consumed = False
        self._iterator: Optional[AsyncIterator[bytes]] = None

    async def _source_chunks(self) -> AsyncIterator[bytes]:
        if hasattr(self.source, "__aiter__"):
            async for data in self.source:
                yield data
        else:
            for data in self.source:
                yield data

    async def _generate(self) -> AsyncIterator[bytes]:
        source = self._source_chunks()
        try:
            async for data in source:
                for start in range(0, len(data), self.chunk_size):
                    chunk = bytes(data[start:start + self.chunk_size])
                    self.sent += len(chunk)
                    if self.observer is not None:
                        self.observer.on_progress(self.sent, self.total or 0)
                    yield chunk
        finally:
            await source.aclose()
            inner_close = getattr(self.source, "aclose", None)
            if inner_close is not None:
                await inner_close()

    def __aiter__(self) -> AsyncIterator[bytes]:
        if self._consumed:
            raise StreamConsumedError("StreamBody can only be sent once")
        self._consumed = True
        self._iterator = self._generate()
        return self._iterator

    async def aclose(self) -> None:
        """Release the source, including any open file handle."""
        if self._iterator is not None:
            await self._iterator.aclose()
        else:
            inner_close = getattr(self.source, "aclose", None)
            if inner_close is not None:
                await inner_close()

    @classmethod
    def from_file(
        cls,
        path: str,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        observer: Optional[ProgressObserver] = None,
        offset: int = 0,
        length: Optional[int] = None,
    ) -> "StreamBody":
        """Stream a file, or a byte range of it.

        Raises:
            ValidationError: If the path is a URL or the range is outside the file.
        """
        if "://" in path:
            raise ValidationError(f"Network paths are not supported: {path}")
        file_size = os.path.getsize(path)
        if offset < 0 or offset > file_size:
            raise ValidationError(f"Offset {offset} outside file of {file_size} bytes")
        if length is None:
            length = file_size - offset
        elif length < 0 or offset + length > file_size:
            raise ValidationError(f"Range {offset}+{length} outside file of {file_size} bytes")

        return cls(
            iter_file(path, offset=offset, length=length),
            total=length,
            chunk_size=chunk_size,
            observer=observer,
        )
