"""HTTP execution of signed requests.

The Transport owns an httpx.AsyncClient and offers three ways to consume
a response:

- execute: buffer the whole body
- download_to_file: stream the body into a new file
- open_stream: hand back a single-use async iterator of chunks

Failures to reach the service surface as TransportError; non-2xx answers
surface as ServiceError / UnparsedServiceError; a body that cannot be
decoded surfaces as InvalidResponseError. Connections and files are
released on every exit path, including cancellation.
"""

import logging
import os
from dataclasses import dataclass
from typing import AsyncIterator, Optional

import aiofiles
import httpx
from h11 import LocalProtocolError as H11LocalProtocolError

from ossclient.body import StreamBody
from ossclient.errors import (
    InvalidResponseError,
    OssClientError,
    StreamConsumedError,
    TransportError,
    UnparsedServiceError,
    ValidationError,
)
from ossclient.progress.base import ProgressObserver
from ossclient.request import SignedRequest
from ossclient.xmlcodec import parse_error

logger = logging.getLogger(__name__)

# Read size when streaming a response body: 128 KiB
DOWNLOAD_CHUNK_SIZE = 128 * 1024

# Default client timeout in seconds, used only when the transport creates its own client
DEFAULT_TIMEOUT = 60.0

# Errors meaning the exchange with the service failed: never reached, broke
# off, redirected too often, or a body that could not be decoded
TRANSPORT_ERRORS = (httpx.RequestError, H11LocalProtocolError)


def is_success(status_code: int) -> bool:
    return 200 <= status_code < 300


def _body_error(e: Exception, context: str, status_code: int = 200) -> OssClientError:
    """Map a failure while reading a response body to a client error."""
    if isinstance(e, httpx.DecodingError):
        if not is_success(status_code):
            return UnparsedServiceError(status_code)
        return InvalidResponseError(f"Undecodable response body {context}: {e}")
    return TransportError(f"Connection lost {context}: {e}")


def _lower_headers(response: httpx.Response) -> dict[str, str]:
    return {name.lower(): value for name, value in response.headers.items()}


@dataclass
class OssResponse:
    """A fully buffered response."""

    status_code: int
    headers: dict[str, str]
    content: bytes

    @property
    def etag(self) -> Optional[str]:
        return self.headers.get("etag")

    @property
    def request_id(self) -> Optional[str]:
        return self.headers.get("x-oss-request-id")


class ChunkStream:
    """Single-use async iterator over a response body.

    Finite and non-restartable: a second iteration raises
    StreamConsumedError. Use ``async with`` (or exhaust it) so the
    connection goes back to the pool even when the caller stops early.
    """

    def __init__(self, response: httpx.Response, chunk_size: int = DOWNLOAD_CHUNK_SIZE):
        self.response = response
        self.status_code = response.status_code
        self.headers = _lower_headers(response)
        self.chunk_size = chunk_size
        self._consumed = False

    @property
    def content_length(self) -> Optional[int]:
        value = self.headers.get("content-length")
        return int(value) if value is not None else None

    async def _chunks(self) -> AsyncIterator[bytes]:
        try:
            async for chunk in self.response.aiter_bytes(self.chunk_size):
                yield chunk
        except TRANSPORT_ERRORS as e:
            raise _body_error(e, "while reading body") from e
        finally:
            await self.response.aclose()

    def __aiter__(self) -> AsyncIterator[bytes]:
        if self._consumed:
            raise StreamConsumedError("ChunkStream can only be iterated once")
        self._consumed = True
        return self._chunks()

    async def aclose(self) -> None:
        """Release the connection."""
        self._consumed = True
        await self.response.aclose()

    async def __aenter__(self) -> "ChunkStream":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        await self.aclose()
        return False  # Don't suppress exceptions


class Transport:
    """Sends SignedRequests over a shared httpx.AsyncClient.

    Args:
        http_client: Client to use. Timeouts, pooling and TLS settings are
                    whatever the caller configured on it. When omitted a
                    default client is created and owned by the transport.
    """

    def __init__(self, http_client: Optional[httpx.AsyncClient] = None):
        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(timeout=DEFAULT_TIMEOUT)

    async def aclose(self) -> None:
        """Close the underlying client if this transport created it."""
        if self._owns_client:
            await self.http_client.aclose()

    async def _send(self, signed: SignedRequest) -> httpx.Response:
        """Send the request and return the response with its body unread."""
        request = self.http_client.build_request(
            signed.method,
            signed.url,
            headers=dict(signed.headers),
            content=signed.body,
        )
        logger.debug("Sending %s %s", signed.method, signed.url)
        try:
            response = await self.http_client.send(request, stream=True)
        except TRANSPORT_ERRORS as e:
            raise TransportError(f"{signed.method} {signed.url} failed: {e}") from e
        finally:
            if isinstance(signed.body, StreamBody):
                await signed.body.aclose()

        logger.debug(
            "Received %s for %s %s", response.status_code, signed.method, signed.url
        )
        return response

    async def _read(self, response: httpx.Response) -> bytes:
        try:
            return await response.aread()
        except TRANSPORT_ERRORS as e:
            raise _body_error(e, "while reading body", response.status_code) from e
        finally:
            await response.aclose()

    async def _raise_for_status(self, response: httpx.Response) -> None:
        """Read the error body of a non-2xx response and raise it."""
        if is_success(response.status_code):
            return
        content = await self._read(response)
        raise parse_error(response.status_code, content, _lower_headers(response))

    async def execute(self, signed: SignedRequest) -> OssResponse:
        """Send a request and buffer the response body.

        Raises:
            TransportError: If the service could not be reached.
            ServiceError: On a non-2xx response with an error record.
            UnparsedServiceError: On a non-2xx response without one.
        """
        response = await self._send(signed)
        content = await self._read(response)
        if not is_success(response.status_code):
            raise parse_error(response.status_code, content, _lower_headers(response))

        return OssResponse(
            status_code=response.status_code,
            headers=_lower_headers(response),
            content=content,
        )

    async def download_to_file(
        self,
        signed: SignedRequest,
        path: str,
        observer: Optional[ProgressObserver] = None,
    ) -> int:
        """Stream the response body into a new file.

        Missing parent directories are created. An existing destination is
        never overwritten. On failure the partial file is removed.

        Args:
            signed: The request to send.
            path: Destination file path.
            observer: Optional progress observer, called once per chunk.

        Returns:
            Number of bytes written.

        Raises:
            ValidationError: If the path is a URL or already exists.
            TransportError: If the connection fails.
            ServiceError: On a non-2xx response.
        """
        if "://" in path:
            raise ValidationError(f"Network paths are not supported: {path}")
        if os.path.exists(path):
            raise ValidationError(f"Destination already exists: {path}")

        response = await self._send(signed)
        try:
            await self._raise_for_status(response)

            parent = os.path.dirname(path)
            if parent:
                os.makedirs(parent, exist_ok=True)

            total = int(response.headers.get("content-length", 0))
            written = 0
            try:
                # "x" refuses to open a file that appeared after the check above
                async with aiofiles.open(path, "xb") as f:
                    async for chunk in response.aiter_bytes(DOWNLOAD_CHUNK_SIZE):
                        await f.write(chunk)
                        written += len(chunk)
                        if observer is not None:
                            observer.on_progress(written, total)
            except FileExistsError as e:
                raise ValidationError(f"Destination already exists: {path}") from e
            except BaseException as e:
                if os.path.exists(path):
                    os.remove(path)
                if isinstance(e, TRANSPORT_ERRORS):
                    raise _body_error(e, f"while downloading to {path}") from e
                raise
        finally:
            await response.aclose()

        logger.debug("Wrote %d bytes to %s", written, path)
        return written

    async def open_stream(self, signed: SignedRequest) -> ChunkStream:
        """Send a request and return its body as a lazy chunk stream.

        Status is checked before returning, so errors surface here rather
        than on first iteration.
        """
        response = await self._send(signed)
        try:
            await self._raise_for_status(response)
        except BaseException:
            await response.aclose()
            raise
        return ChunkStream(response)
