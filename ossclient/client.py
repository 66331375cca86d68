"""OSS client facade.

Holds the credential, the endpoint and the transport for one account, and
exposes the four core entry points:

- sign(intent) -> SignedRequest
- execute(signed) -> OssResponse
- paginate / list_objects, list_multipart_uploads
- multipart_upload / drive_multipart

plus a handful of thin object operations built on them.
"""

import logging
import os
import time
from typing import Mapping, Optional

import httpx

from ossclient.body import StreamBody
from ossclient.errors import ValidationError
from ossclient.models import (
    Credential,
    ListObjectsPage,
    ListObjectsResult,
    ListUploadsPage,
    ListUploadsResult,
    ObjectMeta,
    UploadOptions,
)
from ossclient.multipart import MAX_PART_SIZE, MultipartUpload, upload_headers
from ossclient.paginator import Page, paginate
from ossclient.progress.base import ProgressObserver
from ossclient.request import DEFAULT_ENDPOINT, RequestBuilder, RequestIntent, SignedRequest
from ossclient.transport import ChunkStream, OssResponse, Transport
from ossclient.xmlcodec import parse_list_objects, parse_list_uploads

logger = logging.getLogger(__name__)

# Single-request uploads above this size must go through multipart
MAX_PUT_SIZE = MAX_PART_SIZE

# Default cap for list_objects
DEFAULT_MAX_ITEMS = 1000


class OssClient:
    """Async client for one OSS account and endpoint.

    Use as an async context manager, or call ``aclose`` when done:

        async with OssClient(Credential("id", "secret"), "oss-cn-hangzhou.aliyuncs.com") as client:
            data = await client.get_object("bucket", "key")

    Args:
        credential: Access key pair (and optional session token).
        endpoint: Service host, optionally with a scheme.
        https: Use HTTPS when the endpoint has no scheme.
        http_client: Shared httpx.AsyncClient; timeouts, pooling and TLS
                    are configured there by the caller.
    """

    def __init__(
        self,
        credential: Credential,
        endpoint: str = DEFAULT_ENDPOINT,
        https: bool = True,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.credential = credential
        self.builder = RequestBuilder(endpoint, https=https)
        self.transport = Transport(http_client)

    @classmethod
    def from_config(cls, config, http_client: Optional[httpx.AsyncClient] = None) -> "OssClient":
        """Build a client from a ClientConfig."""
        credential = Credential(
            access_key_id=config.access_key_id,
            access_key_secret=config.access_key_secret,
            security_token=config.security_token,
        )
        return cls(credential, config.endpoint, https=config.https, http_client=http_client)

    async def aclose(self) -> None:
        await self.transport.aclose()

    async def __aenter__(self) -> "OssClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        await self.aclose()
        return False

    # === CORE ENTRY POINTS ===

    def sign(self, intent: RequestIntent, now: Optional[float] = None) -> SignedRequest:
        """Sign an intent with this client's credential (header auth)."""
        return self.builder.sign(intent, self.credential, now=now)

    async def execute(self, signed: SignedRequest) -> OssResponse:
        """Send a signed request and buffer the response."""
        return await self.transport.execute(signed)

    async def request(self, intent: RequestIntent) -> OssResponse:
        """Sign and send an intent, buffering the response."""
        return await self.execute(self.sign(intent))

    def presign_url(
        self,
        intent: RequestIntent,
        expires: Optional[int] = None,
        expires_in: int = 3600,
    ) -> str:
        """Build a pre-signed URL for an intent. No network call is made.

        Args:
            intent: The request the URL authorizes.
            expires: Absolute expiry as Unix epoch seconds.
            expires_in: Lifetime in seconds, used when ``expires`` is None.
        """
        if expires is None:
            expires = int(time.time()) + expires_in
        return self.builder.presign_url(intent, self.credential, expires)

    def multipart_upload(
        self,
        bucket: str,
        key: str,
        upload_id: Optional[str] = None,
    ) -> MultipartUpload:
        """Create a coordinator for a new (or resumed) multipart upload."""
        return MultipartUpload(self, bucket, key, upload_id=upload_id)

    # === OBJECTS ===

    async def put_object(
        self,
        bucket: str,
        key: str,
        data: bytes,
        options: Optional[UploadOptions] = None,
    ) -> Optional[str]:
        """Upload an object from memory. Returns its ETag."""
        if len(data) > MAX_PUT_SIZE:
            raise ValidationError(
                f"Object of {len(data)} bytes exceeds {MAX_PUT_SIZE} bytes; use multipart upload"
            )
        intent = RequestIntent(
            "PUT", bucket=bucket, key=key, headers=upload_headers(options), body=data
        )
        response = await self.request(intent)
        return response.etag

    async def put_object_from_file(
        self,
        bucket: str,
        key: str,
        path: str,
        options: Optional[UploadOptions] = None,
        observer: Optional[ProgressObserver] = None,
    ) -> Optional[str]:
        """Stream a file into an object, reporting progress per chunk. Returns its ETag."""
        if "://" in path:
            raise ValidationError(f"Network paths are not supported: {path}")
        size = os.path.getsize(path)
        if size > MAX_PUT_SIZE:
            raise ValidationError(
                f"File of {size} bytes exceeds {MAX_PUT_SIZE} bytes; use multipart upload"
            )
        intent = RequestIntent(
            "PUT",
            bucket=bucket,
            key=key,
            headers=upload_headers(options),
            body=StreamBody.from_file(path, observer=observer),
        )
        response = await self.request(intent)
        return response.etag

    def _get_intent(
        self,
        bucket: str,
        key: str,
        byte_range: Optional[tuple[int, Optional[int]]] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> RequestIntent:
        request_headers = dict(headers or {})
        if byte_range is not None:
            start, end = byte_range
            request_headers["Range"] = f"bytes={start}-{'' if end is None else end}"
        return RequestIntent("GET", bucket=bucket, key=key, headers=request_headers)

    async def get_object(
        self,
        bucket: str,
        key: str,
        byte_range: Optional[tuple[int, Optional[int]]] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> bytes:
        """Download an object into memory.

        Args:
            byte_range: Optional (start, end) inclusive range; end may be None.
            headers: Extra headers such as If-Match or If-Modified-Since.
        """
        response = await self.request(self._get_intent(bucket, key, byte_range, headers))
        return response.content

    async def get_object_to_file(
        self,
        bucket: str,
        key: str,
        path: str,
        byte_range: Optional[tuple[int, Optional[int]]] = None,
        observer: Optional[ProgressObserver] = None,
    ) -> int:
        """Download an object into a new file. Returns bytes written."""
        signed = self.sign(self._get_intent(bucket, key, byte_range))
        return await self.transport.download_to_file(signed, path, observer=observer)

    async def stream_object(
        self,
        bucket: str,
        key: str,
        byte_range: Optional[tuple[int, Optional[int]]] = None,
    ) -> ChunkStream:
        """Open an object as a single-use async stream of chunks."""
        signed = self.sign(self._get_intent(bucket, key, byte_range))
        return await self.transport.open_stream(signed)

    async def head_object(self, bucket: str, key: str) -> ObjectMeta:
        """Fetch object metadata without the body."""
        response = await self.request(RequestIntent("HEAD", bucket=bucket, key=key))
        headers = {
            name: value
            for name, value in response.headers.items()
            if name not in ("server", "date", "connection", "x-oss-request-id")
        }
        return ObjectMeta(headers=headers)

    async def delete_object(self, bucket: str, key: str) -> None:
        await self.request(RequestIntent("DELETE", bucket=bucket, key=key))

    def sign_object_url(
        self,
        bucket: str,
        key: str,
        expires_in: int = 3600,
        method: str = "GET",
        params: Optional[Mapping[str, str]] = None,
        expires: Optional[int] = None,
    ) -> str:
        """Pre-sign a URL for one object.

        ``params`` may carry response overrides such as
        ``response-content-type`` or a ``versionId``; they are signed.
        """
        intent = RequestIntent(method, bucket=bucket, key=key, params=params)
        return self.presign_url(intent, expires=expires, expires_in=expires_in)

    # === LISTING ===

    async def list_objects_page(
        self,
        bucket: str,
        prefix: Optional[str] = None,
        delimiter: Optional[str] = None,
        max_keys: int = 1000,
        continuation_token: Optional[str] = None,
        start_after: Optional[str] = None,
        fetch_owner: bool = False,
        encoding_type: Optional[str] = None,
    ) -> ListObjectsPage:
        """Fetch one ListObjectsV2 page."""
        params: dict[str, object] = {
            "list-type": 2,
            "max-keys": max_keys,
            "fetch-owner": "true" if fetch_owner else "false",
        }
        optional = {
            "prefix": prefix,
            "delimiter": delimiter,
            "continuation-token": continuation_token,
            "start-after": start_after,
            "encoding-type": encoding_type,
        }
        params.update({name: value for name, value in optional.items() if value})

        response = await self.request(RequestIntent("GET", bucket=bucket, params=params))
        return parse_list_objects(response.content)

    async def list_objects(
        self,
        bucket: str,
        prefix: Optional[str] = None,
        delimiter: Optional[str] = None,
        max_items: int = DEFAULT_MAX_ITEMS,
        continuation_token: Optional[str] = None,
        start_after: Optional[str] = None,
        fetch_owner: bool = False,
        encoding_type: Optional[str] = None,
    ) -> ListObjectsResult:
        """List up to ``max_items`` objects and common prefixes across pages.

        When more entries exist beyond the cap, the result's
        ``next_continuation_token`` resumes the listing.
        """

        async def list_call(cursor: Optional[str], page_size: int) -> Page:
            page = await self.list_objects_page(
                bucket,
                prefix=prefix,
                delimiter=delimiter,
                max_keys=page_size,
                continuation_token=cursor,
                start_after=start_after if cursor is None else None,
                fetch_owner=fetch_owner,
                encoding_type=encoding_type,
            )
            return Page(
                items=page.objects,
                prefixes=page.prefixes,
                is_truncated=page.is_truncated,
                next_cursor=page.next_continuation_token,
            )

        result = await paginate(list_call, max_items, cursor=continuation_token)
        return ListObjectsResult(
            objects=result.items,
            prefixes=result.prefixes,
            next_continuation_token=result.cursor,
        )

    async def list_multipart_uploads_page(
        self,
        bucket: str,
        prefix: Optional[str] = None,
        delimiter: Optional[str] = None,
        max_uploads: int = 1000,
        key_marker: Optional[str] = None,
        upload_id_marker: Optional[str] = None,
    ) -> ListUploadsPage:
        """Fetch one ListMultipartUploads page."""
        params: dict[str, object] = {"uploads": None, "max-uploads": max_uploads}
        optional = {
            "prefix": prefix,
            "delimiter": delimiter,
            "key-marker": key_marker,
            "upload-id-marker": upload_id_marker,
        }
        params.update({name: value for name, value in optional.items() if value})

        response = await self.request(RequestIntent("GET", bucket=bucket, params=params))
        return parse_list_uploads(response.content)

    async def list_multipart_uploads(
        self,
        bucket: str,
        prefix: Optional[str] = None,
        delimiter: Optional[str] = None,
        max_items: int = DEFAULT_MAX_ITEMS,
        key_marker: Optional[str] = None,
        upload_id_marker: Optional[str] = None,
    ) -> ListUploadsResult:
        """List uploads that were initiated but never completed or aborted.

        These keep their parts stored (and billed) until aborted; pair with
        ``multipart_upload(bucket, key, upload_id).abort()`` to clean up.
        """

        async def list_call(cursor: Optional[tuple[str, str]], page_size: int) -> Page:
            key, upload_id = cursor or (key_marker, upload_id_marker)
            page = await self.list_multipart_uploads_page(
                bucket,
                prefix=prefix,
                delimiter=delimiter,
                max_uploads=page_size,
                key_marker=key,
                upload_id_marker=upload_id,
            )
            next_cursor = None
            if page.next_key_marker:
                next_cursor = (page.next_key_marker, page.next_upload_id_marker or "")
            return Page(
                items=page.uploads,
                prefixes=page.prefixes,
                is_truncated=page.is_truncated,
                next_cursor=next_cursor,
            )

        result = await paginate(list_call, max_items)
        next_key_marker, next_upload_id_marker = result.cursor or (None, None)
        return ListUploadsResult(
            uploads=result.items,
            prefixes=result.prefixes,
            next_key_marker=next_key_marker,
            next_upload_id_marker=next_upload_id_marker or None,
        )
