"""Multipart upload lifecycle management.

Handles the complete lifecycle of one multipart upload:
- Initiate upload (declares metadata, obtains the upload id)
- Upload parts in any order, concurrently if wanted
- Complete with a manifest ordered by part number, or abort

An upload that is neither completed nor aborted keeps its parts stored
(and billed) on the service. Nothing here aborts on the caller's behalf:
after a failure the session stays open so parts can be retried, and it is
the caller's job to abort it if they give up.
"""

import asyncio
import logging
import os
from typing import (
    TYPE_CHECKING,
    AsyncIterable,
    AsyncIterator,
    Awaitable,
    Callable,
    Iterable,
    Mapping,
    Optional,
    Union,
)

import aiofiles

from ossclient.body import StreamBody
from ossclient.errors import (
    InvalidResponseError,
    ServiceError,
    SessionStateError,
    ValidationError,
)
from ossclient.models import CompleteResult, PartInfo, UploadOptions, UploadState
from ossclient.paginator import Page, paginate
from ossclient.progress.base import ProgressObserver
from ossclient.request import RequestIntent, url_encode
from ossclient.xmlcodec import (
    build_complete_manifest,
    parse_complete_upload,
    parse_initiate_upload,
    parse_list_parts,
)

if TYPE_CHECKING:
    from ossclient.client import OssClient

logger = logging.getLogger(__name__)

# Part size floor (every part but the last): 100 KiB
MIN_PART_SIZE = 100 * 1024

# Part size ceiling: 5 GiB
MAX_PART_SIZE = 5 * 1024 * 1024 * 1024

# Part numbers run from 1 to 10000
MAX_PART_NUMBER = 10000

# Default part size when splitting a file: 8 MiB
DEFAULT_PART_SIZE = 8 * 1024 * 1024

DEFAULT_CONCURRENCY = 4

PartsInput = Union[Mapping[int, str], Iterable[Union[PartInfo, tuple[int, str]]]]
PartSource = Union[Iterable[tuple[int, bytes]], AsyncIterable[tuple[int, bytes]]]


def _is_valid_metadata_key(key: str) -> bool:
    return bool(key) and all(c.isascii() and (c.isalnum() or c == "-") for c in key)


def upload_headers(options: Optional[UploadOptions]) -> dict[str, str]:
    """Translate UploadOptions into request headers.

    Raises:
        ValidationError: If a metadata key holds characters other than
                        ASCII letters, digits and '-'.
    """
    headers: dict[str, str] = {}
    if options is None:
        return headers

    if options.content_type:
        headers["Content-Type"] = options.content_type
    if options.acl is not None:
        headers["x-oss-object-acl"] = options.acl.value
    if options.storage_class is not None:
        headers["x-oss-storage-class"] = options.storage_class.value
    if options.cache_control:
        headers["Cache-Control"] = options.cache_control
    if options.content_disposition:
        headers["Content-Disposition"] = options.content_disposition
    if options.forbid_overwrite:
        headers["x-oss-forbid-overwrite"] = "true"

    for key, value in options.metadata.items():
        if not _is_valid_metadata_key(key):
            raise ValidationError(f"Invalid metadata key: {key!r}")
        headers[f"x-oss-meta-{key.lower()}"] = value

    if options.tags:
        headers["x-oss-tagging"] = "&".join(
            url_encode(k) if not v else f"{url_encode(k)}={url_encode(v)}"
            for k, v in options.tags.items()
        )
    return headers


def validate_part_number(part_number: int) -> None:
    """Reject part numbers outside 1..10000."""
    if isinstance(part_number, bool) or not isinstance(part_number, int):
        raise ValidationError(f"Part number must be an integer, got {part_number!r}")
    if not 1 <= part_number <= MAX_PART_NUMBER:
        raise ValidationError(
            f"Part number {part_number} outside 1..{MAX_PART_NUMBER}"
        )


def validate_part_size(size: int, is_last: bool = False) -> None:
    """Reject parts above the ceiling, or below the floor unless last.

    Both bounds are inclusive: a part of exactly MIN_PART_SIZE or
    exactly MAX_PART_SIZE bytes is accepted.
    """
    if size > MAX_PART_SIZE:
        raise ValidationError(f"Part of {size} bytes exceeds {MAX_PART_SIZE} bytes")
    if not is_last and size < MIN_PART_SIZE:
        raise ValidationError(
            f"Part of {size} bytes is below {MIN_PART_SIZE} bytes "
            "(only the last part may be smaller)"
        )


def build_manifest(parts: PartsInput) -> list[PartInfo]:
    """Validate (part_number, etag) pairs and order them by part number.

    Raises:
        ValidationError: If the set is empty, a number is out of range or
                        repeated, or an ETag is missing.
    """
    items = parts.items() if isinstance(parts, Mapping) else parts

    manifest: list[PartInfo] = []
    seen: set[int] = set()
    for item in items:
        part = item if isinstance(item, PartInfo) else PartInfo(item[0], item[1])
        validate_part_number(part.part_number)
        if part.part_number in seen:
            raise ValidationError(f"Duplicate part number in manifest: {part.part_number}")
        if not part.etag:
            raise ValidationError(f"Missing ETag for part {part.part_number}")
        seen.add(part.part_number)
        manifest.append(part)

    if not manifest:
        raise ValidationError("Manifest must contain at least one part")

    manifest.sort(key=lambda part: part.part_number)
    return manifest


class MultipartUpload:
    """Drives one multipart upload against a single upload id.

    ``upload_part`` may be called concurrently and in any order; the
    service keys parts by number. ``complete`` and ``abort`` end the
    session and are serialized per instance.

    Can be used as an async context manager: entering initiates the
    upload, leaving it while still open logs a warning. It does not abort.

    Args:
        client: Client used to sign and send requests.
        bucket: Target bucket.
        key: Target object key.
        upload_id: Id of an upload initiated earlier, to resume it.
    """

    def __init__(
        self,
        client: "OssClient",
        bucket: str,
        key: str,
        upload_id: Optional[str] = None,
    ):
        self.client = client
        self.bucket = bucket
        self.key = key
        self.upload_id = upload_id
        self.state = UploadState.INITIATED if upload_id else UploadState.NEW
        self.parts: dict[int, str] = {}
        self._lock = asyncio.Lock()

    def _intent(self, method: str, params: Mapping[str, object], **kwargs) -> RequestIntent:
        return RequestIntent(method, bucket=self.bucket, key=self.key, params=params, **kwargs)

    def _check_open(self) -> None:
        if self.state is UploadState.NEW:
            raise SessionStateError("Upload not initiated")
        if self.state.is_terminal:
            raise SessionStateError(
                f"Upload {self.upload_id} is already {self.state.value}"
            )

    async def initiate(self, options: Optional[UploadOptions] = None) -> str:
        """Initiate a new multipart upload.

        Returns:
            The upload id issued by the service.

        Raises:
            SessionStateError: If this instance was already initiated.
            ValidationError: If the options are malformed.
        """
        if self.state is not UploadState.NEW:
            raise SessionStateError(f"Upload {self.upload_id} already initiated")

        intent = self._intent("POST", {"uploads": None}, headers=upload_headers(options))
        response = await self.client.request(intent)

        self.upload_id = parse_initiate_upload(response.content)
        self.state = UploadState.INITIATED
        logger.info("Initiated upload %s for %s/%s", self.upload_id, self.bucket, self.key)
        return self.upload_id

    async def _put_part(
        self,
        part_number: int,
        body: Union[None, bytes, StreamBody],
        headers: Optional[Mapping[str, str]] = None,
    ) -> str:
        intent = self._intent(
            "PUT",
            {"partNumber": part_number, "uploadId": self.upload_id},
            headers=headers or {},
            body=body,
        )
        response = await self.client.request(intent)

        etag = response.etag
        if not etag:
            raise InvalidResponseError(
                f"No ETag returned for part {part_number}", raw=response.content
            )
        self.add_part(part_number, etag)
        if self.state is UploadState.INITIATED:
            self.state = UploadState.UPLOADING
        logger.debug("Uploaded part %d of %s", part_number, self.upload_id)
        return etag

    async def upload_part(self, part_number: int, data: bytes, is_last: bool = False) -> str:
        """Upload one part from memory.

        Args:
            part_number: 1-based part number.
            data: Part content.
            is_last: Whether this is the final part (exempt from the size floor).

        Returns:
            The part's ETag. Keep it: without it the part must be re-uploaded.
        """
        self._check_open()
        validate_part_number(part_number)
        validate_part_size(len(data), is_last)
        return await self._put_part(part_number, data)

    async def upload_part_from_file(
        self,
        part_number: int,
        path: str,
        offset: int = 0,
        length: Optional[int] = None,
        observer: Optional[ProgressObserver] = None,
        is_last: bool = False,
    ) -> str:
        """Stream one part from a file (or a byte range of it).

        Args:
            part_number: 1-based part number.
            path: Source file.
            offset: First byte of the part within the file.
            length: Part size, or None for the rest of the file.
            observer: Optional ProgressObserver for this part.
            is_last: Whether this is the final part.

        Returns:
            The part's ETag.
        """
        self._check_open()
        validate_part_number(part_number)
        body = StreamBody.from_file(path, observer=observer, offset=offset, length=length)
        validate_part_size(body.total, is_last)
        return await self._put_part(part_number, body)

    async def upload_part_copy(
        self,
        part_number: int,
        source_bucket: str,
        source_key: str,
        byte_range: Optional[tuple[int, Optional[int]]] = None,
    ) -> str:
        """Fill one part server-side from (a byte range of) an existing object.

        No data passes through the client. The size floor and ceiling are
        checked by the service, since the copied size isn't known here.

        Args:
            part_number: 1-based part number.
            source_bucket: Bucket holding the source object.
            source_key: Source object key.
            byte_range: Optional (start, end) inclusive range; end may be None.

        Returns:
            The part's ETag.
        """
        self._check_open()
        validate_part_number(part_number)
        headers = {"x-oss-copy-source": f"/{source_bucket}/{url_encode(source_key)}"}
        if byte_range is not None:
            start, end = byte_range
            headers["x-oss-copy-source-range"] = f"bytes={start}-{'' if end is None else end}"
        return await self._put_part(part_number, None, headers=headers)

    def add_part(self, part_number: int, etag: str) -> None:
        """Record an uploaded part.

        Args:
            part_number: The 1-indexed part number.
            etag: The ETag returned by the service.
        """
        self.parts[part_number] = etag

    def get_uploaded_parts(self) -> list[PartInfo]:
        """Recorded parts, ordered by part number."""
        return [PartInfo(n, etag) for n, etag in sorted(self.parts.items())]

    async def list_parts(self) -> list[PartInfo]:
        """List the parts the service holds for this upload."""
        self._check_open()

        async def list_call(marker: Optional[str], page_size: int) -> Page:
            params = {"uploadId": self.upload_id, "max-parts": page_size}
            if marker:
                params["part-number-marker"] = marker
            response = await self.client.request(self._intent("GET", params))
            parts, truncated, next_marker = parse_list_parts(response.content)
            return Page(items=parts, is_truncated=truncated, next_cursor=next_marker)

        result = await paginate(list_call, MAX_PART_NUMBER)
        return result.items

    async def complete(self, parts: Optional[PartsInput] = None) -> CompleteResult:
        """Complete the upload.

        Args:
            parts: (part_number, etag) pairs to assemble. Defaults to the
                  parts recorded by this instance.

        Returns:
            CompleteResult with the ordered manifest that was sent.

        Raises:
            SessionStateError: If not initiated or already completed/aborted.
            ValidationError: If the manifest is empty or malformed.
        """
        async with self._lock:
            self._check_open()
            manifest = build_manifest(self.parts if parts is None else parts)

            intent = self._intent(
                "POST",
                {"uploadId": self.upload_id},
                body=build_complete_manifest(manifest),
            )
            response = await self.client.request(intent)
            self.state = UploadState.COMPLETED
            logger.info(
                "Completed upload %s with %d parts", self.upload_id, len(manifest)
            )

            result = CompleteResult(manifest=manifest)
            if response.content:
                fields = parse_complete_upload(response.content)
                result.etag = fields["etag"]
                result.location = fields["location"]
                result.bucket = fields["bucket"]
                result.key = fields["key"]
            return result

    async def abort(self, missing_ok: bool = False) -> None:
        """Abort the upload and release its parts on the service.

        Calling this on an instance that already completed or aborted is a
        SessionStateError, raised without a network call.

        Args:
            missing_ok: Treat a NoSuchUpload answer from the service as
                       success, for idempotent cleanup.
        """
        async with self._lock:
            self._check_open()
            intent = self._intent("DELETE", {"uploadId": self.upload_id})
            try:
                await self.client.request(intent)
            except ServiceError as e:
                if not (missing_ok and e.code == "NoSuchUpload"):
                    raise
                logger.debug("Upload %s was already gone", self.upload_id)
            self.state = UploadState.ABORTED
            logger.info("Aborted upload %s", self.upload_id)

    async def __aenter__(self) -> "MultipartUpload":
        """Enter context manager - initiates upload if needed."""
        if self.state is UploadState.NEW:
            await self.initiate()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        """Exit context manager - warns about an upload left open."""
        if not self.state.is_terminal:
            logger.warning(
                "Multipart upload %s for %s/%s left open; abort it to free stored parts",
                self.upload_id,
                self.bucket,
                self.key,
            )
        return False  # Don't suppress exceptions


async def iter_file_parts(
    path: str,
    part_size: int = DEFAULT_PART_SIZE,
) -> AsyncIterator[tuple[int, bytes]]:
    """Iterate over file parts.

    Args:
        path: Path to the file to read.
        part_size: Size of each part in bytes.

    Yields:
        Tuples of (part_number, part_data).
    """
    validate_part_size(part_size)
    part_number = 1
    async with aiofiles.open(path, "rb") as f:
        while True:
            chunk = await f.read(part_size)
            if not chunk:
                break
            yield part_number, chunk
            part_number += 1


async def _iterate(source) -> AsyncIterator:
    if hasattr(source, "__aiter__"):
        async for item in source:
            yield item
    else:
        for item in source:
            yield item


async def _run_bounded(
    jobs: AsyncIterator[Callable[[], Awaitable[str]]],
    concurrency: int,
) -> None:
    """Run job factories with at most ``concurrency`` in flight.

    A new job is only pulled from ``jobs`` once a slot is free, so part
    data is never read far ahead of the uploads. On the first failure the
    remaining jobs are cancelled and the error is re-raised.
    """
    if concurrency < 1:
        raise ValidationError("concurrency must be at least 1")
    semaphore = asyncio.Semaphore(concurrency)
    tasks: list[asyncio.Task] = []

    async def run(job: Callable[[], Awaitable[str]]) -> str:
        try:
            return await job()
        finally:
            semaphore.release()

    try:
        async for job in jobs:
            await semaphore.acquire()
            failed = [
                t for t in tasks
                if t.done() and not t.cancelled() and t.exception() is not None
            ]
            if failed:
                semaphore.release()
                raise failed[0].exception()
            tasks.append(asyncio.ensure_future(run(job)))
        await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


async def drive_multipart(
    upload: MultipartUpload,
    part_calls: PartSource,
    concurrency: int = DEFAULT_CONCURRENCY,
    options: Optional[UploadOptions] = None,
) -> CompleteResult:
    """Upload every (part_number, data) pair, then complete the upload.

    Pairs may arrive in any order. The service assembles parts by
    ascending number, so only the highest part number may be below the
    size floor. A part under the floor is held back until the source is
    exhausted and sent last. It is rejected with ValidationError, before
    it is sent, as soon as a higher part number shows up.

    The upload is initiated first if needed. If anything fails the
    session is left open for the caller to retry or abort.

    Returns:
        CompleteResult whose manifest is ordered by part number.
    """
    if upload.state is UploadState.NEW:
        await upload.initiate(options)

    async def jobs() -> AsyncIterator[Callable[[], Awaitable[str]]]:
        held: Optional[tuple[int, bytes]] = None
        highest = 0
        async for part_number, data in _iterate(part_calls):
            validate_part_number(part_number)
            if held is not None and part_number > held[0]:
                raise _undersized(*held)
            highest = max(highest, part_number)
            if len(data) >= MIN_PART_SIZE:
                yield _part_job(upload, part_number, data, is_last=False)
            elif held is not None or part_number < highest:
                raise _undersized(part_number, data)
            else:
                held = (part_number, data)
        if held is not None:
            yield _part_job(upload, *held, is_last=True)

    try:
        await _run_bounded(jobs(), concurrency)
        return await upload.complete()
    except BaseException:
        logger.warning(
            "Multipart upload %s left open after failure; abort it to free stored parts",
            upload.upload_id,
        )
        raise


def _undersized(part_number: int, data: bytes) -> ValidationError:
    return ValidationError(
        f"Part {part_number} of {len(data)} bytes is below {MIN_PART_SIZE} bytes "
        "and is not the last part"
    )


def _part_job(upload: MultipartUpload, part_number: int, data: bytes, is_last: bool):
    return lambda: upload.upload_part(part_number, data, is_last=is_last)


async def upload_file(
    upload: MultipartUpload,
    path: str,
    part_size: int = DEFAULT_PART_SIZE,
    concurrency: int = DEFAULT_CONCURRENCY,
    options: Optional[UploadOptions] = None,
    observer_factory: Optional[Callable[[], ProgressObserver]] = None,
) -> CompleteResult:
    """Upload a file as streamed parts of ``part_size`` bytes, then complete.

    Each part is read straight from disk while it's sent. Pass
    ``observer_factory`` to attach a fresh ProgressObserver to every part.
    """
    if "://" in path:
        raise ValidationError(f"Network paths are not supported: {path}")
    validate_part_size(part_size)
    size = os.path.getsize(path)
    count = max(1, -(-size // part_size))
    if count > MAX_PART_NUMBER:
        raise ValidationError(
            f"{size} bytes in parts of {part_size} needs {count} parts "
            f"(max {MAX_PART_NUMBER}); use a larger part size"
        )

    if upload.state is UploadState.NEW:
        await upload.initiate(options)

    def job(part_number: int) -> Callable[[], Awaitable[str]]:
        offset = (part_number - 1) * part_size
        return lambda: upload.upload_part_from_file(
            part_number,
            path,
            offset=offset,
            length=min(part_size, size - offset),
            observer=observer_factory() if observer_factory else None,
            is_last=part_number == count,
        )

    async def jobs() -> AsyncIterator[Callable[[], Awaitable[str]]]:
        for part_number in range(1, count + 1):
            yield job(part_number)

    try:
        await _run_bounded(jobs(), concurrency)
        return await upload.complete()
    except BaseException:
        logger.warning(
            "Multipart upload %s left open after failure; abort it to free stored parts",
            upload.upload_id,
        )
        raise
