"""XML wire format: response parsing and request body serialization.

Parsing goes through xmltodict. Elements that may repeat are forced to
lists so a single-entry page has the same shape as a full one.
"""

import base64
import binascii
from typing import Any, Mapping, Optional
from xml.parsers.expat import ExpatError

import xmltodict

from ossclient.errors import (
    InvalidResponseError,
    OssClientError,
    ServiceError,
    UnparsedServiceError,
)
from ossclient.models import (
    CommonPrefix,
    ListObjectsPage,
    ListUploadsPage,
    ObjectSummary,
    Owner,
    PartInfo,
    UploadSummary,
)

# Header carrying a base64 error record on bodiless (HEAD) responses
ERROR_HEADER = "x-oss-err"

# Elements that repeat inside list results
REPEATED_ELEMENTS = ("Contents", "CommonPrefixes", "Part", "Upload")


def parse_xml(content: bytes, root: str) -> dict[str, Any]:
    """Parse an XML document and return the children of its root element.

    Raises:
        InvalidResponseError: If the document is malformed or the root
                             element is not ``root``.
    """
    try:
        document = xmltodict.parse(content, force_list=REPEATED_ELEMENTS)
    except ExpatError as e:
        raise InvalidResponseError(f"Malformed XML response: {e}", raw=content) from e

    if not isinstance(document, dict) or root not in document:
        raise InvalidResponseError(f"Expected <{root}> response", raw=content)

    children = document[root] or {}
    if not isinstance(children, dict):
        raise InvalidResponseError(f"<{root}> has no child elements", raw=content)
    return children


def _text(node: Mapping[str, Any], name: str, default: str = "") -> str:
    value = node.get(name)
    return default if value is None else str(value)


def _flag(node: Mapping[str, Any], name: str) -> bool:
    return _text(node, name).strip().lower() == "true"


def parse_error(
    status_code: int,
    content: bytes,
    headers: Optional[Mapping[str, str]] = None,
) -> OssClientError:
    """Turn a non-2xx response into the matching error.

    The error record is read from the body, or when the body is empty
    from the base64 ``x-oss-err`` header. If neither yields a record, the
    raw status and bytes are returned as an UnparsedServiceError.
    """
    raw = content
    if not raw and headers is not None:
        encoded = headers.get(ERROR_HEADER)
        if encoded:
            try:
                raw = base64.b64decode(encoded, validate=True)
            except (binascii.Error, ValueError):
                return UnparsedServiceError(status_code, encoded.encode("utf-8"))

    if not raw:
        return UnparsedServiceError(status_code, b"")

    try:
        record = parse_xml(raw, "Error")
    except InvalidResponseError:
        return UnparsedServiceError(status_code, raw)

    code = _text(record, "Code")
    if not code:
        return UnparsedServiceError(status_code, raw)

    return ServiceError(
        status_code=status_code,
        code=code,
        message=_text(record, "Message"),
        request_id=_text(record, "RequestId"),
        ec=_text(record, "EC"),
        raw=raw,
    )


def _parse_owner(node: Optional[Mapping[str, Any]]) -> Optional[Owner]:
    if not node:
        return None
    return Owner(id=_text(node, "ID"), display_name=_text(node, "DisplayName"))


def parse_list_objects(content: bytes) -> ListObjectsPage:
    """Parse a ListBucketResult (ListObjectsV2) page."""
    result = parse_xml(content, "ListBucketResult")
    try:
        objects = [
            ObjectSummary(
                key=_text(entry, "Key"),
                last_modified=_text(entry, "LastModified"),
                etag=_text(entry, "ETag").strip('"'),
                size=int(_text(entry, "Size", "0")),
                storage_class=_text(entry, "StorageClass"),
                type=_text(entry, "Type"),
                owner=_parse_owner(entry.get("Owner")),
            )
            for entry in result.get("Contents") or []
        ]
        prefixes = [
            CommonPrefix(prefix=_text(entry, "Prefix"))
            for entry in result.get("CommonPrefixes") or []
        ]
        key_count = int(_text(result, "KeyCount", "0"))
    except (AttributeError, TypeError, ValueError) as e:
        raise InvalidResponseError(f"Unexpected ListBucketResult: {e}", raw=content) from e

    return ListObjectsPage(
        objects=objects,
        prefixes=prefixes,
        is_truncated=_flag(result, "IsTruncated"),
        next_continuation_token=result.get("NextContinuationToken") or None,
        key_count=key_count,
    )


def parse_initiate_upload(content: bytes) -> str:
    """Extract the upload id from an InitiateMultipartUploadResult."""
    result = parse_xml(content, "InitiateMultipartUploadResult")
    upload_id = _text(result, "UploadId")
    if not upload_id:
        raise InvalidResponseError("Response carries no UploadId", raw=content)
    return upload_id


def parse_complete_upload(content: bytes) -> dict[str, Optional[str]]:
    """Read Location, Bucket, Key and ETag from a CompleteMultipartUploadResult."""
    result = parse_xml(content, "CompleteMultipartUploadResult")
    return {
        "location": result.get("Location"),
        "bucket": result.get("Bucket"),
        "key": result.get("Key"),
        "etag": _text(result, "ETag").strip('"') or None,
    }


def parse_list_parts(content: bytes) -> tuple[list[PartInfo], bool, Optional[str]]:
    """Parse a ListPartsResult.

    Returns:
        Tuple of (parts, is_truncated, next_part_number_marker).
    """
    result = parse_xml(content, "ListPartsResult")
    try:
        parts = [
            PartInfo(
                part_number=int(_text(entry, "PartNumber")),
                etag=_text(entry, "ETag"),
                size=int(_text(entry, "Size", "0")),
                last_modified=_text(entry, "LastModified") or None,
            )
            for entry in result.get("Part") or []
        ]
    except (AttributeError, TypeError, ValueError) as e:
        raise InvalidResponseError(f"Unexpected ListPartsResult: {e}", raw=content) from e

    return parts, _flag(result, "IsTruncated"), result.get("NextPartNumberMarker") or None


def parse_list_uploads(content: bytes) -> ListUploadsPage:
    """Parse a ListMultipartUploadsResult page."""
    result = parse_xml(content, "ListMultipartUploadsResult")
    try:
        uploads = [
            UploadSummary(
                key=_text(entry, "Key"),
                upload_id=_text(entry, "UploadId"),
                initiated=_text(entry, "Initiated"),
                storage_class=_text(entry, "StorageClass"),
            )
            for entry in result.get("Upload") or []
        ]
        prefixes = [
            CommonPrefix(prefix=_text(entry, "Prefix"))
            for entry in result.get("CommonPrefixes") or []
        ]
    except (AttributeError, TypeError) as e:
        raise InvalidResponseError(
            f"Unexpected ListMultipartUploadsResult: {e}", raw=content
        ) from e

    return ListUploadsPage(
        uploads=uploads,
        prefixes=prefixes,
        is_truncated=_flag(result, "IsTruncated"),
        next_key_marker=result.get("NextKeyMarker") or None,
        next_upload_id_marker=result.get("NextUploadIdMarker") or None,
    )


def build_complete_manifest(parts: list[PartInfo]) -> bytes:
    """Serialize parts as a CompleteMultipartUpload document, in the given order."""
    document = {
        "CompleteMultipartUpload": {
            "Part": [
                {"PartNumber": str(part.part_number), "ETag": part.etag}
                for part in parts
            ]
        }
    }
    return xmltodict.unparse(document).encode("utf-8")
