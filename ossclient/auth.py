"""Request canonicalization and HMAC signing.

The service recomputes the signature from the same inputs, so the string
built here must match it byte-for-byte:

    VERB\\n
    Content-MD5\\n
    Content-Type\\n
    Date (RFC-1123) or Expires (epoch seconds)\\n
    CanonicalizedOSSHeaders
    CanonicalizedResource

Only query parameters listed in SUB_RESOURCES take part in the signature.
Everything else travels in the URL unsigned.
"""

import base64
import hashlib
import hmac
import time
from email.utils import formatdate
from typing import Mapping, Optional

from ossclient.errors import ValidationError

# Prefix of headers that participate in signing
EXTENSION_HEADER_PREFIX = "x-oss-"

# Query parameters that select an operation or override the response
SUB_RESOURCES = frozenset({
    "acl",
    "append",
    "asyncFetch",
    "bucketInfo",
    "callback",
    "callback-var",
    "cloudboxes",
    "cname",
    "comp",
    "continuation-token",
    "cors",
    "delete",
    "encryption",
    "endTime",
    "img",
    "inventory",
    "inventoryId",
    "lifecycle",
    "live",
    "location",
    "logging",
    "metaQuery",
    "objectMeta",
    "partNumber",
    "policy",
    "position",
    "qos",
    "qosInfo",
    "referer",
    "regionList",
    "replication",
    "replicationLocation",
    "replicationProgress",
    "requestPayment",
    "resourceGroup",
    "response-cache-control",
    "response-content-disposition",
    "response-content-encoding",
    "response-content-language",
    "response-content-type",
    "response-expires",
    "restore",
    "rtc",
    "security-token",
    "sequential",
    "startTime",
    "stat",
    "status",
    "style",
    "styleName",
    "symlink",
    "tagging",
    "transferAcceleration",
    "udf",
    "udfApplication",
    "udfApplicationLog",
    "udfId",
    "udfImage",
    "udfImageDesc",
    "udfName",
    "uploadId",
    "uploads",
    "versionId",
    "versioning",
    "versions",
    "vod",
    "website",
    "withHashContext",
    "worm",
    "wormExtend",
    "wormId",
    "x-oss-ac-forward-allow",
    "x-oss-ac-source-ip",
    "x-oss-ac-subnet-mask",
    "x-oss-ac-vpc-id",
    "x-oss-enable-md5",
    "x-oss-enable-sha1",
    "x-oss-enable-sha256",
    "x-oss-hash-ctx",
    "x-oss-md5-ctx",
    "x-oss-process",
    "x-oss-request-payer",
    "x-oss-traffic-limit",
})


def http_date(timestamp: Optional[float] = None) -> str:
    """Format a timestamp as an RFC-1123 date, e.g. 'Mon, 19 Oct 2026 10:00:00 GMT'."""
    if timestamp is None:
        timestamp = time.time()
    return formatdate(timestamp, usegmt=True)


def _header_value(headers: Mapping[str, str], name: str) -> str:
    """Case-insensitive header lookup returning '' when absent."""
    wanted = name.lower()
    for key, value in headers.items():
        if key.lower() == wanted:
            return value
    return ""


def canonical_extension_headers(headers: Mapping[str, str]) -> str:
    """Build the CanonicalizedOSSHeaders block.

    Raises:
        ValidationError: If two extension headers differ only by case.
    """
    collected: dict[str, str] = {}
    for name, value in headers.items():
        lowered = name.lower()
        if not lowered.startswith(EXTENSION_HEADER_PREFIX):
            continue
        if lowered in collected:
            raise ValidationError(f"Duplicate extension header: {lowered}")
        collected[lowered] = value

    if not collected:
        return ""
    return "".join(f"{name}:{collected[name]}\n" for name in sorted(collected))


def canonical_resource(
    bucket: Optional[str],
    key: Optional[str],
    params: Mapping[str, str],
) -> str:
    """Build the CanonicalizedResource: '/bucket/key?sub&resources'.

    The object key is used raw, without percent-encoding.
    """
    resource = "/"
    if bucket:
        resource += f"{bucket}/"
    if key:
        resource += key

    sub_resources = []
    for name in sorted(name for name in params if name in SUB_RESOURCES):
        value = params[name]
        sub_resources.append(f"{name}={value}" if value else name)

    if sub_resources:
        resource += "?" + "&".join(sub_resources)
    return resource


def canonicalize(
    method: str,
    bucket: Optional[str],
    key: Optional[str],
    params: Mapping[str, str],
    headers: Mapping[str, str],
    date: str,
    query_auth: bool = False,
) -> str:
    """Build the string to sign for a request.

    Args:
        method: HTTP verb.
        bucket: Bucket name, if the request targets one.
        key: Object key (raw), if the request targets one.
        params: All query parameters of the request.
        headers: All headers of the request.
        date: RFC-1123 date for header auth, epoch expiry for query auth.
        query_auth: Build the pre-signed URL variant, which leaves the
                   Content-MD5 and Content-Type fields empty.

    Returns:
        The canonical string.
    """
    if query_auth:
        content_md5 = ""
        content_type = ""
    else:
        content_md5 = _header_value(headers, "Content-MD5")
        content_type = _header_value(headers, "Content-Type")

    return (
        f"{method.upper()}\n"
        f"{content_md5}\n"
        f"{content_type}\n"
        f"{date}\n"
        f"{canonical_extension_headers(headers)}"
        f"{canonical_resource(bucket, key, params)}"
    )


def sign(canonical: str, secret: str) -> str:
    """HMAC-SHA1 the canonical string with the secret, base64 encoded."""
    digest = hmac.new(
        secret.encode("utf-8"),
        canonical.encode("utf-8"),
        hashlib.sha1,
    ).digest()
    return base64.b64encode(digest).decode("ascii")
