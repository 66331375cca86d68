"""Request intents and the builder that signs them.

A RequestIntent is an immutable description of one API call. The
RequestBuilder turns it into a SignedRequest (absolute URL plus auth
headers) for the Transport, or into a pre-signed URL that carries its
signature in the query string and needs no further authentication.
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Iterable, Mapping, Optional, Union
from urllib.parse import quote

from ossclient.auth import canonicalize, http_date, sign
from ossclient.body import StreamBody
from ossclient.errors import ValidationError
from ossclient.models import Credential

logger = logging.getLogger(__name__)

# Default public endpoint
DEFAULT_ENDPOINT = "oss.aliyuncs.com"

SECURITY_TOKEN_HEADER = "x-oss-security-token"
SECURITY_TOKEN_PARAM = "security-token"

Body = Union[None, bytes, StreamBody]
Pairs = Union[Mapping[str, object], Iterable[tuple[str, object]]]


def url_encode(value: str, safe: str = "") -> str:
    """Percent-encode everything except unreserved characters and ``safe``."""
    return quote(value, safe=safe)


def _to_dict(pairs: Optional[Pairs], kind: str) -> dict[str, str]:
    """Normalize a mapping or sequence of pairs into a str -> str dict.

    None values become empty strings, so a bare sub-resource like
    ``uploads`` can be written as ``{"uploads": None}``.

    Raises:
        ValidationError: If the same name is given twice.
    """
    if pairs is None:
        return {}
    items = pairs.items() if hasattr(pairs, "items") else pairs

    result: dict[str, str] = {}
    for name, value in items:
        if name in result:
            raise ValidationError(f"Duplicate {kind} name: {name}")
        result[name] = "" if value is None else str(value)
    return result


def _without(headers: dict[str, str], *names: str) -> dict[str, str]:
    """Drop headers matching any of ``names`` case-insensitively."""
    lowered = {name.lower() for name in names}
    return {k: v for k, v in headers.items() if k.lower() not in lowered}


@dataclass(frozen=True)
class RequestIntent:
    """Everything needed to issue one API call, fixed before signing.

    Attributes:
        method: HTTP verb.
        bucket: Target bucket, or None for service-level calls.
        key: Target object key (raw, not URL-encoded).
        params: Query parameters, name -> value ('' for bare names).
        headers: Request headers.
        body: None, bytes, or a StreamBody.
    """

    method: str
    bucket: Optional[str] = None
    key: Optional[str] = None
    params: Mapping[str, str] = field(default_factory=dict)
    headers: Mapping[str, str] = field(default_factory=dict)
    body: Body = None

    def __post_init__(self):
        object.__setattr__(self, "method", self.method.upper())
        object.__setattr__(self, "params", _to_dict(self.params, "query parameter"))
        object.__setattr__(self, "headers", _to_dict(self.headers, "header"))
        if self.key is not None and not self.bucket:
            raise ValidationError("An object key requires a bucket")

    def with_params(self, params: Pairs) -> "RequestIntent":
        """Return a copy with additional query parameters."""
        merged = dict(self.params)
        merged.update(_to_dict(params, "query parameter"))
        return replace(self, params=merged)

    def with_headers(self, headers: Pairs) -> "RequestIntent":
        """Return a copy with additional headers."""
        merged = dict(self.headers)
        merged.update(_to_dict(headers, "header"))
        return replace(self, headers=merged)

    def with_body(self, body: Body) -> "RequestIntent":
        """Return a copy with a different body."""
        return replace(self, body=body)


@dataclass(frozen=True)
class SignedRequest:
    """A request ready to be sent: absolute URL and final headers."""

    method: str
    url: str
    headers: Mapping[str, str]
    body: Body = None
    bucket: Optional[str] = None
    key: Optional[str] = None


class RequestBuilder:
    """Builds URLs and signs intents for one endpoint.

    Args:
        endpoint: Service host, e.g. 'oss-cn-hangzhou.aliyuncs.com'. A
                 leading 'http://' or 'https://' overrides ``https``.
        https: Use HTTPS (default) or plain HTTP.
    """

    def __init__(self, endpoint: str = DEFAULT_ENDPOINT, https: bool = True):
        if endpoint.startswith("https://"):
            endpoint, https = endpoint[len("https://"):], True
        elif endpoint.startswith("http://"):
            endpoint, https = endpoint[len("http://"):], False
        endpoint = endpoint.rstrip("/")
        if not endpoint:
            raise ValidationError("endpoint must not be empty")
        self.endpoint = endpoint
        self.scheme = "https" if https else "http"

    def url(
        self,
        bucket: Optional[str],
        key: Optional[str],
        params: Mapping[str, str],
    ) -> str:
        """Build 'scheme://{bucket.}endpoint/{encoded key}{?query}'.

        Query parameters are emitted sorted by name; empty values are
        written as bare names.
        """
        host = f"{bucket}.{self.endpoint}" if bucket else self.endpoint
        path = url_encode(key, safe="/") if key else ""

        query = "&".join(
            url_encode(name) if not params[name]
            else f"{url_encode(name)}={url_encode(params[name])}"
            for name in sorted(params)
        )
        url = f"{self.scheme}://{host}/{path}"
        return f"{url}?{query}" if query else url

    def sign(
        self,
        intent: RequestIntent,
        credential: Credential,
        now: Optional[float] = None,
    ) -> SignedRequest:
        """Sign an intent with header auth (Date + Authorization).

        Args:
            intent: The request to sign.
            credential: Access key pair, optionally with a session token.
            now: Unix timestamp to sign with (defaults to the current time).

        Returns:
            The signed request.

        Raises:
            ValidationError: If the intent's headers can't be canonicalized.
        """
        headers = _without(dict(intent.headers), "Date", "Authorization")
        if credential.security_token:
            headers = _without(headers, SECURITY_TOKEN_HEADER)
            headers[SECURITY_TOKEN_HEADER] = credential.security_token

        if isinstance(intent.body, bytes):
            headers = _without(headers, "Content-Length")
            headers["Content-Length"] = str(len(intent.body))
        elif isinstance(intent.body, StreamBody) and intent.body.total is not None:
            headers = _without(headers, "Content-Length")
            headers["Content-Length"] = str(intent.body.total)

        date = http_date(now)
        canonical = canonicalize(
            intent.method,
            intent.bucket,
            intent.key,
            intent.params,
            headers,
            date,
        )
        signature = sign(canonical, credential.access_key_secret)

        headers["Date"] = date
        headers["Authorization"] = f"OSS {credential.access_key_id}:{signature}"

        url = self.url(intent.bucket, intent.key, intent.params)
        logger.debug("Signed %s %s", intent.method, url)

        return SignedRequest(
            method=intent.method,
            url=url,
            headers=headers,
            body=intent.body,
            bucket=intent.bucket,
            key=intent.key,
        )

    def presign_url(
        self,
        intent: RequestIntent,
        credential: Credential,
        expires: int,
    ) -> str:
        """Build a pre-signed URL valid until ``expires`` (Unix epoch seconds).

        No network call is made. Sub-resource parameters in the intent are
        signed; ``x-oss-`` headers in the intent are signed and must then
        be sent by whoever uses the URL.
        """
        params = dict(intent.params)
        if credential.security_token:
            params[SECURITY_TOKEN_PARAM] = credential.security_token

        canonical = canonicalize(
            intent.method,
            intent.bucket,
            intent.key,
            params,
            intent.headers,
            str(int(expires)),
            query_auth=True,
        )
        signature = sign(canonical, credential.access_key_secret)

        params["Expires"] = str(int(expires))
        params["OSSAccessKeyId"] = credential.access_key_id
        params["Signature"] = signature
        return self.url(intent.bucket, intent.key, params)
