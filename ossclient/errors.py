"""Exception hierarchy for the OSS client.

Every failure of a single call surfaces as one of these:

Local (no network cost):
- ValidationError: malformed input caught before dispatch
- SessionStateError: multipart call made in the wrong upload state

Remote:
- TransportError: the service was never reached or the connection was lost
- ServiceError: non-2xx response carrying a structured error record
- UnparsedServiceError: non-2xx response whose error record can't be parsed
- InvalidResponseError: 2xx response whose body doesn't deserialize
"""

from typing import Optional


class OssClientError(Exception):
    """Base class for all errors raised by the client."""

    pass


class ValidationError(OssClientError):
    """Raised when input is rejected locally, before any network call."""

    pass


class SessionStateError(ValidationError):
    """Raised when a multipart call is not allowed in the current state."""

    pass


class StreamConsumedError(OssClientError):
    """Raised when a single-consumption chunk stream is iterated twice."""

    pass


class TransportError(OssClientError):
    """Raised when the request never reached the service or the connection failed.

    The underlying httpx/h11 exception is chained as ``__cause__``.
    """

    pass


class ServiceError(OssClientError):
    """Raised when the service answers with a non-2xx status and an error record."""

    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        request_id: str = "",
        ec: str = "",
        raw: bytes = b"",
    ):
        super().__init__(f"{status_code} {code}: {message} (request id: {request_id})")
        self.status_code = status_code
        self.code = code
        self.message = message
        self.request_id = request_id
        self.ec = ec
        self.raw = raw


class UnparsedServiceError(OssClientError):
    """Raised when a non-2xx response carries no parsable error record.

    The raw status code and bytes are kept so nothing is swallowed.
    """

    def __init__(self, status_code: int, raw: bytes = b""):
        super().__init__(
            f"Service returned HTTP {status_code} with an unparsable error body"
        )
        self.status_code = status_code
        self.raw = raw


class InvalidResponseError(OssClientError):
    """Raised when a successful response body can't be deserialized.

    ``raw`` holds the body for manual recovery by the caller.
    """

    def __init__(self, message: str, raw: Optional[bytes] = None):
        super().__init__(message)
        self.raw = raw
