"""
OSS Client.

An async client core for OSS-style object storage: request signing,
pre-signed URLs, streamed transfers with progress, multipart uploads and
paginated listings.
"""

__version__ = "0.1.0"

from ossclient.client import OssClient
from ossclient.errors import (
    InvalidResponseError,
    OssClientError,
    ServiceError,
    SessionStateError,
    StreamConsumedError,
    TransportError,
    UnparsedServiceError,
    ValidationError,
)
from ossclient.models import Credential, UploadOptions
from ossclient.multipart import MultipartUpload, drive_multipart, upload_file
from ossclient.paginator import paginate
from ossclient.request import RequestIntent, SignedRequest

__all__ = [
    "OssClient",
    "Credential",
    "UploadOptions",
    "RequestIntent",
    "SignedRequest",
    "MultipartUpload",
    "drive_multipart",
    "upload_file",
    "paginate",
    "OssClientError",
    "ValidationError",
    "SessionStateError",
    "StreamConsumedError",
    "TransportError",
    "ServiceError",
    "UnparsedServiceError",
    "InvalidResponseError",
    "__version__",
]
