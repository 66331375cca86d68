"""Data models for the OSS client."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from ossclient.errors import ValidationError


class Acl(Enum):
    """Access control list values accepted by the service."""

    DEFAULT = "default"
    PRIVATE = "private"
    PUBLIC_READ = "public-read"
    PUBLIC_READ_WRITE = "public-read-write"


class StorageClass(Enum):
    """Storage classes an object can be written to."""

    STANDARD = "Standard"
    IA = "IA"
    ARCHIVE = "Archive"
    COLD_ARCHIVE = "ColdArchive"
    DEEP_COLD_ARCHIVE = "DeepColdArchive"


class UploadState(Enum):
    """Lifecycle state of a multipart upload."""

    NEW = "new"
    INITIATED = "initiated"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    ABORTED = "aborted"

    @property
    def is_terminal(self) -> bool:
        return self in (UploadState.COMPLETED, UploadState.ABORTED)


@dataclass(frozen=True)
class Credential:
    """Static access key pair with an optional STS session token.

    Shared read-only by every request made through one client.
    """

    access_key_id: str
    access_key_secret: str = field(repr=False)
    security_token: Optional[str] = field(default=None, repr=False)

    def __post_init__(self):
        if not self.access_key_id:
            raise ValidationError("access_key_id must not be empty")
        if not self.access_key_secret:
            raise ValidationError("access_key_secret must not be empty")


@dataclass
class Owner:
    """Owner of a bucket or object."""

    id: str
    display_name: str


@dataclass
class ObjectSummary:
    """One entry of an object listing."""

    key: str
    last_modified: str
    etag: str
    size: int
    storage_class: str = ""
    type: str = ""
    owner: Optional[Owner] = None


@dataclass
class CommonPrefix:
    """A group of keys sharing a prefix up to the delimiter."""

    prefix: str


@dataclass
class ListObjectsPage:
    """One page of a ListObjectsV2 response."""

    objects: list[ObjectSummary]
    prefixes: list[CommonPrefix]
    is_truncated: bool
    next_continuation_token: Optional[str] = None
    key_count: int = 0


@dataclass
class ListObjectsResult:
    """Objects and prefixes merged across pages.

    ``next_continuation_token`` is set when the listing stopped at the
    caller's cap while more data exists.
    """

    objects: list[ObjectSummary] = field(default_factory=list)
    prefixes: list[CommonPrefix] = field(default_factory=list)
    next_continuation_token: Optional[str] = None


@dataclass
class UploadSummary:
    """A multipart upload that was initiated but not yet completed or aborted."""

    key: str
    upload_id: str
    initiated: str = ""
    storage_class: str = ""


@dataclass
class ListUploadsPage:
    """One page of a ListMultipartUploads response."""

    uploads: list[UploadSummary]
    prefixes: list[CommonPrefix]
    is_truncated: bool
    next_key_marker: Optional[str] = None
    next_upload_id_marker: Optional[str] = None


@dataclass
class ListUploadsResult:
    """Open uploads and prefixes merged across pages.

    The two markers are set when the listing stopped at the caller's cap
    while more uploads exist; pass them back to resume.
    """

    uploads: list[UploadSummary] = field(default_factory=list)
    prefixes: list[CommonPrefix] = field(default_factory=list)
    next_key_marker: Optional[str] = None
    next_upload_id_marker: Optional[str] = None


@dataclass(frozen=True)
class PartInfo:
    """A part number paired with the ETag the service returned for it."""

    part_number: int
    etag: str
    size: Optional[int] = None
    last_modified: Optional[str] = None


@dataclass
class CompleteResult:
    """Outcome of completing a multipart upload."""

    manifest: list[PartInfo]
    etag: Optional[str] = None
    location: Optional[str] = None
    bucket: Optional[str] = None
    key: Optional[str] = None


@dataclass
class ObjectMeta:
    """Object metadata returned by a HEAD request."""

    headers: dict[str, str]

    @property
    def etag(self) -> Optional[str]:
        etag = self.headers.get("etag")
        return etag.strip('"') if etag else None

    @property
    def content_length(self) -> Optional[int]:
        value = self.headers.get("content-length")
        return int(value) if value is not None else None

    @property
    def content_type(self) -> Optional[str]:
        return self.headers.get("content-type")

    @property
    def user_metadata(self) -> dict[str, str]:
        """Custom ``x-oss-meta-*`` headers with the prefix stripped."""
        prefix = "x-oss-meta-"
        return {
            name[len(prefix):]: value
            for name, value in self.headers.items()
            if name.startswith(prefix)
        }


@dataclass
class UploadOptions:
    """Metadata declared when a multipart upload (or single put) starts."""

    content_type: Optional[str] = None
    acl: Optional[Acl] = None
    storage_class: Optional[StorageClass] = None
    cache_control: Optional[str] = None
    content_disposition: Optional[str] = None
    forbid_overwrite: bool = False
    metadata: dict[str, str] = field(default_factory=dict)
    tags: dict[str, str] = field(default_factory=dict)
