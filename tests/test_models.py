"""Tests for data models."""

import pytest

from ossclient.errors import ValidationError
from ossclient.models import (
    Acl,
    Credential,
    ObjectMeta,
    StorageClass,
    UploadOptions,
    UploadState,
)


class TestEnums:
    """Tests for enum values sent on the wire."""

    def test_acl_values(self):
        """Verify ACL values match the service's spelling."""
        assert Acl.PRIVATE.value == "private"
        assert Acl.PUBLIC_READ.value == "public-read"
        assert Acl.PUBLIC_READ_WRITE.value == "public-read-write"

    def test_storage_class_values(self):
        """Verify storage class values match the service's spelling."""
        assert StorageClass.STANDARD.value == "Standard"
        assert StorageClass.COLD_ARCHIVE.value == "ColdArchive"

    def test_terminal_states(self):
        """Only completed and aborted uploads are terminal."""
        assert UploadState.COMPLETED.is_terminal
        assert UploadState.ABORTED.is_terminal
        assert not UploadState.NEW.is_terminal
        assert not UploadState.INITIATED.is_terminal
        assert not UploadState.UPLOADING.is_terminal


class TestCredential:
    """Tests for Credential dataclass."""

    def test_create(self):
        """Create a credential with a session token."""
        credential = Credential("AKID", "secret", security_token="tok")
        assert credential.access_key_id == "AKID"
        assert credential.security_token == "tok"

    def test_secret_not_in_repr(self):
        """The secret and token should not leak through repr."""
        text = repr(Credential("AKID", "super-secret", security_token="tok"))
        assert "super-secret" not in text
        assert "tok" not in text

    def test_empty_id_rejected(self):
        """An empty access key id should be rejected."""
        with pytest.raises(ValidationError):
            Credential("", "secret")

    def test_empty_secret_rejected(self):
        """An empty secret should be rejected."""
        with pytest.raises(ValidationError):
            Credential("AKID", "")


class TestObjectMeta:
    """Tests for ObjectMeta properties."""

    def test_properties(self):
        """Properties should read the lowercased headers."""
        meta = ObjectMeta(headers={
            "etag": '"abc"',
            "content-length": "42",
            "content-type": "text/plain",
            "x-oss-meta-author": "me",
            "x-oss-meta-team": "storage",
        })
        assert meta.etag == "abc"
        assert meta.content_length == 42
        assert meta.content_type == "text/plain"
        assert meta.user_metadata == {"author": "me", "team": "storage"}

    def test_missing_headers(self):
        """Absent headers should read as None or empty."""
        meta = ObjectMeta(headers={})
        assert meta.etag is None
        assert meta.content_length is None
        assert meta.user_metadata == {}


class TestUploadOptions:
    """Tests for UploadOptions defaults."""

    def test_defaults(self):
        """Defaults should declare nothing."""
        options = UploadOptions()
        assert options.content_type is None
        assert options.forbid_overwrite is False
        assert options.metadata == {}
        assert options.tags == {}
