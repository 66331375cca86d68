"""Tests for request.py module.

Tests request intents, URL construction, header signing and pre-signed URLs.
"""

from urllib.parse import parse_qs, urlsplit

import pytest

from ossclient.auth import canonicalize, sign
from ossclient.body import StreamBody
from ossclient.errors import ValidationError
from ossclient.models import Credential
from ossclient.request import (
    RequestBuilder,
    RequestIntent,
    SECURITY_TOKEN_HEADER,
    url_encode,
)

NOW = 1700000000


@pytest.fixture
def builder() -> RequestBuilder:
    return RequestBuilder("oss-cn-hangzhou.aliyuncs.com")


@pytest.fixture
def credential() -> Credential:
    return Credential("AKID", "secret-key")


class TestRequestIntent:
    """Tests for RequestIntent."""

    def test_method_uppercased(self):
        """Method should be normalized to upper case."""
        assert RequestIntent("get", bucket="b").method == "GET"

    def test_none_param_becomes_bare(self):
        """None parameter values should become empty strings."""
        intent = RequestIntent("POST", bucket="b", key="k", params={"uploads": None})
        assert intent.params == {"uploads": ""}

    def test_pairs_accepted(self):
        """Sequences of pairs should be accepted for params and headers."""
        intent = RequestIntent("GET", bucket="b", params=[("prefix", "a")], headers=[("X", "1")])
        assert intent.params == {"prefix": "a"}
        assert intent.headers == {"X": "1"}

    def test_duplicate_pairs_rejected(self):
        """The same parameter name twice should be rejected."""
        with pytest.raises(ValidationError, match="Duplicate"):
            RequestIntent("GET", bucket="b", params=[("a", "1"), ("a", "2")])

    def test_key_without_bucket_rejected(self):
        """An object key requires a bucket."""
        with pytest.raises(ValidationError):
            RequestIntent("GET", key="orphan")

    def test_with_params_returns_copy(self):
        """with_params should leave the original untouched."""
        intent = RequestIntent("GET", bucket="b")
        updated = intent.with_params({"acl": ""})
        assert intent.params == {}
        assert updated.params == {"acl": ""}

    def test_with_headers_and_body(self):
        """with_headers and with_body should build new intents."""
        intent = RequestIntent("PUT", bucket="b", key="k")
        updated = intent.with_headers({"Content-Type": "text/plain"}).with_body(b"x")
        assert updated.headers == {"Content-Type": "text/plain"}
        assert updated.body == b"x"
        assert intent.body is None

    def test_frozen(self):
        """Intents are immutable."""
        intent = RequestIntent("GET", bucket="b")
        with pytest.raises(AttributeError):
            intent.method = "PUT"


class TestUrlEncode:
    """Tests for url_encode function."""

    def test_encodes_reserved(self):
        """Reserved characters should be percent-encoded."""
        assert url_encode("a b/c+d=") == "a%20b%2Fc%2Bd%3D"

    def test_safe_characters_kept(self):
        """Characters in safe should pass through."""
        assert url_encode("a b/c", safe="/") == "a%20b/c"


class TestRequestBuilderUrl:
    """Tests for RequestBuilder.url."""

    def test_virtual_host_with_key(self, builder: RequestBuilder):
        """Bucket should become a subdomain and the key the path."""
        url = builder.url("bucket", "dir/my file.txt", {})
        assert url == "https://bucket.oss-cn-hangzhou.aliyuncs.com/dir/my%20file.txt"

    def test_service_level(self, builder: RequestBuilder):
        """No bucket should target the bare endpoint."""
        assert builder.url(None, None, {}) == "https://oss-cn-hangzhou.aliyuncs.com/"

    def test_query_sorted_with_bare_names(self, builder: RequestBuilder):
        """Query should be sorted by name with empty values as bare names."""
        url = builder.url("bucket", "k", {"uploadId": "x y", "partNumber": "2", "acl": ""})
        assert url.endswith("/k?acl&partNumber=2&uploadId=x%20y")

    def test_scheme_in_endpoint_overrides(self):
        """An explicit http:// endpoint should select plain HTTP."""
        builder = RequestBuilder("http://localhost:9000/", https=True)
        assert builder.url("b", None, {}) == "http://b.localhost:9000/"

    def test_https_flag(self):
        """https=False should select plain HTTP."""
        assert RequestBuilder("example.com", https=False).scheme == "http"

    def test_empty_endpoint_rejected(self):
        """An empty endpoint should be rejected."""
        with pytest.raises(ValidationError):
            RequestBuilder("https://")


class TestRequestBuilderSign:
    """Tests for RequestBuilder.sign."""

    def test_authorization_header(self, builder: RequestBuilder, credential: Credential):
        """Authorization should carry the id and the signature of the canonical string."""
        intent = RequestIntent("GET", bucket="examplebucket", key="photos/cat.jpg")
        signed = builder.sign(intent, credential, now=NOW)

        assert signed.headers["Date"] == "Tue, 14 Nov 2023 22:13:20 GMT"
        canonical = canonicalize(
            "GET", "examplebucket", "photos/cat.jpg", {}, {}, signed.headers["Date"]
        )
        assert signed.headers["Authorization"] == f"OSS AKID:{sign(canonical, 'secret-key')}"
        assert signed.url == "https://examplebucket.oss-cn-hangzhou.aliyuncs.com/photos/cat.jpg"

    def test_deterministic_for_fixed_time(self, builder: RequestBuilder, credential: Credential):
        """Signing twice at the same instant should give identical headers."""
        intent = RequestIntent("PUT", bucket="b", key="k", headers={"x-oss-meta-a": "1"})
        assert builder.sign(intent, credential, now=NOW).headers == \
            builder.sign(intent, credential, now=NOW).headers

    def test_stale_auth_headers_replaced(self, builder: RequestBuilder, credential: Credential):
        """Caller-supplied Date/Authorization should not survive signing."""
        intent = RequestIntent(
            "GET", bucket="b", key="k",
            headers={"date": "yesterday", "authorization": "OSS x:y"},
        )
        signed = builder.sign(intent, credential, now=NOW)
        assert "date" not in signed.headers
        assert "authorization" not in signed.headers
        assert signed.headers["Authorization"].startswith("OSS AKID:")

    def test_security_token_header(self, builder: RequestBuilder):
        """A session token should be sent as x-oss-security-token."""
        credential = Credential("AKID", "secret-key", security_token="tok")
        signed = builder.sign(RequestIntent("GET", bucket="b"), credential, now=NOW)
        assert signed.headers[SECURITY_TOKEN_HEADER] == "tok"

    def test_content_length_for_bytes(self, builder: RequestBuilder, credential: Credential):
        """Bytes bodies should get an explicit Content-Length."""
        intent = RequestIntent("PUT", bucket="b", key="k", body=b"hello")
        signed = builder.sign(intent, credential, now=NOW)
        assert signed.headers["Content-Length"] == "5"
        assert signed.body == b"hello"

    def test_content_length_for_sized_stream(self, builder: RequestBuilder, credential: Credential):
        """A StreamBody with a known total should get Content-Length."""
        body = StreamBody([b"abc"], total=3)
        signed = builder.sign(RequestIntent("PUT", bucket="b", key="k", body=body), credential, now=NOW)
        assert signed.headers["Content-Length"] == "3"

    def test_unsized_stream_has_no_content_length(
        self, builder: RequestBuilder, credential: Credential
    ):
        """A StreamBody of unknown size goes out chunked."""
        body = StreamBody([b"abc"])
        signed = builder.sign(RequestIntent("PUT", bucket="b", key="k", body=body), credential, now=NOW)
        assert "Content-Length" not in signed.headers


class TestRequestBuilderPresign:
    """Tests for RequestBuilder.presign_url."""

    def test_known_url(self, builder: RequestBuilder, credential: Credential):
        """Should match the independently computed pre-signed URL."""
        intent = RequestIntent("GET", bucket="examplebucket", key="photos/cat.jpg")
        url = builder.presign_url(intent, credential, NOW)
        assert url == (
            "https://examplebucket.oss-cn-hangzhou.aliyuncs.com/photos/cat.jpg"
            "?Expires=1700000000&OSSAccessKeyId=AKID&Signature=zWnviAHVi4dpcidaKwInP9vnwZE%3D"
        )

    def test_security_token_param_is_signed(self, builder: RequestBuilder):
        """A session token should travel as security-token and be signed."""
        with_token = Credential("AKID", "secret-key", security_token="tok")
        intent = RequestIntent("GET", bucket="examplebucket", key="photos/cat.jpg")

        query = parse_qs(urlsplit(builder.presign_url(intent, with_token, NOW)).query)
        plain = parse_qs(
            urlsplit(builder.presign_url(intent, Credential("AKID", "secret-key"), NOW)).query
        )

        assert query["security-token"] == ["tok"]
        assert query["Signature"] != plain["Signature"]

    def test_response_override_signed(self, builder: RequestBuilder, credential: Credential):
        """Response overrides should be included in the URL and the signature."""
        base = RequestIntent("GET", bucket="b", key="k")
        override = base.with_params({"response-content-type": "text/plain"})

        url = builder.presign_url(override, credential, NOW)
        assert "response-content-type=text%2Fplain" in url
        assert parse_qs(urlsplit(url).query)["Signature"] != \
            parse_qs(urlsplit(builder.presign_url(base, credential, NOW)).query)["Signature"]

    def test_no_headers_added(self, builder: RequestBuilder, credential: Credential):
        """Pre-signing should not mutate the intent."""
        intent = RequestIntent("PUT", bucket="b", key="k")
        builder.presign_url(intent, credential, NOW)
        assert intent.params == {}
        assert intent.headers == {}
