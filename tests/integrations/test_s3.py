"""Unit tests for S3 integration client.

Tests cover:
- upload_bytes() stores the object and returns its public URL
- Public URL construction for CDN, endpoint and AWS styles
- Error mapping for ClientError, timeouts and connection failures
- Circuit breaker state transitions on S3 failures
- Unconfigured client raises without calling boto3

Uses unittest.mock for mocking boto3 client.
"""

from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from merchgen.core.circuit_breaker import CircuitState
from merchgen.integrations.s3 import (
    IMMUTABLE_CACHE_CONTROL,
    S3AuthError,
    S3CircuitOpenError,
    S3Client,
    S3ConnectionError,
    S3Error,
    S3TimeoutError,
    motif_key,
    translate_error,
)

# ---------------------------------------------------------------------------
# Test Data Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_settings() -> MagicMock:
    """Create mock settings for S3 client."""
    settings = MagicMock()
    settings.s3_bucket = "test-bucket"
    settings.s3_endpoint_url = None
    settings.s3_access_key = "test-access-key"
    settings.s3_secret_key = "test-secret-key"
    settings.s3_region = "us-east-1"
    settings.s3_public_base_url = None
    settings.s3_timeout = 5.0
    settings.s3_circuit_failure_threshold = 2
    settings.s3_circuit_recovery_timeout = 60.0
    return settings


@pytest.fixture
def mock_boto_client() -> MagicMock:
    """Create a mock boto3 S3 client."""
    return MagicMock()


@pytest.fixture
def s3_client(mock_settings: MagicMock, mock_boto_client: MagicMock) -> S3Client:
    """Create an S3Client whose boto3 client is mocked."""
    with patch("merchgen.integrations.s3.get_settings", return_value=mock_settings):
        client = S3Client()
    client._client = mock_boto_client
    return client


def make_client_error(code: str, message: str = "Test error") -> ClientError:
    """Create a botocore ClientError with specified error code."""
    return ClientError({"Error": {"Code": code, "Message": message}}, "PutObject")


# ---------------------------------------------------------------------------
# Initialization and URLs
# ---------------------------------------------------------------------------


class TestS3ClientInit:
    def test_available_when_configured(self, s3_client: S3Client) -> None:
        assert s3_client.available is True
        assert s3_client.bucket == "test-bucket"
        assert s3_client.circuit_breaker.state == CircuitState.CLOSED

    def test_unavailable_without_credentials(self, mock_settings: MagicMock) -> None:
        mock_settings.s3_secret_key = None

        with patch("merchgen.integrations.s3.get_settings", return_value=mock_settings):
            client = S3Client()

        assert client.available is False


class TestPublicUrl:
    def test_aws_style(self, s3_client: S3Client) -> None:
        assert s3_client.public_url("motifs/a.png") == (
            "https://test-bucket.s3.us-east-1.amazonaws.com/motifs/a.png"
        )

    def test_endpoint_style(self, mock_settings: MagicMock) -> None:
        mock_settings.s3_endpoint_url = "http://localhost:4566/"

        with patch("merchgen.integrations.s3.get_settings", return_value=mock_settings):
            client = S3Client()

        assert client.public_url("k.png") == "http://localhost:4566/test-bucket/k.png"

    def test_public_base_url_wins(self, mock_settings: MagicMock) -> None:
        mock_settings.s3_endpoint_url = "http://localhost:4566"

        with patch("merchgen.integrations.s3.get_settings", return_value=mock_settings):
            client = S3Client(public_base_url="https://cdn.example.com/")

        assert client.public_url("k.png") == "https://cdn.example.com/k.png"


# ---------------------------------------------------------------------------
# upload_bytes
# ---------------------------------------------------------------------------


class TestUploadBytes:
    """Tests for upload_bytes()."""

    async def test_uploads_and_returns_url(
        self, s3_client: S3Client, mock_boto_client: MagicMock
    ) -> None:
        url = await s3_client.upload_bytes("motifs/s1/1-motif.png", b"\x89PNG", "image/png")

        assert url.endswith("/motifs/s1/1-motif.png")
        mock_boto_client.put_object.assert_called_once_with(
            Bucket="test-bucket",
            Key="motifs/s1/1-motif.png",
            Body=b"\x89PNG",
            ContentType="image/png",
        )

    async def test_unconfigured_raises_without_calling_boto(
        self, s3_client: S3Client, mock_boto_client: MagicMock
    ) -> None:
        s3_client._available = False

        with pytest.raises(S3Error, match="not configured"):
            await s3_client.upload_bytes("k", b"x")

        mock_boto_client.put_object.assert_not_called()

    @pytest.mark.parametrize(
        "error,expected",
        [
            (make_client_error("AccessDenied"), S3AuthError),
            (make_client_error("NoSuchBucket"), S3Error),
            (ReadTimeoutError(endpoint_url="http://s3"), S3TimeoutError),
            (EndpointConnectionError(endpoint_url="http://s3"), S3ConnectionError),
        ],
    )
    async def test_error_mapping(
        self,
        s3_client: S3Client,
        mock_boto_client: MagicMock,
        error: Exception,
        expected: type[S3Error],
    ) -> None:
        mock_boto_client.put_object.side_effect = error

        with pytest.raises(expected) as exc_info:
            await s3_client.upload_bytes("k.png", b"x")

        assert exc_info.value.operation == "upload_bytes"
        assert exc_info.value.key == "k.png"


# ---------------------------------------------------------------------------
# Circuit breaker
# ---------------------------------------------------------------------------


class TestS3CircuitBreaker:
    async def test_opens_after_threshold_and_blocks(
        self, s3_client: S3Client, mock_boto_client: MagicMock
    ) -> None:
        mock_boto_client.put_object.side_effect = make_client_error("InternalError")

        for _ in range(2):
            with pytest.raises(S3Error):
                await s3_client.upload_bytes("k", b"x")

        assert s3_client.circuit_breaker.state == CircuitState.OPEN
        mock_boto_client.put_object.reset_mock()

        with pytest.raises(S3CircuitOpenError):
            await s3_client.upload_bytes("k", b"x")
        mock_boto_client.put_object.assert_not_called()

    async def test_success_resets_failures(
        self, s3_client: S3Client, mock_boto_client: MagicMock
    ) -> None:
        mock_boto_client.put_object.side_effect = [make_client_error("InternalError"), None]

        with pytest.raises(S3Error):
            await s3_client.upload_bytes("k", b"x")
        await s3_client.upload_bytes("k", b"x")

        assert s3_client.circuit_breaker.failure_count == 0


# ---------------------------------------------------------------------------
# Motif uploads
# ---------------------------------------------------------------------------


class TestMotifUpload:
    def test_motif_key(self) -> None:
        assert motif_key("s1", "webp", 1700000000000) == "motifs/s1/1700000000000-motif.webp"

    async def test_upload_motif_sets_immutable_cache(
        self, s3_client: S3Client, mock_boto_client: MagicMock
    ) -> None:
        url = await s3_client.upload_motif("s1", b"\x89PNG", "image/png", "png")

        params = mock_boto_client.put_object.call_args.kwargs
        assert params["Key"].startswith("motifs/s1/")
        assert params["Key"].endswith("-motif.png")
        assert params["ContentType"] == "image/png"
        assert params["CacheControl"] == IMMUTABLE_CACHE_CONTROL
        assert url == s3_client.public_url(params["Key"])


class TestTranslateError:
    def test_unknown_botocore_error_is_generic(self) -> None:
        error = translate_error(BotoCoreError(), "upload_bytes", "k")

        assert type(error) is S3Error
        assert error.key == "k"

    def test_signature_mismatch_is_auth(self) -> None:
        error = translate_error(make_client_error("SignatureDoesNotMatch"), "upload_bytes", "k")

        assert isinstance(error, S3AuthError)
