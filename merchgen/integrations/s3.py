"""S3-compatible object storage for generated motif artwork.

Objects are written once under unique keys and served from a public URL
(CDN prefix, custom endpoint, or the bucket's AWS hostname). boto3 is
blocking, so each call runs in the default executor behind a circuit
breaker. There is a single attempt per call; the pipeline wraps uploads in
retry_with_backoff and falls back to a placeholder image.

ERROR LOGGING REQUIREMENTS:
- Log every S3 call with key, bucket and timing
- Map timeouts, auth failures and connection errors to typed exceptions
- Never log access keys
- Log circuit breaker state changes
"""

import asyncio
import time
from collections.abc import Callable
from typing import Any

import boto3
from botocore.config import Config as BotoConfig  # type: ignore[import-not-found]
from botocore.exceptions import (  # type: ignore[import-not-found]
    BotoCoreError,
    ClientError,
    ConnectionError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from merchgen.core.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from merchgen.core.config import get_settings
from merchgen.core.logging import get_logger

logger = get_logger(__name__)

AUTH_ERROR_CODES = frozenset(
    {"AccessDenied", "InvalidAccessKeyId", "SignatureDoesNotMatch"}
)

# Motif keys are unique per upload, so the objects never change
IMMUTABLE_CACHE_CONTROL = "public, max-age=31536000, immutable"


class S3Error(Exception):
    """Base exception for S3 errors."""

    def __init__(
        self,
        message: str,
        operation: str | None = None,
        key: str | None = None,
    ) -> None:
        super().__init__(message)
        self.operation = operation
        self.key = key


class S3TimeoutError(S3Error):
    pass


class S3ConnectionError(S3Error):
    pass


class S3AuthError(S3Error):
    pass


class S3CircuitOpenError(S3Error):
    pass


def motif_key(session_id: str, extension: str, timestamp_ms: int | None = None) -> str:
    """Object key for a session's motif: ``motifs/{id}/{ms}-motif.{ext}``."""
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    return f"motifs/{session_id}/{timestamp_ms}-motif.{extension}"


def translate_error(error: Exception, operation: str, key: str | None) -> S3Error:
    """Map a botocore exception onto the S3Error hierarchy."""
    if isinstance(error, ClientError):
        details = error.response.get("Error", {})
        code = details.get("Code", "Unknown")
        message = details.get("Message", str(error))
        if code in AUTH_ERROR_CODES:
            return S3AuthError(f"Authentication failed: {message}", operation, key)
        return S3Error(f"S3 error ({code}): {message}", operation, key)
    if isinstance(error, ReadTimeoutError):
        return S3TimeoutError(f"Timed out: {error}", operation, key)
    if isinstance(error, (EndpointConnectionError, ConnectionError)):
        return S3ConnectionError(f"Connection failed: {error}", operation, key)
    return S3Error(f"S3 error: {error}", operation, key)


class S3Client:
    """Uploads generated images and builds their public URLs."""

    def __init__(
        self,
        bucket: str | None = None,
        endpoint_url: str | None = None,
        access_key: str | None = None,
        secret_key: str | None = None,
        region: str | None = None,
        public_base_url: str | None = None,
        timeout: float | None = None,
    ) -> None:
        """Arguments default to the S3_* settings; ``endpoint_url`` targets LocalStack or R2."""
        settings = get_settings()

        self._bucket = bucket or settings.s3_bucket
        self._endpoint_url = endpoint_url or settings.s3_endpoint_url
        self._access_key = access_key or settings.s3_access_key
        self._secret_key = secret_key or settings.s3_secret_key
        self._region = region or settings.s3_region
        self._public_base_url = public_base_url or settings.s3_public_base_url
        self._timeout = timeout or settings.s3_timeout

        self._circuit_breaker = CircuitBreaker(
            CircuitBreakerConfig(
                failure_threshold=settings.s3_circuit_failure_threshold,
                recovery_timeout=settings.s3_circuit_recovery_timeout,
            ),
            name="s3",
        )

        self._client: Any = None
        self._available = bool(self._bucket and self._access_key and self._secret_key)

    @property
    def available(self) -> bool:
        return self._available

    @property
    def bucket(self) -> str | None:
        return self._bucket

    @property
    def circuit_breaker(self) -> CircuitBreaker:
        return self._circuit_breaker

    def _get_client(self) -> Any:
        if self._client is None:
            self._client = boto3.client(
                "s3",
                aws_access_key_id=self._access_key,
                aws_secret_access_key=self._secret_key,
                region_name=self._region,
                endpoint_url=self._endpoint_url or None,
                config=BotoConfig(
                    connect_timeout=self._timeout,
                    read_timeout=self._timeout,
                    # No botocore retries; the pipeline owns retry policy
                    retries={"max_attempts": 0},
                ),
            )
        return self._client

    def public_url(self, key: str) -> str:
        if self._public_base_url:
            return f"{self._public_base_url.rstrip('/')}/{key}"
        if self._endpoint_url:
            return f"{self._endpoint_url.rstrip('/')}/{self._bucket}/{key}"
        return f"https://{self._bucket}.s3.{self._region}.amazonaws.com/{key}"

    async def _execute(self, operation: str, key: str, func: Callable[[], Any]) -> Any:
        """Run one blocking call behind the circuit breaker.

        Raises:
            S3Error: Not configured, or any botocore failure (see translate_error)
            S3CircuitOpenError: If circuit breaker is open
        """
        log_extra = {"s3_operation": operation, "s3_key": key, "s3_bucket": self._bucket}

        if not self._available:
            raise S3Error(
                "S3 not configured (missing bucket, access_key, or secret_key)",
                operation=operation,
                key=key,
            )
        if not await self._circuit_breaker.can_execute():
            logger.warning("S3 call blocked by circuit breaker", extra=log_extra)
            raise S3CircuitOpenError("Circuit breaker is open", operation, key)

        start_time = time.monotonic()
        try:
            result = await asyncio.get_running_loop().run_in_executor(None, func)
        except (ClientError, BotoCoreError) as e:
            await self._circuit_breaker.record_failure()
            error = translate_error(e, operation, key)
            logger.error(
                f"S3 {operation} failed",
                extra={
                    **log_extra,
                    "duration_ms": round((time.monotonic() - start_time) * 1000, 2),
                    "error_type": type(error).__name__,
                    "error_message": str(error),
                },
            )
            raise error from e

        await self._circuit_breaker.record_success()
        logger.info(
            f"S3 {operation} completed",
            extra={
                **log_extra,
                "duration_ms": round((time.monotonic() - start_time) * 1000, 2),
            },
        )
        return result

    async def upload_bytes(
        self,
        key: str,
        data: bytes,
        content_type: str = "application/octet-stream",
        cache_control: str | None = None,
    ) -> str:
        """Store ``data`` under ``key`` and return its public URL."""
        params: dict[str, Any] = {
            "Bucket": self._bucket,
            "Key": key,
            "Body": data,
            "ContentType": content_type,
        }
        if cache_control:
            params["CacheControl"] = cache_control

        client = self._get_client()
        await self._execute("upload_bytes", key, lambda: client.put_object(**params))
        return self.public_url(key)

    async def upload_motif(
        self, session_id: str, data: bytes, mime_type: str, extension: str
    ) -> str:
        """Store a session's motif artwork under a fresh key."""
        return await self.upload_bytes(
            motif_key(session_id, extension),
            data,
            content_type=mime_type,
            cache_control=IMMUTABLE_CACHE_CONTROL,
        )


s3_client: S3Client | None = None


async def init_s3() -> S3Client:
    global s3_client
    if s3_client is None:
        s3_client = S3Client()
        logger.info(
            "S3 client initialized" if s3_client.available else "S3 not configured",
            extra={"s3_bucket": s3_client.bucket},
        )
    return s3_client


async def close_s3() -> None:
    # boto3 clients hold no sockets that need closing
    global s3_client
    s3_client = None


async def get_s3() -> S3Client:
    """Dependency for getting the S3 client."""
    if s3_client is None:
        return await init_s3()
    return s3_client
