"""Integrations layer - External service clients.

Integrations handle communication with external APIs and services.
They abstract the details of external service protocols.
"""

from merchgen.integrations.brandfetch import (
    BrandData,
    BrandfetchAuthError,
    BrandfetchCircuitOpenError,
    BrandfetchClient,
    BrandfetchError,
    BrandfetchNotFoundError,
    BrandfetchRateLimitError,
    BrandfetchTimeoutError,
    close_brandfetch,
    get_brandfetch,
    init_brandfetch,
)
from merchgen.integrations.email import (
    EmailAuthError,
    EmailCircuitOpenError,
    EmailClient,
    EmailConnectionError,
    EmailError,
    EmailNotConfiguredError,
    EmailResult,
    EmailTimeoutError,
    close_email_client,
    get_email_client,
)
from merchgen.integrations.firecrawl import (
    FirecrawlAuthError,
    FirecrawlCircuitOpenError,
    FirecrawlClient,
    FirecrawlError,
    FirecrawlRateLimitError,
    FirecrawlTimeoutError,
    PageContent,
    close_firecrawl,
    get_firecrawl,
    init_firecrawl,
)
from merchgen.integrations.gemini import (
    GeminiAuthError,
    GeminiCircuitOpenError,
    GeminiClient,
    GeminiEmptyResponseError,
    GeminiError,
    GeminiRateLimitError,
    GeminiTimeoutError,
    GeneratedImage,
    close_gemini,
    get_gemini,
    init_gemini,
)
from merchgen.integrations.s3 import (
    S3AuthError,
    S3CircuitOpenError,
    S3Client,
    S3ConnectionError,
    S3Error,
    S3TimeoutError,
    close_s3,
    get_s3,
    init_s3,
)

__all__ = [
    # Brandfetch
    "BrandData",
    "BrandfetchAuthError",
    "BrandfetchCircuitOpenError",
    "BrandfetchClient",
    "BrandfetchError",
    "BrandfetchNotFoundError",
    "BrandfetchRateLimitError",
    "BrandfetchTimeoutError",
    "close_brandfetch",
    "get_brandfetch",
    "init_brandfetch",
    # Email
    "EmailAuthError",
    "EmailCircuitOpenError",
    "EmailClient",
    "EmailConnectionError",
    "EmailError",
    "EmailNotConfiguredError",
    "EmailResult",
    "EmailTimeoutError",
    "close_email_client",
    "get_email_client",
    # Firecrawl
    "FirecrawlAuthError",
    "FirecrawlCircuitOpenError",
    "FirecrawlClient",
    "FirecrawlError",
    "FirecrawlRateLimitError",
    "FirecrawlTimeoutError",
    "PageContent",
    "close_firecrawl",
    "get_firecrawl",
    "init_firecrawl",
    # Gemini
    "GeminiAuthError",
    "GeminiCircuitOpenError",
    "GeminiClient",
    "GeminiEmptyResponseError",
    "GeminiError",
    "GeminiRateLimitError",
    "GeminiTimeoutError",
    "GeneratedImage",
    "close_gemini",
    "get_gemini",
    "init_gemini",
    # S3
    "S3AuthError",
    "S3CircuitOpenError",
    "S3Client",
    "S3ConnectionError",
    "S3Error",
    "S3TimeoutError",
    "close_s3",
    "get_s3",
    "init_s3",
]
