"""Schemas layer - Pydantic models for API validation.

Schemas define the shape of data for API requests and responses.
They handle validation, serialization, and documentation.
"""

from merchgen.schemas.brand import (
    MAX_COLORS,
    MIN_COLORS,
    ScrapedData,
    ScrapedDataUpdate,
    compute_missing_fields,
    filter_colors,
    validate_colors,
    with_review_flags,
)
from merchgen.schemas.session import (
    ProcessAcceptedResponse,
    ProductImage,
    SessionCreateRequest,
    SessionCreateResponse,
    SessionPatchRequest,
    SessionResponse,
    StageRequest,
    StageResponse,
    normalize_url,
)
from merchgen.schemas.recovery import RecoverySweepResponse

__all__ = [
    "MAX_COLORS",
    "MIN_COLORS",
    "ProductImage",
    "ProcessAcceptedResponse",
    "RecoverySweepResponse",
    "ScrapedData",
    "ScrapedDataUpdate",
    "SessionCreateRequest",
    "SessionCreateResponse",
    "SessionPatchRequest",
    "SessionResponse",
    "StageRequest",
    "StageResponse",
    "compute_missing_fields",
    "filter_colors",
    "normalize_url",
    "validate_colors",
    "with_review_flags",
]
