"""Pydantic schemas for session API endpoints."""

from datetime import datetime
from typing import Any
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from merchgen.models.session import STATUS_LABELS, SessionStatus
from merchgen.schemas.brand import ScrapedDataUpdate

MAX_URL_LENGTH = 2048


def normalize_url(url: str) -> str:
    """Strip and validate a submitted website URL.

    Raises:
        ValueError: If the URL is empty, too long, not http(s) or has no host.
    """
    url = url.strip()
    if not url:
        raise ValueError("URL cannot be empty")
    if len(url) > MAX_URL_LENGTH:
        raise ValueError(f"URL too long (max {MAX_URL_LENGTH} characters)")
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValueError("Invalid URL. Must be an http(s) URL with a host")
    return url


class SessionCreateRequest(BaseModel):
    """Schema for creating a session. Omitting email opts out of delivery."""

    email: EmailStr | None = Field(None, description="Contact address")
    url: str = Field(..., max_length=MAX_URL_LENGTH, description="Website URL")

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        return normalize_url(v)


class SessionCreateResponse(BaseModel):
    """Result of session creation."""

    id: str
    status: SessionStatus
    created: bool = Field(..., description="False when an existing session was returned")
    message: str


class SessionPatchRequest(BaseModel):
    """Schema for brand review edits and email changes."""

    scraped_data: ScrapedDataUpdate | None = None
    email: EmailStr | None = None
    send_notification: bool = Field(
        default=False, description="Email a fresh magic link to the session address"
    )


class StageRequest(BaseModel):
    """Body for the concept and motif stage endpoints."""

    regenerate: bool = Field(default=False, description="Diverge from previous output")


class ProductImage(BaseModel):
    """One per-product mockup record."""

    product_id: str
    product_name: str
    image_url: str
    print_zones: list[str] = Field(default_factory=list)
    design_notes: str = ""


class SessionResponse(BaseModel):
    """Schema for session response."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    url: str
    status: SessionStatus
    scraped_data: dict[str, Any] | None = None
    concept: str | None = None
    motif_prompt: str | None = None
    motif_image_url: str | None = None
    product_images: list[ProductImage] | None = None
    error_message: str | None = None
    version: int
    created_at: datetime
    updated_at: datetime

    @property
    def status_label(self) -> str:
        return STATUS_LABELS[self.status]


class StageResponse(BaseModel):
    """Result of a stage invocation."""

    session: SessionResponse
    advanced: bool = Field(..., description="Whether the stage moved the status forward")


class ProcessAcceptedResponse(BaseModel):
    """Acknowledgement that the pipeline was scheduled."""

    session_id: str
    status: SessionStatus
    message: str
