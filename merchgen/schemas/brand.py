"""Pydantic schemas for scraped brand data.

ScrapedData is stored as JSON on the session. It is filled by the scrape
stage, enriched by the brand analyzer and edited by the user during review.
"""

import re
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

HEX_COLOR_PATTERN = re.compile(r"^#[0-9A-Fa-f]{6}$")

MIN_COLORS = 2
MAX_COLORS = 5

# Required before the pipeline may leave brand-data review
REQUIRED_FIELDS = ("logo", "colors")


def is_valid_hex_color(color: Any) -> bool:
    """Check a single '#RRGGBB' color string."""
    return isinstance(color, str) and bool(HEX_COLOR_PATTERN.match(color))


def validate_colors(colors: list[Any]) -> list[str]:
    """Validate a user-submitted color list.

    Args:
        colors: Candidate '#RRGGBB' strings.

    Returns:
        The colors normalized to upper case.

    Raises:
        ValueError: If any color is malformed or the count is outside
            MIN_COLORS..MAX_COLORS.
    """
    invalid = [c for c in colors if not is_valid_hex_color(c)]
    if invalid:
        raise ValueError(f"Invalid hex color(s): {', '.join(map(str, invalid))}")
    if len(colors) < MIN_COLORS:
        raise ValueError(f"At least {MIN_COLORS} colors are required")
    if len(colors) > MAX_COLORS:
        raise ValueError(f"At most {MAX_COLORS} colors are allowed")
    return [c.upper() for c in colors]


def filter_colors(colors: list[Any]) -> list[str]:
    """Keep the valid colors from an untrusted source, upper-cased, at most MAX_COLORS."""
    return [c.upper() for c in colors if is_valid_hex_color(c)][:MAX_COLORS]


def compute_missing_fields(data: dict[str, Any]) -> list[str]:
    """Required fields the user still has to supply."""
    missing: list[str] = []
    if not data.get("logo"):
        missing.append("logo")
    colors = data.get("colors") or []
    if len([c for c in colors if is_valid_hex_color(c)]) < MIN_COLORS:
        missing.append("colors")
    return missing


def with_review_flags(data: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of `data` with missing_fields and requires_manual_input recomputed."""
    missing = compute_missing_fields(data)
    return {**data, "missing_fields": missing, "requires_manual_input": bool(missing)}


class ScrapedData(BaseModel):
    """Brand attributes collected for a session."""

    model_config = ConfigDict(extra="allow")

    # Core identity
    title: str = Field(default="Unknown Brand")
    description: str = Field(default="")
    logo: str | None = Field(None, description="Logo image URL")
    colors: list[str] = Field(default_factory=list)
    fonts: list[str] = Field(default_factory=list)
    headings: list[str] = Field(default_factory=list)
    content: str = Field(default="")
    tagline: str | None = None

    # Visual style
    style: str | None = None
    imagery_style: str | None = None
    iconography_style: str | None = None
    logo_description: str | None = None

    # Voice and messaging
    tone: str | None = None
    sentiment: str | None = None
    themes: list[str] = Field(default_factory=list)
    brand_keywords: list[str] = Field(default_factory=list)
    seo_keywords: list[str] = Field(default_factory=list)

    # Audience and market
    target_audience: str | None = None
    industry: str | None = None
    cta_examples: list[str] = Field(default_factory=list)
    social_platforms: list[str] = Field(default_factory=list)
    company_story: str | None = None

    # Workflow flags
    requires_manual_input: bool = False
    missing_fields: list[str] = Field(default_factory=list)


class ScrapedDataUpdate(BaseModel):
    """Partial scraped-data edit submitted during brand review.

    Colors are validated by the session service so that a bad list is a
    400 with no mutation rather than a request-shape error.
    """

    model_config = ConfigDict(extra="ignore")

    title: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = None
    logo: str | None = Field(None, max_length=2048)
    colors: list[str] | None = None
    fonts: list[str] | None = None
    tagline: str | None = None
    style: str | None = None
    tone: str | None = None
    target_audience: str | None = None
    industry: str | None = None
