"""AI brand enhancement for scraped brand data.

Sends the scraped title, description, headings and a content sample to the
text model and merges the returned qualitative attributes (tagline, style,
tone, keywords, audience, ...) into the scraped data.

analyze() raises on any failure so the caller can retry. fallback_enhance()
fills the qualitative attributes with neutral defaults without overwriting
anything already present.

ERROR LOGGING REQUIREMENTS:
- Log method entry/exit at DEBUG level with parameters (sanitized)
- Log all exceptions with full stack trace and context
- Log JSON parse failures with a response preview
- Add timing logs for operations >1 second
"""

import json
import time
from typing import Any

from merchgen.core.logging import gemini_logger, get_logger
from merchgen.integrations.gemini import GeminiClient
from merchgen.services.prompts import BRAND_ANALYSIS, PromptService

logger = get_logger(__name__)

SLOW_OPERATION_THRESHOLD_MS = 1000
MAX_HEADINGS = 5
MAX_CONTENT_CHARS = 2000

# Keys the analyzer may contribute to scraped data
ANALYSIS_FIELDS = (
    "tagline",
    "style",
    "tone",
    "imagery_style",
    "brand_keywords",
    "seo_keywords",
    "iconography_style",
    "logo_description",
    "target_audience",
    "cta_examples",
    "social_platforms",
    "company_story",
    "sentiment",
    "themes",
    "industry",
)

FALLBACK_ANALYSIS: dict[str, Any] = {
    "style": "Modern",
    "tone": "Professional",
    "imagery_style": "Minimalist vector",
    "brand_keywords": [],
    "seo_keywords": [],
    "iconography_style": "Line art",
    "target_audience": "General audience",
    "cta_examples": ["Learn More", "Get Started", "Contact Us"],
    "social_platforms": ["LinkedIn", "Twitter", "Facebook"],
    "sentiment": "Positive",
    "themes": [],
    "industry": "Unknown",
}


class BrandAnalysisError(Exception):
    """Raised when the model response cannot be used as brand attributes."""

    def __init__(self, message: str, response_text: str | None = None) -> None:
        super().__init__(message)
        self.response_text = response_text


def strip_code_fences(text: str) -> str:
    """Remove a surrounding ```json ... ``` (or bare ```) block."""
    json_text = text.strip()
    if json_text.startswith("```"):
        lines = json_text.split("\n")
        lines = lines[1:]
        if lines and lines[-1].strip() == "```":
            lines = lines[:-1]
        json_text = "\n".join(lines).strip()
    return json_text


def parse_analysis(response_text: str) -> dict[str, Any]:
    """Parse the model's JSON object, keeping only known non-empty attributes.

    Raises:
        BrandAnalysisError: If the text is not a JSON object
    """
    try:
        parsed = json.loads(strip_code_fences(response_text))
    except json.JSONDecodeError as e:
        raise BrandAnalysisError(
            f"Brand analysis is not valid JSON: {e}", response_text
        ) from e
    if not isinstance(parsed, dict):
        raise BrandAnalysisError("Brand analysis is not a JSON object", response_text)

    return {
        key: parsed[key]
        for key in ANALYSIS_FIELDS
        if parsed.get(key) not in (None, "", [])
    }


def fallback_enhance(data: dict[str, Any]) -> dict[str, Any]:
    """Fill missing qualitative attributes with neutral defaults."""
    enhanced = dict(data)
    for key, value in FALLBACK_ANALYSIS.items():
        if enhanced.get(key) in (None, "", []):
            enhanced[key] = list(value) if isinstance(value, list) else value
    return enhanced


class BrandAnalyzer:
    """Enriches scraped brand data using the text model."""

    def __init__(self, gemini: GeminiClient, prompts: PromptService) -> None:
        self._gemini = gemini
        self._prompts = prompts

    async def analyze(self, data: dict[str, Any]) -> dict[str, Any]:
        """Ask the model for brand attributes.

        Returns:
            The parsed attributes (subset of ANALYSIS_FIELDS)

        Raises:
            GeminiError: On model failure
            BrandAnalysisError: If the response is not a JSON object
        """
        start_time = time.monotonic()
        headings = data.get("headings") or []
        prompt = await self._prompts.render(
            BRAND_ANALYSIS,
            {
                "title": data.get("title") or "",
                "description": data.get("description") or "",
                "headings": ", ".join(headings[:MAX_HEADINGS]),
                "content": (data.get("content") or "")[:MAX_CONTENT_CHARS],
            },
        )
        logger.debug(
            "Analyzing brand",
            extra={"title": data.get("title"), "prompt_length": len(prompt)},
        )

        response_text = await self._gemini.generate_text(
            prompt, operation="brand_analysis", temperature=0.7
        )
        try:
            analysis = parse_analysis(response_text)
        except BrandAnalysisError:
            logger.warning(
                "Brand analysis response could not be parsed",
                extra={"response_preview": response_text[:200]},
            )
            raise

        duration_ms = (time.monotonic() - start_time) * 1000
        logger.debug(
            "Brand analysis completed",
            extra={"fields": sorted(analysis), "duration_ms": round(duration_ms, 2)},
        )
        if duration_ms > SLOW_OPERATION_THRESHOLD_MS:
            logger.warning(
                "Slow brand analysis",
                extra={"duration_ms": round(duration_ms, 2)},
            )
        return analysis

    async def enhance(self, data: dict[str, Any]) -> dict[str, Any]:
        """Return `data` merged with model attributes. Scraped values are kept
        where the model returned nothing for a field.

        Raises:
            GeminiError, BrandAnalysisError: See analyze()
        """
        analysis = await self.analyze(data)
        return {**data, **analysis}

    @staticmethod
    def fallback(data: dict[str, Any], reason: str) -> dict[str, Any]:
        """Unenhanced data with neutral defaults for the analysis fields."""
        gemini_logger.graceful_fallback("brand_analysis", reason)
        return fallback_enhance(data)
