"""Prompt template access with an explicit TTL cache.

Lookup order for a key: cache, then the active database row, then the
built-in default. Writes through PromptService invalidate the cached entry,
so an update is visible on the next read rather than after the TTL.

Templates use {{variable}} slots. Unknown slots render as empty strings.
"""

import re
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from merchgen.core.logging import get_logger
from merchgen.repositories.prompt import PromptRepository

logger = get_logger(__name__)

DEFAULT_CACHE_TTL_SECONDS = 300.0

_SLOT_PATTERN = re.compile(r"\{\{\s*(\w+)\s*\}\}")


class PromptNotFoundError(Exception):
    """Raised when a prompt key has neither a stored row nor a default."""

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"No prompt template found for key: {key}")


@dataclass(frozen=True)
class PromptDefinition:
    """Built-in prompt template."""

    key: str
    name: str
    description: str
    template: str
    variables: tuple[str, ...]
    category: str = "generation"


@dataclass(frozen=True)
class PromptTemplate:
    """Resolved template for a key."""

    key: str
    template: str
    source: str  # "database" or "default"


class PromptCache:
    """TTL cache for resolved prompt templates.

    Entries expire on read once ``clock() - stored_at >= ttl_seconds``.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[PromptTemplate, float]] = {}

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def get(self, key: str) -> PromptTemplate | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, stored_at = entry
        if self._clock() - stored_at >= self._ttl:
            del self._entries[key]
            return None
        return value

    def set(self, key: str, value: PromptTemplate) -> None:
        self._entries[key] = (value, self._clock())

    def invalidate(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


_prompt_cache = PromptCache()


def get_prompt_cache() -> PromptCache:
    """Process-wide prompt cache."""
    return _prompt_cache


def render_template(template: str, variables: Mapping[str, Any]) -> str:
    """Substitute {{name}} slots; missing or None values become ''."""

    def replace(match: re.Match[str]) -> str:
        value = variables.get(match.group(1))
        return "" if value is None else str(value)

    return _SLOT_PATTERN.sub(replace, template)


CONCEPT_GENERATION = "concept_generation"
MOTIF_PROMPT_GENERATION = "motif_prompt_generation"
PRODUCT_VARIATION = "product_variation"
BRAND_ANALYSIS = "brand_analysis"

DEFAULT_PROMPTS: dict[str, PromptDefinition] = {
    CONCEPT_GENERATION: PromptDefinition(
        key=CONCEPT_GENERATION,
        name="Concept Generation",
        description="Creates the merchandise concept from brand data",
        variables=(
            "brandName",
            "description",
            "colors",
            "fonts",
            "headings",
            "regenerateInstruction",
        ),
        template="""You are a creative brand merchandise designer. Based on the following brand information, create a compelling merchandise concept that captures the brand's essence.

Brand Information:
- Brand Name: {{brandName}}
- Description: {{description}}
- Primary Colors: {{colors}}
- Typography Style: {{fonts}}
- Key Content Themes: {{headings}}

Create a short, focused merchandise concept (2-3 sentences) that:
1. Reflects the brand's visual identity and messaging
2. Works well across multiple product types (t-shirts, hoodies, mugs, etc.)
3. Is simple enough to be printed/embroidered
4. Has broad appeal to the target audience

Be specific about visual elements, color usage, and composition style.{{regenerateInstruction}}""",
    ),
    MOTIF_PROMPT_GENERATION: PromptDefinition(
        key=MOTIF_PROMPT_GENERATION,
        name="Motif Prompt Generation",
        description="Turns the concept into an image generation prompt",
        variables=(
            "concept",
            "colors",
            "productName",
            "printZones",
            "maxColors",
            "constraints",
            "regenerateInstruction",
        ),
        template="""You are a graphic designer creating a print-ready motif for merchandise. Based on the concept below, generate a detailed image generation prompt.

Merchandise Concept:
{{concept}}

Brand Colors: {{colors}}
Product Type: {{productName}}
Print Zones: {{printZones}}
Max Colors: {{maxColors}}
Constraints: {{constraints}}

Create a detailed image generation prompt (1-2 sentences) that:
1. Describes the visual motif clearly and specifically
2. Specifies composition, style, and visual elements
3. Respects the color and print zone constraints
4. Avoids text/typography (unless explicitly part of the concept)
5. Is suitable for {{productName}} merchandise

Return ONLY the image generation prompt, nothing else.{{regenerateInstruction}}""",
    ),
    PRODUCT_VARIATION: PromptDefinition(
        key=PRODUCT_VARIATION,
        name="Product Variation",
        description="Per-product design guidance for mockups",
        variables=(
            "concept",
            "productName",
            "printZones",
            "maxColors",
            "constraints",
            "recommendedElements",
            "colors",
        ),
        template="""Adapt this merchandise concept for a specific product:

Base Concept: {{concept}}

Product Details:
- Name: {{productName}}
- Print Zones: {{printZones}}
- Max Colors: {{maxColors}}
- Constraints: {{constraints}}
- Recommended Elements: {{recommendedElements}}

Brand Colors: {{colors}}

Provide specific guidance (2-3 sentences) on how to adapt the concept for this product, considering:
1. Print zone placement and sizing
2. Color usage within limits
3. Design elements that work best for this product type
4. Any product-specific constraints

Be concise and actionable.""",
    ),
    BRAND_ANALYSIS: PromptDefinition(
        key=BRAND_ANALYSIS,
        name="Brand Analysis",
        description="Extracts qualitative brand attributes as JSON",
        category="analysis",
        variables=("title", "description", "headings", "content"),
        template="""You are a professional brand strategist analyzing a company website to extract key brand attributes.

Website Information:
- Title: {{title}}
- Description: {{description}}
- Key Headings: {{headings}}
- Content Sample: {{content}}

Please analyze this website and extract the following brand attributes. Return ONLY a valid JSON object with these exact keys:

{
  "tagline": "The company's tagline or slogan (if found, otherwise create a fitting one based on their messaging)",
  "style": "Visual/Design style (Modern, Minimalist, Bold, Classic, Playful, Elegant, Industrial, Organic, etc.)",
  "tone": "Brand voice tone (Friendly, Professional, Casual, Authoritative, Inspirational, Humorous, Empathetic, etc.)",
  "imagery_style": "Preferred imagery style (Minimalist vector, Photorealistic, Hand-drawn, Abstract, Geometric, Lifestyle, Product-focused, etc.)",
  "brand_keywords": ["3-5 keywords that describe the brand essence"],
  "seo_keywords": ["5-7 SEO keywords relevant to their business"],
  "iconography_style": "Icon style preference (Line art, Solid fill, Outline, Duotone, Flat, Material, etc.)",
  "logo_description": "Brief description of what the logo might represent or what style it likely has based on brand",
  "target_audience": "Primary target audience description",
  "cta_examples": ["2-3 call-to-action examples found or appropriate for this brand"],
  "social_platforms": ["Social media platforms they use or should use"],
  "company_story": "Brief 2-3 sentence company story or mission statement",
  "sentiment": "Overall brand sentiment (Positive, Optimistic, Serious, Innovative, Traditional, Disruptive, etc.)",
  "themes": ["2-4 key themes or topics the brand focuses on"],
  "industry": "Industry or business category"
}

IMPORTANT: Return ONLY the JSON object, no additional text or markdown formatting.""",
    ),
}


class PromptService:
    """Reads, renders and edits prompt templates."""

    def __init__(self, session: AsyncSession, cache: PromptCache | None = None) -> None:
        self._repo = PromptRepository(session)
        self._cache = cache if cache is not None else get_prompt_cache()

    @property
    def cache(self) -> PromptCache:
        return self._cache

    async def get_prompt(self, key: str) -> PromptTemplate:
        """Resolve the template for `key`.

        Raises:
            PromptNotFoundError: If neither a row nor a default exists
        """
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        row = await self._repo.get_active(key)
        if row is not None:
            resolved = PromptTemplate(key=key, template=row.template, source="database")
        elif key in DEFAULT_PROMPTS:
            resolved = PromptTemplate(
                key=key, template=DEFAULT_PROMPTS[key].template, source="default"
            )
        else:
            raise PromptNotFoundError(key)

        self._cache.set(key, resolved)
        logger.debug(
            "Prompt template resolved",
            extra={"prompt_key": key, "source": resolved.source},
        )
        return resolved

    async def render(self, key: str, variables: Mapping[str, Any]) -> str:
        """Resolve `key` and fill its slots."""
        prompt = await self.get_prompt(key)
        return render_template(prompt.template, variables)

    async def update_prompt(self, key: str, template: str) -> PromptTemplate:
        """Store a new template for `key` and drop the cached entry.

        Raises:
            PromptNotFoundError: If `key` is neither stored nor a default
        """
        definition = DEFAULT_PROMPTS.get(key)
        existing = await self._repo.get_by_key(key)
        if definition is None and existing is None:
            raise PromptNotFoundError(key)

        await self._repo.upsert(
            key=key,
            template=template,
            name=definition.name if definition else key,
            description=definition.description if definition else None,
            variables=list(definition.variables) if definition else None,
            category=definition.category if definition else "generation",
        )
        self._cache.invalidate(key)
        logger.info("Prompt template updated", extra={"prompt_key": key})
        return PromptTemplate(key=key, template=template, source="database")

    async def reset_prompt(self, key: str) -> PromptTemplate:
        """Restore the built-in template for `key`.

        Raises:
            PromptNotFoundError: If `key` has no default
        """
        definition = DEFAULT_PROMPTS.get(key)
        if definition is None:
            raise PromptNotFoundError(key)
        return await self.update_prompt(key, definition.template)
