"""Product model for the merchandise catalog.

Products are templates the pipeline reads to parameterize motif and
mockup generation. The active catalog is every non-archived product
ordered by name.
"""

from datetime import UTC, datetime
from uuid import uuid4

from sqlalchemy import Boolean, DateTime, Integer, String, Text, text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from merchgen.core.database import Base

PRINT_ZONES: frozenset[str] = frozenset(
    {"front", "back", "sleeves", "wrap", "ankle", "pocket", "all-over"}
)

RECOMMENDED_ELEMENTS: frozenset[str] = frozenset(
    {"icon", "pattern", "graphic", "typography"}
)

DEFAULT_MAX_COLORS = 8


class Product(Base):
    """Merchandise template.

    Attributes:
        id: UUID primary key
        name: Display name (e.g., 'T-Shirt')
        base_image_url: Blank product image used for mockups
        print_zones: Allowed print zones (subset of PRINT_ZONES)
        constraints: Free-text production constraints
        max_colors: Maximum number of print colors (1..999)
        recommended_elements: Design elements that suit the product
        is_archived: Archived products are excluded from generation
        created_at: Timestamp when product was created
        updated_at: Timestamp when product was last updated
    """

    __tablename__ = "products"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        primary_key=True,
        default=lambda: str(uuid4()),
        server_default=text("gen_random_uuid()"),
    )

    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        index=True,
    )

    base_image_url: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    print_zones: Mapped[list[str]] = mapped_column(
        JSONB,
        nullable=False,
        default=list,
        server_default=text("'[]'::jsonb"),
    )

    constraints: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    max_colors: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=DEFAULT_MAX_COLORS,
        server_default=text(str(DEFAULT_MAX_COLORS)),
    )

    recommended_elements: Mapped[list[str]] = mapped_column(
        JSONB,
        nullable=False,
        default=list,
        server_default=text("'[]'::jsonb"),
    )

    is_archived: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
        index=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        server_default=text("now()"),
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        server_default=text("now()"),
        onupdate=lambda: datetime.now(UTC),
    )

    def __repr__(self) -> str:
        return f"<Product(id={self.id!r}, name={self.name!r})>"
