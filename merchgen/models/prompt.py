"""Prompt model for editable AI prompt templates.

Templates use {{variable}} slots. A row overrides the built-in default
with the same key.
"""

from datetime import UTC, datetime
from uuid import uuid4

from sqlalchemy import Boolean, DateTime, String, Text, text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from merchgen.core.database import Base


class Prompt(Base):
    """Prompt template.

    Attributes:
        id: UUID primary key
        key: Unique lookup key (e.g., 'concept_generation')
        name: Display name
        description: What the prompt is used for
        template: Template text with {{variable}} slots
        variables: Declared variable names
        category: Grouping label (e.g., 'generation', 'analysis')
        is_active: Inactive rows fall back to the built-in default
        created_at: Timestamp when prompt was created
        updated_at: Timestamp when prompt was last updated
    """

    __tablename__ = "prompts"

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        primary_key=True,
        default=lambda: str(uuid4()),
        server_default=text("gen_random_uuid()"),
    )

    key: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        unique=True,
        index=True,
    )

    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    description: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    template: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )

    variables: Mapped[list[str]] = mapped_column(
        JSONB,
        nullable=False,
        default=list,
        server_default=text("'[]'::jsonb"),
    )

    category: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default="generation",
        server_default=text("'generation'"),
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default=text("true"),
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
        return f"<Prompt(key={self.key!r}, is_active={self.is_active!r})>"
