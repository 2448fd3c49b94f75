"""MerchSession model and the SessionStatus state machine.

A MerchSession is one end-to-end merchandise generation run:
- The submitted website and contact address
- Pipeline status with a total order (see SessionStatus)
- Accumulated stage output (scraped data, concept, motif, product mockups)
- A version counter for optimistic concurrency
- Recovery bookkeeping (last_notified_at)
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from sqlalchemy import DateTime, Integer, String, Text, UniqueConstraint, text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from merchgen.core.database import Base


class SessionStatus(str, Enum):
    """Pipeline status.

    Ordered: scraping < awaiting_approval < concept < motif < products < complete.
    FAILED sits outside the order and absorbs every non-terminal status.
    """

    SCRAPING = "scraping"
    AWAITING_APPROVAL = "awaiting_approval"
    CONCEPT = "concept"
    MOTIF = "motif"
    PRODUCTS = "products"
    COMPLETE = "complete"
    FAILED = "failed"

    @property
    def rank(self) -> int | None:
        """Position in the stage order; None for FAILED."""
        try:
            return _STATUS_ORDER.index(self)
        except ValueError:
            return None

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.COMPLETE, SessionStatus.FAILED)

    def is_at_or_past(self, other: "SessionStatus") -> bool:
        """True when this status has reached `other` in the stage order."""
        if self.rank is None or other.rank is None:
            return False
        return self.rank >= other.rank

    def can_transition_to(self, target: "SessionStatus") -> bool:
        """Forward moves only; FAILED from any non-terminal status."""
        if self.is_terminal:
            return False
        if target == SessionStatus.FAILED:
            return True
        assert self.rank is not None and target.rank is not None
        return target.rank > self.rank


_STATUS_ORDER: tuple[SessionStatus, ...] = (
    SessionStatus.SCRAPING,
    SessionStatus.AWAITING_APPROVAL,
    SessionStatus.CONCEPT,
    SessionStatus.MOTIF,
    SessionStatus.PRODUCTS,
    SessionStatus.COMPLETE,
)

# User-facing copy only; the state machine never reads these
STATUS_LABELS: dict[SessionStatus, str] = {
    SessionStatus.SCRAPING: "Analyzing your website",
    SessionStatus.AWAITING_APPROVAL: "Waiting for your brand details",
    SessionStatus.CONCEPT: "Concept ready",
    SessionStatus.MOTIF: "Motif ready",
    SessionStatus.PRODUCTS: "Creating product mockups",
    SessionStatus.COMPLETE: "Designs complete",
    SessionStatus.FAILED: "Generation failed",
}

# Coarse completion percentage shown in recovery emails
STATUS_PROGRESS: dict[SessionStatus, int] = {
    SessionStatus.SCRAPING: 10,
    SessionStatus.AWAITING_APPROVAL: 25,
    SessionStatus.CONCEPT: 60,
    SessionStatus.MOTIF: 75,
    SessionStatus.PRODUCTS: 90,
    SessionStatus.COMPLETE: 100,
}


class MerchSession(Base):
    """Merchandise generation session.

    Attributes:
        id: UUID primary key
        email: Contact address (may be a guest placeholder)
        url: Submitted website URL
        status: SessionStatus value
        scraped_data: Brand attributes collected during scraping (JSONB)
        concept: Generated design concept
        motif_prompt: Generated motif description
        motif_image_url: Public URL of the motif artwork
        product_images: Ordered per-product mockup records (JSONB list)
        error_message: Reason for the last terminal failure
        version: Optimistic-concurrency counter, bumped by every write
        last_notified_at: When the last recovery email went out
        created_at: Timestamp when session was created
        updated_at: Timestamp of the last pipeline or user mutation

    Example product_images structure:
        [
            {
                "product_id": "7b0c...",
                "product_name": "T-Shirt",
                "image_url": "https://via.placeholder.com/600x600.png?text=T-Shirt Mockup",
                "print_zones": ["front", "back"],
                "design_notes": "Bold chest print ..."
            }
        ]
    """

    __tablename__ = "sessions"

    __table_args__ = (
        UniqueConstraint("email", "url", name="uq_sessions_email_url"),
    )

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        primary_key=True,
        default=lambda: str(uuid4()),
        server_default=text("gen_random_uuid()"),
    )

    email: Mapped[str] = mapped_column(
        String(320),
        nullable=False,
        index=True,
    )

    url: Mapped[str] = mapped_column(
        String(2048),
        nullable=False,
    )

    status: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default=SessionStatus.SCRAPING.value,
        server_default=text("'scraping'"),
        index=True,
    )

    scraped_data: Mapped[dict[str, Any] | None] = mapped_column(
        JSONB,
        nullable=True,
    )

    concept: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    motif_prompt: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    motif_image_url: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    product_images: Mapped[list[dict[str, Any]] | None] = mapped_column(
        JSONB,
        nullable=True,
    )

    error_message: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1,
        server_default=text("1"),
    )

    last_notified_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
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
        index=True,
    )

    @property
    def status_enum(self) -> SessionStatus:
        return SessionStatus(self.status)

    def __repr__(self) -> str:
        return (
            f"<MerchSession(id={self.id!r}, url={self.url!r}, "
            f"status={self.status!r}, version={self.version!r})>"
        )
