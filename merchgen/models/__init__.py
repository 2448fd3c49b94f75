"""Models layer - SQLAlchemy ORM models.

Models define the database schema.
All models inherit from the Base class defined in core.database.
"""

from merchgen.core.database import Base
from merchgen.models.product import Product
from merchgen.models.prompt import Prompt
from merchgen.models.session import (
    STATUS_LABELS,
    STATUS_PROGRESS,
    MerchSession,
    SessionStatus,
)

__all__ = [
    "Base",
    "MerchSession",
    "Product",
    "Prompt",
    "STATUS_LABELS",
    "STATUS_PROGRESS",
    "SessionStatus",
]
