"""Repositories layer - Data access and persistence.

Repositories handle all database operations using SQLAlchemy.
They abstract the database implementation from the service layer.
"""

from merchgen.repositories.product import ProductRepository
from merchgen.repositories.prompt import PromptRepository
from merchgen.repositories.session import (
    ApplyResult,
    SessionRepository,
    SessionVersionConflictError,
)

__all__ = [
    "ApplyResult",
    "ProductRepository",
    "PromptRepository",
    "SessionRepository",
    "SessionVersionConflictError",
]
