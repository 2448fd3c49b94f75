"""Core utilities and configuration."""

from merchgen.core.config import Settings, get_settings
from merchgen.core.database import Base, db_manager, get_session, session_scope
from merchgen.core.logging import (
    db_logger,
    gemini_logger,
    get_logger,
    pipeline_logger,
    scheduler_logger,
    setup_logging,
)

__all__ = [
    # Config
    "Settings",
    "get_settings",
    # Database
    "Base",
    "db_manager",
    "get_session",
    "session_scope",
    # Logging
    "db_logger",
    "gemini_logger",
    "get_logger",
    "pipeline_logger",
    "scheduler_logger",
    "setup_logging",
]
