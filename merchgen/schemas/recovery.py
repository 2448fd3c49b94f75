"""Pydantic schemas for the recovery cron endpoint."""

from pydantic import BaseModel, Field


class RecoverySweepResponse(BaseModel):
    """Aggregate result of one recovery sweep."""

    success: bool = True
    found: int = Field(..., ge=0, description="Stale sessions matched")
    sent: int = Field(..., ge=0, description="Recovery emails delivered")
    failed: int = Field(..., ge=0, description="Sessions whose email could not be sent")
    skipped: int = Field(..., ge=0, description="Sessions without a real address")
    duration_ms: float
    message: str
