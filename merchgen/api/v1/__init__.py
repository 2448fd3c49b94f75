"""API v1 router and endpoint organization."""

from fastapi import APIRouter

from merchgen.api.v1.endpoints import cron, sessions

router = APIRouter(tags=["v1"])

# Include domain-specific routers
router.include_router(sessions.router, prefix="/sessions", tags=["Sessions"])
router.include_router(cron.router, prefix="/cron", tags=["Cron"])
