"""API v1 router aggregator.

All v1 endpoint routers are included here under the /api/v1 prefix.
"""

from fastapi import APIRouter

from app.api.v1 import admin, credits

router = APIRouter()

# =============================================================================
# Credits (end users)
# =============================================================================

router.include_router(credits.router, prefix="/credits", tags=["credits"])

# =============================================================================
# Admin back-office
# =============================================================================

router.include_router(admin.router, prefix="/admin", tags=["admin"])
