"""API v1 router aggregator.

All v1 endpoint routers are included here, mounted at /api/v1.
"""

from fastapi import APIRouter

from review_verification.api.v1 import admin, reviews

router = APIRouter()

# =============================================================================
# Public
# =============================================================================

router.include_router(reviews.router, prefix="/reviews", tags=["reviews"])

# =============================================================================
# Admin
# =============================================================================

router.include_router(admin.router, prefix="/admin", tags=["admin"])
