from fastapi import APIRouter

from rentshare.api.v1.endpoints import discounts


# Create main API router
api_router = APIRouter(prefix="/api/v1")

# ==================== Discount Codes ====================
api_router.include_router(
    discounts.router,
    prefix="/discounts",
    tags=["Discounts"]
)
