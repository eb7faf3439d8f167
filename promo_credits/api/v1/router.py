from fastapi import APIRouter

from promo_credits.api.v1.endpoints import credits, promotions

api_v1_router = APIRouter()

api_v1_router.include_router(promotions.router, prefix="/promotions", tags=["promotions"])
api_v1_router.include_router(credits.router, prefix="/credits", tags=["credits"])
