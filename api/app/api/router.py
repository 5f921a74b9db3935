from fastapi import APIRouter

from app.api.routes import ads, health

api_router = APIRouter()
api_router.include_router(health.router, tags=["health"])
api_router.include_router(ads.router, prefix="/v3/ads", tags=["ads"])
