from fastapi import APIRouter

from forecastcore.api.routes import brands, forecasts, health


api_router = APIRouter()
api_router.include_router(health.router)
api_router.include_router(brands.router)
api_router.include_router(forecasts.router)
