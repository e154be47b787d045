from fastapi import APIRouter

from upkeep.api.routes import health, maintenance

api_router = APIRouter()
api_router.include_router(health.router, tags=["health"])
api_router.include_router(maintenance.router, prefix="/maintenance", tags=["maintenance"])
