from fastapi import APIRouter

from stepgate.api.health import router as health_router
from stepgate.api.stepup import router as stepup_router

api_router = APIRouter()

# Include sub-routers
api_router.include_router(health_router, tags=["health"])
api_router.include_router(stepup_router)
