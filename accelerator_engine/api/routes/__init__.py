from fastapi import APIRouter

from accelerator_engine.api.routes import accelerators, health

api_router = APIRouter()

api_router.include_router(health.router, tags=["health"])
api_router.include_router(accelerators.router, prefix="/accelerators", tags=["accelerators"])
