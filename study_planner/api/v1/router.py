from fastapi import APIRouter

from study_planner.api.v1.endpoints import generation, health

v1_router = APIRouter()
v1_router.include_router(health.router, tags=["health"])
v1_router.include_router(generation.router, tags=["generation"])
