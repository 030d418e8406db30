from fastapi import APIRouter
from app.api.v1.endpoints import auth, materials, assignments, health

api_router = APIRouter()

api_router.include_router(health.router)
api_router.include_router(auth.router, prefix="/auth", tags=["Authentication"])
api_router.include_router(materials.router, prefix="/materials", tags=["Materials"])
api_router.include_router(assignments.router, prefix="/assignments", tags=["Assignments"])
