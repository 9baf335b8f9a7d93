from fastapi import APIRouter

from support_directory.api.routes import admin, directory, health

api_router = APIRouter()
api_router.include_router(health.router, tags=["health"])
api_router.include_router(directory.router, prefix="/directory", tags=["public"])
api_router.include_router(admin.router, prefix="/admin", tags=["admin"])
