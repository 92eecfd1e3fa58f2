from fastapi import APIRouter

from app.api.v1 import export_routes, import_routes

api_router = APIRouter()

api_router.include_router(import_routes.router, prefix="/import", tags=["import"])
api_router.include_router(export_routes.router, prefix="/export", tags=["export"])
