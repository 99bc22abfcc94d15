from fastapi import APIRouter

from app.api.routes import grid
from app.api.routes import live
from app.api.routes import location
from app.api.routes import maps

api_router = APIRouter(prefix="/v1")

api_router.include_router(grid.router)
api_router.include_router(location.router)
api_router.include_router(maps.router)
api_router.include_router(live.router)
