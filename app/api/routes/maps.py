from fastapi import APIRouter, Depends

from app.api.deps import get_maps_loader
from app.schemas.location import MapsConfigResponse
from app.services.maps import MapsLoader

router = APIRouter(prefix="/maps", tags=["maps"])


@router.get("/config", response_model=MapsConfigResponse)
async def maps_config(loader: MapsLoader = Depends(get_maps_loader)):
    config = await loader.load()
    return config.to_dict()
