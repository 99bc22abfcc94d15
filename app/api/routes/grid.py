from fastapi import APIRouter, HTTPException, Query

from app.schemas.location import GridDecodeResponse, GridEncodeResponse
from app.services import grid

router = APIRouter(prefix="/grid", tags=["grid"])


@router.get("/encode", response_model=GridEncodeResponse)
def encode_grid(
    lat: float = Query(..., ge=-90, le=90),
    lng: float = Query(..., ge=-180, le=180),
):
    return {"grid_reference": grid.encode(lat, lng)}


@router.get("/decode/{label}", response_model=GridDecodeResponse)
def decode_grid(label: str):
    point = grid.decode(label)
    if point is None:
        raise HTTPException(status_code=400, detail="Invalid grid reference")
    return {"lat": point.lat, "lng": point.lng}
