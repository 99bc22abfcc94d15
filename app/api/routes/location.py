from typing import List

from fastapi import APIRouter, Depends, HTTPException
from fastapi.concurrency import run_in_threadpool
from loguru import logger

from app.api.deps import ensure_member, get_location_store, get_publisher
from app.core.auth import get_current_user_id
from app.schemas.location import (
    LocationShareResponse,
    PositionRequest,
    ProductionResponse,
    SharingRequest,
    TeamLocationsResponse,
)
from app.services.location_store import StoreReadError, StoreWriteError
from app.services.presence import utcnow
from app.services.publisher import LOCATION_NOT_READY, LocationPublisher
from app.services.subscriber import build_member

router = APIRouter(prefix="/productions", tags=["location"])


async def _get_own_share(store, user_id: str, production_id: str):
    try:
        return await run_in_threadpool(store.get_share, user_id, production_id)
    except StoreReadError as e:
        raise HTTPException(status_code=503, detail=str(e))


# ----------------------------
# PRODUCTIONS
# ----------------------------
@router.get("", response_model=List[ProductionResponse])
async def list_my_productions(
    store=Depends(get_location_store),
    user_id: str = Depends(get_current_user_id),
):
    try:
        memberships = await run_in_threadpool(store.list_productions, user_id)
    except StoreReadError as e:
        raise HTTPException(status_code=503, detail=str(e))

    return memberships


# ----------------------------
# OWN SHARE
# ----------------------------
@router.get("/{production_id}/location", response_model=LocationShareResponse)
async def get_my_location(
    production_id: str,
    store=Depends(get_location_store),
    user_id: str = Depends(get_current_user_id),
):
    share = await _get_own_share(store, user_id, production_id)
    if share is None:
        raise HTTPException(status_code=404, detail="No location shared for this production")
    return share


@router.put("/{production_id}/location", response_model=LocationShareResponse)
async def publish_location(
    production_id: str,
    payload: PositionRequest,
    store=Depends(get_location_store),
    publisher: LocationPublisher = Depends(get_publisher),
    user_id: str = Depends(get_current_user_id),
):
    share = await _get_own_share(store, user_id, production_id)
    if share is None or not share.is_sharing:
        raise HTTPException(status_code=409, detail="Location sharing is disabled")

    try:
        return await publisher.publish_position(user_id, production_id, payload.latitude, payload.longitude)
    except StoreWriteError as e:
        raise HTTPException(status_code=503, detail=str(e))


@router.put("/{production_id}/location/sharing", response_model=LocationShareResponse)
async def set_sharing(
    production_id: str,
    payload: SharingRequest,
    store=Depends(get_location_store),
    publisher: LocationPublisher = Depends(get_publisher),
    user_id: str = Depends(get_current_user_id),
):
    logger.info(f"Sharing toggle | user={user_id} production={production_id} enabled={payload.is_sharing}")

    try:
        if not payload.is_sharing:
            return await publisher.stop_sharing(user_id, production_id)

        if payload.latitude is not None and payload.longitude is not None:
            coords = (payload.latitude, payload.longitude)
        else:
            # no fresh fix: fall back to the last known position
            share = await _get_own_share(store, user_id, production_id)
            if share is None or not share.has_position:
                raise HTTPException(status_code=409, detail=LOCATION_NOT_READY)
            coords = (share.latitude, share.longitude)

        return await publisher.publish_position(user_id, production_id, *coords)
    except StoreWriteError as e:
        raise HTTPException(status_code=503, detail=str(e))


# ----------------------------
# TEAM
# ----------------------------
@router.get("/{production_id}/locations", response_model=TeamLocationsResponse)
async def team_locations(
    production_id: str,
    sharing_only: bool = False,
    store=Depends(get_location_store),
    user_id: str = Depends(get_current_user_id),
):
    await ensure_member(store, user_id, production_id)

    now = utcnow()
    try:
        locations = await run_in_threadpool(store.list_team, production_id, sharing_only)
    except StoreReadError as e:
        logger.error(f"Team locations unavailable | production={production_id} | error={e}")
        return {"production_id": production_id, "members": [], "fetched_at": now, "error": str(e)}

    return {
        "production_id": production_id,
        "members": [build_member(loc, user_id, now).to_dict() for loc in locations],
        "fetched_at": now,
        "error": None,
    }
