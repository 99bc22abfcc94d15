from functools import lru_cache
from typing import Optional

from fastapi import Depends, HTTPException, Query
from fastapi.concurrency import run_in_threadpool
from loguru import logger

from app.core.auth import verify_token
from app.core.config import (
    CHANGE_FEED,
    GOOGLE_MAPS_API_KEY,
    LOCATION_STORE,
    REDIS_URL,
    SUPABASE_SERVICE_ROLE_KEY,
    SUPABASE_URL,
)
from app.core.db import SessionLocal
from app.services.change_feed import ChangeFeed, MemoryChangeFeed, RedisChangeFeed
from app.services.location_store import SqlLocationStore, StoreReadError
from app.services.maps import MapsLoader
from app.services.publisher import LocationPublisher


@lru_cache(maxsize=1)
def _build_store():
    if LOCATION_STORE == "sql":
        return SqlLocationStore(SessionLocal)

    if LOCATION_STORE == "supabase":
        from app.services.supabase_admin import supabase_admin
        from app.services.supabase_store import SupabaseLocationStore

        return SupabaseLocationStore(supabase_admin())

    raise RuntimeError(f"Invalid LOCATION_STORE: {LOCATION_STORE}")


def get_location_store():
    return _build_store()


@lru_cache(maxsize=1)
def _build_feed() -> ChangeFeed:
    if CHANGE_FEED == "redis":
        return RedisChangeFeed.from_url(REDIS_URL)

    if CHANGE_FEED == "supabase":
        from app.services.supabase_feed import SupabaseChangeFeed

        return SupabaseChangeFeed(SUPABASE_URL, SUPABASE_SERVICE_ROLE_KEY)

    if CHANGE_FEED == "memory":
        logger.warning("In-process change feed: updates do not cross workers")
        return MemoryChangeFeed()

    raise RuntimeError(f"Invalid CHANGE_FEED: {CHANGE_FEED}")


def get_change_feed() -> ChangeFeed:
    return _build_feed()


def get_publisher(
    store=Depends(get_location_store),
    feed: ChangeFeed = Depends(get_change_feed),
) -> LocationPublisher:
    return LocationPublisher(store, feed)


_maps_loader = MapsLoader(GOOGLE_MAPS_API_KEY)


def get_maps_loader() -> MapsLoader:
    return _maps_loader


def get_ws_user_id(token: Optional[str] = Query(default=None)) -> Optional[str]:
    # browsers cannot set headers on a websocket handshake, the token rides in the query
    if not token:
        return None
    try:
        return verify_token(token)
    except HTTPException as e:
        logger.warning(f"[ws] token rejected | detail={e.detail}")
        return None


async def ensure_member(store, user_id: str, production_id: str) -> None:
    try:
        is_member = await run_in_threadpool(store.is_member, user_id, production_id)
    except StoreReadError as e:
        raise HTTPException(status_code=503, detail=str(e))

    if not is_member:
        raise HTTPException(status_code=403, detail="Not a member of this production")
