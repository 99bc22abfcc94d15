from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, List, Optional

from fastapi.concurrency import run_in_threadpool
from loguru import logger

from app.core.location_config import POLL_INTERVAL_SECONDS
from app.schemas.enums import PresenceStatus
from app.services.change_feed import Channel, ChangeFeed, ChangeFeedError
from app.services.location_store import StoreReadError, TeamLocation
from app.services.presence import classify, describe, format_last_seen, utcnow

TABLE = "location_shares"


# ------------------------------------------------------------------
# Snapshot + member view
# ------------------------------------------------------------------

@dataclass
class TeamMember:
    user_id: str
    name: str
    latitude: Optional[float]
    longitude: Optional[float]
    grid_reference: Optional[str]
    is_sharing: bool
    last_updated: datetime
    status: PresenceStatus
    status_label: str
    status_color: str
    last_seen: str
    is_self: bool

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "name": self.name,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "grid_reference": self.grid_reference,
            "is_sharing": self.is_sharing,
            "last_updated": self.last_updated.isoformat(),
            "status": self.status.value,
            "status_label": self.status_label,
            "status_color": self.status_color,
            "last_seen": self.last_seen,
            "is_self": self.is_self,
        }


def build_member(location: TeamLocation, viewer_id: Optional[str], now: datetime) -> TeamMember:
    status = classify(location.is_sharing, location.last_updated, now)
    tag = describe(status)
    return TeamMember(
        user_id=location.user_id,
        name=location.display_name,
        latitude=location.latitude,
        longitude=location.longitude,
        grid_reference=location.grid_reference,
        is_sharing=location.is_sharing,
        last_updated=location.last_updated,
        status=status,
        status_label=tag.label,
        status_color=tag.color,
        last_seen=format_last_seen(location.last_updated, now),
        is_self=location.user_id == viewer_id,
    )


@dataclass
class TeamSnapshot:
    production_id: str
    locations: List[TeamLocation]
    fetched_at: datetime
    error: Optional[str] = None

    def members(self, viewer_id: Optional[str] = None, now: Optional[datetime] = None) -> List[TeamMember]:
        # presence is derived per observation, never stored on the snapshot
        now = now or utcnow()
        return [build_member(loc, viewer_id, now) for loc in self.locations]


SnapshotCallback = Callable[[TeamSnapshot], Awaitable[None]]


# ------------------------------------------------------------------
# Subscriber
# ------------------------------------------------------------------

class LocationSubscriber:
    """
    Keeps one view's team snapshot in step with the store.

    Every change event triggers a full re-fetch of the selected production.
    A poll task re-fetches on a fixed interval as well, independent of the
    channel. Results that belong to a previous selection, that arrive after
    close(), or that are older than one already delivered are dropped. When
    the feed cannot be reached the view runs on the poll alone.
    """

    def __init__(
        self,
        store,
        feed: ChangeFeed,
        on_snapshot: SnapshotCallback,
        poll_interval: Optional[float] = POLL_INTERVAL_SECONDS,
        sharing_only: bool = False,
    ):
        self._store = store
        self._feed = feed
        self._on_snapshot = on_snapshot
        self._poll_interval = poll_interval
        self._sharing_only = sharing_only

        self.production_id: Optional[str] = None
        self.snapshot: Optional[TeamSnapshot] = None

        self._generation = 0
        self._seq = 0
        self._applied_seq = 0
        self._closed = False
        self._channel: Optional[Channel] = None
        self._listener: Optional[asyncio.Task] = None
        self._poller: Optional[asyncio.Task] = None

    async def select(self, production_id: Optional[str]) -> Optional[TeamSnapshot]:
        await self._release()

        self._generation += 1
        self.production_id = production_id
        self.snapshot = None

        if production_id is None or self._closed:
            return None

        generation = self._generation
        try:
            channel = await self._feed.subscribe(TABLE, production_id)
        except ChangeFeedError as e:
            # the poll still keeps the view current, just less promptly
            logger.warning(f"Live updates unavailable, polling only | production={production_id} | error={e}")
            channel = None

        if not self._is_current(generation):
            if channel is not None:
                await self._feed.unsubscribe(channel)
            return None

        self._channel = channel
        if channel is not None:
            self._listener = asyncio.create_task(self._listen(channel, generation))
        if self._poll_interval:
            self._poller = asyncio.create_task(self._poll(generation))

        logger.info(f"Subscribed to team locations | production={production_id} live={channel is not None}")
        return await self._fetch(generation)

    async def refresh(self) -> Optional[TeamSnapshot]:
        return await self._fetch(self._generation)

    async def close(self) -> None:
        self._closed = True
        await self._release()
        self.production_id = None

    def _is_current(self, generation: int) -> bool:
        return not self._closed and generation == self._generation

    async def _fetch(self, generation: int) -> Optional[TeamSnapshot]:
        production_id = self.production_id
        if production_id is None or not self._is_current(generation):
            return None

        self._seq += 1
        seq = self._seq

        try:
            locations = await run_in_threadpool(self._store.list_team, production_id, self._sharing_only)
            snapshot = TeamSnapshot(production_id, locations, utcnow())
        except StoreReadError as e:
            logger.error(f"Team re-fetch failed | production={production_id} | error={e}")
            snapshot = TeamSnapshot(production_id, [], utcnow(), error=str(e))

        if not self._is_current(generation) or seq <= self._applied_seq:
            logger.debug(f"Discarding stale team snapshot | production={production_id} seq={seq}")
            return None

        self._applied_seq = seq
        self.snapshot = snapshot
        await self._on_snapshot(snapshot)
        return snapshot

    async def _listen(self, channel: Channel, generation: int) -> None:
        async for event in channel:
            if not self._is_current(generation):
                break
            logger.debug(f"Location change | production={event.production_id} type={event.event_type.value}")
            await self._fetch(generation)

    async def _poll(self, generation: int) -> None:
        while self._is_current(generation):
            await asyncio.sleep(self._poll_interval)
            await self._fetch(generation)

    async def _release(self) -> None:
        channel, self._channel = self._channel, None
        if channel is not None:
            await self._feed.unsubscribe(channel)

        current = asyncio.current_task()
        tasks = [t for t in (self._listener, self._poller) if t is not None]
        self._listener = None
        self._poller = None

        for task in tasks:
            task.cancel()
        pending = [t for t in tasks if t is not current]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
