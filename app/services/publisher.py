from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional, Tuple

from fastapi.concurrency import run_in_threadpool
from loguru import logger

from app.schemas.enums import ChangeEventType, GeolocationError
from app.services import grid
from app.services.change_feed import ChangeEvent, ChangeFeed
from app.services.location_store import ShareRecord, StoreReadError, StoreWriteError
from app.services.presence import utcnow

TABLE = "location_shares"

LOCATION_NOT_READY = "Location not available yet. Please wait a moment and try again."

_GEO_MESSAGES = {
    GeolocationError.permission_denied: "Location access denied",
    GeolocationError.position_unavailable: "Location information is unavailable",
    GeolocationError.timeout: "Location request timed out",
}


@dataclass
class Notice:
    """A toast-level message for the client."""
    title: str
    description: str
    variant: str = "default"

    @classmethod
    def error(cls, title: str, description: str) -> "Notice":
        return cls(title=title, description=description, variant="destructive")

    def to_dict(self) -> dict:
        return {"title": self.title, "description": self.description, "variant": self.variant}


@dataclass
class GeoReading:
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    error: Optional[GeolocationError] = None
    message: Optional[str] = None

    @property
    def error_message(self) -> Optional[str]:
        if self.error is None:
            return None
        return self.message or _GEO_MESSAGES[self.error]


# ------------------------------------------------------------------
# Publisher
# ------------------------------------------------------------------

class LocationPublisher:
    """Writes a user's share row and announces the change on the feed."""

    def __init__(self, store, feed: Optional[ChangeFeed] = None, clock: Callable[[], datetime] = utcnow):
        self._store = store
        self._feed = feed
        self._clock = clock

    async def _emit(self, share: ShareRecord) -> None:
        if self._feed is None:
            return
        await self._feed.publish(
            ChangeEvent(
                table=TABLE,
                event_type=ChangeEventType.update,
                production_id=share.production_id,
                record=share.to_dict(),
            )
        )

    async def publish_position(
        self,
        user_id: str,
        production_id: str,
        latitude: float,
        longitude: float,
    ) -> ShareRecord:
        at = self._clock()
        share = await run_in_threadpool(
            self._store.upsert_position, user_id, production_id, latitude, longitude, at
        )
        logger.info(
            f"Location published | user={user_id} production={production_id} "
            f"grid={share.grid_reference}"
        )
        await self._emit(share)
        return share

    async def stop_sharing(self, user_id: str, production_id: str) -> ShareRecord:
        at = self._clock()
        share = await run_in_threadpool(self._store.upsert_sharing_off, user_id, production_id, at)
        logger.info(f"Location sharing stopped | user={user_id} production={production_id}")
        await self._emit(share)
        return share


# ------------------------------------------------------------------
# Session state (one client view)
# ------------------------------------------------------------------

class SharingSession:
    """
    Sharing toggle and geolocation state for one client view.

    Toggles are optimistic: the flag flips before the write and is restored
    to its pre-toggle value if the write fails. Nothing is retried.
    """

    def __init__(self, publisher: LocationPublisher, store, user_id: Optional[str]):
        self._publisher = publisher
        self._store = store
        self.user_id = user_id
        self.production_id: Optional[str] = None
        self.is_sharing = False
        self.loading = False
        self.geo_error: Optional[str] = None
        self.coords: Optional[Tuple[float, float]] = None
        self.last_known: Optional[Tuple[float, float]] = None

    @property
    def can_toggle(self) -> bool:
        return bool(self.production_id and self.user_id and not self.loading and not self.geo_error)

    @property
    def grid_reference(self) -> Optional[str]:
        if self.coords is None:
            return None
        return grid.encode(*self.coords)

    async def select_production(self, production_id: Optional[str]) -> None:
        self.production_id = production_id
        self.is_sharing = False

        if not production_id or not self.user_id:
            return

        try:
            share = await run_in_threadpool(self._store.get_share, self.user_id, production_id)
        except StoreReadError as e:
            logger.error(f"Sharing status unavailable | user={self.user_id} production={production_id} | error={e}")
            return

        if share is None:
            return

        self.is_sharing = share.is_sharing
        if share.has_position:
            self.last_known = (share.latitude, share.longitude)

    async def on_reading(self, reading: GeoReading) -> Optional[Notice]:
        if reading.error is not None:
            self.geo_error = reading.error_message
            logger.warning(f"Geolocation error | user={self.user_id} error={reading.error.value}")
            return Notice.error("Location Error", self.geo_error)

        if reading.latitude is None or reading.longitude is None:
            return None

        self.geo_error = None
        self.coords = (reading.latitude, reading.longitude)

        if not (self.is_sharing and self.production_id and self.user_id):
            return None

        try:
            await self._publisher.publish_position(self.user_id, self.production_id, *self.coords)
        except StoreWriteError as e:
            return Notice.error("Error", str(e))

        self.last_known = self.coords
        return None

    async def toggle(self, enabled: bool) -> Notice:
        if not self.production_id:
            return Notice.error(
                "No Production Selected",
                "Please select a production before enabling location sharing",
            )

        if not self.user_id:
            return Notice.error("Authentication Required", "Please log in to enable location sharing")

        if enabled and self.geo_error:
            return Notice.error("Location Error", self.geo_error)

        previous = self.is_sharing
        self.loading = True
        logger.info(f"Toggling location sharing | user={self.user_id} enabled={enabled}")

        try:
            if enabled:
                if self.coords is None:
                    self.is_sharing = previous
                    return Notice.error("Error", LOCATION_NOT_READY)

                self.is_sharing = True
                await self._publisher.publish_position(self.user_id, self.production_id, *self.coords)
                self.last_known = self.coords
                return Notice(
                    "Location Sharing Enabled",
                    "Your location is now being shared with the team",
                )

            self.is_sharing = False
            await self._publisher.stop_sharing(self.user_id, self.production_id)
            return Notice("Location Sharing Disabled", "Your location is no longer being shared")
        except StoreWriteError as e:
            self.is_sharing = previous
            return Notice.error("Error", str(e) or "Failed to update location sharing")
        finally:
            self.loading = False

    def status_text(self) -> str:
        if not self.production_id:
            return "No production selected"
        if self.geo_error:
            return "Location access denied"
        if self.coords is None:
            return "Getting location..."
        if self.is_sharing:
            return "Location sharing active"
        return "Location ready"

    def to_dict(self) -> dict:
        return {
            "production_id": self.production_id,
            "is_sharing": self.is_sharing,
            "can_toggle": self.can_toggle,
            "status_text": self.status_text(),
            "geo_error": self.geo_error,
            "grid_reference": self.grid_reference,
            "coords": list(self.coords) if self.coords else None,
            "last_known": list(self.last_known) if self.last_known else None,
        }
