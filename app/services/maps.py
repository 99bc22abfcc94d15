from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple
from urllib.parse import urlencode

from loguru import logger

from app.core.location_config import (
    DEFAULT_MAP_CENTER,
    DEFAULT_MAP_ZOOM,
    GOOGLE_MAPS_SCRIPT_URL,
)
from app.services.subscriber import TeamMember

MAPS_UNAVAILABLE = "Google Maps API not available"


# ------------------------------------------------------------------
# Loader
# ------------------------------------------------------------------

@dataclass(frozen=True)
class MapsConfig:
    available: bool
    script_url: Optional[str] = None
    center: Tuple[float, float] = DEFAULT_MAP_CENTER
    zoom: int = DEFAULT_MAP_ZOOM
    message: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "available": self.available,
            "script_url": self.script_url,
            "center": {"lat": self.center[0], "lng": self.center[1]},
            "zoom": self.zoom,
            "message": self.message,
        }


class MapsLoader:
    """
    Load-once handle for the maps provider configuration.

    Concurrent callers share the same in-flight load; once it has finished
    every later call returns the same result. A failed load is forgotten so
    the next call tries again.
    """

    def __init__(self, api_key: Optional[str], script_url: str = GOOGLE_MAPS_SCRIPT_URL):
        self._api_key = api_key
        self._script_url = script_url
        self._task: Optional[asyncio.Task] = None
        self._config: Optional[MapsConfig] = None

    @property
    def loaded(self) -> bool:
        return self._config is not None

    async def load(self) -> MapsConfig:
        if self._config is not None:
            return self._config

        if self._task is None:
            self._task = asyncio.ensure_future(self._load())

        try:
            config = await asyncio.shield(self._task)
        except Exception:
            self._task = None
            raise

        self._config = config
        return config

    async def _load(self) -> MapsConfig:
        if not self._api_key:
            logger.warning("Maps API key not configured, map view disabled")
            return MapsConfig(available=False, message=MAPS_UNAVAILABLE)

        query = urlencode({"key": self._api_key, "libraries": "marker"})
        logger.info("Maps configuration loaded")
        return MapsConfig(available=True, script_url=f"{self._script_url}?{query}")


# ------------------------------------------------------------------
# Markers
# ------------------------------------------------------------------

@dataclass(frozen=True)
class MapMarker:
    id: str
    latitude: float
    longitude: float
    label: str
    is_self: bool = False


@dataclass(frozen=True)
class Bounds:
    south: float
    west: float
    north: float
    east: float

    @classmethod
    def around(cls, markers: Iterable[MapMarker]) -> Optional["Bounds"]:
        markers = list(markers)
        if not markers:
            return None
        lats = [m.latitude for m in markers]
        lngs = [m.longitude for m in markers]
        return cls(south=min(lats), west=min(lngs), north=max(lats), east=max(lngs))


def markers_from_members(members: Iterable[TeamMember]) -> List[MapMarker]:
    return [
        MapMarker(
            id=m.user_id,
            latitude=m.latitude,
            longitude=m.longitude,
            label=m.name,
            is_self=m.is_self,
        )
        for m in members
        if m.is_sharing and m.latitude is not None and m.longitude is not None
    ]


class MapWidget(ABC):
    """What a map needs to expose for team markers to be drawn on it."""

    @abstractmethod
    def add_marker(self, marker: MapMarker) -> None: ...

    @abstractmethod
    def remove_marker(self, marker_id: str) -> None: ...

    @abstractmethod
    def update_marker(self, marker: MapMarker) -> None: ...

    @abstractmethod
    def fit_bounds(self, bounds: Bounds) -> None: ...


class GeoJsonMapWidget(MapWidget):
    """Keeps the marker set as GeoJSON for the client map to render."""

    def __init__(self):
        self.markers: Dict[str, MapMarker] = {}
        self.bounds: Optional[Bounds] = None

    def add_marker(self, marker: MapMarker) -> None:
        self.markers[marker.id] = marker

    def remove_marker(self, marker_id: str) -> None:
        self.markers.pop(marker_id, None)

    def update_marker(self, marker: MapMarker) -> None:
        self.markers[marker.id] = marker

    def fit_bounds(self, bounds: Bounds) -> None:
        self.bounds = bounds

    def to_dict(self) -> dict:
        features = [
            {
                "type": "Feature",
                "id": m.id,
                # GeoJSON positions are [lng, lat]
                "geometry": {"type": "Point", "coordinates": [m.longitude, m.latitude]},
                "properties": {"label": m.label, "is_self": m.is_self},
            }
            for m in self.markers.values()
        ]
        bounds = None
        if self.bounds is not None:
            bounds = {
                "south": self.bounds.south,
                "west": self.bounds.west,
                "north": self.bounds.north,
                "east": self.bounds.east,
            }
        return {"type": "FeatureCollection", "features": features, "bounds": bounds}


class MarkerLayer:
    """Applies a marker list to a widget as add/update/remove calls."""

    def __init__(self, widget: MapWidget):
        self.widget = widget
        self._markers: Dict[str, MapMarker] = {}

    def sync(self, markers: Iterable[MapMarker]) -> None:
        incoming = {m.id: m for m in markers}

        for marker_id in list(self._markers):
            if marker_id not in incoming:
                self.widget.remove_marker(marker_id)
                del self._markers[marker_id]

        for marker_id, marker in incoming.items():
            current = self._markers.get(marker_id)
            if current is None:
                self.widget.add_marker(marker)
            elif current != marker:
                self.widget.update_marker(marker)
            self._markers[marker_id] = marker

        bounds = Bounds.around(incoming.values())
        if bounds is not None:
            self.widget.fit_bounds(bounds)
