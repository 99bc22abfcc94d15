from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from app.schemas.enums import GeolocationError, PresenceStatus, ProductionRole


class RecordSchema(BaseModel):
    """Response model filled from store records rather than dicts."""
    class Config:
        from_attributes = True


# ---------- grid ----------
class GridEncodeResponse(BaseModel):
    grid_reference: str


class GridDecodeResponse(BaseModel):
    lat: float
    lng: float


# ---------- own share ----------
class PositionRequest(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class SharingRequest(BaseModel):
    is_sharing: bool
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)


class LocationShareResponse(RecordSchema):
    user_id: str
    production_id: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    grid_reference: Optional[str] = None
    is_sharing: bool
    last_updated: datetime


# ---------- team ----------
class TeamMemberResponse(RecordSchema):
    user_id: str
    name: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    grid_reference: Optional[str] = None
    is_sharing: bool
    last_updated: datetime
    status: PresenceStatus
    status_label: str
    status_color: str
    last_seen: str
    is_self: bool


class TeamLocationsResponse(BaseModel):
    production_id: str
    members: List[TeamMemberResponse]
    fetched_at: datetime
    error: Optional[str] = None


# ---------- productions ----------
class ProductionResponse(RecordSchema):
    production_id: str
    name: str
    status: str
    role: ProductionRole


# ---------- maps ----------
class MapCenter(BaseModel):
    lat: float
    lng: float


class MapsConfigResponse(BaseModel):
    available: bool
    script_url: Optional[str] = None
    center: MapCenter
    zoom: int
    message: Optional[str] = None


# ---------- live session (client -> server) ----------
class SelectMessage(BaseModel):
    type: Literal["select"]
    production_id: Optional[str] = None


class PositionMessage(BaseModel):
    type: Literal["position"]
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class PositionErrorMessage(BaseModel):
    type: Literal["position_error"]
    code: GeolocationError
    message: Optional[str] = None


class ToggleMessage(BaseModel):
    type: Literal["toggle"]
    enabled: bool


class RefreshMessage(BaseModel):
    type: Literal["refresh"]
