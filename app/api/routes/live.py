import json
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect
from loguru import logger
from pydantic import ValidationError

from app.api.deps import (
    ensure_member,
    get_change_feed,
    get_location_store,
    get_publisher,
    get_ws_user_id,
)
from app.core.location_config import POLL_INTERVAL_SECONDS
from app.schemas.location import (
    PositionErrorMessage,
    PositionMessage,
    RefreshMessage,
    SelectMessage,
    ToggleMessage,
)
from app.services.change_feed import ChangeFeed
from app.services.maps import GeoJsonMapWidget, MarkerLayer, markers_from_members
from app.services.publisher import GeoReading, LocationPublisher, Notice, SharingSession
from app.services.subscriber import LocationSubscriber, TeamSnapshot

router = APIRouter(tags=["live"])

_MESSAGES = {
    "select": SelectMessage,
    "position": PositionMessage,
    "position_error": PositionErrorMessage,
    "toggle": ToggleMessage,
    "refresh": RefreshMessage,
}


class LiveLocationSession:
    """One connected view: own sharing state plus the team feed."""

    def __init__(self, websocket: WebSocket, user_id: str, store, feed: ChangeFeed, publisher: LocationPublisher):
        self.websocket = websocket
        self.user_id = user_id
        self.store = store
        self.sharing = SharingSession(publisher, store, user_id)
        self.markers = MarkerLayer(GeoJsonMapWidget())
        self.subscriber = LocationSubscriber(
            store,
            feed,
            self.send_snapshot,
            poll_interval=POLL_INTERVAL_SECONDS,
        )

    async def send_sharing(self) -> None:
        await self.websocket.send_json({"type": "sharing", **self.sharing.to_dict()})

    async def send_notice(self, notice: Optional[Notice]) -> None:
        if notice is not None:
            await self.websocket.send_json({"type": "notice", **notice.to_dict()})

    async def send_snapshot(self, snapshot: TeamSnapshot) -> None:
        members = snapshot.members(viewer_id=self.user_id)
        self.markers.sync(markers_from_members(members))
        await self.websocket.send_json({
            "type": "snapshot",
            "production_id": snapshot.production_id,
            "fetched_at": snapshot.fetched_at.isoformat(),
            "error": snapshot.error,
            "members": [m.to_dict() for m in members],
            "map": self.markers.widget.to_dict(),
        })

    async def handle(self, raw: dict) -> None:
        model = _MESSAGES.get(raw.get("type")) if isinstance(raw, dict) else None
        if model is None:
            await self.send_notice(Notice.error("Error", "Unknown message type"))
            return

        try:
            message = model.model_validate(raw)
        except ValidationError as e:
            await self.send_notice(Notice.error("Error", f"Invalid {raw['type']} message: {e.error_count()} error(s)"))
            return

        if isinstance(message, SelectMessage):
            await self.select(message.production_id)
        elif isinstance(message, PositionMessage):
            await self.send_notice(await self.sharing.on_reading(GeoReading(message.latitude, message.longitude)))
            await self.send_sharing()
        elif isinstance(message, PositionErrorMessage):
            await self.send_notice(
                await self.sharing.on_reading(GeoReading(error=message.code, message=message.message))
            )
            await self.send_sharing()
        elif isinstance(message, ToggleMessage):
            await self.send_notice(await self.sharing.toggle(message.enabled))
            await self.send_sharing()
        elif isinstance(message, RefreshMessage):
            await self.subscriber.refresh()

    async def select(self, production_id: Optional[str]) -> None:
        if production_id is not None:
            try:
                await ensure_member(self.store, self.user_id, production_id)
            except HTTPException as e:
                await self.send_notice(Notice.error("Error", e.detail))
                return

        self.markers.sync([])
        await self.sharing.select_production(production_id)
        await self.send_sharing()
        await self.subscriber.select(production_id)

    async def close(self) -> None:
        await self.subscriber.close()


@router.websocket("/ws/location")
async def live_location(
    websocket: WebSocket,
    user_id: Optional[str] = Depends(get_ws_user_id),
    store=Depends(get_location_store),
    feed: ChangeFeed = Depends(get_change_feed),
    publisher: LocationPublisher = Depends(get_publisher),
):
    if user_id is None:
        await websocket.close(code=1008)
        return

    await websocket.accept()
    logger.info(f"[ws] live session opened | user={user_id}")

    session = LiveLocationSession(websocket, user_id, store, feed, publisher)
    try:
        await session.send_sharing()
        while True:
            text = await websocket.receive_text()
            try:
                raw = json.loads(text)
            except ValueError:
                logger.warning(f"[ws] unparseable frame | user={user_id} size={len(text)}")
                await session.send_notice(Notice.error("Error", "Invalid message"))
                continue
            await session.handle(raw)
    except WebSocketDisconnect:
        logger.info(f"[ws] live session closed | user={user_id}")
    finally:
        await session.close()
